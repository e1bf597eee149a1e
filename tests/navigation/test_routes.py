"""Functional tests for the navigation API routes."""

import asyncio
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from flipmap_gateway.exceptions import (
    INTERNAL_ERROR_MESSAGE,
    INVALID_REQUEST_MESSAGE,
    PLACE_NOT_FOUND_MESSAGE,
    UPSTREAM_PARSE_MESSAGE,
    UPSTREAM_REQUEST_MESSAGE,
    ClientDisconnectedError,
    UpstreamMalformedError,
    UpstreamStatusError,
    UpstreamTimeoutError,
    UpstreamTransportError,
)
from flipmap_gateway.main import app
from flipmap_gateway.navigation.requester import ExternalRequester
from flipmap_gateway.navigation.routes import run_until_disconnected
from flipmap_gateway.navigation.schemas import Coordinate, Place

ANCHOR = Coordinate(lat=44.5688, lon=-123.278)
DOWNWARD_DOG = Place(lat=44.5646, lon=-123.262, label="Downward Dog, Corvallis")
ROUTE_BODY = {"lat": 44.5688, "lon": -123.278, "query": "Downward Dog"}
SEARCH_BODY = {"amount": 20, "lat": 44.5688, "lon": -123.278, "query": "Starbucks"}


@pytest.fixture
def mock_requester() -> MagicMock:
    """Create a mock ExternalRequester; its coroutine methods become AsyncMocks."""
    return MagicMock(spec=ExternalRequester)


@pytest.fixture
def client(mock_requester: MagicMock) -> TestClient:
    """Create a TestClient with the mocked requester injected."""
    app.state.requester = mock_requester
    return TestClient(app, raise_server_exceptions=False)


def _places(count: int) -> list[Place]:
    return [Place(lat=44.0, lon=-123.0 + i / 100, label=f"Starbucks #{i}") for i in range(count)]


class TestRouteEndpoint:
    def test_returns_flattened_route(self, client: TestClient, mock_requester: MagicMock) -> None:
        mock_requester.geocode.return_value = [DOWNWARD_DOG]
        mock_requester.route.return_value = [
            ANCHOR,
            Coordinate(lat=44.567, lon=-123.27),
            DOWNWARD_DOG.coordinate,
        ]

        response = client.post("/route", json=ROUTE_BODY)

        assert response.status_code == 200
        route = response.json()["route"]
        assert route == [44.5688, -123.278, 44.567, -123.27, 44.5646, -123.262]
        assert len(route) % 2 == 0 and len(route) >= 4
        assert all(-90 <= lat <= 90 for lat in route[0::2])

    def test_geocodes_then_routes_from_anchor(
        self, client: TestClient, mock_requester: MagicMock
    ) -> None:
        mock_requester.geocode.return_value = [DOWNWARD_DOG]
        mock_requester.route.return_value = [ANCHOR, DOWNWARD_DOG.coordinate]

        client.post("/route", json=ROUTE_BODY)

        mock_requester.geocode.assert_awaited_once_with("Downward Dog", ANCHOR, 1)
        mock_requester.route.assert_awaited_once_with([ANCHOR, DOWNWARD_DOG.coordinate])

    def test_response_shape_matches_schema(
        self, client: TestClient, mock_requester: MagicMock
    ) -> None:
        mock_requester.geocode.return_value = [DOWNWARD_DOG]
        mock_requester.route.return_value = [ANCHOR, DOWNWARD_DOG.coordinate]

        response = client.post("/route", json={**ROUTE_BODY, "extra": "ignored"})

        assert response.status_code == 200
        assert set(response.json()) == {"route"}

    def test_returns_422_when_nothing_found(
        self, client: TestClient, mock_requester: MagicMock
    ) -> None:
        mock_requester.geocode.return_value = []

        response = client.post("/route", json=ROUTE_BODY)

        assert response.status_code == 422
        assert response.json() == {"msg": PLACE_NOT_FOUND_MESSAGE}
        mock_requester.route.assert_not_awaited()

    @pytest.mark.parametrize(
        "body",
        [
            {"lat": "not a number", "lon": -123.28, "query": "x"},
            {"lat": 4444.57, "lon": -123.28, "query": "x"},
            {"lon": -123.28, "query": "x"},
            {"lat": 44.5, "lon": 180.01, "query": "x"},
            {"lat": 44.5, "lon": -123.28, "query": ""},
            {"lat": 44.5, "lon": -123.28},
        ],
    )
    def test_returns_422_for_invalid_body_without_upstream_calls(
        self, client: TestClient, mock_requester: MagicMock, body: dict
    ) -> None:
        response = client.post("/route", json=body)

        assert response.status_code == 422
        assert response.json() == {"msg": INVALID_REQUEST_MESSAGE}
        mock_requester.geocode.assert_not_awaited()
        mock_requester.route.assert_not_awaited()

    def test_does_not_echo_field_values(self, client: TestClient) -> None:
        response = client.post("/route", json={"lat": 4444.57, "lon": -123.28, "query": "x"})

        assert "4444.57" not in response.text

    def test_returns_422_for_invalid_json(self, client: TestClient) -> None:
        response = client.post(
            "/route", content=b"{not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 422
        assert response.json() == {"msg": INVALID_REQUEST_MESSAGE}

    def test_returns_500_without_leaking_upstream_details(
        self, client: TestClient, mock_requester: MagicMock
    ) -> None:
        mock_requester.geocode.return_value = [DOWNWARD_DOG]
        mock_requester.route.side_effect = UpstreamTransportError(
            "openrouteservice", "ConnectError('api.openrouteservice.org: Name or service not known')"
        )

        response = client.post("/route", json=ROUTE_BODY)

        assert response.status_code == 500
        assert response.json() == {"msg": UPSTREAM_REQUEST_MESSAGE}
        assert "openrouteservice" not in response.text
        assert "Traceback" not in response.text

    def test_returns_500_on_upstream_error_status(
        self, client: TestClient, mock_requester: MagicMock
    ) -> None:
        mock_requester.geocode.side_effect = UpstreamStatusError(
            "photon", 502, "Bad Gateway from photon.komoot.io"
        )

        response = client.post("/route", json=ROUTE_BODY)

        assert response.status_code == 500
        assert "Bad Gateway" not in response.text
        assert "komoot" not in response.text

    def test_returns_500_on_upstream_timeout(
        self, client: TestClient, mock_requester: MagicMock
    ) -> None:
        mock_requester.geocode.side_effect = UpstreamTimeoutError("photon", 10.0)

        response = client.post("/route", json=ROUTE_BODY)

        assert response.status_code == 500
        assert response.json() == {"msg": UPSTREAM_REQUEST_MESSAGE}

    def test_returns_500_on_malformed_upstream_response(
        self, client: TestClient, mock_requester: MagicMock
    ) -> None:
        mock_requester.geocode.return_value = [DOWNWARD_DOG]
        mock_requester.route.side_effect = UpstreamMalformedError(
            "openrouteservice", "expected LineString geometry, got 'Point'"
        )

        response = client.post("/route", json=ROUTE_BODY)

        assert response.status_code == 500
        assert response.json() == {"msg": UPSTREAM_PARSE_MESSAGE}

    def test_returns_500_on_unexpected_error(
        self, client: TestClient, mock_requester: MagicMock
    ) -> None:
        mock_requester.geocode.side_effect = RuntimeError("secret internal state")

        response = client.post("/route", json=ROUTE_BODY)

        assert response.status_code == 500
        assert response.json() == {"msg": INTERNAL_ERROR_MESSAGE}


class TestGetLocationsEndpoint:
    def test_returns_places(self, client: TestClient, mock_requester: MagicMock) -> None:
        mock_requester.geocode.return_value = _places(3)

        response = client.post("/get_locations", json=SEARCH_BODY)

        assert response.status_code == 200
        places = response.json()["places"]
        assert [place["label"] for place in places] == [
            "Starbucks #0",
            "Starbucks #1",
            "Starbucks #2",
        ]
        assert set(places[0]) == {"lat", "lon", "label"}
        mock_requester.geocode.assert_awaited_once_with("Starbucks", ANCHOR, 20)

    def test_never_returns_more_than_amount(
        self, client: TestClient, mock_requester: MagicMock
    ) -> None:
        mock_requester.geocode.return_value = _places(5)

        response = client.post("/get_locations", json={**SEARCH_BODY, "amount": 2})

        assert response.status_code == 200
        assert len(response.json()["places"]) == 2

    def test_empty_result_is_success(self, client: TestClient, mock_requester: MagicMock) -> None:
        mock_requester.geocode.return_value = []

        response = client.post("/get_locations", json=SEARCH_BODY)

        assert response.status_code == 200
        assert response.json() == {"places": []}

    @pytest.mark.parametrize("amount", [0, -1, 51, 2.5, "20"])
    def test_returns_422_for_bad_amount(
        self, client: TestClient, mock_requester: MagicMock, amount: object
    ) -> None:
        response = client.post("/get_locations", json={**SEARCH_BODY, "amount": amount})

        assert response.status_code == 422
        mock_requester.geocode.assert_not_awaited()

    def test_returns_422_for_out_of_range_bias(
        self, client: TestClient, mock_requester: MagicMock
    ) -> None:
        response = client.post("/get_locations", json={**SEARCH_BODY, "lat": -90.5})

        assert response.status_code == 422
        mock_requester.geocode.assert_not_awaited()

    def test_returns_500_when_upstream_unreachable(
        self, client: TestClient, mock_requester: MagicMock
    ) -> None:
        mock_requester.geocode.side_effect = UpstreamTransportError("photon", "connection refused")

        response = client.post("/get_locations", json=SEARCH_BODY)

        assert response.status_code == 500
        assert response.json() == {"msg": UPSTREAM_REQUEST_MESSAGE}


class TestFrameworkResponses:
    def test_returns_415_for_non_json_content_type(
        self, client: TestClient, mock_requester: MagicMock
    ) -> None:
        response = client.post(
            "/route",
            content=b"woah dude",
            headers={"Content-Type": "text/html; charset=utf-8"},
        )

        assert response.status_code == 415
        mock_requester.geocode.assert_not_awaited()

    def test_returns_415_without_content_type(self, client: TestClient) -> None:
        response = client.post("/get_locations", content=b"{}")

        assert response.status_code == 415

    def test_accepts_json_with_charset(self, client: TestClient, mock_requester: MagicMock) -> None:
        mock_requester.geocode.return_value = []

        response = client.post(
            "/get_locations",
            content=b'{"amount": 1, "lat": 0, "lon": 0, "query": "x"}',
            headers={"Content-Type": "application/json; charset=utf-8"},
        )

        assert response.status_code == 200

    def test_returns_405_for_wrong_method(self, client: TestClient) -> None:
        response = client.get("/route")

        assert response.status_code == 405

    def test_returns_404_for_unknown_path(self, client: TestClient) -> None:
        response = client.get("/wp-login.php")

        assert response.status_code == 404


class TestRunUntilDisconnected:
    @pytest.mark.asyncio
    async def test_returns_result_while_connected(self) -> None:
        async def connected() -> bool:
            return False

        request = SimpleNamespace(is_disconnected=connected, url=SimpleNamespace(path="/route"))

        async def work() -> str:
            return "done"

        assert await run_until_disconnected(request, work()) == "done"

    @pytest.mark.asyncio
    async def test_cancels_work_when_client_leaves(self) -> None:
        async def disconnected() -> bool:
            return True

        request = SimpleNamespace(is_disconnected=disconnected, url=SimpleNamespace(path="/route"))
        cancelled = asyncio.Event()

        async def work() -> None:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.set()
                raise

        with pytest.raises(ClientDisconnectedError):
            await run_until_disconnected(request, work())

        await asyncio.wait_for(cancelled.wait(), timeout=1)
