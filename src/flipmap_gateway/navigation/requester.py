"""HTTP client for the routing (OpenRouteService) and geocoding (Photon) upstreams."""

import logging
import ssl
from collections.abc import Sequence
from typing import Any
from urllib.parse import urlsplit

import anyio
import certifi
import httpx
from pydantic import ValidationError

from flipmap_gateway.config import Settings
from flipmap_gateway.exceptions import (
    StartupError,
    UpstreamMalformedError,
    UpstreamStatusError,
    UpstreamTimeoutError,
    UpstreamTransportError,
)
from flipmap_gateway.navigation.schemas import Coordinate, Place

logger = logging.getLogger(__name__)

USER_AGENT = "flipmap-gateway/0.1.0"
ORS_SERVICE = "openrouteservice"
PHOTON_SERVICE = "photon"
ORS_DIRECTIONS_PATH = "/v2/directions/{profile}/geojson"
PHOTON_SEARCH_PATH = "/api/"
# Upstream bodies are kept on exceptions for logging only; cap what we hold on to.
MAX_LOGGED_BODY_CHARS = 500

_LABEL_KEYS = ("name", "street", "city", "state", "country")


def build_ssl_context() -> ssl.SSLContext:
    """Create the TLS context used for every outbound call.

    Raises:
        StartupError: If no CA trust store can be loaded.
    """
    try:
        context = ssl.create_default_context(cafile=certifi.where())
    except (OSError, ssl.SSLError) as exc:
        raise StartupError(f"TLS backend unavailable: {exc}") from exc
    if not context.get_ca_certs():
        raise StartupError(f"CA trust store at {certifi.where()} is empty")
    return context


def _check_base_url(name: str, url: str, allow_insecure: bool) -> None:
    parts = urlsplit(url)
    allowed = {"https", "http"} if allow_insecure else {"https"}
    if parts.scheme not in allowed or not parts.netloc:
        schemes = "/".join(sorted(allowed))
        raise StartupError(f"{name} must be an absolute {schemes} URL, got {url!r}")


def check_startup(settings: Settings) -> ssl.SSLContext:
    """Verify everything the requester needs before any traffic is served.

    Returns:
        The TLS context to use for outbound calls.

    Raises:
        StartupError: If the API key is missing, a base URL is unusable,
            the timeout is not positive, or no TLS backend is available.
    """
    if not settings.ors_api_key.get_secret_value().strip():
        raise StartupError("ORS_API_KEY is not set")
    if settings.upstream_timeout_seconds <= 0:
        raise StartupError("UPSTREAM_TIMEOUT_SECONDS must be positive")
    _check_base_url("ORS_BASE_URL", settings.ors_base_url, settings.allow_insecure_upstreams)
    _check_base_url("PHOTON_BASE_URL", settings.photon_base_url, settings.allow_insecure_upstreams)
    return build_ssl_context()


def _place_label(properties: dict[str, Any]) -> str:
    """Build a display label from Photon feature properties."""
    parts: list[str] = []
    for key in _LABEL_KEYS:
        value = properties.get(key)
        if key == "street" and value and properties.get("housenumber"):
            value = f"{properties['housenumber']} {value}"
        if isinstance(value, str) and value.strip() and value not in parts:
            parts.append(value.strip())
    return ", ".join(parts)


class ExternalRequester:
    """Sole caller of the routing and geocoding upstreams.

    Built once at startup and shared by every request. Holds an
    ``httpx.AsyncClient``, which pools connections and is safe to use from
    concurrent tasks, so no locking is needed.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        ssl_context: ssl.SSLContext | bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = settings.ors_api_key
        self._timeout = settings.upstream_timeout_seconds
        self._directions_url = settings.ors_base_url.rstrip("/") + ORS_DIRECTIONS_PATH.format(
            profile=settings.ors_profile
        )
        self._search_url = settings.photon_base_url.rstrip("/") + PHOTON_SEARCH_PATH
        self._client = httpx.AsyncClient(
            headers={"User-Agent": USER_AGENT},
            timeout=httpx.Timeout(settings.upstream_timeout_seconds),
            verify=ssl_context,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExternalRequester":
        """Validate startup requirements and build the requester.

        Raises:
            StartupError: If the API key is missing, a base URL is unusable,
                or no TLS backend is available.
        """
        requester = cls(settings, ssl_context=check_startup(settings))
        logger.info(
            "External requester ready",
            extra={"ors_url": requester._directions_url, "photon_url": requester._search_url},
        )
        return requester

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def geocode(self, query: str, bias: Coordinate, amount: int) -> list[Place]:
        """Search for places matching ``query``, biased toward ``bias``.

        Args:
            query: Free-text search term.
            bias: Point the search is biased toward.
            amount: Maximum number of places to return.

        Returns:
            Up to ``amount`` places in upstream relevance order. May be empty.

        Raises:
            UpstreamTransportError: On network failure, timeout or non-2xx status.
            UpstreamMalformedError: If the response is not a point FeatureCollection.
        """
        params = {"q": query, "lat": bias.lat, "lon": bias.lon, "limit": amount}
        payload = await self._send(PHOTON_SERVICE, "GET", self._search_url, params=params)

        places = []
        for feature in _features(PHOTON_SERVICE, payload)[:amount]:
            try:
                geometry = feature["geometry"]
                if geometry["type"] != "Point":
                    raise UpstreamMalformedError(
                        PHOTON_SERVICE, f"expected Point geometry, got {geometry['type']!r}"
                    )
                lon, lat = geometry["coordinates"][:2]
                properties = feature.get("properties") or {}
                if not isinstance(properties, dict):
                    raise TypeError(f"properties is {type(properties).__name__}, not an object")
                places.append(Place(lat=lat, lon=lon, label=_place_label(properties)))
            except (KeyError, TypeError, ValueError, ValidationError) as exc:
                raise UpstreamMalformedError(PHOTON_SERVICE, f"bad feature: {exc}") from exc
        return places

    async def route(self, waypoints: Sequence[Coordinate]) -> list[Coordinate]:
        """Compute a route through ``waypoints`` in the given order.

        Args:
            waypoints: At least two points, visited in order.

        Returns:
            The route path as coordinates in traversal order.

        Raises:
            ValueError: If fewer than two waypoints are given.
            UpstreamTransportError: On network failure, timeout or non-2xx status.
            UpstreamMalformedError: If the response holds no LineString.
        """
        if len(waypoints) < 2:
            raise ValueError(f"route needs at least two waypoints, got {len(waypoints)}")

        body = {
            "coordinates": [[point.lon, point.lat] for point in waypoints],
            "instructions": False,
        }
        headers = {"Authorization": self._api_key.get_secret_value()}
        payload = await self._send(
            ORS_SERVICE, "POST", self._directions_url, json=body, headers=headers
        )

        features = _features(ORS_SERVICE, payload)
        if not features:
            raise UpstreamMalformedError(ORS_SERVICE, "no route feature in response")
        try:
            geometry = features[0]["geometry"]
            if geometry["type"] != "LineString":
                raise UpstreamMalformedError(
                    ORS_SERVICE, f"expected LineString geometry, got {geometry['type']!r}"
                )
            line = [Coordinate(lat=pos[1], lon=pos[0]) for pos in geometry["coordinates"]]
        except (KeyError, IndexError, TypeError, ValidationError) as exc:
            raise UpstreamMalformedError(ORS_SERVICE, f"bad route geometry: {exc}") from exc
        if len(line) < 2:
            raise UpstreamMalformedError(ORS_SERVICE, f"route has {len(line)} points")
        return line

    async def _send(self, service: str, method: str, url: str, **kwargs: Any) -> Any:
        """Send one request and return its decoded JSON body."""
        try:
            # httpx timeouts are per phase; this bounds the whole call, body included.
            with anyio.fail_after(self._timeout):
                response = await self._client.request(method, url, **kwargs)
        except (httpx.TimeoutException, TimeoutError) as exc:
            logger.error(
                "Upstream %s timed out", service, extra={"service": service, "error": repr(exc)}
            )
            raise UpstreamTimeoutError(service, self._timeout) from exc
        except httpx.HTTPError as exc:
            logger.error(
                "Upstream %s request failed: %r",
                service,
                exc,
                extra={"service": service, "error": repr(exc)},
            )
            raise UpstreamTransportError(service, repr(exc)) from exc

        if not response.is_success:
            body = response.text[:MAX_LOGGED_BODY_CHARS]
            logger.error(
                "Upstream %s returned HTTP %s",
                service,
                response.status_code,
                extra={"service": service, "status_code": response.status_code, "body": body},
            )
            raise UpstreamStatusError(service, response.status_code, body)

        try:
            return response.json()
        except ValueError as exc:
            logger.error(
                "Upstream %s returned invalid JSON",
                service,
                extra={"service": service, "body": response.text[:MAX_LOGGED_BODY_CHARS]},
            )
            raise UpstreamMalformedError(service, "response body is not JSON") from exc


def _features(service: str, payload: Any) -> list[dict[str, Any]]:
    """Return the feature list of a GeoJSON FeatureCollection payload."""
    if not isinstance(payload, dict) or payload.get("type") != "FeatureCollection":
        logger.error("Upstream %s payload is not a FeatureCollection", service, extra={"service": service})
        raise UpstreamMalformedError(service, "expected a GeoJSON FeatureCollection")
    features = payload.get("features")
    if not isinstance(features, list) or not all(isinstance(f, dict) for f in features):
        raise UpstreamMalformedError(service, "FeatureCollection has no feature list")
    return features
