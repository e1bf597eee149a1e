"""API routes for routing and place search."""

import asyncio
import logging
from collections.abc import Awaitable
from typing import Annotated, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Request, status

from flipmap_gateway.exceptions import ClientDisconnectedError, PlaceNotFoundError
from flipmap_gateway.navigation.requester import ExternalRequester
from flipmap_gateway.navigation.schemas import (
    LocationSearchRequest,
    LocationsResponse,
    RouteRequest,
    RouteResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["navigation"])

T = TypeVar("T")

DISCONNECT_POLL_SECONDS = 0.25


def get_requester(request: Request) -> ExternalRequester:
    """FastAPI dependency that retrieves the ExternalRequester from app state."""
    requester: ExternalRequester = request.app.state.requester
    return requester


def require_json(request: Request) -> None:
    """Reject bodies that are not declared as JSON."""
    content_type = request.headers.get("content-type", "")
    media_type = content_type.split(";", 1)[0].strip().lower()
    if media_type != "application/json" and not media_type.endswith("+json"):
        logger.warning("Rejected non-JSON body", extra={"content_type": content_type})
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail="Expected request with `Content-Type: application/json`",
        )


async def run_until_disconnected(request: Request, work: Awaitable[T]) -> T:
    """Await ``work``, cancelling it if the client disconnects first.

    Raises:
        ClientDisconnectedError: If the client went away before ``work`` finished.
    """
    work_task = asyncio.ensure_future(work)

    async def watch() -> None:
        while not await request.is_disconnected():
            await asyncio.sleep(DISCONNECT_POLL_SECONDS)

    watch_task = asyncio.ensure_future(watch())
    try:
        done, _ = await asyncio.wait(
            {work_task, watch_task}, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        watch_task.cancel()
        if not work_task.done():
            work_task.cancel()

    if work_task not in done:
        raise ClientDisconnectedError(request.url.path)
    return work_task.result()


async def _route_to_query(requester: ExternalRequester, params: RouteRequest) -> RouteResponse:
    anchor = params.anchor
    places = await requester.geocode(params.query, anchor, 1)
    if not places:
        raise PlaceNotFoundError(params.query)
    line = await requester.route([anchor, places[0].coordinate])
    return RouteResponse.from_line(line)


async def _search(
    requester: ExternalRequester, params: LocationSearchRequest
) -> LocationsResponse:
    places = await requester.geocode(params.query, params.bias, params.amount)
    return LocationsResponse(places=places[: params.amount])


@router.post(
    "/route",
    response_model=RouteResponse,
    dependencies=[Depends(require_json)],
    summary="Route from a point to the best match for a query",
)
async def route(
    params: RouteRequest,
    request: Request,
    requester: Annotated[ExternalRequester, Depends(get_requester)],
) -> RouteResponse:
    """Geocode ``query`` near the anchor point, then route from the anchor to the top hit.

    Returns:
        The route as a flattened ``[lat, lon, ...]`` array.
    """
    return await run_until_disconnected(request, _route_to_query(requester, params))


@router.post(
    "/get_locations",
    response_model=LocationsResponse,
    dependencies=[Depends(require_json)],
    summary="Search for places near a point",
)
async def get_locations(
    params: LocationSearchRequest,
    request: Request,
    requester: Annotated[ExternalRequester, Depends(get_requester)],
) -> LocationsResponse:
    """Return up to ``amount`` places matching ``query``, in upstream relevance order."""
    return await run_until_disconnected(request, _search(requester, params))
