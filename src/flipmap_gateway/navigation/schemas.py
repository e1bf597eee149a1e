"""Pydantic schemas for navigation API requests and responses."""

from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from flipmap_gateway.navigation.validators import (
    check_amount,
    check_latitude,
    check_longitude,
    check_query,
)

Latitude = Annotated[float, Field(strict=True), AfterValidator(check_latitude)]
Longitude = Annotated[float, Field(strict=True), AfterValidator(check_longitude)]
Amount = Annotated[int, Field(strict=True), AfterValidator(check_amount)]
Query = Annotated[str, Field(strict=True), AfterValidator(check_query)]


class Coordinate(BaseModel):
    """A point in WGS84 decimal degrees."""

    model_config = ConfigDict(frozen=True)

    lat: Latitude
    lon: Longitude


class RouteRequest(BaseModel):
    """Request body for ``POST /route``: an anchor point and a destination query.

    Older clients sent ``{src: Coordinate, dst: Coordinate}``; that shape is
    deprecated and no longer accepted.
    """

    lat: Latitude
    lon: Longitude
    query: Query

    @property
    def anchor(self) -> Coordinate:
        """The starting point of the route."""
        return Coordinate(lat=self.lat, lon=self.lon)


class LocationSearchRequest(BaseModel):
    """Request body for ``POST /get_locations``."""

    amount: Amount
    lat: Latitude
    lon: Longitude
    query: Query

    @property
    def bias(self) -> Coordinate:
        """The point the search is biased toward."""
        return Coordinate(lat=self.lat, lon=self.lon)


class Place(BaseModel):
    """A geocoding result."""

    model_config = ConfigDict(frozen=True)

    lat: Latitude
    lon: Longitude
    label: str

    @property
    def coordinate(self) -> Coordinate:
        """The place location as a Coordinate."""
        return Coordinate(lat=self.lat, lon=self.lon)


class RouteResponse(BaseModel):
    """Response schema for the route endpoint.

    ``route`` is a flattened LineString: ``[lat, lon, lat, lon, ...]``.
    """

    route: list[float]

    @classmethod
    def from_line(cls, line: list[Coordinate]) -> "RouteResponse":
        return cls(route=[value for point in line for value in (point.lat, point.lon)])


class LocationsResponse(BaseModel):
    """Response schema for the location search endpoint."""

    places: list[Place]


class ErrorResponse(BaseModel):
    """Body of every error response produced by the application."""

    msg: str
