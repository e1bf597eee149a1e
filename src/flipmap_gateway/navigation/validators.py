"""Domain checks for coordinates, result counts and search queries."""

import math

from flipmap_gateway.exceptions import InvalidFieldError

MAX_LOCATION_AMOUNT = 50


def check_latitude(value: float, field: str = "lat") -> float:
    """Return ``value`` if it is a latitude in [-90, 90].

    Raises:
        InvalidFieldError: If the value is NaN or out of range.
    """
    if math.isnan(value) or not (-90 <= value <= 90):
        raise InvalidFieldError(field, f"{value} is not between -90 and 90")
    return value


def check_longitude(value: float, field: str = "lon") -> float:
    """Return ``value`` if it is a longitude in [-180, 180].

    Raises:
        InvalidFieldError: If the value is NaN or out of range.
    """
    if math.isnan(value) or not (-180 <= value <= 180):
        raise InvalidFieldError(field, f"{value} is not between -180 and 180")
    return value


def check_amount(value: int, maximum: int = MAX_LOCATION_AMOUNT) -> int:
    """Return ``value`` if it is a result count between 1 and ``maximum``.

    Raises:
        InvalidFieldError: If the value is zero, negative or above the cap.
    """
    if value < 1:
        raise InvalidFieldError("amount", f"{value} is not a positive integer")
    if value > maximum:
        raise InvalidFieldError("amount", f"{value} exceeds the maximum of {maximum}")
    return value


def check_query(value: str) -> str:
    """Return ``value`` unchanged if it holds any non-whitespace text.

    Raises:
        InvalidFieldError: If the query is empty or blank.
    """
    if not value.strip():
        raise InvalidFieldError("query", "must not be empty")
    return value
