"""Custom exception hierarchy for the application.

Exceptions carry full diagnostic detail for logging. What the client sees is
decided only by :func:`client_error`, which collapses every exception into a
status code and one of a few fixed messages.
"""

from http import HTTPStatus

INVALID_REQUEST_MESSAGE = "invalid request"
PLACE_NOT_FOUND_MESSAGE = "no matching place found"
UPSTREAM_REQUEST_MESSAGE = "problem making call to external API"
UPSTREAM_PARSE_MESSAGE = "problem parsing external API response"
INTERNAL_ERROR_MESSAGE = "internal error"


class AppError(Exception):
    """Base exception for the application."""

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class StartupError(AppError):
    """Raised when the process cannot start serving traffic."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="STARTUP_FAILED")


class InvalidFieldError(AppError, ValueError):
    """Raised when a client-supplied field fails a domain check.

    Also a ``ValueError`` so pydantic field validators report it as a
    regular validation failure.
    """

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"Invalid {field}: {reason}", code="INVALID_FIELD")
        self.field = field
        self.reason = reason


class RequestValidationFailedError(AppError):
    """Raised when a request body cannot be deserialized into its model."""

    def __init__(self, errors: list[dict]) -> None:
        fields = sorted({".".join(str(part) for part in err.get("loc", ())) for err in errors})
        super().__init__(
            f"Request validation failed for: {', '.join(fields) or 'body'}",
            code="REQUEST_VALIDATION_FAILED",
        )
        self.errors = errors
        self.fields = fields


class PlaceNotFoundError(AppError):
    """Raised when geocoding returns no candidates for a query."""

    def __init__(self, query: str) -> None:
        super().__init__(f"No place found for query {query!r}", code="PLACE_NOT_FOUND")
        self.query = query


class ClientDisconnectedError(AppError):
    """Raised when the client goes away before its response is ready."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Client disconnected from {path}", code="CLIENT_DISCONNECTED")
        self.path = path


class UpstreamError(AppError):
    """Base exception for failures talking to an external service."""

    def __init__(self, service: str, message: str, *, code: str) -> None:
        super().__init__(f"{service}: {message}", code=code)
        self.service = service


class UpstreamTransportError(UpstreamError):
    """Raised when an external service cannot be reached."""

    def __init__(self, service: str, message: str, *, code: str = "UPSTREAM_TRANSPORT") -> None:
        super().__init__(service, message, code=code)


class UpstreamTimeoutError(UpstreamTransportError):
    """Raised when an external service does not answer within the timeout."""

    def __init__(self, service: str, timeout: float) -> None:
        super().__init__(service, f"no response within {timeout}s", code="UPSTREAM_TIMEOUT")
        self.timeout = timeout


class UpstreamStatusError(UpstreamTransportError):
    """Raised when an external service answers with a non-success status."""

    def __init__(self, service: str, status_code: int, body: str) -> None:
        super().__init__(service, f"HTTP {status_code}: {body}", code="UPSTREAM_STATUS")
        self.status_code = status_code
        self.body = body


class UpstreamMalformedError(UpstreamError):
    """Raised when an external service response does not have the expected shape."""

    def __init__(self, service: str, message: str) -> None:
        super().__init__(service, message, code="UPSTREAM_MALFORMED")


def client_error(exc: Exception) -> tuple[int, str]:
    """Map an exception to the status code and message shown to the client."""
    if isinstance(exc, (InvalidFieldError, RequestValidationFailedError)):
        return HTTPStatus.UNPROCESSABLE_ENTITY, INVALID_REQUEST_MESSAGE
    if isinstance(exc, PlaceNotFoundError):
        return HTTPStatus.UNPROCESSABLE_ENTITY, PLACE_NOT_FOUND_MESSAGE
    if isinstance(exc, UpstreamTransportError):
        return HTTPStatus.INTERNAL_SERVER_ERROR, UPSTREAM_REQUEST_MESSAGE
    if isinstance(exc, UpstreamMalformedError):
        return HTTPStatus.INTERNAL_SERVER_ERROR, UPSTREAM_PARSE_MESSAGE
    return HTTPStatus.INTERNAL_SERVER_ERROR, INTERNAL_ERROR_MESSAGE
