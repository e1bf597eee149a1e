"""FastAPI application entry point."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from flipmap_gateway.config import Settings
from flipmap_gateway.exceptions import (
    AppError,
    ClientDisconnectedError,
    RequestValidationFailedError,
    StartupError,
    client_error,
)
from flipmap_gateway.navigation.requester import ExternalRequester, check_startup
from flipmap_gateway.navigation.routes import router
from flipmap_gateway.navigation.schemas import ErrorResponse

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown.

    Builds the external requester on startup, failing before the listener
    opens if the API key or TLS backend is missing, and closes its HTTP
    client on teardown.
    """
    try:
        settings = Settings.from_env()
        requester = ExternalRequester.from_settings(settings)
    except StartupError as exc:
        logger.critical("Startup check failed: %s", exc)
        raise
    logging.getLogger().setLevel(settings.log_level)
    app.state.requester = requester
    logger.info("Navigation gateway initialized")
    yield
    await requester.aclose()
    logger.info("Navigation gateway shut down")


app = FastAPI(title="Flipmap Gateway", lifespan=lifespan)
app.include_router(router)


def _error_response(request: Request, exc: Exception) -> JSONResponse:
    """Log ``exc`` with its full detail and build the vague client response."""
    status_code, message = client_error(exc)
    extra = {
        "path": request.url.path,
        "error_type": type(exc).__name__,
        "error_code": getattr(exc, "code", None),
        "error": str(exc),
    }
    if isinstance(exc, ClientDisconnectedError):
        logger.info("Client disconnected, upstream calls cancelled: %s", exc, extra=extra)
    elif status_code < 500:
        logger.warning("Request rejected: %s", exc, extra=extra)
    elif isinstance(exc, AppError):
        logger.error("Request failed: %s", exc, extra=extra)
    else:
        logger.error("Unhandled error: %r", exc, extra=extra, exc_info=exc)
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(msg=message).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request bodies that fail deserialization or field checks."""
    errors = [
        {"loc": err.get("loc", ()), "type": err.get("type"), "msg": err.get("msg")}
        for err in exc.errors()
    ]
    return _error_response(request, RequestValidationFailedError(errors))


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle errors raised by the application."""
    return _error_response(request, exc)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle anything else without exposing its detail."""
    return _error_response(request, exc)


def run() -> None:
    """Run startup checks, then serve the app with uvicorn."""
    try:
        settings = Settings.from_env()
        check_startup(settings)
    except StartupError as exc:
        logger.critical("Startup check failed: %s", exc)
        sys.exit(1)

    logger.info("Starting server", extra={"host": settings.host, "port": settings.port})
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
