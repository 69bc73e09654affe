"""
FastAPI application entrypoint for the account connection service.
"""

from __future__ import annotations

import logging
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from account_connect.api.routes import router as api_router
from account_connect.core.config import get_settings
from account_connect.core.errors import (
    ConnectorError,
    InvalidRequestError,
    MisconfiguredProviderError,
    StorageUnavailableError,
)
from account_connect.core.logging import configure_logging

logger = logging.getLogger(__name__)


async def handle_connector_error(request: Request, exc: ConnectorError) -> JSONResponse:
    """Render domain errors as ``{"error": kind, "message": ...}``."""
    if isinstance(exc, (MisconfiguredProviderError, StorageUnavailableError)):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning("%s %s rejected (%s)", request.method, request.url.path, exc.kind)
    return JSONResponse(status_code=exc.http_status, content=exc.to_payload())


async def handle_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Answer malformed input with the usual error shape, without echoing values."""
    # loc is ("body" | "query" | "path", field, ...); only the field path is reported.
    fields = sorted(
        {
            ".".join(str(part) for part in error.get("loc", ())[1:]) or "request"
            for error in exc.errors()
        }
    )
    error = InvalidRequestError(f"Invalid value for: {', '.join(fields)}.")
    return await handle_connector_error(request, error)


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
        content={"error": "internal_error", "message": "An unexpected error occurred."},
    )


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Account Connect",
        version="0.1.0",
        description="OAuth connection lifecycle for Gmail, Discord and Slack.",
    )
    app.add_exception_handler(ConnectorError, handle_connector_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app"]
