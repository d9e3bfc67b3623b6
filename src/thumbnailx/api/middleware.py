"""Middleware: API key authentication and error-to-status mapping."""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from thumbnailx.errors import (
    ConfigurationError,
    EngineFailureError,
    ImageTooLargeError,
    InvalidGeometryError,
    ThumbnailError,
    UnsupportedFormatError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI

    from thumbnailx.config import Settings

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)

CONTENT_TOO_LARGE = 413
UNPROCESSABLE_CONTENT = 422

# Checked in order; subclasses must come before their bases.
_ERROR_STATUS: list[tuple[type[ThumbnailError], int]] = [
    (ImageTooLargeError, CONTENT_TOO_LARGE),
    (UnsupportedFormatError, status.HTTP_415_UNSUPPORTED_MEDIA_TYPE),
    (InvalidGeometryError, UNPROCESSABLE_CONTENT),
    (ConfigurationError, UNPROCESSABLE_CONTENT),
    (EngineFailureError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
    x_api_key: Annotated[str | None, Header()] = None,
) -> None:
    """Check the request's key against THUMBNAILX_API_KEY.

    The key may be sent as ``Authorization: Bearer <key>`` or as an
    ``X-API-Key`` header. Without a configured key every request passes.
    """
    settings: Settings = request.app.state.settings
    if settings.api_key is None:
        return

    supplied = credentials.credentials if credentials is not None else x_api_key
    if supplied is None or not secrets.compare_digest(supplied.encode(), settings.api_key.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )


def status_for(exc: Exception) -> int:
    """HTTP status code reported for a ThumbnailX error."""
    for error_type, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def _thumbnail_error_handler(request: Request, exc: Exception) -> JSONResponse:
    code = status_for(exc)
    if code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("Transform failed on %s: %s", request.url.path, exc)
    else:
        logger.info("Rejected %s: %s", request.url.path, exc)
    return JSONResponse(status_code=code, content={"detail": str(exc)})


async def _queue_timeout_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Server busy, try again later"},
    )


def install_error_handlers(application: FastAPI) -> None:
    """Register the ThumbnailX exception handlers on ``application``."""
    application.add_exception_handler(ThumbnailError, _thumbnail_error_handler)
    application.add_exception_handler(TimeoutError, _queue_timeout_handler)
