"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from thumbnailx.api.middleware import install_error_handlers
from thumbnailx.api.routes import router
from thumbnailx.config import Settings, get_settings
from thumbnailx.imaging.engine import PillowEngine
from thumbnailx.imaging.pool import TransformPool

logger = logging.getLogger(__name__)


def init_state(app: FastAPI, settings: Settings) -> None:
    """Attach settings, raster engine and transform pool to ``app.state``."""
    app.state.settings = settings
    app.state.engine = PillowEngine.from_settings(settings)
    app.state.transform_pool = TransformPool(settings)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting ThumbnailX (rounding=%s, filter=%s, max_concurrent=%s)",
        settings.rounding,
        settings.resample_filter,
        settings.max_concurrent,
    )
    init_state(app, settings)

    logger.info("ThumbnailX ready")
    yield

    logger.info("Shutting down ThumbnailX")
    app.state.transform_pool.shutdown()
    logger.info("ThumbnailX shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="ThumbnailX",
        description="Thumbnail geometry and transform service for GIF, JPEG and PNG images",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    install_error_handlers(application)
    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the application with uvicorn using THUMBNAILX_HOST / THUMBNAILX_PORT."""
    settings = get_settings()
    uvicorn.run("thumbnailx.main:app", host=settings.host, port=settings.port)
