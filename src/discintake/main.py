"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from functools import partial
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from discintake.api.routes import router
from discintake.config import Settings, get_settings
from discintake.imaging.blur import BlurPlaceholderCache, generate_blur_data_url
from discintake.upload.storage import get_storage_client

logger = logging.getLogger(__name__)


def init_app_state(app: FastAPI, settings: Settings, http_client: httpx.AsyncClient) -> None:
    """Build the shared collaborators once and attach them to the app."""
    app.state.settings = settings
    app.state.storage = get_storage_client(settings)
    app.state.http_client = http_client
    app.state.blur_cache = BlurPlaceholderCache(partial(generate_blur_data_url, http_client=http_client))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting discintake (bucket=%s, max_items=%s, max_edge_px=%s, in_memory_storage=%s)",
        settings.bucket,
        settings.max_items,
        settings.max_edge_px,
        settings.use_in_memory_storage,
    )

    http_client = httpx.AsyncClient(timeout=settings.upload_timeout, follow_redirects=True)
    init_app_state(app, settings, http_client)

    logger.info("discintake ready")
    yield

    logger.info("Shutting down discintake")
    await http_client.aclose()
    logger.info("discintake shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="discintake",
        description="Listing photo intake: signed uploads and blur placeholders",
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

    application.include_router(router)
    return application


app = create_app()
