"""
FastAPI application factory for the plaixt HTTP service.

This module creates the app with:
- Store loading on startup (a failed load leaves the service up, reporting 503)
- Document-client lifecycle management
- API routes under /api/v1
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from starlette.concurrency import run_in_threadpool

from .._version import __version__
from ..config import Settings
from ..errors import DefinitionStoreUnavailable
from .routes import router
from .service import StoreService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Load the store and manage the service lifecycle."""
    service: StoreService = app.state.service
    try:
        await run_in_threadpool(service.reload)
    except DefinitionStoreUnavailable as e:
        logger.error(f"Initial load failed: {e}")

    yield

    service.close()


def create_app(settings: Optional[Settings] = None, service: Optional[StoreService] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to use; loaded from file and environment if omitted
        service: Prebuilt StoreService (tests inject one)
    """
    if service is None:
        service = StoreService(settings if settings is not None else Settings.load())

    app = FastAPI(
        title="plaixt",
        description="Query API over a plain-text structured record store.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.service = service
    app.state.settings = service.settings

    app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    async def health():
        loaded = service.loaded
        return {
            "status": "healthy" if loaded else "degraded",
            "service": "plaixt",
            "loaded": loaded,
        }

    return app
