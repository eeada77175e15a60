"""
app.py — FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the repository and auction service, registers routers, and runs
startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from rent_auction.controllers.auction_controller import router as auction_router
from rent_auction.repository.auction_repository import AuctionRepository
from rent_auction.services.auction_service import AuctionService
from rent_auction.utils.config import Settings, get_settings
from rent_auction.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Services are attached to app.state for dependency resolution; the engine
    itself holds no state between requests.
    """
    settings = settings or get_settings()

    # --- Repository (SQLite snapshot store, one transaction per transition) ---
    repository = AuctionRepository(settings)

    # --- Services ---
    auction_service = AuctionService(repository=repository, settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.include_router(auction_router)

    app.state.repository = repository
    app.state.auction_service = auction_service

    return app


def _startup(app: FastAPI) -> None:
    """Idempotent startup sequence. Safe to re-run on server restarts."""
    repository: AuctionRepository = app.state.repository

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    logger.info("Startup complete | system ready")


# Module-level app object for uvicorn
app = create_app()
