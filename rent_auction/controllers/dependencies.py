"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from rent_auction.services.auction_service import AuctionService
from rent_auction.utils.config import get_settings


def get_auction_service(request: Request) -> AuctionService:
    service = getattr(request.app.state, "auction_service", None)
    if service is None:
        repository = getattr(request.app.state, "repository", None)
        if repository is not None:
            service = AuctionService(repository=repository, settings=get_settings())
            request.app.state.auction_service = service
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Auction service is not initialized",
        )
    return service

