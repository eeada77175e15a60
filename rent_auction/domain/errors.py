"""Error taxonomy shared by the engine, repository and HTTP layers."""

from __future__ import annotations


class AuctionError(Exception):
    """Base exception for rent auction failures."""


class AuctionValidationError(AuctionError):
    """Raised when a bid, selection or solver input is rejected."""


class AuctionNotFoundError(AuctionError):
    """Raised when an auction, room or user id is unknown."""


class InvariantViolation(Exception):
    """Raised when an aggregate breaks a pricing or assignment invariant.

    Deliberately outside the AuctionError hierarchy: transitions return
    AuctionError instances to the caller, but a violation always propagates.
    """
