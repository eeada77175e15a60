"""Bid collection and resolution for a single contested room."""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Optional

from rent_auction.domain.errors import AuctionNotFoundError, AuctionValidationError
from rent_auction.domain.models import (
    AuctionAggregate,
    Bid,
    BidRoundState,
    ContenderPolicy,
    RoomStatus,
)
from rent_auction.services.pricing import normalize_unassigned_prices, round_cents
from rent_auction.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class BidResolution:
    room_id: str
    state: BidRoundState
    winner_id: Optional[str] = None
    price: Optional[float] = None
    tied_user_ids: tuple[str, ...] = ()
    loser_ids: tuple[str, ...] = ()
    rebid_user_ids: tuple[str, ...] = ()


def open_rent(aggregate: AuctionAggregate) -> float:
    """Rent not yet committed to assigned rooms."""
    committed = sum(room.current_price for room in aggregate.rooms.values() if room.is_assigned)
    return round_cents(aggregate.total_rent - committed)


def validate_bid(aggregate: AuctionAggregate, room_id: str, user_id: str, amount: float) -> None:
    room = aggregate.rooms.get(room_id)
    if room is None:
        raise AuctionNotFoundError(f"room {room_id} does not exist")
    if user_id not in aggregate.users:
        raise AuctionNotFoundError(f"user {user_id} does not exist")

    conflict = aggregate.conflicts.get(room_id)
    if conflict is None:
        raise AuctionValidationError(f"room {room_id} is not open for bidding")
    if user_id not in conflict.user_ids:
        raise AuctionValidationError(f"user {user_id} is not contending for room {room_id}")

    if not math.isfinite(amount) or amount <= 0:
        raise AuctionValidationError("bid amount must be greater than 0")
    rounded = round_cents(amount)
    if rounded < room.current_price:
        raise AuctionValidationError(
            f"bid must be at least the current room price of {room.current_price:.2f}"
        )
    if rounded > aggregate.total_rent:
        raise AuctionValidationError(
            f"bid cannot exceed the total rent of {aggregate.total_rent:.2f}"
        )
    available = open_rent(aggregate)
    if rounded > available:
        raise AuctionValidationError(
            f"bid cannot exceed the {available:.2f} of rent left for unassigned rooms"
        )


def record_bid(aggregate: AuctionAggregate, bid: Bid) -> AuctionAggregate:
    """Store ``bid``, replacing any earlier bid by the same user on the same room."""
    bids = {room_id: dict(room_bids) for room_id, room_bids in aggregate.bids.items()}
    bids.setdefault(bid.room_id, {})[bid.user_id] = bid
    return replace(aggregate, bids=bids)


def required_bidders(
    aggregate: AuctionAggregate,
    room_id: str,
    policy: ContenderPolicy = ContenderPolicy.ALL,
) -> tuple[str, ...]:
    conflict = aggregate.conflicts[room_id]
    if policy is ContenderPolicy.CONNECTED:
        return tuple(
            user_id for user_id in conflict.user_ids if aggregate.users[user_id].connected
        )
    return conflict.user_ids


def resolve_room(
    aggregate: AuctionAggregate,
    room_id: str,
    policy: ContenderPolicy = ContenderPolicy.ALL,
) -> tuple[AuctionAggregate, Optional[BidResolution]]:
    """Advance the bidding state of ``room_id``.

    Returns ``None`` as the resolution when the room is already assigned or has
    no open conflict, so repeated calls after a win change nothing.
    """
    room = aggregate.rooms[room_id]
    conflict = aggregate.conflicts.get(room_id)
    if room.is_assigned or conflict is None:
        return aggregate, None

    room_bids = aggregate.bids.get(room_id, {})
    contenders_bids = {
        user_id: bid for user_id, bid in room_bids.items() if user_id in conflict.user_ids
    }
    required = required_bidders(aggregate, room_id, policy)
    if not contenders_bids or any(user_id not in contenders_bids for user_id in required):
        return aggregate, BidResolution(room_id=room_id, state=BidRoundState.COLLECTING)

    amounts = {user_id: round_cents(bid.amount) for user_id, bid in contenders_bids.items()}
    highest = max(amounts.values())
    leaders = tuple(user_id for user_id in conflict.user_ids if amounts.get(user_id) == highest)

    bids = {key: dict(value) for key, value in aggregate.bids.items() if key != room_id}
    if len(leaders) > 1:
        logger.info(
            "Bid round tied | auction_id=%s | room_id=%s | amount=%.2f | users=%s",
            aggregate.auction_id,
            room_id,
            highest,
            list(leaders),
        )
        return (
            replace(aggregate, bids=bids),
            BidResolution(room_id=room_id, state=BidRoundState.TIED, tied_user_ids=leaders),
        )

    available = open_rent(aggregate)
    if highest > available:
        # Another room resolved after these bids were placed.
        logger.info(
            "Bid round voided | auction_id=%s | room_id=%s | amount=%.2f | open_rent=%.2f",
            aggregate.auction_id,
            room_id,
            highest,
            available,
        )
        return (
            replace(aggregate, bids=bids),
            BidResolution(
                room_id=room_id,
                state=BidRoundState.VOIDED,
                price=available,
                rebid_user_ids=conflict.user_ids,
            ),
        )

    winner_id = leaders[0]
    rooms = dict(aggregate.rooms)
    rooms[room_id] = replace(
        room,
        assigned_user_id=winner_id,
        current_price=highest,
        status=RoomStatus.ASSIGNED,
    )
    rooms = normalize_unassigned_prices(rooms, aggregate.total_rent)
    users = dict(aggregate.users)
    users[winner_id] = replace(users[winner_id], assigned_room_id=room_id)
    conflicts = {key: value for key, value in aggregate.conflicts.items() if key != room_id}
    losers = tuple(user_id for user_id in conflict.user_ids if user_id != winner_id)

    logger.info(
        "Bid round resolved | auction_id=%s | room_id=%s | winner=%s | price=%.2f",
        aggregate.auction_id,
        room_id,
        winner_id,
        highest,
    )
    return (
        replace(aggregate, rooms=rooms, users=users, bids=bids, conflicts=conflicts),
        BidResolution(
            room_id=room_id,
            state=BidRoundState.RESOLVED,
            winner_id=winner_id,
            price=highest,
            loser_ids=losers,
        ),
    )
