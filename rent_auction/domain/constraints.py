"""Domain-level validation rules for auction configuration and invariants."""

from __future__ import annotations

from dataclasses import dataclass

from rent_auction.domain.errors import InvariantViolation
from rent_auction.domain.models import (
    AllocationStrategy,
    AuctionAggregate,
    AuctionPhase,
    ContenderPolicy,
    RoomStatus,
)


DEFAULT_PRICE_TOLERANCE = 0.01


@dataclass(frozen=True)
class AuctionConfig:
    contender_policy: ContenderPolicy
    default_strategy: AllocationStrategy
    price_tolerance: float = DEFAULT_PRICE_TOLERANCE


def validate_auction_config(config: AuctionConfig) -> None:
    if not isinstance(config.contender_policy, ContenderPolicy):
        raise ValueError("contender_policy must be one of: all, connected")
    if not isinstance(config.default_strategy, AllocationStrategy):
        raise ValueError("default_strategy must be one of: incremental, preference, optimal_batch")
    if config.default_strategy is AllocationStrategy.INCREMENTAL:
        raise ValueError("default_strategy must name a batch solver")
    if not 0.0 < config.price_tolerance <= 1.0:
        raise ValueError("price_tolerance must be in (0, 1]")


def validate_aggregate_invariants(
    aggregate: AuctionAggregate,
    tolerance: float = DEFAULT_PRICE_TOLERANCE,
) -> None:
    """Raise InvariantViolation if the aggregate is internally inconsistent."""
    if aggregate.rooms:
        drift = abs(aggregate.total_price() - aggregate.total_rent)
        if drift > tolerance + 1e-9:
            raise InvariantViolation(
                f"room prices sum to {aggregate.total_price():.2f}, "
                f"expected {aggregate.total_rent:.2f}"
            )

    for room in aggregate.rooms.values():
        if room.assigned_user_id is not None:
            user = aggregate.users.get(room.assigned_user_id)
            if user is None or user.assigned_room_id != room.room_id:
                raise InvariantViolation(
                    f"room {room.room_id} points to {room.assigned_user_id} without a back-reference"
                )
            expected_status = RoomStatus.ASSIGNED
        elif room.room_id in aggregate.conflicts:
            expected_status = RoomStatus.CONTESTED
        else:
            expected_status = RoomStatus.AVAILABLE
        if room.status is not expected_status:
            raise InvariantViolation(
                f"room {room.room_id} has status {room.status.value}, expected {expected_status.value}"
            )

    for user in aggregate.users.values():
        if user.assigned_room_id is not None:
            room = aggregate.rooms.get(user.assigned_room_id)
            if room is None or room.assigned_user_id != user.user_id:
                raise InvariantViolation(
                    f"user {user.user_id} points to {user.assigned_room_id} without a back-reference"
                )

    # A waiting auction has not started rounds yet, so an empty one may sit there.
    completed = aggregate.phase is AuctionPhase.COMPLETED
    in_rounds = aggregate.phase in (AuctionPhase.SELECTING, AuctionPhase.BIDDING)
    if (completed and not aggregate.is_fully_assigned) or (
        in_rounds and aggregate.is_fully_assigned
    ):
        raise InvariantViolation(
            f"phase {aggregate.phase.value} disagrees with assignment state"
        )
