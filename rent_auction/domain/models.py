"""Domain models for rent auctions, rounds and settlements."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


class RoomStatus(str, Enum):
    AVAILABLE = "available"
    CONTESTED = "contested"
    ASSIGNED = "assigned"


class AuctionPhase(str, Enum):
    WAITING = "waiting"
    SELECTING = "selecting"
    BIDDING = "bidding"
    COMPLETED = "completed"


class BidRoundState(str, Enum):
    COLLECTING = "collecting"
    RESOLVED = "resolved"
    TIED = "tied"
    VOIDED = "voided"


class ContenderPolicy(str, Enum):
    """Which contenders must bid before a contested room can resolve."""

    ALL = "all"
    CONNECTED = "connected"


class AllocationStrategy(str, Enum):
    INCREMENTAL = "incremental"
    PREFERENCE = "preference"
    OPTIMAL_BATCH = "optimal_batch"


_DIGITS = re.compile(r"(\d+)")


def natural_key(identifier: str) -> tuple[Any, ...]:
    """Sort key that orders ``r2`` before ``r10``."""
    return tuple(
        (0, int(part), "") if part.isdigit() else (1, 0, part)
        for part in _DIGITS.split(identifier)
        if part
    )


@dataclass(frozen=True)
class Room:
    room_id: str
    name: str
    base_price: float
    current_price: float
    assigned_user_id: Optional[str] = None
    status: RoomStatus = RoomStatus.AVAILABLE

    @property
    def is_assigned(self) -> bool:
        return self.assigned_user_id is not None


@dataclass(frozen=True)
class User:
    user_id: str
    name: str
    assigned_room_id: Optional[str] = None
    connected: bool = True

    @property
    def is_assigned(self) -> bool:
        return self.assigned_room_id is not None


@dataclass(frozen=True)
class Bid:
    user_id: str
    room_id: str
    amount: float


@dataclass(frozen=True)
class Conflict:
    room_id: str
    user_ids: tuple[str, ...]


@dataclass(frozen=True)
class AuctionAggregate:
    auction_id: str
    total_rent: float
    phase: AuctionPhase
    rooms: dict[str, Room]
    users: dict[str, User]
    selections: dict[str, str] = field(default_factory=dict)
    bids: dict[str, dict[str, Bid]] = field(default_factory=dict)
    conflicts: dict[str, Conflict] = field(default_factory=dict)
    valuations: dict[str, dict[str, float]] = field(default_factory=dict)
    preferences: dict[str, tuple[str, ...]] = field(default_factory=dict)

    @property
    def room_ids(self) -> list[str]:
        return sorted(self.rooms, key=natural_key)

    @property
    def user_ids(self) -> list[str]:
        return sorted(self.users, key=natural_key)

    @property
    def free_user_ids(self) -> list[str]:
        return [user_id for user_id in self.user_ids if not self.users[user_id].is_assigned]

    @property
    def unassigned_room_ids(self) -> list[str]:
        return [room_id for room_id in self.room_ids if not self.rooms[room_id].is_assigned]

    @property
    def is_fully_assigned(self) -> bool:
        return not self.free_user_ids and not self.unassigned_room_ids

    def total_price(self) -> float:
        return sum(room.current_price for room in self.rooms.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "auction_id": self.auction_id,
            "total_rent": self.total_rent,
            "phase": self.phase.value,
            "rooms": [
                {
                    "room_id": room.room_id,
                    "name": room.name,
                    "base_price": room.base_price,
                    "current_price": room.current_price,
                    "assigned_user_id": room.assigned_user_id,
                    "status": room.status.value,
                }
                for room in self.rooms.values()
            ],
            "users": [
                {
                    "user_id": user.user_id,
                    "name": user.name,
                    "assigned_room_id": user.assigned_room_id,
                    "connected": user.connected,
                }
                for user in self.users.values()
            ],
            "selections": dict(self.selections),
            "bids": {
                room_id: {user_id: bid.amount for user_id, bid in room_bids.items()}
                for room_id, room_bids in self.bids.items()
            },
            "conflicts": {
                room_id: list(conflict.user_ids)
                for room_id, conflict in self.conflicts.items()
            },
            "valuations": {
                user_id: dict(amounts) for user_id, amounts in self.valuations.items()
            },
            "preferences": {
                user_id: list(ranking) for user_id, ranking in self.preferences.items()
            },
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "AuctionAggregate":
        rooms = {
            item["room_id"]: Room(
                room_id=item["room_id"],
                name=item["name"],
                base_price=float(item["base_price"]),
                current_price=float(item["current_price"]),
                assigned_user_id=item.get("assigned_user_id"),
                status=RoomStatus(item["status"]),
            )
            for item in payload.get("rooms", [])
        }
        users = {
            item["user_id"]: User(
                user_id=item["user_id"],
                name=item["name"],
                assigned_room_id=item.get("assigned_room_id"),
                connected=bool(item.get("connected", True)),
            )
            for item in payload.get("users", [])
        }
        return cls(
            auction_id=payload["auction_id"],
            total_rent=float(payload["total_rent"]),
            phase=AuctionPhase(payload["phase"]),
            rooms=rooms,
            users=users,
            selections=dict(payload.get("selections", {})),
            bids={
                room_id: {
                    user_id: Bid(user_id=user_id, room_id=room_id, amount=float(amount))
                    for user_id, amount in room_bids.items()
                }
                for room_id, room_bids in payload.get("bids", {}).items()
            },
            conflicts={
                room_id: Conflict(room_id=room_id, user_ids=tuple(user_ids))
                for room_id, user_ids in payload.get("conflicts", {}).items()
            },
            valuations={
                user_id: {room_id: float(amount) for room_id, amount in amounts.items()}
                for user_id, amounts in payload.get("valuations", {}).items()
            },
            preferences={
                user_id: tuple(ranking)
                for user_id, ranking in payload.get("preferences", {}).items()
            },
        )


@dataclass(frozen=True)
class AuctionEvent:
    """Mutation notice emitted by a transition for the surrounding store."""

    kind: str
    room_id: Optional[str] = None
    user_ids: tuple[str, ...] = ()
    price: Optional[float] = None
    phase: Optional[AuctionPhase] = None


@dataclass(frozen=True)
class TransitionResult:
    aggregate: AuctionAggregate
    events: tuple[AuctionEvent, ...] = ()
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class AssignmentResult:
    room_id: str
    user_id: str
    price: float


@dataclass(frozen=True)
class IndexedAssignment:
    room_index: int
    user_index: int
    price: float


@dataclass(frozen=True)
class Settlement:
    strategy: AllocationStrategy
    assignments: tuple[AssignmentResult, ...]
    unassigned_user_ids: tuple[str, ...]
    unassigned_room_ids: tuple[str, ...]

    @property
    def total_price(self) -> float:
        return sum(item.price for item in self.assignments)


@dataclass(frozen=True)
class SettlementOutcome:
    settlement: Optional[Settlement] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class CreationOutcome:
    aggregate: Optional[AuctionAggregate] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class AssignmentOutcome:
    """Result of a stateless solver call; ``assignments`` is empty on error."""

    assignments: tuple[Union[IndexedAssignment, AssignmentResult], ...] = ()
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None
