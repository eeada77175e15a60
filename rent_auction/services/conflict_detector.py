"""Group a selection round by target room."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from rent_auction.domain.models import AuctionAggregate, natural_key


@dataclass(frozen=True)
class ConflictReport:
    contested_room_ids: tuple[str, ...]
    room_to_users: dict[str, tuple[str, ...]]

    def uncontested(self, aggregate: AuctionAggregate) -> dict[str, str]:
        """Rooms claimed by exactly one free user, mapped to that user."""
        return {
            room_id: user_ids[0]
            for room_id, user_ids in self.room_to_users.items()
            if len(user_ids) == 1 and not aggregate.users[user_ids[0]].is_assigned
        }


def detect_conflicts(
    aggregate: AuctionAggregate,
    selections: Mapping[str, Optional[str]],
) -> ConflictReport:
    """Group users by the room they selected.

    An assigned user's room stands in for their selection, so they never
    re-enter the pool. Users with no selection are skipped.
    """
    room_to_users: dict[str, list[str]] = {}
    for user_id in aggregate.user_ids:
        user = aggregate.users[user_id]
        target = user.assigned_room_id or selections.get(user_id)
        if not target:
            continue
        room_to_users.setdefault(target, []).append(user_id)

    contested = tuple(
        sorted(
            (room_id for room_id, user_ids in room_to_users.items() if len(user_ids) > 1),
            key=natural_key,
        )
    )
    return ConflictReport(
        contested_room_ids=contested,
        room_to_users={room_id: tuple(user_ids) for room_id, user_ids in room_to_users.items()},
    )
