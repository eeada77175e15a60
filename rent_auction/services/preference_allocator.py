"""Deferred-acceptance (user-proposing Gale-Shapley) room allocation."""

from __future__ import annotations

from collections import deque
from typing import Callable, Optional, Sequence

from rent_auction.domain.errors import AuctionValidationError
from rent_auction.utils.logger import get_logger


logger = get_logger(__name__)


def infer_preferences(valuations: Sequence[float]) -> list[int]:
    """Rank room indices by descending valuation, lower index first on ties."""
    return sorted(range(len(valuations)), key=lambda index: (-valuations[index], index))


def _clean_preferences(preferences: Sequence[int], room_count: int) -> list[int]:
    seen: set[int] = set()
    cleaned: list[int] = []
    for room_index in preferences:
        if not 0 <= room_index < room_count:
            raise AuctionValidationError(f"preference references unknown room index {room_index}")
        if room_index in seen:
            continue
        seen.add(room_index)
        cleaned.append(room_index)
    return cleaned


def build_preferences(
    rankings: Sequence[Optional[Sequence[int]]],
    valuation_rows: Sequence[Sequence[float]],
    room_count: int,
) -> list[list[int]]:
    """Use each explicit ranking, or infer one from that user's valuation row."""
    preferences: list[list[int]] = []
    for user_index, ranking in enumerate(rankings):
        if ranking is None:
            preferences.append(infer_preferences(valuation_rows[user_index]))
        else:
            preferences.append(_clean_preferences(ranking, room_count))
    return preferences


def deferred_acceptance(
    preferences: Sequence[Sequence[int]],
    value: Callable[[int, int], float],
) -> dict[int, tuple[int, float]]:
    """Run user-proposing deferred acceptance.

    Each room holds the proposal worth the most to it: a proposer replaces the
    holder only with a strictly higher value, or an equal value and a lower
    user index. Users left with no preferences stay unmatched.

    Returns ``room_index -> (user_index, held value)``.
    """
    cursor = [0] * len(preferences)
    held: dict[int, tuple[int, float]] = {}
    free = deque(range(len(preferences)))
    proposals = 0

    while free:
        user_index = free.popleft()
        if cursor[user_index] >= len(preferences[user_index]):
            continue
        room_index = preferences[user_index][cursor[user_index]]
        cursor[user_index] += 1
        proposals += 1
        offered = value(user_index, room_index)

        holder = held.get(room_index)
        if holder is None:
            held[room_index] = (user_index, offered)
            continue

        holder_index, holder_value = holder
        if offered > holder_value or (offered == holder_value and user_index < holder_index):
            held[room_index] = (user_index, offered)
            free.append(holder_index)
        else:
            free.append(user_index)

    logger.debug(
        "Deferred acceptance finished | users=%s | matched=%s | proposals=%s",
        len(preferences),
        len(held),
        proposals,
    )
    return held
