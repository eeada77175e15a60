"""Price normalization keeping room prices summed to the total rent."""

from __future__ import annotations

from dataclasses import replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping, Sequence

import numpy as np

from rent_auction.domain.models import Room, natural_key


_CENT = Decimal("0.01")


def round_cents(value: float) -> float:
    """Round half-up to whole cents."""
    return float(Decimal(repr(float(value))).quantize(_CENT, rounding=ROUND_HALF_UP))


def split_evenly(total: float, count: int) -> list[float]:
    """Split ``total`` into ``count`` cent amounts; leftover cents go to the first slots."""
    if count <= 0:
        return []
    total_cents = int(Decimal(repr(float(total))).quantize(_CENT, rounding=ROUND_HALF_UP) * 100)
    base, leftover = divmod(total_cents, count)
    return [(base + (1 if index < leftover else 0)) / 100 for index in range(count)]


def normalize_unassigned_prices(
    rooms: Mapping[str, Room],
    total_rent: float,
) -> dict[str, Room]:
    """Reprice unassigned rooms so every price sums to ``total_rent``.

    Assigned rooms keep their price. Unassigned rooms share what is left; the
    room with the last id absorbs the rounding drift of the shared amount.
    """
    updated = dict(rooms)
    unassigned = sorted(
        (room for room in rooms.values() if not room.is_assigned),
        key=lambda room: natural_key(room.room_id),
    )
    if not unassigned:
        return updated

    assigned_total = sum(room.current_price for room in rooms.values() if room.is_assigned)
    remaining = round_cents(total_rent - assigned_total)
    share = round_cents(remaining / len(unassigned))
    last_share = round_cents(remaining - share * (len(unassigned) - 1))

    for room in unassigned[:-1]:
        updated[room.room_id] = replace(room, current_price=share)
    last_room = unassigned[-1]
    updated[last_room.room_id] = replace(last_room, current_price=last_share)
    return updated


def normalize_proportional(prices: Sequence[float], total_rent: float) -> list[float]:
    """Scale provisional settlement prices so they sum exactly to ``total_rent``.

    ``prices`` must already be in room-id order: drift lands on the last entry,
    and the even split used for all-zero input favours the first entries.
    """
    if not prices:
        return []

    provisional = np.asarray(prices, dtype=float)
    provisional_sum = float(provisional.sum())
    if provisional_sum <= 0.0:
        return split_evenly(total_rent, len(prices))

    factor = total_rent / provisional_sum
    scaled = [round_cents(value) for value in provisional * factor]
    drift = round_cents(total_rent - sum(scaled))
    scaled[-1] = round_cents(scaled[-1] + drift)
    return scaled
