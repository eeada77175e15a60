from __future__ import annotations

import random

import pytest

from rent_auction.domain.models import Room, RoomStatus
from rent_auction.services.pricing import (
    normalize_proportional,
    normalize_unassigned_prices,
    round_cents,
    split_evenly,
)


def _room(room_id: str, price: float = 0.0, user_id: str | None = None) -> Room:
    return Room(
        room_id=room_id,
        name=room_id.upper(),
        base_price=price,
        current_price=price,
        assigned_user_id=user_id,
        status=RoomStatus.ASSIGNED if user_id else RoomStatus.AVAILABLE,
    )


def _rooms(*rooms: Room) -> dict[str, Room]:
    return {room.room_id: room for room in rooms}


def test_round_cents_rounds_half_up() -> None:
    assert round_cents(2.675) == 2.68
    assert round_cents(1499.995) == 1500.0
    assert round_cents(-0.004) == 0.0


def test_assigned_room_price_leaves_remaining_rent_split() -> None:
    rooms = _rooms(_room("r1", 2000.0, "u1"), _room("r2", 1000.0), _room("r3", 1000.0))

    updated = normalize_unassigned_prices(rooms, 3000.0)

    assert updated["r1"].current_price == 2000.0
    assert updated["r2"].current_price == 500.0
    assert updated["r3"].current_price == 500.0


def test_last_room_by_natural_id_absorbs_rounding() -> None:
    rooms = _rooms(_room("r10"), _room("r2"), _room("r9"))

    updated = normalize_unassigned_prices(rooms, 100.0)

    assert updated["r2"].current_price == 33.33
    assert updated["r9"].current_price == 33.33
    assert updated["r10"].current_price == 33.34
    assert round(sum(room.current_price for room in updated.values()), 2) == 100.0


def test_normalization_is_idempotent() -> None:
    rooms = _rooms(_room("r1", 700.0, "u1"), _room("r2"), _room("r3"), _room("r4"))

    once = normalize_unassigned_prices(rooms, 1000.0)
    twice = normalize_unassigned_prices(once, 1000.0)

    assert once == twice


def test_fully_assigned_rooms_are_left_alone() -> None:
    rooms = _rooms(_room("r1", 600.0, "u1"), _room("r2", 400.0, "u2"))

    assert normalize_unassigned_prices(rooms, 1000.0) == rooms


def test_input_rooms_are_not_mutated() -> None:
    rooms = _rooms(_room("r1", 2000.0, "u1"), _room("r2", 1000.0), _room("r3", 1000.0))

    normalize_unassigned_prices(rooms, 3000.0)

    assert rooms["r2"].current_price == 1000.0


def test_proportional_scaling_matches_total() -> None:
    assert normalize_proportional([1000.0, 1000.0, 2000.0], 3000.0) == [750.0, 750.0, 1500.0]


def test_proportional_zero_sum_splits_evenly_with_leftover_first() -> None:
    assert normalize_proportional([0.0, 0.0, 0.0], 100.0) == [33.34, 33.33, 33.33]


def test_proportional_empty_input() -> None:
    assert normalize_proportional([], 500.0) == []


def test_split_evenly_handles_cents() -> None:
    assert split_evenly(10.01, 2) == [5.01, 5.0]
    assert split_evenly(10.0, 0) == []


@pytest.mark.parametrize("seed", [3, 17, 2024])
def test_proportional_random_valuations_sum_exactly(seed: int) -> None:
    rng = random.Random(seed)
    for count in range(1, 51):
        total_rent = round(rng.uniform(500.0, 10000.0), 2)
        valuations = [round(rng.uniform(100.0, 2000.0), 2) for _ in range(count)]

        prices = normalize_proportional(valuations, total_rent)

        assert len(prices) == count
        assert round(sum(prices), 2) == round(total_rent, 2)
        assert all(price == round(price, 2) for price in prices)
