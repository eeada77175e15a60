from __future__ import annotations

import itertools
import random

import pytest

from rent_auction.domain.errors import AuctionValidationError
from rent_auction.domain.models import IndexedAssignment
from rent_auction.services.assignment_solver import maximum_value_assignment
from rent_auction.services.orchestrator import compute_optimal_assignment


def _best_value_by_brute_force(matrix: list[list[float]]) -> float:
    if len(matrix) > len(matrix[0]):
        matrix = [list(column) for column in zip(*matrix)]
    rows = len(matrix)
    return max(
        sum(matrix[row][col] for row, col in enumerate(columns))
        for columns in itertools.permutations(range(len(matrix[0])), rows)
    )


def _assignments(matrix, total_rent) -> list[IndexedAssignment]:
    outcome = compute_optimal_assignment(matrix, total_rent)
    assert outcome.ok, outcome.error
    return list(outcome.assignments)


def test_optimal_assignment_maximizes_total_value() -> None:
    result = _assignments([[10, 50, 20], [40, 45, 0]], 900)

    assert result == [
        IndexedAssignment(room_index=0, user_index=1, price=400.0),
        IndexedAssignment(room_index=1, user_index=0, price=500.0),
    ]


def test_more_users_than_rooms_leaves_users_unmatched() -> None:
    result = _assignments([[5, 1], [4, 3], [9, 9]], 1400)

    assert result == [
        IndexedAssignment(room_index=0, user_index=0, price=500.0),
        IndexedAssignment(room_index=1, user_index=2, price=900.0),
    ]


def test_optimal_assignment_is_deterministic() -> None:
    matrix = [[7, 7, 7], [7, 7, 7], [3, 9, 3]]

    first = _assignments(matrix, 2100)
    second = _assignments(matrix, 2100)

    assert first == second
    assert len({item.user_index for item in first}) == 3


def test_zero_valuations_split_rent_evenly() -> None:
    result = _assignments([[0, 0], [0, 0]], 100)

    assert [item.price for item in result] == [50.0, 50.0]
    assert {item.user_index for item in result} == {0, 1}


def test_empty_matrix_returns_no_assignments() -> None:
    assert _assignments([], 500) == []


def test_negative_valuation_is_returned_as_error() -> None:
    outcome = compute_optimal_assignment([[10, -1], [3, 4]], 100)

    assert isinstance(outcome.error, AuctionValidationError)
    assert outcome.assignments == ()


def test_non_positive_rent_is_returned_as_error() -> None:
    outcome = compute_optimal_assignment([[10, 1], [3, 4]], 0)

    assert isinstance(outcome.error, AuctionValidationError)


def test_oversized_valuations_are_rejected() -> None:
    with pytest.raises(AuctionValidationError):
        maximum_value_assignment([[1e18, 0.0], [0.0, 1e18]])


@pytest.mark.parametrize("shape", [(3, 3), (4, 4), (5, 5), (4, 2), (2, 5)])
def test_assignment_matches_brute_force(shape: tuple[int, int]) -> None:
    rng = random.Random(sum(shape))
    rows, cols = shape
    for _ in range(20):
        matrix = [[float(rng.randint(0, 30)) for _ in range(cols)] for _ in range(rows)]

        pairs = maximum_value_assignment(matrix)

        assert len(pairs) == min(rows, cols)
        assert len({room for _, room in pairs}) == len(pairs)
        value = sum(matrix[user][room] for user, room in pairs)
        assert value == _best_value_by_brute_force(matrix)


def test_cent_valuations_keep_their_ordering() -> None:
    pairs = maximum_value_assignment([[10.01, 10.0], [10.0, 10.0]])

    assert pairs == [(0, 0), (1, 1)]
