"""Maximum-value room assignment on top of the OR-Tools assignment solver."""

from __future__ import annotations

from typing import Sequence

import numpy as np
from ortools.graph.python import linear_sum_assignment

from rent_auction.domain.errors import AuctionValidationError
from rent_auction.utils.logger import get_logger


logger = get_logger(__name__)

# Valuations are money amounts; the solver works on integer costs in cents.
COST_SCALE = 100


def pad_square(valuations: Sequence[Sequence[float]]) -> tuple[np.ndarray, int, int]:
    """Return the zero-padded square matrix plus the original row/column counts."""
    rows = len(valuations)
    cols = max((len(row) for row in valuations), default=0)
    size = max(rows, cols)
    matrix = np.zeros((size, size), dtype=float)
    for i, row in enumerate(valuations):
        if len(row):
            matrix[i, : len(row)] = np.asarray(row, dtype=float)
    if not np.all(np.isfinite(matrix)):
        raise AuctionValidationError("valuations must be finite numbers")
    if np.any(matrix < 0):
        raise AuctionValidationError("valuations must be non-negative")
    return matrix, rows, cols


def solve_min_cost(cost: np.ndarray) -> np.ndarray:
    """Minimum-cost perfect matching on a square cost matrix.

    Arcs are added row by row, column by column, so a fixed input always
    yields the same matching even when several optimal ones exist.

    Returns ``assignment`` where ``assignment[row] == col``.
    """
    size = cost.shape[0]
    if size == 0:
        return np.zeros(0, dtype=int)

    if float(cost.max()) * COST_SCALE * size >= 2**62:
        raise AuctionValidationError("valuations are too large to assign")

    solver = linear_sum_assignment.SimpleLinearSumAssignment()
    scaled = np.rint(cost * COST_SCALE).astype(np.int64)
    for row in range(size):
        for col in range(size):
            solver.add_arc_with_cost(row, col, int(scaled[row, col]))

    status = solver.solve()
    if status != solver.OPTIMAL:
        logger.warning("Assignment solve failed | size=%s | status=%s", size, status)
        raise AuctionValidationError("valuations are too large to assign")

    return np.array([solver.right_mate(row) for row in range(size)], dtype=int)


def maximum_value_assignment(valuations: Sequence[Sequence[float]]) -> list[tuple[int, int]]:
    """Pair users (rows) with rooms (columns) maximizing total valuation.

    The matrix may be rectangular; it is padded with zeros and pairs touching
    padding are dropped. Returns ``(user_index, room_index)`` sorted by user.
    """
    matrix, rows, cols = pad_square(valuations)
    if matrix.size == 0:
        return []

    cost = matrix.max() - matrix
    assignment = solve_min_cost(cost)
    pairs = [
        (user_index, int(room_index))
        for user_index, room_index in enumerate(assignment)
        if user_index < rows and room_index < cols
    ]
    logger.debug(
        "Assignment solved | size=%s | pairs=%s | value=%.2f",
        matrix.shape[0],
        len(pairs),
        float(sum(matrix[i, j] for i, j in pairs)),
    )
    return pairs
