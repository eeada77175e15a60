"""Phase state machine and pure transition functions for rent auctions.

Every transition takes an aggregate snapshot and returns a new one inside a
``TransitionResult``; inputs are never mutated. Rejected requests come back as
``TransitionResult.error`` with the input snapshot unchanged, so the caller
decides how to report them. The stateless entry points (creation and the batch
solvers) report rejections the same way through their outcome types.
"""

from __future__ import annotations

import math
from dataclasses import replace
from typing import Mapping, Optional, Sequence
from uuid import uuid4

from rent_auction.domain.constraints import validate_aggregate_invariants
from rent_auction.domain.errors import AuctionNotFoundError, AuctionValidationError
from rent_auction.domain.models import (
    AllocationStrategy,
    AssignmentResult,
    AssignmentOutcome,
    AuctionAggregate,
    AuctionEvent,
    AuctionPhase,
    Bid,
    BidRoundState,
    Conflict,
    ContenderPolicy,
    CreationOutcome,
    IndexedAssignment,
    Room,
    RoomStatus,
    Settlement,
    SettlementOutcome,
    TransitionResult,
    User,
    natural_key,
)
from rent_auction.services.assignment_solver import maximum_value_assignment
from rent_auction.services.bid_resolver import (
    BidResolution,
    record_bid,
    resolve_room,
    validate_bid,
)
from rent_auction.services.conflict_detector import detect_conflicts
from rent_auction.services.preference_allocator import build_preferences, deferred_acceptance
from rent_auction.services.pricing import normalize_proportional, normalize_unassigned_prices
from rent_auction.utils.logger import get_logger


logger = get_logger(__name__)

_REJECTABLE = (AuctionValidationError, AuctionNotFoundError)


def _validate_total_rent(total_rent: float) -> float:
    try:
        value = float(total_rent)
    except (TypeError, ValueError) as exc:
        raise AuctionValidationError("total_rent must be a number") from exc
    if not math.isfinite(value) or value <= 0:
        raise AuctionValidationError("total_rent must be greater than 0")
    return value


def _rejected(aggregate: AuctionAggregate, operation: str, error: Exception) -> TransitionResult:
    logger.info(
        "Transition rejected | auction_id=%s | operation=%s | reason=%s",
        aggregate.auction_id,
        operation,
        error,
    )
    return TransitionResult(aggregate=aggregate, error=error)


def _accepted(aggregate: AuctionAggregate, events: list[AuctionEvent]) -> TransitionResult:
    validate_aggregate_invariants(aggregate)
    return TransitionResult(aggregate=aggregate, events=tuple(events))


def _require_phase(aggregate: AuctionAggregate, *phases: AuctionPhase) -> None:
    if aggregate.phase not in phases:
        allowed = ", ".join(phase.value for phase in phases)
        raise AuctionValidationError(
            f"auction is {aggregate.phase.value}; operation requires phase {allowed}"
        )


def _require_user(aggregate: AuctionAggregate, user_id: str) -> User:
    user = aggregate.users.get(user_id)
    if user is None:
        raise AuctionNotFoundError(f"user {user_id} does not exist")
    return user


def _next_phase(aggregate: AuctionAggregate) -> AuctionPhase:
    if aggregate.conflicts:
        return AuctionPhase.BIDDING
    if aggregate.is_fully_assigned:
        return AuctionPhase.COMPLETED
    return AuctionPhase.SELECTING


def _advance_phase(
    aggregate: AuctionAggregate,
    events: list[AuctionEvent],
) -> AuctionAggregate:
    phase = _next_phase(aggregate)
    if phase is aggregate.phase:
        return aggregate
    events.append(AuctionEvent(kind="phase_changed", phase=phase))
    logger.info(
        "Auction phase changed | auction_id=%s | from=%s | to=%s",
        aggregate.auction_id,
        aggregate.phase.value,
        phase.value,
    )
    return replace(aggregate, phase=phase)


def _resolution_events(resolution: Optional[BidResolution]) -> list[AuctionEvent]:
    if resolution is None or resolution.state is BidRoundState.COLLECTING:
        return []
    if resolution.state is BidRoundState.TIED:
        return [
            AuctionEvent(
                kind="bid_tied",
                room_id=resolution.room_id,
                user_ids=resolution.tied_user_ids,
            )
        ]
    if resolution.state is BidRoundState.VOIDED:
        return [
            AuctionEvent(
                kind="bids_voided",
                room_id=resolution.room_id,
                user_ids=resolution.rebid_user_ids,
                price=resolution.price,
            )
        ]
    return [
        AuctionEvent(
            kind="room_assigned",
            room_id=resolution.room_id,
            user_ids=(resolution.winner_id,),
            price=resolution.price,
        ),
        AuctionEvent(kind="prices_normalized"),
    ]


def create_aggregate(
    total_rent: float,
    room_names: Sequence[str],
    user_names: Sequence[str],
    auction_id: Optional[str] = None,
) -> CreationOutcome:
    """Create a waiting auction with the rent split evenly across rooms."""
    try:
        rent = _validate_total_rent(total_rent)
    except _REJECTABLE as exc:
        logger.info("Auction creation rejected | reason=%s", exc)
        return CreationOutcome(error=exc)

    rooms = {
        f"r{index}": Room(
            room_id=f"r{index}",
            name=str(name).strip(),
            base_price=0.0,
            current_price=0.0,
        )
        for index, name in enumerate(room_names, start=1)
    }
    rooms = {
        room_id: replace(room, base_price=room.current_price)
        for room_id, room in normalize_unassigned_prices(rooms, rent).items()
    }
    users = {
        f"u{index}": User(user_id=f"u{index}", name=str(name).strip())
        for index, name in enumerate(user_names, start=1)
    }
    aggregate = AuctionAggregate(
        auction_id=auction_id or uuid4().hex,
        total_rent=rent,
        phase=AuctionPhase.WAITING,
        rooms=rooms,
        users=users,
    )
    validate_aggregate_invariants(aggregate)
    logger.info(
        "Auction created | auction_id=%s | total_rent=%.2f | rooms=%s | users=%s",
        aggregate.auction_id,
        rent,
        len(rooms),
        len(users),
    )
    return CreationOutcome(aggregate=aggregate)


def start_selecting(aggregate: AuctionAggregate) -> TransitionResult:
    """Open the first selection round once every room has a participant."""
    try:
        _require_phase(aggregate, AuctionPhase.WAITING)
        if len(aggregate.users) != len(aggregate.rooms):
            raise AuctionValidationError(
                f"participant count {len(aggregate.users)} must equal room count {len(aggregate.rooms)}"
            )
    except _REJECTABLE as exc:
        return _rejected(aggregate, "start_selecting", exc)

    phase = AuctionPhase.COMPLETED if aggregate.is_fully_assigned else AuctionPhase.SELECTING
    logger.info(
        "Auction phase changed | auction_id=%s | from=%s | to=%s",
        aggregate.auction_id,
        aggregate.phase.value,
        phase.value,
    )
    return _accepted(
        replace(aggregate, phase=phase),
        [AuctionEvent(kind="phase_changed", phase=phase)],
    )


def _run_selection_round(
    aggregate: AuctionAggregate,
    events: list[AuctionEvent],
) -> AuctionAggregate:
    report = detect_conflicts(aggregate, aggregate.selections)
    rooms = dict(aggregate.rooms)
    users = dict(aggregate.users)
    conflicts = dict(aggregate.conflicts)
    bids = {key: dict(value) for key, value in aggregate.bids.items()}

    uncontested = report.uncontested(aggregate)
    for room_id, user_id in uncontested.items():
        room = rooms[room_id]
        rooms[room_id] = replace(room, assigned_user_id=user_id, status=RoomStatus.ASSIGNED)
        users[user_id] = replace(users[user_id], assigned_room_id=room_id)
        events.append(
            AuctionEvent(
                kind="room_assigned",
                room_id=room_id,
                user_ids=(user_id,),
                price=room.current_price,
            )
        )

    for room_id in report.contested_room_ids:
        claimants = report.room_to_users[room_id]
        conflicts[room_id] = Conflict(room_id=room_id, user_ids=claimants)
        rooms[room_id] = replace(rooms[room_id], status=RoomStatus.CONTESTED)
        bids.pop(room_id, None)
        events.append(AuctionEvent(kind="room_contested", room_id=room_id, user_ids=claimants))

    rooms = normalize_unassigned_prices(rooms, aggregate.total_rent)
    events.append(AuctionEvent(kind="prices_normalized"))
    logger.info(
        "Selection round applied | auction_id=%s | assigned=%s | contested=%s",
        aggregate.auction_id,
        len(uncontested),
        list(report.contested_room_ids),
    )
    updated = replace(
        aggregate,
        rooms=rooms,
        users=users,
        conflicts=conflicts,
        bids=bids,
        selections={},
    )
    return _advance_phase(updated, events)


def apply_selections(
    aggregate: AuctionAggregate,
    selections: Mapping[str, Optional[str]],
) -> TransitionResult:
    """Merge selections; run the round once every free user has chosen."""
    try:
        _require_phase(aggregate, AuctionPhase.SELECTING)
        merged = dict(aggregate.selections)
        for user_id, room_id in selections.items():
            user = _require_user(aggregate, user_id)
            if user.is_assigned:
                continue
            if room_id is None:
                merged.pop(user_id, None)
                continue
            room = aggregate.rooms.get(room_id)
            if room is None:
                raise AuctionValidationError(f"selection references unknown room {room_id}")
            if room.is_assigned:
                raise AuctionValidationError(f"room {room_id} is already assigned")
            merged[user_id] = room_id
    except _REJECTABLE as exc:
        return _rejected(aggregate, "apply_selections", exc)

    events = [
        AuctionEvent(kind="selection_recorded", room_id=room_id, user_ids=(user_id,))
        for user_id, room_id in merged.items()
        if aggregate.selections.get(user_id) != room_id
    ]
    updated = replace(aggregate, selections=merged)
    if any(user_id not in merged for user_id in updated.free_user_ids):
        return _accepted(updated, events)
    return _accepted(_run_selection_round(updated, events), events)


def apply_bid(
    aggregate: AuctionAggregate,
    room_id: str,
    user_id: str,
    amount: float,
    policy: ContenderPolicy = ContenderPolicy.ALL,
) -> TransitionResult:
    """Record a bid on a contested room and resolve the room if everyone bid."""
    room = aggregate.rooms.get(room_id)
    if room is not None and room.is_assigned:
        return TransitionResult(aggregate=aggregate)

    try:
        if room is None:
            raise AuctionNotFoundError(f"room {room_id} does not exist")
        _require_phase(aggregate, AuctionPhase.BIDDING)
        validate_bid(aggregate, room_id, user_id, amount)
    except _REJECTABLE as exc:
        return _rejected(aggregate, "apply_bid", exc)

    events = [AuctionEvent(kind="bid_recorded", room_id=room_id, user_ids=(user_id,))]
    updated = record_bid(aggregate, Bid(user_id=user_id, room_id=room_id, amount=float(amount)))
    updated, resolution = resolve_room(updated, room_id, policy)
    events.extend(_resolution_events(resolution))
    return _accepted(_advance_phase(updated, events), events)


def set_connected(
    aggregate: AuctionAggregate,
    user_id: str,
    connected: bool,
    policy: ContenderPolicy = ContenderPolicy.ALL,
) -> TransitionResult:
    """Update presence; under the connected policy this may close bidding rounds."""
    try:
        user = _require_user(aggregate, user_id)
    except _REJECTABLE as exc:
        return _rejected(aggregate, "set_connected", exc)

    if user.connected == connected:
        return TransitionResult(aggregate=aggregate)

    users = dict(aggregate.users)
    users[user_id] = replace(user, connected=connected)
    updated = replace(aggregate, users=users)
    events = [
        AuctionEvent(kind="user_connected" if connected else "user_disconnected", user_ids=(user_id,))
    ]

    if updated.phase is AuctionPhase.BIDDING and policy is ContenderPolicy.CONNECTED:
        for room_id in sorted(updated.conflicts, key=natural_key):
            updated, resolution = resolve_room(updated, room_id, policy)
            events.extend(_resolution_events(resolution))
        updated = _advance_phase(updated, events)
    return _accepted(updated, events)


def record_valuations(
    aggregate: AuctionAggregate,
    user_id: str,
    valuations: Mapping[str, float],
    ranking: Optional[Sequence[str]] = None,
) -> TransitionResult:
    """Store one user's per-room valuations (and optional ranking) for settlement."""
    try:
        if aggregate.phase is AuctionPhase.COMPLETED:
            raise AuctionValidationError("auction is already completed")
        _require_user(aggregate, user_id)
        amounts: dict[str, float] = {}
        for room_id, amount in valuations.items():
            if room_id not in aggregate.rooms:
                raise AuctionValidationError(f"valuation references unknown room {room_id}")
            value = float(amount)
            if not math.isfinite(value) or value < 0:
                raise AuctionValidationError("valuations must be non-negative numbers")
            amounts[room_id] = value
        ordered: Optional[tuple[str, ...]] = None
        if ranking is not None:
            unknown = [room_id for room_id in ranking if room_id not in aggregate.rooms]
            if unknown:
                raise AuctionValidationError(f"ranking references unknown rooms {unknown}")
            ordered = tuple(dict.fromkeys(ranking))
    except _REJECTABLE as exc:
        return _rejected(aggregate, "record_valuations", exc)

    all_valuations = {key: dict(value) for key, value in aggregate.valuations.items()}
    all_valuations[user_id] = amounts
    preferences = dict(aggregate.preferences)
    if ordered is None:
        preferences.pop(user_id, None)
    else:
        preferences[user_id] = ordered
    updated = replace(aggregate, valuations=all_valuations, preferences=preferences)
    return _accepted(updated, [AuctionEvent(kind="valuations_recorded", user_ids=(user_id,))])


def _settle_pairs(
    pairs: Sequence[tuple[int, int, float]],
    total_rent: float,
) -> list[tuple[int, int, float]]:
    """Normalize ``(user_index, room_index, provisional)`` pairs in room order."""
    ordered = sorted(pairs, key=lambda item: item[1])
    prices = normalize_proportional([item[2] for item in ordered], total_rent)
    return [(user_index, room_index, price) for (user_index, room_index, _), price in zip(ordered, prices)]


def _solve_batch(
    strategy: AllocationStrategy,
    rankings: Sequence[Optional[Sequence[int]]],
    matrix: Sequence[Sequence[float]],
    room_count: int,
) -> list[tuple[int, int, float]]:
    if strategy is AllocationStrategy.OPTIMAL_BATCH:
        return [
            (user_index, room_index, matrix[user_index][room_index])
            for user_index, room_index in maximum_value_assignment(matrix)
        ]
    preferences = build_preferences(rankings, matrix, room_count)
    held = deferred_acceptance(preferences, lambda user_index, room_index: matrix[user_index][room_index])
    return [(user_index, room_index, value) for room_index, (user_index, value) in held.items()]


def _rejected_solve(operation: str, error: Exception) -> AssignmentOutcome:
    logger.info("Assignment rejected | operation=%s | reason=%s", operation, error)
    return AssignmentOutcome(error=error)


def compute_optimal_assignment(
    valuation_matrix: Sequence[Sequence[float]],
    total_rent: float,
) -> AssignmentOutcome:
    """Maximum-value assignment of users (rows) to rooms (columns), priced to the rent.

    ``assignments`` holds ``IndexedAssignment`` values in room order.
    """
    try:
        rent = _validate_total_rent(total_rent)
        pairs = [
            (user_index, room_index, float(valuation_matrix[user_index][room_index]))
            for user_index, room_index in maximum_value_assignment(valuation_matrix)
        ]
    except _REJECTABLE as exc:
        return _rejected_solve("optimal_assignment", exc)

    return AssignmentOutcome(
        assignments=tuple(
            IndexedAssignment(room_index=room_index, user_index=user_index, price=price)
            for user_index, room_index, price in _settle_pairs(pairs, rent)
        )
    )


def _preference_inputs(
    preference_lists: Mapping[str, Optional[Sequence[str]]],
    valuations: Mapping[str, Mapping[str, float]],
    room_ids: Optional[Sequence[str]],
) -> tuple[list[str], list[str], list[Optional[list[int]]], list[list[float]]]:
    user_ids = list(preference_lists) + [
        user_id for user_id in valuations if user_id not in preference_lists
    ]
    if room_ids is None:
        named: set[str] = set()
        for ranking in preference_lists.values():
            named.update(ranking or ())
        for amounts in valuations.values():
            named.update(amounts)
        room_ids = sorted(named, key=natural_key)
    room_ids = list(room_ids)
    room_index = {room_id: index for index, room_id in enumerate(room_ids)}

    rankings: list[Optional[list[int]]] = []
    for user_id in user_ids:
        ranking = preference_lists.get(user_id)
        if ranking is None:
            rankings.append(None)
            continue
        unknown = [room_id for room_id in ranking if room_id not in room_index]
        if unknown:
            raise AuctionValidationError(f"preference list of {user_id} names unknown rooms {unknown}")
        rankings.append([room_index[room_id] for room_id in ranking])

    matrix = []
    for user_id in user_ids:
        amounts = valuations.get(user_id, {})
        try:
            row = [float(amounts.get(room_id, 0.0)) for room_id in room_ids]
        except (TypeError, ValueError) as exc:
            raise AuctionValidationError("valuations must be non-negative numbers") from exc
        if any(not math.isfinite(value) or value < 0 for value in row):
            raise AuctionValidationError("valuations must be non-negative numbers")
        matrix.append(row)
    return user_ids, room_ids, rankings, matrix


def compute_stable_matching(
    preference_lists: Mapping[str, Optional[Sequence[str]]],
    valuations: Mapping[str, Mapping[str, float]],
    total_rent: float,
    room_ids: Optional[Sequence[str]] = None,
) -> AssignmentOutcome:
    """Deferred-acceptance matching over room ids, priced to the rent.

    User order (and so the tie-break) follows ``preference_lists`` and then any
    users that only appear in ``valuations``. Rooms default to every id named
    anywhere in the input, in natural order. ``assignments`` holds
    ``AssignmentResult`` values in room order.
    """
    try:
        rent = _validate_total_rent(total_rent)
        user_ids, room_ids, rankings, matrix = _preference_inputs(
            preference_lists,
            valuations,
            room_ids,
        )
        pairs = _solve_batch(AllocationStrategy.PREFERENCE, rankings, matrix, len(room_ids))
    except _REJECTABLE as exc:
        return _rejected_solve("stable_matching", exc)

    return AssignmentOutcome(
        assignments=tuple(
            AssignmentResult(room_id=room_ids[room_idx], user_id=user_ids[user_idx], price=price)
            for user_idx, room_idx, price in _settle_pairs(pairs, rent)
        )
    )


def _final_pairs(
    aggregate: AuctionAggregate,
    strategy: AllocationStrategy,
    room_ids: list[str],
    user_ids: list[str],
) -> list[tuple[int, int, float]]:
    if not room_ids or not user_ids:
        return []
    room_index = {room_id: index for index, room_id in enumerate(room_ids)}
    matrix = [
        [aggregate.valuations.get(user_id, {}).get(room_id, 0.0) for room_id in room_ids]
        for user_id in user_ids
    ]
    rankings = [
        [room_index[room_id] for room_id in aggregate.preferences[user_id]]
        if user_id in aggregate.preferences
        else None
        for user_id in user_ids
    ]
    pairs = _solve_batch(strategy, rankings, matrix, len(room_ids))
    return _settle_pairs(pairs, aggregate.total_rent)


def compute_final(
    aggregate: AuctionAggregate,
    strategy: AllocationStrategy,
) -> SettlementOutcome:
    """Settle the whole auction in one shot from stored valuations.

    Bypasses the round-based flow and leaves ``aggregate`` untouched.
    """
    room_ids = aggregate.room_ids
    user_ids = aggregate.user_ids
    try:
        if aggregate.phase is AuctionPhase.COMPLETED:
            raise AuctionValidationError("auction is already completed")
        if strategy is AllocationStrategy.INCREMENTAL:
            raise AuctionValidationError("incremental auctions settle through bidding rounds")
        pairs = _final_pairs(aggregate, strategy, room_ids, user_ids)
    except _REJECTABLE as exc:
        logger.info(
            "Settlement rejected | auction_id=%s | reason=%s",
            aggregate.auction_id,
            exc,
        )
        return SettlementOutcome(error=exc)

    assignments = tuple(
        AssignmentResult(room_id=room_ids[room_idx], user_id=user_ids[user_idx], price=price)
        for user_idx, room_idx, price in pairs
    )
    matched_users = {item.user_id for item in assignments}
    matched_rooms = {item.room_id for item in assignments}
    settlement = Settlement(
        strategy=strategy,
        assignments=assignments,
        unassigned_user_ids=tuple(user_id for user_id in user_ids if user_id not in matched_users),
        unassigned_room_ids=tuple(room_id for room_id in room_ids if room_id not in matched_rooms),
    )
    logger.info(
        "Settlement computed | auction_id=%s | strategy=%s | assigned=%s | total=%.2f",
        aggregate.auction_id,
        strategy.value,
        len(assignments),
        settlement.total_price,
    )
    return SettlementOutcome(settlement=settlement)
