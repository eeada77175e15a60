"""Auction workflow service binding the pure engine to the repository."""

from __future__ import annotations

from typing import Callable, Mapping, Optional, Sequence

from rent_auction.domain.constraints import AuctionConfig, validate_auction_config
from rent_auction.domain.errors import AuctionNotFoundError, AuctionValidationError
from rent_auction.domain.models import (
    AllocationStrategy,
    AssignmentResult,
    AuctionAggregate,
    ContenderPolicy,
    IndexedAssignment,
    Settlement,
    TransitionResult,
)
from rent_auction.repository.auction_repository import AuctionRepository, SnapshotListener
from rent_auction.services import orchestrator
from rent_auction.services.conflict_detector import ConflictReport, detect_conflicts
from rent_auction.utils.config import Settings, get_settings
from rent_auction.utils.logger import get_logger


logger = get_logger(__name__)


def build_auction_config(settings: Settings) -> AuctionConfig:
    try:
        config = AuctionConfig(
            contender_policy=ContenderPolicy(settings.auction_contender_policy),
            default_strategy=AllocationStrategy(settings.auction_default_strategy),
            price_tolerance=settings.auction_price_tolerance,
        )
    except ValueError as exc:
        raise ValueError(f"Invalid auction settings: {exc}") from exc
    validate_auction_config(config)
    return config


class AuctionService:
    """Runs engine transitions against stored snapshots, one auction at a time."""

    def __init__(
        self,
        repository: Optional[AuctionRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or AuctionRepository(self._settings)
        self._config = build_auction_config(self._settings)

    @property
    def config(self) -> AuctionConfig:
        return self._config

    def _apply(
        self,
        auction_id: str,
        transition: Callable[[AuctionAggregate], TransitionResult],
    ) -> TransitionResult:
        result = self._repository.update(auction_id, transition)
        if result.error is not None:
            raise result.error
        if result.events:
            logger.debug(
                "Transition persisted | auction_id=%s | events=%s",
                auction_id,
                [event.kind for event in result.events],
            )
        return result

    def create_auction(
        self,
        *,
        total_rent: float,
        room_names: Sequence[str],
        user_names: Sequence[str],
    ) -> AuctionAggregate:
        outcome = orchestrator.create_aggregate(total_rent, room_names, user_names)
        if outcome.error is not None:
            raise outcome.error
        return self._repository.create(outcome.aggregate)

    def get_auction(self, auction_id: str) -> AuctionAggregate:
        aggregate = self._repository.get(auction_id)
        if aggregate is None:
            raise AuctionNotFoundError(f"auction {auction_id} does not exist")
        return aggregate

    def delete_auction(self, auction_id: str) -> None:
        if not self._repository.delete(auction_id):
            raise AuctionNotFoundError(f"auction {auction_id} does not exist")
        logger.info("Auction abandoned | auction_id=%s", auction_id)

    def start_auction(self, auction_id: str) -> TransitionResult:
        return self._apply(auction_id, orchestrator.start_selecting)

    def preview_conflicts(
        self,
        auction_id: str,
        selections: Mapping[str, Optional[str]],
    ) -> ConflictReport:
        aggregate = self.get_auction(auction_id)
        unknown = [room_id for room_id in selections.values() if room_id and room_id not in aggregate.rooms]
        if unknown:
            raise AuctionValidationError(f"selection references unknown rooms {unknown}")
        return detect_conflicts(aggregate, selections)

    def submit_selections(
        self,
        auction_id: str,
        selections: Mapping[str, Optional[str]],
    ) -> TransitionResult:
        return self._apply(
            auction_id,
            lambda aggregate: orchestrator.apply_selections(aggregate, selections),
        )

    def submit_bid(
        self,
        auction_id: str,
        *,
        room_id: str,
        user_id: str,
        amount: float,
    ) -> TransitionResult:
        policy = self._config.contender_policy
        return self._apply(
            auction_id,
            lambda aggregate: orchestrator.apply_bid(aggregate, room_id, user_id, amount, policy),
        )

    def set_presence(self, auction_id: str, *, user_id: str, connected: bool) -> TransitionResult:
        policy = self._config.contender_policy
        return self._apply(
            auction_id,
            lambda aggregate: orchestrator.set_connected(aggregate, user_id, connected, policy),
        )

    def submit_valuations(
        self,
        auction_id: str,
        *,
        user_id: str,
        valuations: Mapping[str, float],
        ranking: Optional[Sequence[str]] = None,
    ) -> TransitionResult:
        return self._apply(
            auction_id,
            lambda aggregate: orchestrator.record_valuations(aggregate, user_id, valuations, ranking),
        )

    def compute_settlement(
        self,
        auction_id: str,
        strategy: Optional[AllocationStrategy] = None,
    ) -> Settlement:
        """One-shot settlement over stored valuations; the stored auction is not changed."""
        aggregate = self.get_auction(auction_id)
        outcome = orchestrator.compute_final(aggregate, strategy or self._config.default_strategy)
        if outcome.error is not None:
            raise outcome.error
        return outcome.settlement

    def subscribe(self, auction_id: str, listener: SnapshotListener) -> Callable[[], None]:
        self.get_auction(auction_id)
        return self._repository.subscribe(auction_id, listener)

    @staticmethod
    def optimal_assignment(
        valuation_matrix: Sequence[Sequence[float]],
        total_rent: float,
    ) -> list[IndexedAssignment]:
        outcome = orchestrator.compute_optimal_assignment(valuation_matrix, total_rent)
        if outcome.error is not None:
            raise outcome.error
        return list(outcome.assignments)

    @staticmethod
    def stable_matching(
        preference_lists: Mapping[str, Optional[Sequence[str]]],
        valuations: Mapping[str, Mapping[str, float]],
        total_rent: float,
    ) -> list[AssignmentResult]:
        outcome = orchestrator.compute_stable_matching(preference_lists, valuations, total_rent)
        if outcome.error is not None:
            raise outcome.error
        return list(outcome.assignments)
