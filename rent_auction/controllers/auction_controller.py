"""HTTP controller layer for rent auctions and one-shot settlement."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator

from rent_auction.controllers.dependencies import get_auction_service
from rent_auction.domain.errors import AuctionNotFoundError, AuctionValidationError
from rent_auction.domain.models import (
    AllocationStrategy,
    AuctionAggregate,
    AuctionPhase,
    RoomStatus,
    TransitionResult,
)
from rent_auction.services.auction_service import AuctionService
from rent_auction.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["auctions"])


class CreateAuctionRequest(BaseModel):
    """Input DTO validated before entering service layer."""

    total_rent: float = Field(gt=0.0)
    rooms: list[str] = Field(default_factory=list)
    users: list[str] = Field(default_factory=list)

    @field_validator("rooms", "users")
    @classmethod
    def validate_names(cls, value: list[str]) -> list[str]:
        if any(not name.strip() for name in value):
            raise ValueError("names must be non-empty")
        return value


class RoomResponse(BaseModel):
    room_id: str
    name: str
    base_price: float
    current_price: float
    assigned_user_id: str | None
    status: RoomStatus


class UserResponse(BaseModel):
    user_id: str
    name: str
    assigned_room_id: str | None
    connected: bool


class AuctionResponse(BaseModel):
    auction_id: str
    total_rent: float = Field(gt=0.0)
    phase: AuctionPhase
    rooms: list[RoomResponse]
    users: list[UserResponse]
    conflicts: dict[str, list[str]]
    selected_user_ids: list[str]
    bidders: dict[str, list[str]]


class EventResponse(BaseModel):
    kind: str
    room_id: str | None = None
    user_ids: list[str] = Field(default_factory=list)
    price: float | None = None
    phase: AuctionPhase | None = None


class TransitionResponse(BaseModel):
    auction: AuctionResponse
    events: list[EventResponse]


class SelectionsRequest(BaseModel):
    selections: dict[str, str | None]


class BidRequest(BaseModel):
    user_id: str
    amount: float


class PresenceRequest(BaseModel):
    connected: bool


class ValuationsRequest(BaseModel):
    valuations: dict[str, float]
    ranking: list[str] | None = None


class SettlementRequest(BaseModel):
    strategy: AllocationStrategy | None = None


class AssignmentResponse(BaseModel):
    room_id: str
    user_id: str
    price: float


class SettlementResponse(BaseModel):
    strategy: AllocationStrategy
    assignments: list[AssignmentResponse]
    unassigned_user_ids: list[str]
    unassigned_room_ids: list[str]
    total_price: float


class ConflictPreviewResponse(BaseModel):
    contested_room_ids: list[str]
    room_to_users: dict[str, list[str]]


class OptimalAssignmentRequest(BaseModel):
    valuations: list[list[float]]
    total_rent: float = Field(gt=0.0)


class IndexedAssignmentResponse(BaseModel):
    room_index: int = Field(ge=0)
    user_index: int = Field(ge=0)
    price: float


class StableMatchingRequest(BaseModel):
    preferences: dict[str, list[str] | None] = Field(default_factory=dict)
    valuations: dict[str, dict[str, float]] = Field(default_factory=dict)
    total_rent: float = Field(gt=0.0)


def _auction_response(aggregate: AuctionAggregate) -> AuctionResponse:
    return AuctionResponse(
        auction_id=aggregate.auction_id,
        total_rent=aggregate.total_rent,
        phase=aggregate.phase,
        rooms=[
            RoomResponse(
                room_id=room.room_id,
                name=room.name,
                base_price=room.base_price,
                current_price=room.current_price,
                assigned_user_id=room.assigned_user_id,
                status=room.status,
            )
            for room in (aggregate.rooms[room_id] for room_id in aggregate.room_ids)
        ],
        users=[
            UserResponse(
                user_id=user.user_id,
                name=user.name,
                assigned_room_id=user.assigned_room_id,
                connected=user.connected,
            )
            for user in (aggregate.users[user_id] for user_id in aggregate.user_ids)
        ],
        conflicts={
            room_id: list(conflict.user_ids) for room_id, conflict in aggregate.conflicts.items()
        },
        # Picks and amounts stay private until the round closes.
        selected_user_ids=sorted(aggregate.selections),
        bidders={room_id: sorted(room_bids) for room_id, room_bids in aggregate.bids.items()},
    )


def _transition_response(result: TransitionResult) -> TransitionResponse:
    return TransitionResponse(
        auction=_auction_response(result.aggregate),
        events=[
            EventResponse(
                kind=event.kind,
                room_id=event.room_id,
                user_ids=list(event.user_ids),
                price=event.price,
                phase=event.phase,
            )
            for event in result.events
        ],
    )


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except AuctionValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except AuctionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected failure | operation=%s", operation)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to {operation}",
        ) from exc


@router.post("/auctions", response_model=AuctionResponse, status_code=status.HTTP_201_CREATED)
async def create_auction(
    payload: CreateAuctionRequest,
    service: AuctionService = Depends(get_auction_service),
) -> AuctionResponse:
    with _translate_errors("create auction"):
        aggregate = service.create_auction(
            total_rent=payload.total_rent,
            room_names=payload.rooms,
            user_names=payload.users,
        )
        return _auction_response(aggregate)


@router.get("/auctions/{auction_id}", response_model=AuctionResponse)
async def get_auction(
    auction_id: str,
    service: AuctionService = Depends(get_auction_service),
) -> AuctionResponse:
    with _translate_errors("load auction"):
        return _auction_response(service.get_auction(auction_id))


@router.delete("/auctions/{auction_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_auction(
    auction_id: str,
    service: AuctionService = Depends(get_auction_service),
) -> None:
    with _translate_errors("delete auction"):
        service.delete_auction(auction_id)


@router.post("/auctions/{auction_id}/start", response_model=TransitionResponse)
async def start_auction(
    auction_id: str,
    service: AuctionService = Depends(get_auction_service),
) -> TransitionResponse:
    with _translate_errors("start auction"):
        return _transition_response(service.start_auction(auction_id))


@router.post("/auctions/{auction_id}/conflicts", response_model=ConflictPreviewResponse)
async def preview_conflicts(
    auction_id: str,
    payload: SelectionsRequest,
    service: AuctionService = Depends(get_auction_service),
) -> ConflictPreviewResponse:
    """Group selections by room without applying them."""
    with _translate_errors("detect conflicts"):
        report = service.preview_conflicts(auction_id, payload.selections)
        return ConflictPreviewResponse(
            contested_room_ids=list(report.contested_room_ids),
            room_to_users={key: list(value) for key, value in report.room_to_users.items()},
        )


@router.post("/auctions/{auction_id}/selections", response_model=TransitionResponse)
async def submit_selections(
    auction_id: str,
    payload: SelectionsRequest,
    service: AuctionService = Depends(get_auction_service),
) -> TransitionResponse:
    with _translate_errors("apply selections"):
        return _transition_response(service.submit_selections(auction_id, payload.selections))


@router.post("/auctions/{auction_id}/rooms/{room_id}/bids", response_model=TransitionResponse)
async def submit_bid(
    auction_id: str,
    room_id: str,
    payload: BidRequest,
    service: AuctionService = Depends(get_auction_service),
) -> TransitionResponse:
    with _translate_errors("submit bid"):
        result = service.submit_bid(
            auction_id,
            room_id=room_id,
            user_id=payload.user_id,
            amount=payload.amount,
        )
        return _transition_response(result)


@router.post("/auctions/{auction_id}/users/{user_id}/presence", response_model=TransitionResponse)
async def set_presence(
    auction_id: str,
    user_id: str,
    payload: PresenceRequest,
    service: AuctionService = Depends(get_auction_service),
) -> TransitionResponse:
    with _translate_errors("update presence"):
        result = service.set_presence(auction_id, user_id=user_id, connected=payload.connected)
        return _transition_response(result)


@router.post("/auctions/{auction_id}/users/{user_id}/valuations", response_model=TransitionResponse)
async def submit_valuations(
    auction_id: str,
    user_id: str,
    payload: ValuationsRequest,
    service: AuctionService = Depends(get_auction_service),
) -> TransitionResponse:
    with _translate_errors("submit valuations"):
        result = service.submit_valuations(
            auction_id,
            user_id=user_id,
            valuations=payload.valuations,
            ranking=payload.ranking,
        )
        return _transition_response(result)


@router.post("/auctions/{auction_id}/settlement", response_model=SettlementResponse)
async def compute_settlement(
    auction_id: str,
    payload: SettlementRequest,
    service: AuctionService = Depends(get_auction_service),
) -> SettlementResponse:
    """Settle every room at once from the stored valuations."""
    with _translate_errors("compute settlement"):
        settlement = service.compute_settlement(auction_id, payload.strategy)
        return SettlementResponse(
            strategy=settlement.strategy,
            assignments=[
                AssignmentResponse(room_id=item.room_id, user_id=item.user_id, price=item.price)
                for item in settlement.assignments
            ],
            unassigned_user_ids=list(settlement.unassigned_user_ids),
            unassigned_room_ids=list(settlement.unassigned_room_ids),
            total_price=round(settlement.total_price, 2),
        )


@router.post("/assignments/optimal", response_model=list[IndexedAssignmentResponse])
async def optimal_assignment(
    payload: OptimalAssignmentRequest,
    service: AuctionService = Depends(get_auction_service),
) -> list[IndexedAssignmentResponse]:
    with _translate_errors("compute optimal assignment"):
        return [
            IndexedAssignmentResponse(
                room_index=item.room_index,
                user_index=item.user_index,
                price=item.price,
            )
            for item in service.optimal_assignment(payload.valuations, payload.total_rent)
        ]


@router.post("/assignments/stable", response_model=list[AssignmentResponse])
async def stable_matching(
    payload: StableMatchingRequest,
    service: AuctionService = Depends(get_auction_service),
) -> list[AssignmentResponse]:
    with _translate_errors("compute stable matching"):
        return [
            AssignmentResponse(room_id=item.room_id, user_id=item.user_id, price=item.price)
            for item in service.stable_matching(
                payload.preferences,
                payload.valuations,
                payload.total_rent,
            )
        ]
