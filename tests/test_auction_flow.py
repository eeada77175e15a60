from __future__ import annotations

from dataclasses import replace

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from rent_auction.controllers.auction_controller import router
from rent_auction.domain.errors import AuctionNotFoundError, AuctionValidationError
from rent_auction.domain.models import AllocationStrategy, AuctionPhase
from rent_auction.repository.auction_repository import AuctionRepository
from rent_auction.services.auction_service import AuctionService
from rent_auction.utils.config import get_settings


def _build_test_settings(tmp_path, filename: str, **overrides):
    get_settings.cache_clear()
    base = get_settings()
    return replace(base, database_path=tmp_path / filename, **overrides)


def _build_service(tmp_path, filename: str = "auction_flow.db", **overrides):
    settings = _build_test_settings(tmp_path, filename, **overrides)
    repository = AuctionRepository(settings)
    repository.initialize_database()
    return AuctionService(repository=repository, settings=settings), repository


def _build_test_app(tmp_path) -> TestClient:
    service, repository = _build_service(tmp_path, "auction_api.db")
    app = FastAPI()
    app.include_router(router)
    app.state.repository = repository
    app.state.auction_service = service
    return TestClient(app)


def _new_auction(service: AuctionService):
    return service.create_auction(
        total_rent=3000,
        room_names=["Attic", "Basement", "Corner"],
        user_names=["Alice", "Bob", "Cathy"],
    )


def test_service_runs_rounds_and_persists_snapshots(tmp_path):
    service, repository = _build_service(tmp_path)
    auction = _new_auction(service)
    seen = []
    unsubscribe = service.subscribe(auction.auction_id, seen.append)

    service.start_auction(auction.auction_id)
    service.submit_selections(auction.auction_id, {"u1": "r1", "u2": "r1"})
    result = service.submit_selections(auction.auction_id, {"u3": "r2"})

    assert result.aggregate.phase is AuctionPhase.BIDDING
    assert [snapshot.phase for snapshot in seen] == [
        AuctionPhase.SELECTING,
        AuctionPhase.SELECTING,
        AuctionPhase.BIDDING,
    ]

    service.submit_bid(auction.auction_id, room_id="r1", user_id="u1", amount=1200)
    service.submit_bid(auction.auction_id, room_id="r1", user_id="u2", amount=1500)
    unsubscribe()
    service.submit_selections(auction.auction_id, {"u1": "r3"})

    stored = AuctionRepository(replace(get_settings(), database_path=repository.database_path)).get(
        auction.auction_id
    )
    assert stored.phase is AuctionPhase.COMPLETED
    assert stored.rooms["r1"].assigned_user_id == "u2"
    assert stored.rooms["r1"].current_price == 1500.0
    assert stored.rooms["r3"].assigned_user_id == "u1"
    assert round(stored.total_price(), 2) == 3000.0
    assert len(seen) == 5


def test_rejected_transition_is_raised_and_not_persisted(tmp_path):
    service, repository = _build_service(tmp_path)
    auction = _new_auction(service)
    service.start_auction(auction.auction_id)
    service.submit_selections(auction.auction_id, {"u1": "r1", "u2": "r1", "u3": "r2"})
    before = repository.get(auction.auction_id)

    with pytest.raises(AuctionValidationError):
        service.submit_bid(auction.auction_id, room_id="r1", user_id="u1", amount=900)

    assert repository.get(auction.auction_id) == before


def test_unknown_auction_is_not_found(tmp_path):
    service, _ = _build_service(tmp_path)

    with pytest.raises(AuctionNotFoundError):
        service.get_auction("missing")
    with pytest.raises(AuctionNotFoundError):
        service.start_auction("missing")
    with pytest.raises(AuctionNotFoundError):
        service.delete_auction("missing")


def test_delete_removes_auction(tmp_path):
    service, repository = _build_service(tmp_path)
    auction = _new_auction(service)
    assert repository.count_auctions() == 1

    service.delete_auction(auction.auction_id)

    assert repository.count_auctions() == 0
    with pytest.raises(AuctionNotFoundError):
        service.get_auction(auction.auction_id)


def test_settlement_uses_configured_default_strategy(tmp_path):
    service, _ = _build_service(tmp_path, auction_default_strategy="preference")
    auction = _new_auction(service)
    service.submit_valuations(auction.auction_id, user_id="u1", valuations={"r1": 12, "r2": 5, "r3": 1})
    service.submit_valuations(auction.auction_id, user_id="u2", valuations={"r1": 6, "r2": 11, "r3": 2})
    service.submit_valuations(auction.auction_id, user_id="u3", valuations={"r1": 4, "r2": 3, "r3": 10})

    settlement = service.compute_settlement(auction.auction_id)

    assert settlement.strategy is AllocationStrategy.PREFERENCE
    assert [item.price for item in settlement.assignments] == [1090.91, 1000.0, 909.09]
    assert service.get_auction(auction.auction_id).phase is AuctionPhase.WAITING


def test_failing_listener_does_not_block_transition(tmp_path):
    service, _ = _build_service(tmp_path)
    auction = _new_auction(service)

    def broken(_snapshot):
        raise RuntimeError("listener down")

    service.subscribe(auction.auction_id, broken)
    result = service.start_auction(auction.auction_id)

    assert result.aggregate.phase is AuctionPhase.SELECTING


def test_http_bidding_round_end_to_end(tmp_path):
    client = _build_test_app(tmp_path)

    created = client.post(
        "/auctions",
        json={"total_rent": 3000, "rooms": ["Attic", "Basement", "Corner"], "users": ["Alice", "Bob", "Cathy"]},
    )
    assert created.status_code == 201
    auction = created.json()
    auction_id = auction["auction_id"]
    assert auction["phase"] == "waiting"
    assert [room["current_price"] for room in auction["rooms"]] == [1000.0, 1000.0, 1000.0]

    started = client.post(f"/auctions/{auction_id}/start")
    assert started.status_code == 200
    assert started.json()["auction"]["phase"] == "selecting"

    partial = client.post(f"/auctions/{auction_id}/selections", json={"selections": {"u1": "r1"}})
    assert partial.json()["auction"]["selected_user_ids"] == ["u1"]

    preview = client.post(
        f"/auctions/{auction_id}/conflicts",
        json={"selections": {"u1": "r1", "u2": "r1", "u3": "r2"}},
    )
    assert preview.status_code == 200
    assert preview.json()["contested_room_ids"] == ["r1"]

    round_result = client.post(
        f"/auctions/{auction_id}/selections",
        json={"selections": {"u2": "r1", "u3": "r2"}},
    )
    body = round_result.json()
    assert body["auction"]["phase"] == "bidding"
    assert body["auction"]["conflicts"] == {"r1": ["u1", "u2"]}
    assert "room_contested" in [event["kind"] for event in body["events"]]

    too_low = client.post(f"/auctions/{auction_id}/rooms/r1/bids", json={"user_id": "u1", "amount": 900})
    assert too_low.status_code == 400

    first_bid = client.post(f"/auctions/{auction_id}/rooms/r1/bids", json={"user_id": "u1", "amount": 1200})
    assert first_bid.json()["auction"]["bidders"] == {"r1": ["u1"]}

    winning = client.post(f"/auctions/{auction_id}/rooms/r1/bids", json={"user_id": "u2", "amount": 1500})
    assert winning.status_code == 200
    rooms = {room["room_id"]: room for room in winning.json()["auction"]["rooms"]}
    assert rooms["r1"]["assigned_user_id"] == "u2"
    assert rooms["r1"]["current_price"] == 1500.0
    assert rooms["r3"]["current_price"] == 500.0
    assert winning.json()["auction"]["phase"] == "selecting"

    finished = client.post(f"/auctions/{auction_id}/selections", json={"selections": {"u1": "r3"}})
    assert finished.json()["auction"]["phase"] == "completed"

    settlement = client.post(f"/auctions/{auction_id}/settlement", json={"strategy": "optimal_batch"})
    assert settlement.status_code == 400

    deleted = client.delete(f"/auctions/{auction_id}")
    assert deleted.status_code == 204
    assert client.get(f"/auctions/{auction_id}").status_code == 404


def test_http_presence_and_valuations(tmp_path):
    client = _build_test_app(tmp_path)
    auction_id = client.post(
        "/auctions",
        json={"total_rent": 900, "rooms": ["A", "B"], "users": ["Ann", "Ben"]},
    ).json()["auction_id"]

    presence = client.post(f"/auctions/{auction_id}/users/u2/presence", json={"connected": False})
    assert presence.status_code == 200
    users = {user["user_id"]: user for user in presence.json()["auction"]["users"]}
    assert users["u2"]["connected"] is False

    client.post(f"/auctions/{auction_id}/users/u1/valuations", json={"valuations": {"r1": 10, "r2": 50}})
    client.post(f"/auctions/{auction_id}/users/u2/valuations", json={"valuations": {"r1": 40, "r2": 45}})
    settlement = client.post(f"/auctions/{auction_id}/settlement", json={})

    assert settlement.status_code == 200
    payload = settlement.json()
    assert payload["strategy"] == "optimal_batch"
    assert payload["assignments"] == [
        {"room_id": "r1", "user_id": "u2", "price": 400.0},
        {"room_id": "r2", "user_id": "u1", "price": 500.0},
    ]
    assert payload["total_price"] == 900.0

    unknown_room = client.post(
        f"/auctions/{auction_id}/users/u1/valuations",
        json={"valuations": {"r7": 10}},
    )
    assert unknown_room.status_code == 400
    assert client.post(f"/auctions/{auction_id}/users/u9/presence", json={"connected": True}).status_code == 404


def test_http_stateless_solvers(tmp_path):
    client = _build_test_app(tmp_path)

    optimal = client.post(
        "/assignments/optimal",
        json={"valuations": [[10, 50, 20], [40, 45, 0]], "total_rent": 900},
    )
    assert optimal.status_code == 200
    assert optimal.json() == [
        {"room_index": 0, "user_index": 1, "price": 400.0},
        {"room_index": 1, "user_index": 0, "price": 500.0},
    ]

    stable = client.post(
        "/assignments/stable",
        json={
            "preferences": {"u1": ["r1", "r2"], "u2": ["r1", "r2"]},
            "valuations": {"u1": {"r1": 100, "r2": 100}, "u2": {"r1": 200, "r2": 50}},
            "total_rent": 900,
        },
    )
    assert stable.status_code == 200
    assert stable.json() == [
        {"room_id": "r1", "user_id": "u2", "price": 600.0},
        {"room_id": "r2", "user_id": "u1", "price": 300.0},
    ]

    negative = client.post(
        "/assignments/optimal",
        json={"valuations": [[-1, 2], [3, 4]], "total_rent": 900},
    )
    assert negative.status_code == 400
    assert client.post("/assignments/optimal", json={"valuations": [[1]], "total_rent": 0}).status_code == 422


def test_http_rejects_invalid_creation(tmp_path):
    client = _build_test_app(tmp_path)

    assert client.post("/auctions", json={"rooms": ["A"], "users": ["B"]}).status_code == 422
    assert client.post("/auctions", json={"total_rent": 100, "rooms": [" "], "users": ["B"]}).status_code == 422
    assert client.get("/auctions/missing").status_code == 404
