from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from conftest import T0, add_listing
from gavel.web.api import api, get_engine


@pytest.fixture
def client(engine):
    api.dependency_overrides[get_engine] = lambda: engine
    yield TestClient(api)
    api.dependency_overrides.clear()


@pytest.fixture
def auction_id(client, engine):
    resp = client.post("/auctions", json={"listing_id": add_listing(engine)})
    assert resp.status_code == 201
    return resp.json()["id"]


def test_create_auction(client, engine):
    listing_id = add_listing(engine)
    resp = client.post("/auctions", json={"listing_id": listing_id, "duration_days": 5})
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "ACTIVE"
    assert body["listing_id"] == listing_id
    assert Decimal(body["starting_price"]) == Decimal("1000")

    assert client.get(f"/listings/{listing_id}/auction").json()["id"] == body["id"]


def test_create_auction_precondition_failure(client, engine):
    listing_id = add_listing(engine)
    client.post("/auctions", json={"listing_id": listing_id})
    resp = client.post("/auctions", json={"listing_id": listing_id})
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "INVALID_PRECONDITION"


def test_create_auction_unknown_listing(client):
    resp = client.post("/auctions", json={"listing_id": "missing"})
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "LISTING_NOT_FOUND"


def test_place_bid_and_history(client, auction_id):
    resp = client.post(
        f"/auctions/{auction_id}/bids",
        json={"bidder_id": "alice", "amount": "1000"},
        headers={"user-agent": "pytest-agent"},
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["extended"] is False
    assert body["bid"]["bidder_number"] == 1
    assert "bidder_id" not in body["bid"]
    assert Decimal(body["auction"]["current_bid"]) == Decimal("1000")

    history = client.get(f"/auctions/{auction_id}/bids").json()
    assert len(history) == 1
    assert "bidder_id" not in history[0]


def test_bid_too_low_returns_minimum(client, auction_id):
    client.post(f"/auctions/{auction_id}/bids", json={"bidder_id": "alice", "amount": "1000"})
    resp = client.post(
        f"/auctions/{auction_id}/bids", json={"bidder_id": "bob", "amount": "1050"}
    )
    assert resp.status_code == 422
    error = resp.json()["error"]
    assert error["code"] == "BID_TOO_LOW"
    assert Decimal(error["minimum_bid"]) == Decimal("1100")


def test_self_bid_is_forbidden(client, auction_id):
    resp = client.post(
        f"/auctions/{auction_id}/bids", json={"bidder_id": "seller-1", "amount": "5000"}
    )
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "BID_OWN_AUCTION"


def test_bid_on_unknown_auction(client):
    resp = client.post("/auctions/nope/bids", json={"bidder_id": "alice", "amount": "1000"})
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "AUCTION_NOT_FOUND"


def test_bid_after_close(client, auction_id, engine, clock):
    clock.set(engine.get_auction_by_id(auction_id).current_end_time)
    resp = client.post(
        f"/auctions/{auction_id}/bids", json={"bidder_id": "alice", "amount": "1000"}
    )
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "AUCTION_ENDED"


def test_non_positive_amount_fails_validation(client, auction_id):
    resp = client.post(f"/auctions/{auction_id}/bids", json={"bidder_id": "alice", "amount": "0"})
    assert resp.status_code == 422


@pytest.mark.parametrize("amount", ["NaN", "Infinity"])
def test_non_finite_amount_fails_validation(client, auction_id, amount):
    resp = client.post(
        f"/auctions/{auction_id}/bids", json={"bidder_id": "alice", "amount": amount}
    )
    assert resp.status_code == 422
    assert client.get(f"/auctions/{auction_id}/bids").json() == []


def test_get_unknown_auction(client):
    assert client.get("/auctions/nope").status_code == 404


def test_end_and_cancel(client, auction_id, engine, clock):
    resp = client.post(f"/auctions/{auction_id}/end")
    assert resp.status_code == 409

    resp = client.post(f"/auctions/{auction_id}/end", params={"force": True})
    assert resp.status_code == 200
    assert resp.json()["status"] == "NO_SALE"

    resp = client.post(f"/auctions/{auction_id}/cancel", json={"reason": "late"})
    assert resp.status_code == 409


def test_cancel_requires_reason(client, auction_id):
    assert client.post(f"/auctions/{auction_id}/cancel", json={"reason": ""}).status_code == 422
    resp = client.post(f"/auctions/{auction_id}/cancel", json={"reason": "fraud"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "CANCELLED"


def test_listing_and_user_bids(client, auction_id):
    client.post(f"/auctions/{auction_id}/bids", json={"bidder_id": "alice", "amount": "1000"})

    page = client.get("/auctions", params={"sort_by": "most_bids"}).json()
    assert page["total"] == 1
    assert page["items"][0]["id"] == auction_id
    assert page["items"][0]["bid_count"] == 1

    mine = client.get("/users/alice/bids").json()
    assert mine["total"] == 1
    assert mine["items"][0]["auction_id"] == auction_id

    soon = client.get("/auctions/ending-soon").json()
    assert soon == []


def test_admin_tick(client, engine, clock):
    listing_id = add_listing(engine)
    client.post("/auctions", json={"listing_id": listing_id, "duration_days": 3})
    clock.advance(days=3)
    assert client.post("/admin/tick").json() == {"activated": 0, "ended": 1}
    assert client.get(f"/listings/{listing_id}/auction").json()["status"] == "NO_SALE"


def test_bad_sort_key(client):
    assert client.get("/auctions", params={"sort_by": "cheapest"}).status_code == 422
    assert client.get("/auctions", params={"limit": 500}).status_code == 422


def test_ending_soon_lists_auctions_closing_today(client, engine, clock):
    listing_id = add_listing(engine)
    client.post("/auctions", json={"listing_id": listing_id, "duration_days": 3})
    clock.set(T0 + timedelta(days=3, hours=-2))
    soon = client.get("/auctions/ending-soon").json()
    assert [a["listing_id"] for a in soon] == [listing_id]
