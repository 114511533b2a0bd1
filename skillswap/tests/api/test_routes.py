import uuid
from datetime import timedelta

import pytest

from skillswap.lifecycle.errors import ConcurrencyConflictError, TradeError
from skillswap.lifecycle.main import status_for_error
from skillswap.tests.helpers import CREATOR, OUTSIDER, PROPOSER

TRADE_PAYLOAD = {
    "title": "Photography walk for a logo",
    "description": "One guided photo walk in exchange for a logo draft",
    "skills_offered": [{"name": "Photography", "level": "expert"}],
    "skills_wanted": [{"name": "Logo design", "level": "intermediate"}],
}

EVIDENCE = [{"type": "image", "url": "https://example.com/walk.jpg", "title": "Walk highlights"}]


def _as(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


async def _trade_in_progress(client) -> str:
    created = await client.post("/api/trades", json=TRADE_PAYLOAD, headers=_as(CREATOR))
    trade_id = created.json()["id"]
    proposal = await client.post(
        f"/api/trades/{trade_id}/proposals",
        json={"message": "I can start next week"},
        headers=_as(PROPOSER),
    )
    await client.post(f"/api/trades/{trade_id}/proposals/{proposal.json()['id']}/accept", headers=_as(CREATOR))
    return trade_id


@pytest.mark.asyncio
async def test_health(api_client):
    response = await api_client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_trade_and_proposal_flow(api_client):
    created = await api_client.post("/api/trades", json=TRADE_PAYLOAD, headers=_as(CREATOR))
    assert created.status_code == 201
    trade = created.json()
    assert trade["status"] == "open"
    assert trade["creator_id"] == CREATOR

    proposal = await api_client.post(
        f"/api/trades/{trade['id']}/proposals",
        json={"message": "Sounds fun", "skills_offered": [{"name": "Logo design", "level": "advanced"}]},
        headers=_as(PROPOSER),
    )
    assert proposal.status_code == 201
    assert proposal.json()["status"] == "pending"

    listing = await api_client.get(f"/api/trades/{trade['id']}/proposals")
    assert [item["proposer_id"] for item in listing.json()] == [PROPOSER]

    accepted = await api_client.post(
        f"/api/trades/{trade['id']}/proposals/{proposal.json()['id']}/accept",
        headers=_as(CREATOR),
    )
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "in_progress"
    assert accepted.json()["participant_id"] == PROPOSER


@pytest.mark.asyncio
async def test_completion_and_confirmation_over_http(api_client, rewards):
    trade_id = await _trade_in_progress(api_client)

    requested = await api_client.post(
        f"/api/trades/{trade_id}/completion",
        json={"notes": "Walk done, photos shared", "evidence": EVIDENCE},
        headers=_as(PROPOSER),
    )
    assert requested.status_code == 200
    body = requested.json()
    assert body["status"] == "pending_confirmation"
    assert body["completion_requested_by"] == PROPOSER
    assert body["evidence"][0]["submitted_by"] == PROPOSER

    confirmed = await api_client.post(f"/api/trades/{trade_id}/confirm", headers=_as(CREATOR))
    assert confirmed.status_code == 200
    assert confirmed.json()["status"] == "completed"
    assert len(rewards.calls) == 1

    again = await api_client.post(f"/api/trades/{trade_id}/confirm", headers=_as(CREATOR))
    assert again.status_code == 409
    assert again.json()["code"] == "already_terminal"


@pytest.mark.asyncio
async def test_error_codes(api_client):
    trade_id = await _trade_in_progress(api_client)

    missing_actor = await api_client.post(f"/api/trades/{trade_id}/confirm")
    assert missing_actor.status_code == 401

    outsider = await api_client.post(
        f"/api/trades/{trade_id}/completion",
        json={"notes": "sneaky", "evidence": EVIDENCE},
        headers=_as(OUTSIDER),
    )
    assert outsider.status_code == 403

    no_evidence = await api_client.post(
        f"/api/trades/{trade_id}/completion",
        json={"notes": "done", "evidence": []},
        headers=_as(PROPOSER),
    )
    assert no_evidence.status_code == 422

    not_pending = await api_client.post(f"/api/trades/{trade_id}/confirm", headers=_as(CREATOR))
    assert not_pending.status_code == 409

    unknown = await api_client.get(f"/api/trades/{uuid.uuid4()}")
    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_changes_and_history(api_client):
    trade_id = await _trade_in_progress(api_client)
    await api_client.post(
        f"/api/trades/{trade_id}/completion",
        json={"notes": "first pass", "evidence": EVIDENCE},
        headers=_as(PROPOSER),
    )

    changes = await api_client.post(
        f"/api/trades/{trade_id}/changes",
        json={"feedback": "Please include the raw files"},
        headers=_as(CREATOR),
    )
    assert changes.status_code == 200
    assert changes.json()["status"] == "in_progress"
    assert changes.json()["change_requests"][0]["reason"] == "Please include the raw files"

    history = await api_client.get(f"/api/trades/{trade_id}/history")
    assert [item["to_status"] for item in history.json()] == [
        "open",
        "in_progress",
        "pending_confirmation",
        "in_progress",
    ]


@pytest.mark.asyncio
async def test_cancel_is_creator_only(api_client):
    created = await api_client.post("/api/trades", json=TRADE_PAYLOAD, headers=_as(CREATOR))
    trade_id = created.json()["id"]

    denied = await api_client.post(f"/api/trades/{trade_id}/cancel", json={}, headers=_as(PROPOSER))
    assert denied.status_code == 403

    cancelled = await api_client.post(
        f"/api/trades/{trade_id}/cancel",
        json={"reason": "No longer available"},
        headers=_as(CREATOR),
    )
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"


@pytest.mark.asyncio
async def test_scheduler_endpoint_uses_as_of(api_client, clock):
    trade_id = await _trade_in_progress(api_client)
    await api_client.post(
        f"/api/trades/{trade_id}/completion",
        json={"notes": "all done", "evidence": EVIDENCE},
        headers=_as(PROPOSER),
    )

    as_of = (clock.now + timedelta(days=8)).isoformat()
    response = await api_client.post("/api/scheduler/auto-resolution", params={"as_of": as_of})
    assert response.status_code == 200
    report = response.json()
    assert report["reminded"] == [trade_id]
    assert report["auto_completed"] == []

    dispatched = await api_client.post("/api/scheduler/outbox/dispatch")
    assert dispatched.json() == {"delivered": 0}


def test_error_status_mapping():
    assert status_for_error(ConcurrencyConflictError("busy")) == 503
    assert status_for_error(TradeError("generic")) == 400
