"""
backend/tests/test_ws_event_handlers.py

Purpose:
    Tests for websocket event bus handlers: match snapshots go to match
    subscribers, notifications only to their recipient.
"""

from __future__ import annotations

import pytest
from bson import ObjectId

from pitchside.services.event_handlers import websocket_handlers
from pitchside.services.event_models import (
    MatchCancelledEvent,
    MatchFinalizedEvent,
    MatchUpdatedEvent,
    NotificationCreatedEvent,
    PaymentUpdatedEvent,
)
from pitchside.services.notification_service import build_notification


@pytest.fixture
def calls(monkeypatch):
    recorded = []

    async def _broadcast(**kwargs):
        recorded.append(kwargs)
        return 1

    monkeypatch.setattr(websocket_handlers.settings, "WS_EVENTS_ENABLED", True, raising=False)
    monkeypatch.setattr(websocket_handlers.websocket_manager, "broadcast", _broadcast)
    return recorded


@pytest.mark.asyncio
async def test_match_event_ws_handlers_broadcast(fake_db, calls):
    match_id = ObjectId()
    fake_db.matches.docs.append({
        "_id": match_id,
        "status": "Finished",
        "score_a": 2,
        "score_b": 0,
        "team_a_players": ["a1", "a2"],
        "team_b_players": ["b1"],
        "team_b_id": "team-b",
        "mvp_player_id": "a1",
        "version": 7,
    })

    updated = MatchUpdatedEvent(
        source="test",
        correlation_id="corr-u",
        match_id=str(match_id),
        previous_status="InProgress",
        new_status="Finished",
        changed_fields=["status"],
    )
    finalized = MatchFinalizedEvent(source="test", match_id=str(match_id), final_score={"A": 2, "B": 0})
    await websocket_handlers.handle_match_changed_ws(updated)
    await websocket_handlers.handle_match_changed_ws(finalized)

    assert [c["event_type"] for c in calls] == ["match.updated", "match.finalized"]
    first = calls[0]
    assert first["selectors"] == {"match_ids": [str(match_id)]}
    assert first["data"]["score"] == {"A": 2, "B": 0}
    assert first["data"]["confirmed_count"] == 3
    assert first["data"]["version"] == 7
    assert first["data"]["changed_fields"] == ["status"]
    assert first["meta"]["correlation_id"] == "corr-u"


@pytest.mark.asyncio
async def test_match_handler_skips_unknown_or_malformed_ids(fake_db, calls):
    await websocket_handlers.handle_match_changed_ws(
        MatchUpdatedEvent(source="test", match_id=str(ObjectId()), new_status="Scheduled")
    )
    await websocket_handlers.handle_match_changed_ws(
        MatchUpdatedEvent(source="test", match_id="not-an-id", new_status="Scheduled")
    )
    assert calls == []


@pytest.mark.asyncio
async def test_cancel_and_payment_handlers(fake_db, calls):
    await websocket_handlers.handle_match_cancelled_ws(
        MatchCancelledEvent(source="test", match_id="m1", reservation_id="r1", participant_ids=["u1"])
    )
    await websocket_handlers.handle_payment_updated_ws(
        PaymentUpdatedEvent(source="test", payment_id="p1", reservation_id="r1", match_id="m1", payer_id="u1", new_status="Paid")
    )

    assert calls[0]["data"] == {"match_id": "m1", "reservation_id": "r1"}
    assert calls[1]["selectors"] == {"match_ids": ["m1"]}
    assert calls[1]["data"]["status"] == "Paid"


@pytest.mark.asyncio
async def test_notification_is_addressed_to_recipient(fake_db, calls):
    doc = build_notification("u9", "You have been invited.", "/matches/m1", type="MatchInvitation")
    doc["_id"] = ObjectId()
    fake_db.notifications.docs.append(doc)

    await websocket_handlers.handle_notification_created_ws(
        NotificationCreatedEvent(source="test", notification_id=str(doc["_id"]), recipient_id="u9")
    )

    [call] = calls
    assert call["recipient_ids"] == ["u9"]
    assert call["data"]["message"] == "You have been invited."
    assert call["data"]["type"] == "MatchInvitation"


@pytest.mark.asyncio
async def test_handlers_are_silent_when_ws_disabled(fake_db, calls, monkeypatch):
    monkeypatch.setattr(websocket_handlers.settings, "WS_EVENTS_ENABLED", False, raising=False)
    await websocket_handlers.handle_match_cancelled_ws(MatchCancelledEvent(source="test", match_id="m1"))
    assert calls == []
