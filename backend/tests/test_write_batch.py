"""
backend/tests/test_write_batch.py

Purpose:
    Atomicity tests for the write batch: guarded writes, rollback on
    conflict or transport failure, and post-commit event publication.
"""

from __future__ import annotations

import pytest
from bson import ObjectId
from pymongo.errors import AutoReconnect

from pitchside.errors import ConflictError, TransportFailure
from pitchside.services.event_models import MatchUpdatedEvent
from pitchside.services.write_batch import WriteBatch


def _event(match_id: str) -> MatchUpdatedEvent:
    return MatchUpdatedEvent(source="test", match_id=match_id, new_status="Scheduled")


@pytest.mark.asyncio
async def test_commit_applies_writes_then_publishes(fake_db, published):
    oid = ObjectId()
    fake_db.matches.docs.append({"_id": oid, "version": 3, "status": "PendingOpponent"})

    batch = WriteBatch(source="test")
    batch.update("matches", {"_id": oid, "version": 3}, {"$set": {"status": "Scheduled"}, "$inc": {"version": 1}}, guard="stale")
    batch.insert("match_invitations", {"match_id": str(oid), "player_id": "p1", "status": "pending"})
    batch.publish(_event(str(oid)))
    await batch.commit()

    assert fake_db.matches.docs[0]["status"] == "Scheduled"
    assert fake_db.matches.docs[0]["version"] == 4
    assert len(fake_db.match_invitations.docs) == 1
    assert [e.event_type for e in published] == ["match.updated"]
    assert fake_db.transactions == 1


@pytest.mark.asyncio
async def test_guard_miss_rolls_back_everything(fake_db, published):
    oid = ObjectId()
    fake_db.matches.docs.append({"_id": oid, "version": 5, "team_a_players": []})

    batch = WriteBatch(source="test")
    batch.insert("notifications", {"recipient_id": "u1", "message": "hi"})
    batch.update("matches", {"_id": oid, "version": 4}, {"$addToSet": {"team_a_players": "p1"}}, guard="The match changed.")
    batch.publish(_event(str(oid)))

    with pytest.raises(ConflictError) as exc:
        await batch.commit()

    assert exc.value.detail == "The match changed."
    assert fake_db.notifications.docs == []
    assert fake_db.matches.docs[0]["team_a_players"] == []
    assert published == []
    assert fake_db.aborted == 1


@pytest.mark.asyncio
async def test_unguarded_update_that_matches_nothing_is_fine(fake_db, published):
    batch = WriteBatch(source="test")
    batch.update_many("payments", {"reservation_id": "nope"}, {"$set": {"status": "Cancelled"}})
    batch.update("teams", {"_id": ObjectId()}, {"$inc": {"wins": 1}})
    await batch.commit()
    assert fake_db.aborted == 0


@pytest.mark.asyncio
async def test_duplicate_key_becomes_conflict(fake_db, published):
    fake_db.mvp_votes.docs.append({"_id": ObjectId(), "match_id": "m1", "voter_id": "u1"})
    batch = WriteBatch(source="test")
    batch.insert("mvp_votes", {"match_id": "m1", "voter_id": "u1", "voted_for_id": "u2"})
    with pytest.raises(ConflictError):
        await batch.commit()
    assert len(fake_db.mvp_votes.docs) == 1


@pytest.mark.asyncio
async def test_store_failure_becomes_transport_failure(fake_db, published):
    fake_db.fail_writes = AutoReconnect("primary stepped down")
    batch = WriteBatch(source="test")
    batch.notify("u1", "Hello")
    with pytest.raises(TransportFailure) as exc:
        await batch.commit()
    assert exc.value.status_code == 503
    assert published == []


@pytest.mark.asyncio
async def test_notify_stages_record_and_push_event(fake_db, published):
    batch = WriteBatch(source="test")
    notification_id = batch.notify("u9", "You have been invited.", "/matches/x", type="MatchInvitation", payload={"match_id": "x"})
    await batch.commit()

    stored = fake_db.notifications.docs[0]
    assert stored["_id"] == notification_id
    assert stored["recipient_id"] == "u9"
    assert stored["read"] is False
    assert stored["payload"] == {"match_id": "x"}
    assert published[0].event_type == "notification.created"
    assert published[0].recipient_id == "u9"


@pytest.mark.asyncio
async def test_batch_commits_once(fake_db, published):
    batch = WriteBatch(source="test")
    batch.publish(_event("m1"))
    await batch.commit()
    with pytest.raises(RuntimeError):
        await batch.commit()
    assert len(published) == 1
