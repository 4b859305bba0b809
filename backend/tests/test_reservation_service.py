"""
backend/tests/test_reservation_service.py

Purpose:
    Owner confirmation creates the match in the same transaction; pending
    bookings can be withdrawn by the booker or declined by the owner.
"""

from __future__ import annotations

import pytest

from builders import as_user, notifications_for, seed_pitch, seed_reservation
from pitchside.errors import ConflictError, PermissionDenied
from pitchside.services import reservation_service

OWNER = "owner-1"


def _pending(fake_db, **extra) -> str:
    pitch_id = seed_pitch(fake_db, owner_id=OWNER)
    return seed_reservation(fake_db, pitch_id, actor_id="booker-1", status="Pending", actor_role="PLAYER", **extra)


@pytest.mark.asyncio
async def test_owner_confirmation_creates_match(fake_db, published):
    reservation_id = _pending(fake_db)

    response = await reservation_service.confirm_reservation(as_user(OWNER, "OWNER"), reservation_id)

    assert response.status.value == "Confirmed"
    assert response.match_id is not None
    assert fake_db.reservations.docs[0]["status"] == "Confirmed"
    [match] = fake_db.matches.docs
    assert str(match["_id"]) == response.match_id
    assert match["reservation_id"] == reservation_id
    assert match["team_a_players"] == ["booker-1"]
    assert match["status"] == "PendingOpponent"
    assert len(notifications_for(fake_db, "booker-1", "MatchCreated")) == 1
    assert [a["action"] for a in fake_db.audit_logs.docs] == ["RESERVATION_CONFIRMED"]

    with pytest.raises(ConflictError):
        await reservation_service.confirm_reservation(as_user(OWNER, "OWNER"), reservation_id)
    assert len(fake_db.matches.docs) == 1


@pytest.mark.asyncio
async def test_only_owner_or_admin_confirms(fake_db, published):
    reservation_id = _pending(fake_db)
    with pytest.raises(PermissionDenied):
        await reservation_service.confirm_reservation(as_user("booker-1"), reservation_id)

    response = await reservation_service.confirm_reservation(as_user("admin-1", "ADMIN"), reservation_id)
    assert response.status.value == "Confirmed"


@pytest.mark.asyncio
async def test_owner_declines_and_booker_is_told(fake_db, published):
    reservation_id = _pending(fake_db)

    response = await reservation_service.cancel_reservation(as_user(OWNER, "OWNER"), reservation_id)

    assert response.status.value == "Canceled"
    assert fake_db.matches.docs == []
    [notice] = notifications_for(fake_db, "booker-1")
    assert "declined" in notice["message"]


@pytest.mark.asyncio
async def test_booker_withdraws_silently(fake_db, published):
    reservation_id = _pending(fake_db)
    await reservation_service.cancel_reservation(as_user("booker-1"), reservation_id)
    assert fake_db.reservations.docs[0]["status"] == "Canceled"
    assert fake_db.notifications.docs == []

    with pytest.raises(PermissionDenied):
        await reservation_service.cancel_reservation(as_user("stranger"), reservation_id)


@pytest.mark.asyncio
async def test_list_attaches_match_ids(fake_db, published):
    reservation_id = _pending(fake_db)
    await reservation_service.confirm_reservation(as_user(OWNER, "OWNER"), reservation_id)

    owner_view = await reservation_service.list_reservations(as_user(OWNER, "OWNER"))
    booker_view = await reservation_service.list_reservations(as_user("booker-1"))

    match_id = str(fake_db.matches.docs[0]["_id"])
    assert [r["match_id"] for r in owner_view] == [match_id]
    assert [r["match_id"] for r in booker_view] == [match_id]
    assert await reservation_service.list_reservations(as_user("stranger")) == []
