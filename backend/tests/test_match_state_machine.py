"""
backend/tests/test_match_state_machine.py

Purpose:
    Guarded transitions of the match lifecycle: kickoff preconditions,
    practice auto-shuffle, finalize statistics (exactly once), the cancel
    cascade, split and settings updates, and match creation from a
    confirmed reservation.
"""

from __future__ import annotations

import random

import pytest

from builders import (
    as_user,
    event_doc,
    match_doc,
    notifications_for,
    seed_match,
    seed_pitch,
    seed_players,
    seed_profiles,
    seed_reservation,
    seed_team,
)
from pitchside.errors import CapacityViolation, ConflictError, PermissionDenied, ValidationError
from pitchside.models.match import MatchSettingsUpdate, RosterSplitUpdate
from pitchside.services import match_service
from pitchside.services.snapshot_service import load_reservation
from pitchside.services.write_batch import WriteBatch


MANAGER = "manager-1"


def _setup(fake_db, *, players: int = 10, payment_status: str = "Paid", **pitch_extra):
    pitch_id = seed_pitch(fake_db, **pitch_extra)
    reservation_id = seed_reservation(fake_db, pitch_id, actor_id=MANAGER, payment_status=payment_status)
    roster = seed_players(fake_db, players)
    match_id = seed_match(
        fake_db,
        pitch_id=pitch_id,
        manager_id=MANAGER,
        reservation_id=reservation_id,
        status="Scheduled",
        team_a_players=roster,
    )
    return match_id, reservation_id, roster


# ---------- Start ----------

@pytest.mark.asyncio
async def test_start_rejects_short_roster_and_leaves_status(fake_db, published):
    match_id, _, _ = _setup(fake_db, players=8)
    with pytest.raises(CapacityViolation):
        await match_service.start_match(as_user(MANAGER, "MANAGER"), match_id)
    assert match_doc(fake_db, match_id)["status"] == "Scheduled"
    assert published == []


@pytest.mark.asyncio
async def test_start_with_full_paid_roster_goes_live_and_shuffles_practice(fake_db, published):
    match_id, _, roster = _setup(fake_db)
    match = await match_service.start_match(as_user(MANAGER, "MANAGER"), match_id, rng=random.Random(7))

    assert match.status.value == "InProgress"
    assert match.started_at is not None
    assert len(match.team_a_players) == 5 and len(match.team_b_players) == 5
    assert sorted(match.confirmed_players) == sorted(roster)
    assert match.version == 1
    assert published[-1].new_status == "InProgress"


@pytest.mark.asyncio
async def test_start_keeps_saved_split(fake_db, published):
    match_id, _, roster = _setup(fake_db)
    fake_db.matches.docs[0].update({"team_a_players": roster[:6], "team_b_players": roster[6:], "roster_split_saved": True})

    match = await match_service.start_match(as_user(MANAGER, "MANAGER"), match_id)
    assert match.team_a_players == roster[:6]


@pytest.mark.asyncio
async def test_start_requires_payment_unless_pitch_allows_paying_later(fake_db, published):
    match_id, reservation_id, roster = _setup(fake_db, payment_status="Split")
    fake_db.payments.docs.append(
        {"_id": "pay-1", "payer_id": roster[0], "reservation_id": reservation_id, "type": "booking_split", "status": "Pending", "amount": 10.0}
    )
    with pytest.raises(CapacityViolation):
        await match_service.start_match(as_user(MANAGER, "MANAGER"), match_id)

    fake_db.pitches.docs[0]["allow_post_game_payments"] = True
    match = await match_service.start_match(as_user(MANAGER, "MANAGER"), match_id)
    assert match.status.value == "InProgress"
    assert fake_db.reservations.docs[0]["payment_status"] == "Split"


@pytest.mark.asyncio
async def test_start_settles_split_whose_shares_are_all_paid(fake_db, published):
    match_id, reservation_id, roster = _setup(fake_db, payment_status="Split")
    fake_db.payments.docs.extend([
        {"_id": "pay-m", "payer_id": MANAGER, "reservation_id": reservation_id, "type": "booking", "status": "Paid", "amount": 100.0, "match_id": match_id},
        *(
            {"_id": f"pay-{n}", "payer_id": pid, "reservation_id": reservation_id, "type": "booking_split", "status": "Paid", "amount": 10.0}
            for n, pid in enumerate(roster)
        ),
    ])

    match = await match_service.start_match(as_user(MANAGER, "MANAGER"), match_id)

    assert match.status.value == "InProgress"
    assert (await load_reservation(reservation_id)).payment_status.value == "Paid"
    assert len(notifications_for(fake_db, MANAGER, "PaymentCompleted")) == 1


@pytest.mark.asyncio
async def test_only_manager_can_start(fake_db, published):
    match_id, _, _ = _setup(fake_db)
    with pytest.raises(PermissionDenied):
        await match_service.start_match(as_user("someone-else"), match_id)


def test_shuffle_sides_gives_extra_player_to_side_a():
    side_a, side_b = match_service.shuffle_sides(["p1", "p2", "p3", "p4", "p5"], random.Random(1))
    assert len(side_a) == 3 and len(side_b) == 2
    assert sorted(side_a + side_b) == ["p1", "p2", "p3", "p4", "p5"]


# ---------- Finalize ----------

def _team_match(fake_db):
    pitch_id = seed_pitch(fake_db)
    side_a = seed_players(fake_db, 5, prefix="Home")
    side_b = seed_players(fake_db, 5, prefix="Away")
    team_a = seed_team(fake_db, "Home FC", MANAGER, side_a, recent_form=["L", "L", "D", "D", "W"])
    team_b = seed_team(fake_db, "Away FC", "manager-2", side_b)
    seed_profiles(fake_db, side_a + side_b)
    events = [
        event_doc(side_a[0], "Goal", "A", 5),
        event_doc(side_a[1], "Assist", "A", 5),
        event_doc(side_a[0], "Goal", "A", 17),
        event_doc(side_b[0], "Goal", "B", 21),
        event_doc(side_a[2], "Goal", "A", 33),
        event_doc(side_b[1], "YellowCard", "B", 35),
    ]
    match_id = seed_match(
        fake_db,
        pitch_id=pitch_id,
        manager_id=MANAGER,
        status="InProgress",
        team_a_id=team_a,
        team_b_id=team_b,
        team_a_players=side_a,
        team_b_players=side_b,
        events=events,
        score_a=3,
        score_b=1,
    )
    return match_id, team_a, team_b, side_a, side_b


def _profile(fake_db, player_id):
    return next(p for p in fake_db.player_profiles.docs if p["user_ref"] == player_id)


def _team(fake_db, team_id):
    return next(t for t in fake_db.teams.docs if str(t["_id"]) == team_id)


@pytest.mark.asyncio
async def test_finalize_propagates_results_once(fake_db, published):
    match_id, team_a, team_b, side_a, side_b = _team_match(fake_db)

    report = await match_service.finalize_match(as_user(MANAGER, "MANAGER"), match_id)

    assert (report.scoreboard.score_a, report.scoreboard.score_b) == (3, 1)
    assert report.mvp_player_id == side_a[0]
    stored = match_doc(fake_db, match_id)
    assert stored["status"] == "Finished"
    assert stored["mvp_player_id"] == side_a[0]

    scorer = _profile(fake_db, side_a[0])
    assert scorer["goals"] == 2 and scorer["victories"] == 1 and scorer["mvps"] == 1
    assert _profile(fake_db, side_a[1])["assists"] == 1
    loser = _profile(fake_db, side_b[1])
    assert loser["defeats"] == 1 and loser["yellow_cards"] == 1 and loser["recent_form"] == ["L"]

    assert _team(fake_db, team_a)["wins"] == 1
    assert _team(fake_db, team_a)["recent_form"] == ["L", "D", "D", "W", "W"]
    assert _team(fake_db, team_b)["losses"] == 1
    assert "match.finalized" in [e.event_type for e in published]

    with pytest.raises(ConflictError):
        await match_service.finalize_match(as_user(MANAGER, "MANAGER"), match_id)
    assert _profile(fake_db, side_a[0])["goals"] == 2
    assert _team(fake_db, team_a)["wins"] == 1


@pytest.mark.asyncio
async def test_finalize_requires_running_match(fake_db, published):
    match_id, _, _ = _setup(fake_db)
    with pytest.raises(ConflictError):
        await match_service.finalize_match(as_user(MANAGER, "MANAGER"), match_id)


@pytest.mark.asyncio
async def test_finalize_practice_match_skips_team_stats(fake_db, published):
    match_id, _, roster = _setup(fake_db)
    team_id = seed_team(fake_db, "Solo", MANAGER, roster)
    fake_db.matches.docs[0].update({
        "status": "InProgress",
        "team_a_id": team_id,
        "team_a_players": roster[:5],
        "team_b_players": roster[5:],
        "events": [event_doc(roster[5], "Goal", "B", 3)],
    })

    await match_service.finalize_match(as_user(MANAGER, "MANAGER"), match_id)

    team = _team(fake_db, team_id)
    assert (team["wins"], team["losses"], team["draws"]) == (0, 0, 0)


# ---------- Cancel ----------

@pytest.mark.asyncio
async def test_delete_refunds_paid_and_cancels_pending_shares(fake_db, published):
    match_id, reservation_id, roster = _setup(fake_db, payment_status="Split")
    fake_db.payments.docs.extend([
        {"_id": "pay-m", "payer_id": MANAGER, "reservation_id": reservation_id, "type": "booking", "status": "Paid", "amount": 100.0},
        {"_id": "pay-1", "payer_id": roster[0], "reservation_id": reservation_id, "type": "booking_split", "status": "Paid", "amount": 10.0},
        {"_id": "pay-2", "payer_id": roster[1], "reservation_id": reservation_id, "type": "booking_split", "status": "Pending", "amount": 10.0},
    ])
    fake_db.match_invitations.docs.append({"_id": "inv-1", "match_id": match_id, "player_id": "x", "status": "pending"})

    notified = await match_service.delete_match(as_user(MANAGER, "MANAGER"), match_id)

    statuses = {p["_id"]: p["status"] for p in fake_db.payments.docs}
    assert statuses == {"pay-m": "Refunded", "pay-1": "Refunded", "pay-2": "Cancelled"}
    assert sorted(notified) == sorted([MANAGER, roster[0], roster[1]])
    for user_id in notified:
        assert len(notifications_for(fake_db, user_id, "MatchCancelled")) == 1
    assert fake_db.matches.docs == []
    assert fake_db.reservations.docs == []
    assert fake_db.match_invitations.docs == []
    assert published[-1].event_type == "match.cancelled"


@pytest.mark.asyncio
async def test_delete_rejects_paid_booking(fake_db, published):
    match_id, _, _ = _setup(fake_db, payment_status="Paid")
    with pytest.raises(CapacityViolation):
        await match_service.delete_match(as_user(MANAGER, "MANAGER"), match_id)
    assert len(fake_db.matches.docs) == 1
    assert fake_db.notifications.docs == []


@pytest.mark.asyncio
async def test_delete_refunds_paid_booking_when_pitch_allows_it(fake_db, published):
    match_id, reservation_id, roster = _setup(fake_db, payment_status="Paid", allow_cancellations_after_payment=True)
    fake_db.payments.docs.append(
        {"_id": "pay-m", "payer_id": MANAGER, "reservation_id": reservation_id, "type": "booking", "status": "Paid", "amount": 100.0}
    )
    fake_db.payments.docs.extend(
        {"_id": f"pay-{n}", "payer_id": pid, "reservation_id": reservation_id, "type": "booking_split", "status": "Paid", "amount": 10.0}
        for n, pid in enumerate(roster)
    )

    notified = await match_service.delete_match(as_user(MANAGER, "MANAGER"), match_id)

    assert len(fake_db.payments.docs) == 11
    assert {p["status"] for p in fake_db.payments.docs} == {"Refunded"}
    assert sorted(notified) == sorted([MANAGER, *roster])
    assert fake_db.matches.docs == []
    assert fake_db.reservations.docs == []


@pytest.mark.asyncio
async def test_delete_declines_pending_challenges(fake_db, published):
    match_id, _, _ = _setup(fake_db, payment_status="Pending")
    fake_db.notifications.docs.append({
        "_id": "ch-1",
        "recipient_id": MANAGER,
        "type": "Challenge",
        "status": "pending",
        "payload": {"match_id": match_id},
    })

    await match_service.delete_match(as_user(MANAGER, "MANAGER"), match_id)

    challenge = next(n for n in fake_db.notifications.docs if n["_id"] == "ch-1")
    assert challenge["status"] == "declined"


# ---------- Split / settings ----------

@pytest.mark.asyncio
async def test_split_must_partition_confirmed_players(fake_db, published):
    match_id, _, roster = _setup(fake_db, players=4)
    manager = as_user(MANAGER, "MANAGER")

    with pytest.raises(ValidationError):
        await match_service.save_roster_split(manager, match_id, RosterSplitUpdate(team_a_players=roster[:2], team_b_players=roster[1:3]))
    with pytest.raises(ValidationError):
        await match_service.save_roster_split(manager, match_id, RosterSplitUpdate(team_a_players=roster[:2], team_b_players=["stranger"]))

    match = await match_service.save_roster_split(
        manager, match_id, RosterSplitUpdate(team_a_players=roster[:2], team_b_players=roster[2:], expected_version=0)
    )
    assert match.roster_split_saved is True
    assert match.team_b_players == roster[2:]

    with pytest.raises(ConflictError):
        await match_service.save_roster_split(
            manager, match_id, RosterSplitUpdate(team_a_players=roster[2:], team_b_players=roster[:2], expected_version=0)
        )


@pytest.mark.asyncio
async def test_split_only_for_practice_matches(fake_db, published):
    match_id, _, roster = _setup(fake_db, players=4)
    fake_db.matches.docs[0]["team_b_id"] = "team-b"
    with pytest.raises(ValidationError):
        await match_service.save_roster_split(
            as_user(MANAGER, "MANAGER"), match_id, RosterSplitUpdate(team_a_players=roster[:2], team_b_players=roster[2:])
        )


@pytest.mark.asyncio
async def test_settings_validation(fake_db, published):
    match_id, _, _ = _setup(fake_db)
    manager = as_user(MANAGER, "MANAGER")

    with pytest.raises(ValidationError):
        await match_service.update_match_settings(manager, match_id, MatchSettingsUpdate(allow_challenges=True))

    match = await match_service.update_match_settings(manager, match_id, MatchSettingsUpdate(allow_external_players=False))
    assert match.allow_external_players is False

    fake_db.matches.docs[0]["status"] = "InProgress"
    with pytest.raises(ConflictError):
        await match_service.update_match_settings(manager, match_id, MatchSettingsUpdate(allow_external_players=True))


# ---------- Create ----------

@pytest.mark.asyncio
async def test_team_booking_creates_match_and_invites_members(fake_db, published):
    pitch_id = seed_pitch(fake_db)
    members = seed_players(fake_db, 3)
    team_id = seed_team(fake_db, "Home FC", MANAGER, [MANAGER] + members)
    reservation_id = seed_reservation(fake_db, pitch_id, actor_id=MANAGER, team_id=team_id)
    reservation = await load_reservation(reservation_id)

    batch = WriteBatch(source="test")
    match_oid = await match_service.stage_match_creation(batch, reservation)
    await batch.commit()

    match = match_doc(fake_db, str(match_oid))
    assert match["team_a_id"] == team_id
    assert match["allow_challenges"] is True
    assert match["team_a_players"] == []
    assert sorted(i["player_id"] for i in fake_db.match_invitations.docs) == sorted(members)
    for player_id in members:
        assert len(notifications_for(fake_db, player_id, "MatchInvitation")) == 1
    assert len(notifications_for(fake_db, MANAGER, "MatchCreated")) == 1
    assert "match.created" in [e.event_type for e in published]


@pytest.mark.asyncio
async def test_player_booking_starts_pickup_game(fake_db, published):
    pitch_id = seed_pitch(fake_db)
    reservation_id = seed_reservation(fake_db, pitch_id, actor_id="player-1", actor_role="PLAYER")
    reservation = await load_reservation(reservation_id)

    batch = WriteBatch(source="test")
    match_oid = await match_service.stage_match_creation(batch, reservation)
    await batch.commit()

    match = match_doc(fake_db, str(match_oid))
    assert match["team_a_players"] == ["player-1"]
    assert match["manager_id"] == "player-1"
    assert match["allow_challenges"] is False
