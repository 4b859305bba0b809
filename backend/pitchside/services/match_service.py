"""
backend/pitchside/services/match_service.py

Purpose:
    Match state machine. Owns Match.status and its guarded transitions:

        PendingOpponent -> Scheduled -> InProgress -> Finished
        (any state before Finished) -> Cancelled (hard delete + settlement cascade)

    Every command reads a snapshot, validates its preconditions against it
    and commits through a WriteBatch whose match update is pinned to the
    snapshot version. Finalize aggregates the event log into player and team
    statistics in the same transaction as the status change, so a retried
    finalize can never count twice.

Dependencies:
    - pitchside.services.write_batch
    - pitchside.services.match_event_service
    - pitchside.services.settlement_service
"""

from __future__ import annotations

import logging
import random
from typing import Optional

from bson import ObjectId
from fastapi import Request

import pitchside.database as _db
from pitchside.errors import CapacityViolation, ConflictError, PermissionDenied, ValidationError
from pitchside.models.common import to_object_id
from pitchside.models.match import (
    PRE_START_STATUSES,
    MatchInDB,
    MatchReport,
    MatchSettingsUpdate,
    MatchStatus,
    RosterSplitUpdate,
)
from pitchside.models.notification import NotificationType
from pitchside.models.payment import ReservationInDB, ReservationPaymentStatus
from pitchside.models.pitch import player_capacity
from pitchside.models.roster import ChallengeStatus, InvitationStatus
from pitchside.models.team import RECENT_FORM_LENGTH, MatchResult
from pitchside.services.audit_service import log_audit
from pitchside.services.event_models import (
    MatchCancelledEvent,
    MatchCreatedEvent,
    MatchFinalizedEvent,
    MatchUpdatedEvent,
)
from pitchside.services.match_event_service import (
    aggregate_player_stats,
    compute_scoreboard,
    pick_mvp,
)
from pitchside.services.settlement_service import reconcile_reservation, stage_cancellation
from pitchside.services.snapshot_service import (
    STALE_MATCH,
    load_match,
    load_pitch,
    load_reservation,
    load_team,
    load_user_names,
    match_guard,
    versioned,
)
from pitchside.services.write_batch import WriteBatch
from pitchside.utils import format_match_day, utcnow

logger = logging.getLogger("pitchside.match_service")


def require_manager(session, match: MatchInDB) -> None:
    if match.manager_id != session.user_id:
        raise PermissionDenied("Only the match manager can do this.")


def require_pre_start(match: MatchInDB) -> None:
    if match.status.value not in PRE_START_STATUSES:
        raise ConflictError(f"Not possible once the match is {match.status.value}.")


def result_for(own: int, other: int) -> MatchResult:
    if own > other:
        return "W"
    if own < other:
        return "L"
    return "D"


def shuffle_sides(players: list[str], rng: Optional[random.Random] = None) -> tuple[list[str], list[str]]:
    """Random split into two halves; side A gets the extra player on odd counts."""
    pool = list(players)
    (rng or random).shuffle(pool)
    half = (len(pool) + 1) // 2
    return pool[:half], pool[half:]


def promotion_fields(match: MatchInDB, confirmed_after: int, capacity: int) -> dict:
    """$set fields promoting PendingOpponent -> Scheduled once the roster is full."""
    if match.status == MatchStatus.pending_opponent and capacity and confirmed_after >= capacity:
        return {"status": MatchStatus.scheduled.value}
    return {}


def match_updated(match: MatchInDB, *, new_status: Optional[str] = None, changed: list[str], source: str) -> MatchUpdatedEvent:
    return MatchUpdatedEvent(
        source=source,
        match_id=match.id,
        previous_status=match.status.value,
        new_status=new_status or match.status.value,
        changed_fields=changed,
    )


# ---------- Create ----------

async def stage_match_creation(batch: WriteBatch, reservation: ReservationInDB) -> ObjectId:
    """Stage the match a confirmed reservation starts with.

    Team booking: team A is the booking team, its members are invited.
    Player booking (pick-up game): the booking player is the first confirmed
    player on side A.
    """
    now = utcnow()
    day = format_match_day(reservation.date)
    team = await load_team(reservation.team_id) if reservation.team_id else None
    manager_id = team.manager_id if team else reservation.actor_id

    match_id = batch.insert("matches", {
        "date": reservation.date,
        "pitch_id": reservation.pitch_id,
        "reservation_id": reservation.id,
        "manager_id": manager_id,
        "status": MatchStatus.pending_opponent.value,
        "team_a_id": team.id if team else None,
        "team_b_id": None,
        "team_a_players": [] if team else [reservation.actor_id],
        "team_b_players": [],
        "player_applications": [],
        "allow_external_players": True,
        "allow_challenges": bool(team),
        "roster_split_saved": False,
        "events": [],
        "score_a": 0,
        "score_b": 0,
        "mvp_player_id": None,
        "started_at": None,
        "finished_at": None,
        "version": 0,
        "created_at": now,
        "updated_at": now,
    })
    link = f"/matches/{match_id}"
    batch.notify(
        manager_id,
        f"Your booking at {reservation.pitch_name or 'the pitch'} on {day} is confirmed.",
        link,
        type=NotificationType.match_created.value,
        payload={"match_id": str(match_id)},
    )
    if team:
        for player_id in team.player_ids:
            if player_id == manager_id:
                continue
            invitation_id = batch.insert("match_invitations", {
                "match_id": str(match_id),
                "team_id": team.id,
                "player_id": player_id,
                "manager_id": manager_id,
                "status": InvitationStatus.pending.value,
                "invited_at": now,
                "responded_at": None,
            })
            batch.notify(
                player_id,
                f"{team.name} invited you to play on {day}.",
                link,
                type=NotificationType.match_invitation.value,
                payload={"match_id": str(match_id), "invitation_id": str(invitation_id)},
            )
    batch.publish(
        MatchCreatedEvent(
            source="match_service",
            match_id=str(match_id),
            reservation_id=reservation.id,
            status=MatchStatus.pending_opponent.value,
        )
    )
    return match_id


# ---------- Settings / split ----------

async def update_match_settings(session, match_id: str, body: MatchSettingsUpdate) -> MatchInDB:
    match = await load_match(match_id)
    require_manager(session, match)
    require_pre_start(match)

    fields: dict = {}
    if body.allow_external_players is not None:
        fields["allow_external_players"] = body.allow_external_players
    if body.allow_challenges is not None:
        if body.allow_challenges and (match.team_a_id is None or match.team_b_id is not None):
            raise ValidationError("Challenges are only possible for a team match without an opponent.")
        fields["allow_challenges"] = body.allow_challenges
    if not fields:
        return match

    batch = WriteBatch(source="match_service.update_settings")
    batch.update("matches", match_guard(match), versioned({"$set": fields}), guard=STALE_MATCH)
    batch.publish(match_updated(match, changed=sorted(fields), source="match_service"))
    await batch.commit()
    return await load_match(match_id)


async def save_roster_split(session, match_id: str, body: RosterSplitUpdate) -> MatchInDB:
    """Overwrite the A/B split of a practice match.

    The split must be a disjoint partition of exactly the confirmed players.
    Without expected_version the overwrite is last-write-wins.
    """
    match = await load_match(match_id)
    require_manager(session, match)
    require_pre_start(match)
    if not match.is_practice:
        raise ValidationError("Sides can only be arranged for a practice match.")

    side_a, side_b = list(body.team_a_players), list(body.team_b_players)
    if len(set(side_a)) != len(side_a) or len(set(side_b)) != len(side_b):
        raise ValidationError("A player is listed twice.")
    if set(side_a) & set(side_b):
        raise ValidationError("A player cannot be on both sides.")
    if set(side_a) | set(side_b) != set(match.confirmed_players):
        raise ValidationError("The split must contain exactly the confirmed players.")

    query: dict = {"_id": to_object_id(match.id), "status": {"$in": list(PRE_START_STATUSES)}}
    if body.expected_version is not None:
        query["version"] = body.expected_version

    batch = WriteBatch(source="match_service.save_split")
    batch.update(
        "matches",
        query,
        versioned({"$set": {"team_a_players": side_a, "team_b_players": side_b, "roster_split_saved": True}}),
        guard=STALE_MATCH,
    )
    batch.publish(match_updated(match, changed=["team_a_players", "team_b_players"], source="match_service"))
    await batch.commit()
    return await load_match(match_id)


# ---------- Start ----------

async def start_match(session, match_id: str, *, rng: Optional[random.Random] = None, request: Optional[Request] = None) -> MatchInDB:
    match = await load_match(match_id)
    require_manager(session, match)
    require_pre_start(match)

    pitch = await load_pitch(match.pitch_id)
    capacity = player_capacity(pitch.sport)
    confirmed = match.confirmed_players
    if not capacity or len(confirmed) < capacity:
        logger.warning("Start of match %s rejected: %d/%d players", match.id, len(confirmed), capacity)
        raise CapacityViolation(f"{capacity} confirmed players are needed to start; {len(confirmed)} confirmed.")

    paid = False
    if match.reservation_id:
        reservation = await load_reservation(match.reservation_id)
        paid = reservation.payment_status == ReservationPaymentStatus.paid
        if reservation.payment_status == ReservationPaymentStatus.split:
            # Every share may be paid without the reservation having caught up yet.
            paid = await reconcile_reservation(reservation.id)
    if not paid and not pitch.allow_post_game_payments:
        logger.warning("Start of match %s rejected: booking unpaid", match.id)
        raise CapacityViolation("The booking must be paid before kickoff.")

    now = utcnow()
    fields: dict = {"status": MatchStatus.in_progress.value, "started_at": now}
    changed = ["status", "started_at"]
    if match.is_practice and not match.roster_split_saved and (not match.team_a_players or not match.team_b_players):
        side_a, side_b = shuffle_sides(confirmed, rng)
        fields.update({"team_a_players": side_a, "team_b_players": side_b})
        changed += ["team_a_players", "team_b_players"]

    batch = WriteBatch(source="match_service.start")
    batch.update("matches", match_guard(match), versioned({"$set": fields}), guard=STALE_MATCH)
    batch.publish(match_updated(match, new_status=MatchStatus.in_progress.value, changed=changed, source="match_service"))
    await batch.commit()

    await log_audit(actor_id=session.user_id, target_id=match.id, action="MATCH_STARTED", request=request)
    logger.info("Match %s started with %d players", match.id, len(confirmed))
    return await load_match(match_id)


# ---------- Finalize ----------

async def finalize_match(session, match_id: str, request: Optional[Request] = None) -> MatchReport:
    """End the game: freeze the score from the event log and propagate stats."""
    match = await load_match(match_id)
    require_manager(session, match)
    if match.status != MatchStatus.in_progress:
        raise ConflictError("Only a match in progress can be finalized.")

    board = compute_scoreboard(match.events)
    result_a = result_for(board.score_a, board.score_b)
    result_b = result_for(board.score_b, board.score_a)
    names = await load_user_names(match.confirmed_players)
    lines = aggregate_player_stats(match, names)
    mvp_id = pick_mvp(lines)
    now = utcnow()

    batch = WriteBatch(source="match_service.finalize")
    batch.update(
        "matches",
        match_guard(match, status=MatchStatus.in_progress.value),
        versioned({"$set": {
            "status": MatchStatus.finished.value,
            "score_a": board.score_a,
            "score_b": board.score_b,
            "mvp_player_id": mvp_id,
            "finished_at": now,
        }}),
        guard="The match was already finalized or changed. Reload and try again.",
    )

    roster = match.confirmed_players
    profiles = await _db.db.player_profiles.find({"user_ref": {"$in": roster}}).to_list(length=len(roster) or 1)
    with_profile = set()
    for profile in profiles:
        player_id = str(profile["user_ref"])
        side = match.side_of(player_id)
        if side is None:
            continue
        with_profile.add(player_id)
        result = result_a if side == "A" else result_b
        line = lines[player_id]
        inc = {
            "goals": line.goals,
            "assists": line.assists,
            "yellow_cards": line.yellow_cards,
            "red_cards": line.red_cards,
            "victories": int(result == "W"),
            "defeats": int(result == "L"),
            "draws": int(result == "D"),
        }
        if player_id == mvp_id:
            inc["mvps"] = 1
        batch.update(
            "player_profiles",
            {"_id": profile["_id"]},
            {"$inc": inc, "$push": {"recent_form": {"$each": [result], "$slice": -RECENT_FORM_LENGTH}}},
        )
    missing = sorted(set(roster) - with_profile)
    if missing:
        logger.info("Match %s: no profile for %s, stats skipped", match.id, missing)

    if match.team_a_id and match.team_b_id and match.team_a_id != match.team_b_id:
        for team_id, result in ((match.team_a_id, result_a), (match.team_b_id, result_b)):
            batch.update(
                "teams",
                {"_id": to_object_id(team_id, what="Team")},
                {
                    "$inc": {"wins": int(result == "W"), "losses": int(result == "L"), "draws": int(result == "D")},
                    "$push": {"recent_form": {"$each": [result], "$slice": -RECENT_FORM_LENGTH}},
                },
            )

    batch.publish(
        MatchFinalizedEvent(
            source="match_service",
            match_id=match.id,
            final_score={"A": board.score_a, "B": board.score_b},
            mvp_player_id=mvp_id,
        )
    )
    await batch.commit()

    await log_audit(
        actor_id=session.user_id,
        target_id=match.id,
        action="MATCH_FINALIZED",
        metadata={"score_a": board.score_a, "score_b": board.score_b, "mvp": mvp_id},
        request=request,
    )
    logger.info("Match %s finalized %d:%d", match.id, board.score_a, board.score_b)
    return MatchReport(
        match_id=match.id,
        status=MatchStatus.finished,
        scoreboard=board,
        players=sorted(lines.values(), key=lambda l: (-l.mvp_score, l.player_id)),
        mvp_player_id=mvp_id,
        finished_at=now,
    )


# ---------- Cancel ----------

async def delete_match(session, match_id: str, request: Optional[Request] = None) -> list[str]:
    """Cancel a match before it finished: settle payments and remove its records.

    Returns the ids of the users who were notified.
    """
    match = await load_match(match_id)
    require_manager(session, match)
    if match.status in (MatchStatus.finished, MatchStatus.cancelled):
        raise ConflictError(f"Not possible once the match is {match.status.value}.")

    batch = WriteBatch(source="match_service.delete")
    notified: list[str] = []
    if match.reservation_id:
        reservation = await load_reservation(match.reservation_id)
        if reservation.payment_status == ReservationPaymentStatus.paid:
            pitch = await load_pitch(match.pitch_id)
            if not pitch.allow_cancellations_after_payment:
                raise CapacityViolation("A fully paid match cannot be cancelled.")
        notified = await stage_cancellation(batch, match, reservation)
    elif match.manager_id:
        batch.notify(
            match.manager_id,
            f"The game on {format_match_day(match.date)} has been cancelled.",
            "/matches",
            type=NotificationType.match_cancelled.value,
            payload={"match_id": match.id},
        )
        notified = [match.manager_id]

    batch.delete_many("match_invitations", {"match_id": match.id})
    batch.update_many(
        "notifications",
        {"type": NotificationType.challenge.value, "status": ChallengeStatus.pending.value, "payload.match_id": match.id},
        {"$set": {"status": ChallengeStatus.declined.value}},
    )
    batch.delete("matches", match_guard(match), guard=STALE_MATCH)
    batch.publish(
        MatchCancelledEvent(
            source="match_service",
            match_id=match.id,
            reservation_id=match.reservation_id,
            participant_ids=sorted(set(match.confirmed_players) | set(notified)),
        )
    )
    await batch.commit()

    await log_audit(
        actor_id=session.user_id,
        target_id=match.id,
        action="MATCH_CANCELLED",
        metadata={"reservation_id": match.reservation_id, "notified": len(notified)},
        request=request,
    )
    logger.info("Match %s cancelled by %s", match.id, session.user_id)
    return notified


# ---------- Reads ----------

async def get_match(match_id: str) -> MatchInDB:
    return await load_match(match_id)


async def list_matches_for_session(session, status: Optional[str] = None, limit: int = 50) -> list[dict]:
    query: dict = {
        "$or": [
            {"manager_id": session.user_id},
            {"team_a_players": session.user_id},
            {"team_b_players": session.user_id},
        ]
    }
    if status:
        query["status"] = status
    return await _db.db.matches.find(query).sort("date", -1).to_list(length=limit)
