"""
backend/pitchside/services/roster_service.py

Purpose:
    Roster assembly engine. Three intake channels feed one confirmed
    two-sided roster:

      1. direct invitation (manager -> known player, player responds)
      2. open application (player applies, manager responds)
      3. team challenge (manager -> match manager; on acceptance the
         challenger becomes team B and all its members are invited)

    Acceptances are written against the match version read in the snapshot,
    so two acceptances racing for the last slot cannot both commit. Every
    change that affects another user notifies that user in the same batch.

Dependencies:
    - pitchside.services.write_batch
    - pitchside.services.match_service (promotion rule)
"""

from __future__ import annotations

import logging
from typing import Optional

from pymongo.errors import PyMongoError

import pitchside.database as _db
from pitchside.errors import CapacityViolation, ConflictError, NotFoundError, PermissionDenied, ValidationError
from pitchside.models.common import to_object_id
from pitchside.models.match import MatchInDB, MatchStatus, TeamSide
from pitchside.models.notification import NotificationType
from pitchside.models.payment import PaymentStatus, PaymentType
from pitchside.models.pitch import player_capacity
from pitchside.models.roster import (
    ChallengePayload,
    ChallengeResponse,
    ChallengeStatus,
    InvitationCreate,
    InvitationStatus,
    RosterEntry,
    RosterEntryStatus,
    RosterPayment,
    RosterPlayer,
    RosterView,
)
from pitchside.services.match_service import match_updated, promotion_fields, require_manager, require_pre_start
from pitchside.services.snapshot_service import (
    STALE_MATCH,
    load_match,
    load_pitch,
    load_team,
    load_user_names,
    match_guard,
    versioned,
)
from pitchside.services.write_batch import WriteBatch
from pitchside.utils import format_match_day, utcnow

logger = logging.getLogger("pitchside.roster_service")

ROSTER_FULL = "The roster is full."


def _side_field(side: TeamSide) -> str:
    return "team_a_players" if side == "A" else "team_b_players"


def _side_for_team(match: MatchInDB, team_id: Optional[str]) -> TeamSide:
    if team_id and team_id == match.team_b_id:
        return "B"
    return "A"


def _match_link(match: MatchInDB) -> str:
    return f"/matches/{match.id}"


async def _capacity(match: MatchInDB) -> int:
    pitch = await load_pitch(match.pitch_id)
    return player_capacity(pitch.sport)


def _ensure_room(match: MatchInDB, capacity: int) -> None:
    if len(match.confirmed_players) >= capacity:
        raise CapacityViolation(ROSTER_FULL)


def _stage_join(batch: WriteBatch, match: MatchInDB, player_id: str, side: TeamSide, capacity: int) -> Optional[str]:
    """Stage a version-guarded add to one side; returns the new status if promoted."""
    promotion = promotion_fields(match, len(match.confirmed_players) + 1, capacity)
    batch.update(
        "matches",
        match_guard(match),
        versioned({
            "$addToSet": {_side_field(side): player_id},
            "$pull": {"player_applications": player_id},
            "$set": promotion,
        }),
        guard=STALE_MATCH,
    )
    changed = [_side_field(side)] + (["status"] if promotion else [])
    batch.publish(match_updated(match, new_status=promotion.get("status"), changed=changed, source="roster_service"))
    if promotion:
        logger.info("Match %s scheduled: roster reached %d", match.id, capacity)
    return promotion.get("status")


async def _discard_corrupted_challenge(doc: dict) -> None:
    """Best-effort removal of a challenge record without a usable payload."""
    try:
        await _db.db.notifications.delete_one({"_id": doc["_id"]})
        logger.warning("Deleted corrupted challenge %s", doc["_id"])
    except PyMongoError:
        logger.warning("Could not delete corrupted challenge %s", doc.get("_id"), exc_info=True)


# ---------- Direct invitation ----------

async def invite_player(session, match_id: str, body: InvitationCreate) -> dict:
    match = await load_match(match_id)
    require_pre_start(match)

    managed: set[Optional[str]] = set()
    if match.manager_id == session.user_id:
        managed.add(match.team_a_id)
    if match.team_b_id:
        team_b = await load_team(match.team_b_id)
        if team_b.manager_id == session.user_id:
            managed.add(match.team_b_id)
    if not managed:
        raise PermissionDenied("Only a manager of this match can invite players.")
    if body.team_id is not None:
        team_id = body.team_id
    else:
        team_id = match.team_a_id if match.manager_id == session.user_id else match.team_b_id
    if team_id not in managed:
        raise PermissionDenied("You can only invite players to your own team.")

    if match.side_of(body.player_id):
        raise ConflictError("Player is already on the roster.")
    existing = await _db.db.match_invitations.find_one({
        "match_id": match.id,
        "player_id": body.player_id,
        "status": InvitationStatus.pending.value,
    })
    if existing:
        raise ConflictError("Player already has a pending invitation.")
    _ensure_room(match, await _capacity(match))

    now = utcnow()
    invitation = {
        "match_id": match.id,
        "team_id": team_id,
        "player_id": body.player_id,
        "manager_id": session.user_id,
        "status": InvitationStatus.pending.value,
        "invited_at": now,
        "responded_at": None,
    }
    batch = WriteBatch(source="roster_service.invite")
    invitation["_id"] = batch.insert("match_invitations", invitation)
    batch.notify(
        body.player_id,
        f"You have been invited to play on {format_match_day(match.date)}.",
        _match_link(match),
        type=NotificationType.match_invitation.value,
        payload={"match_id": match.id, "invitation_id": str(invitation["_id"])},
    )
    await batch.commit()
    logger.info("Player %s invited to match %s", body.player_id, match.id)
    return invitation


async def respond_to_invitation(session, invitation_id: str, accept: bool) -> dict:
    doc = await _db.db.match_invitations.find_one({
        "_id": to_object_id(invitation_id, what="Invitation"),
        "player_id": session.user_id,
    })
    if not doc:
        raise NotFoundError("Invitation not found.")
    if doc.get("status") != InvitationStatus.pending.value:
        raise ConflictError("Invitation was already answered.")
    match = await load_match(doc["match_id"])
    require_pre_start(match)

    now = utcnow()
    new_status = InvitationStatus.accepted if accept else InvitationStatus.declined
    batch = WriteBatch(source="roster_service.respond_invitation")
    batch.update(
        "match_invitations",
        {"_id": doc["_id"], "status": InvitationStatus.pending.value},
        {"$set": {"status": new_status.value, "responded_at": now}},
        guard="Invitation was already answered.",
    )
    if accept:
        if match.side_of(session.user_id):
            raise ConflictError("You are already on the roster.")
        capacity = await _capacity(match)
        _ensure_room(match, capacity)
        _stage_join(batch, match, session.user_id, _side_for_team(match, doc.get("team_id")), capacity)

    verb = "accepted" if accept else "declined"
    batch.notify(
        doc["manager_id"],
        f"{session.name or 'A player'} {verb} your invitation for the game on {format_match_day(match.date)}.",
        _match_link(match),
        type=NotificationType.invitation_response.value,
        payload={"match_id": match.id, "invitation_id": str(doc["_id"]), "accepted": accept},
    )
    await batch.commit()
    logger.info("Invitation %s %s by %s", doc["_id"], verb, session.user_id)
    doc.update({"status": new_status.value, "responded_at": now})
    return doc


async def list_invitations_for_session(session, limit: int = 50) -> list[dict]:
    return await _db.db.match_invitations.find({
        "player_id": session.user_id,
        "status": InvitationStatus.pending.value,
    }).sort("invited_at", -1).to_list(length=limit)


# ---------- Open application ----------

async def apply_to_match(session, match_id: str) -> None:
    match = await load_match(match_id)
    require_pre_start(match)
    if not session.is_player:
        raise PermissionDenied("Only players can apply to a match.")
    if not match.allow_external_players:
        raise ConflictError("This match is not open for applications.")
    if match.side_of(session.user_id):
        raise ConflictError("You are already on the roster.")
    if session.user_id in match.player_applications:
        raise ConflictError("You have already applied to this match.")
    _ensure_room(match, await _capacity(match))

    batch = WriteBatch(source="roster_service.apply")
    batch.update(
        "matches",
        {
            "_id": to_object_id(match.id),
            "status": {"$in": [MatchStatus.pending_opponent.value, MatchStatus.scheduled.value]},
            "allow_external_players": True,
        },
        {"$addToSet": {"player_applications": session.user_id}, "$set": {"updated_at": utcnow()}},
        guard="This match is not open for applications.",
    )
    if match.manager_id:
        batch.notify(
            match.manager_id,
            f"{session.name or 'A player'} wants to join your game on {format_match_day(match.date)}.",
            _match_link(match),
            type=NotificationType.application.value,
            payload={"match_id": match.id, "player_id": session.user_id},
        )
    batch.publish(match_updated(match, changed=["player_applications"], source="roster_service"))
    await batch.commit()
    logger.info("Player %s applied to match %s", session.user_id, match.id)


async def respond_to_application(session, match_id: str, player_id: str, accept: bool) -> None:
    match = await load_match(match_id)
    require_manager(session, match)
    require_pre_start(match)
    if player_id not in match.player_applications:
        raise NotFoundError("Application not found.")

    day = format_match_day(match.date)
    batch = WriteBatch(source="roster_service.respond_application")
    if accept:
        if match.side_of(player_id):
            raise ConflictError("Player is already on the roster.")
        capacity = await _capacity(match)
        _ensure_room(match, capacity)
        _stage_join(batch, match, player_id, "A", capacity)
        message = f"You're in! You have been accepted for the game on {day}."
    else:
        batch.update(
            "matches",
            match_guard(match),
            versioned({"$pull": {"player_applications": player_id}}),
            guard=STALE_MATCH,
        )
        batch.publish(match_updated(match, changed=["player_applications"], source="roster_service"))
        message = f"Your request to join the game on {day} was not accepted."
    batch.notify(
        player_id,
        message,
        _match_link(match),
        type=NotificationType.application_response.value,
        payload={"match_id": match.id, "accepted": accept},
    )
    await batch.commit()
    logger.info("Application of %s to match %s %s", player_id, match.id, "accepted" if accept else "declined")


# ---------- Team challenge ----------

def _challenge_response(doc: dict, payload: ChallengePayload) -> ChallengeResponse:
    return ChallengeResponse(
        id=str(doc["_id"]),
        match_id=payload.match_id,
        challenger_team_id=payload.challenger_team_id,
        challenger_team_name=payload.challenger_team_name,
        challenger_manager_id=payload.challenger_manager_id,
        status=doc.get("status") or ChallengeStatus.pending.value,
        created_at=doc["created_at"],
    )


async def send_challenge(session, match_id: str, team_id: str) -> ChallengeResponse:
    team = await load_team(team_id)
    if team.manager_id != session.user_id:
        raise PermissionDenied("Only the team manager can send a challenge.")
    match = await load_match(match_id)
    require_pre_start(match)
    if match.team_a_id == team.id or match.manager_id == session.user_id:
        raise ValidationError("You cannot challenge your own match.")
    if not match.allow_challenges or match.team_b_id is not None:
        raise ConflictError("This match is not open for challenges.")
    if not match.manager_id:
        raise ValidationError("This match has no manager to challenge.")

    duplicate = await _db.db.notifications.find_one({
        "type": NotificationType.challenge.value,
        "status": ChallengeStatus.pending.value,
        "payload.match_id": match.id,
        "payload.challenger_team_id": team.id,
    })
    if duplicate:
        raise ConflictError("Your team already challenged this match.")

    payload = ChallengePayload(
        match_id=match.id,
        challenger_team_id=team.id,
        challenger_team_name=team.name,
        challenger_manager_id=session.user_id,
    )
    batch = WriteBatch(source="roster_service.challenge")
    challenge_id = batch.notify(
        match.manager_id,
        f"{team.name} wants to play against you on {format_match_day(match.date)}.",
        _match_link(match),
        type=NotificationType.challenge.value,
        payload=payload.model_dump(),
        status=ChallengeStatus.pending.value,
    )
    await batch.commit()
    logger.info("Team %s challenged match %s", team.id, match.id)
    return ChallengeResponse(
        id=str(challenge_id),
        status=ChallengeStatus.pending,
        created_at=utcnow(),
        **payload.model_dump(),
    )


async def list_challenges(session, match_id: str) -> list[ChallengeResponse]:
    """Pending challenges for a match; corrupted records are dropped on the way."""
    match = await load_match(match_id)
    require_manager(session, match)
    docs = await _db.db.notifications.find({
        "recipient_id": session.user_id,
        "type": NotificationType.challenge.value,
        "status": ChallengeStatus.pending.value,
    }).sort("created_at", 1).to_list(length=200)

    out: list[ChallengeResponse] = []
    for doc in docs:
        payload = ChallengePayload.parse(doc.get("payload"))
        if payload is None:
            await _discard_corrupted_challenge(doc)
            continue
        if payload.match_id == match.id:
            out.append(_challenge_response(doc, payload))
    return out


async def respond_to_challenge(session, challenge_id: str, accept: bool) -> ChallengeResponse:
    doc = await _db.db.notifications.find_one({
        "_id": to_object_id(challenge_id, what="Challenge"),
        "type": NotificationType.challenge.value,
    })
    if not doc:
        raise NotFoundError("Challenge not found.")
    payload = ChallengePayload.parse(doc.get("payload"))
    if payload is None:
        await _discard_corrupted_challenge(doc)
        raise ValidationError("Challenge payload is invalid.")
    if doc.get("status") != ChallengeStatus.pending.value:
        raise ConflictError("Challenge was already answered.")

    match = await load_match(payload.match_id)
    require_manager(session, match)
    day = format_match_day(match.date)
    link = _match_link(match)
    new_status = ChallengeStatus.accepted if accept else ChallengeStatus.declined

    batch = WriteBatch(source="roster_service.respond_challenge")
    batch.update(
        "notifications",
        {"_id": doc["_id"], "status": ChallengeStatus.pending.value},
        {"$set": {"status": new_status.value, "read": True}},
        guard="Challenge was already answered.",
    )

    if accept:
        require_pre_start(match)
        if match.team_b_id is not None or not match.allow_challenges:
            raise ConflictError("This match already has an opponent.")
        team = await load_team(payload.challenger_team_id)
        batch.update(
            "matches",
            match_guard(match),
            versioned({"$set": {
                "team_b_id": team.id,
                "allow_challenges": False,
                "status": MatchStatus.scheduled.value,
            }}),
            guard=STALE_MATCH,
        )
        batch.publish(
            match_updated(
                match,
                new_status=MatchStatus.scheduled.value,
                changed=["team_b_id", "allow_challenges", "status"],
                source="roster_service",
            )
        )

        already_invited = {
            row["player_id"]
            for row in await _db.db.match_invitations.find(
                {"match_id": match.id, "status": InvitationStatus.pending.value}
            ).to_list(length=200)
        }
        now = utcnow()
        invited = 0
        for member_id in team.player_ids:
            if match.side_of(member_id) or member_id in already_invited:
                continue
            invitation_id = batch.insert("match_invitations", {
                "match_id": match.id,
                "team_id": team.id,
                "player_id": member_id,
                "manager_id": team.manager_id,
                "status": InvitationStatus.pending.value,
                "invited_at": now,
                "responded_at": None,
            })
            batch.notify(
                member_id,
                f"{team.name} plays on {day}. You have been invited.",
                link,
                type=NotificationType.match_invitation.value,
                payload={"match_id": match.id, "invitation_id": str(invitation_id)},
            )
            invited += 1

        # Only one challenger can win the slot: decline the rest now.
        competing = await _db.db.notifications.find({
            "type": NotificationType.challenge.value,
            "status": ChallengeStatus.pending.value,
            "payload.match_id": match.id,
            "_id": {"$ne": doc["_id"]},
        }).to_list(length=200)
        for other in competing:
            batch.update(
                "notifications",
                {"_id": other["_id"], "status": ChallengeStatus.pending.value},
                {"$set": {"status": ChallengeStatus.declined.value, "read": True}},
            )
            other_payload = ChallengePayload.parse(other.get("payload"))
            if other_payload:
                batch.notify(
                    other_payload.challenger_manager_id,
                    f"Your challenge for the game on {day} was declined.",
                    link,
                    type=NotificationType.challenge_response.value,
                    payload={"match_id": match.id, "accepted": False},
                )
        logger.info("Challenge %s accepted: %d members invited, %d competing declined", doc["_id"], invited, len(competing))

    verb = "accepted" if accept else "declined"
    batch.notify(
        payload.challenger_manager_id,
        f"Your challenge for the game on {day} was {verb}.",
        link,
        type=NotificationType.challenge_response.value,
        payload={"match_id": match.id, "accepted": accept},
    )
    await batch.commit()
    doc["status"] = new_status.value
    return _challenge_response(doc, payload)


# ---------- Roster view ----------

async def get_roster(match_id: str) -> RosterView:
    """Resolved roster: confirmed players, then invitations, then applicants."""
    match = await load_match(match_id)
    capacity = await _capacity(match)
    invitations = await _db.db.match_invitations.find({"match_id": match.id}).sort("invited_at", 1).to_list(length=200)
    payments = await _db.db.payments.find({
        "match_id": match.id,
        "type": PaymentType.booking_split.value,
        "status": {"$in": [PaymentStatus.pending.value, PaymentStatus.paid.value]},
    }).to_list(length=200)
    names = await load_user_names(
        match.confirmed_players + match.player_applications + [i["player_id"] for i in invitations]
    )
    payment_by_player = {
        p["payer_id"]: RosterPayment(id=str(p["_id"]), status=p["status"], amount=p["amount"]) for p in payments
    }

    entries: list[RosterEntry] = []
    for player_id in match.confirmed_players:
        entries.append(RosterEntry(
            player=RosterPlayer(id=player_id, name=names.get(player_id, "")),
            status=RosterEntryStatus.confirmed,
            team=match.side_of(player_id),
            payment=payment_by_player.get(player_id),
        ))
    for invitation in invitations:
        player_id = invitation["player_id"]
        if match.side_of(player_id) or invitation.get("status") == InvitationStatus.accepted.value:
            continue
        status = (
            RosterEntryStatus.declined
            if invitation.get("status") == InvitationStatus.declined.value
            else RosterEntryStatus.invited
        )
        entries.append(RosterEntry(
            player=RosterPlayer(id=player_id, name=names.get(player_id, "")),
            status=status,
            team=_side_for_team(match, invitation.get("team_id")),
        ))
    for player_id in match.player_applications:
        entries.append(RosterEntry(
            player=RosterPlayer(id=player_id, name=names.get(player_id, "")),
            status=RosterEntryStatus.applied,
        ))
    return RosterView(
        match_id=match.id,
        capacity=capacity,
        confirmed_count=len(match.confirmed_players),
        entries=entries,
    )
