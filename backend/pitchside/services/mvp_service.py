"""
backend/pitchside/services/mvp_service.py

Purpose:
    Post-match MVP voting. Every roster player of a finished match casts at
    most one vote for another roster player while the voting window is open.
    The window is evaluated on each read and vote against finished_at, no
    job closes it. The manager may finalize the vote early: the vote leader
    replaces the event-derived MVP on the match and in the player profiles,
    and voting closes.

Dependencies:
    - pitchside.database (mvp_votes, unique on match_id + voter_id)
    - pitchside.services.write_batch
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Request
from pymongo.errors import DuplicateKeyError

import pitchside.database as _db
from pitchside.config import settings
from pitchside.errors import ConflictError, PermissionDenied, ValidationError
from pitchside.models.match import MatchInDB, MatchStatus
from pitchside.models.mvp import MvpVoteSummary
from pitchside.services.audit_service import log_audit
from pitchside.services.event_models import MatchUpdatedEvent
from pitchside.services.snapshot_service import STALE_MATCH, load_match, match_guard, versioned
from pitchside.services.write_batch import WriteBatch
from pitchside.utils import ensure_utc, utcnow

logger = logging.getLogger("pitchside.mvp_service")


def voting_closes_at(match: MatchInDB) -> Optional[datetime]:
    if match.status != MatchStatus.finished or match.finished_at is None:
        return None
    return ensure_utc(match.finished_at) + timedelta(hours=settings.MVP_VOTING_WINDOW_HOURS)


def is_voting_open(match: MatchInDB, now: Optional[datetime] = None) -> bool:
    if match.mvp_votes_finalized:
        return False
    closes_at = voting_closes_at(match)
    return closes_at is not None and ensure_utc(now or utcnow()) < closes_at


def vote_leader(counts: Counter) -> Optional[str]:
    """Most votes; ties go to the lowest player id."""
    if not counts:
        return None
    return min(counts, key=lambda pid: (-counts[pid], pid))


async def _tally(match_id: str) -> tuple[list[dict], Counter]:
    votes = await _db.db.mvp_votes.find({"match_id": match_id}).to_list(length=100)
    return votes, Counter(v["voted_for_id"] for v in votes)


async def cast_vote(session, match_id: str, voted_for_id: str) -> MvpVoteSummary:
    match = await load_match(match_id)
    if match.status != MatchStatus.finished:
        raise ConflictError("Voting opens once the match is finished.")
    if not is_voting_open(match):
        raise ConflictError("Voting for this match is closed.")
    roster = set(match.confirmed_players)
    if session.user_id not in roster:
        raise PermissionDenied("Only players of this match can vote.")
    if voted_for_id not in roster:
        raise ValidationError("You can only vote for a player of this match.")
    if voted_for_id == session.user_id:
        raise ValidationError("You cannot vote for yourself.")

    try:
        await _db.db.mvp_votes.insert_one({
            "match_id": match.id,
            "voter_id": session.user_id,
            "voted_for_id": voted_for_id,
            "created_at": utcnow(),
        })
    except DuplicateKeyError:
        raise ConflictError("You have already voted for this match.")
    logger.info("MVP vote in match %s by %s", match.id, session.user_id)
    return await get_vote_summary(session, match.id, match=match)


async def get_vote_summary(session, match_id: str, *, match: Optional[MatchInDB] = None) -> MvpVoteSummary:
    match = match or await load_match(match_id)
    votes, counts = await _tally(match.id)
    my_vote = next((v["voted_for_id"] for v in votes if v["voter_id"] == session.user_id), None)
    return MvpVoteSummary(
        match_id=match.id,
        voting_open=is_voting_open(match),
        closes_at=voting_closes_at(match),
        total_votes=len(votes),
        votes=dict(counts),
        leader_id=vote_leader(counts),
        my_vote=my_vote,
        finalized=match.mvp_votes_finalized,
    )


async def finalize_votes(session, match_id: str, request: Optional[Request] = None) -> MvpVoteSummary:
    """Manager closes voting and records the vote leader as the match MVP.

    The profile MVP counter follows the match: the event-derived MVP counted
    at finalize loses it if the vote picked someone else.
    """
    match = await load_match(match_id)
    if match.manager_id != session.user_id:
        raise PermissionDenied("Only the match manager can finalize MVP voting.")
    if match.status != MatchStatus.finished:
        raise ConflictError("Voting opens once the match is finished.")
    if match.mvp_votes_finalized:
        raise ConflictError("MVP voting for this match was already finalized.")
    _, counts = await _tally(match.id)
    leader_id = vote_leader(counts)
    if leader_id is None:
        raise ConflictError("No votes have been cast yet.")

    batch = WriteBatch(source="mvp_service.finalize_votes")
    batch.update(
        "matches",
        match_guard(match, status=MatchStatus.finished.value),
        versioned({"$set": {"mvp_player_id": leader_id, "mvp_votes_finalized": True}}),
        guard=STALE_MATCH,
    )
    previous = match.mvp_player_id
    if previous != leader_id:
        if previous:
            batch.update("player_profiles", {"user_ref": previous}, {"$inc": {"mvps": -1}})
        batch.update("player_profiles", {"user_ref": leader_id}, {"$inc": {"mvps": 1}})
    batch.publish(
        MatchUpdatedEvent(
            source="mvp_service",
            match_id=match.id,
            previous_status=match.status.value,
            new_status=match.status.value,
            changed_fields=["mvp_player_id"],
        )
    )
    await batch.commit()

    await log_audit(
        actor_id=session.user_id,
        target_id=match.id,
        action="MVP_VOTES_FINALIZED",
        metadata={"mvp": leader_id, "previous": previous, "votes": counts[leader_id]},
        request=request,
    )
    logger.info("MVP of match %s finalized by vote: %s", match.id, leader_id)
    return await get_vote_summary(session, match.id)
