"""
backend/pitchside/services/snapshot_service.py

Purpose:
    Snapshot reads shared by the lifecycle commands. Each command loads the
    records it validates against through these helpers, then writes with
    match_guard() so the commit only lands if the match is still at the
    version it read.

Dependencies:
    - pitchside.database
    - pitchside.models
"""

from __future__ import annotations

from typing import Any, Iterable

import pitchside.database as _db
from pitchside.errors import NotFoundError
from pitchside.models.common import from_doc, to_object_id
from pitchside.models.match import MatchInDB
from pitchside.models.payment import ReservationInDB
from pitchside.models.pitch import PitchInDB
from pitchside.models.team import TeamInDB
from pitchside.utils import utcnow

STALE_MATCH = "The match changed in the meantime. Reload and try again."


async def load_match(match_id: str) -> MatchInDB:
    doc = await _db.db.matches.find_one({"_id": to_object_id(match_id, what="Match")})
    if not doc:
        raise NotFoundError("Match not found.")
    return from_doc(MatchInDB, doc)


async def load_reservation(reservation_id: str) -> ReservationInDB:
    doc = await _db.db.reservations.find_one({"_id": to_object_id(reservation_id, what="Reservation")})
    if not doc:
        raise NotFoundError("Reservation not found.")
    return from_doc(ReservationInDB, doc)


async def load_pitch(pitch_id: str) -> PitchInDB:
    doc = await _db.db.pitches.find_one({"_id": to_object_id(pitch_id, what="Pitch")})
    if not doc:
        raise NotFoundError("Pitch not found.")
    return from_doc(PitchInDB, doc)


async def load_team(team_id: str) -> TeamInDB:
    doc = await _db.db.teams.find_one({"_id": to_object_id(team_id, what="Team")})
    if not doc:
        raise NotFoundError("Team not found.")
    return from_doc(TeamInDB, doc)


async def load_user_names(user_ids: Iterable[str]) -> dict[str, str]:
    """Display names by user id; unknown or malformed ids are skipped."""
    oids = []
    for uid in {str(u) for u in user_ids if u}:
        try:
            oids.append(to_object_id(uid))
        except NotFoundError:
            continue
    if not oids:
        return {}
    docs = await _db.db.users.find({"_id": {"$in": oids}}, {"name": 1}).to_list(length=len(oids))
    return {str(d["_id"]): str(d.get("name") or "") for d in docs}


def match_guard(match: MatchInDB, **extra: Any) -> dict:
    """Write filter pinning the match to the version the command validated."""
    query: dict[str, Any] = {"_id": to_object_id(match.id), "version": match.version}
    query.update(extra)
    return query


def versioned(update: dict) -> dict:
    """Add the version bump and updated_at stamp to a match update."""
    out = {key: dict(value) for key, value in update.items()}
    out.setdefault("$set", {})["updated_at"] = utcnow()
    out.setdefault("$inc", {})["version"] = 1
    return out
