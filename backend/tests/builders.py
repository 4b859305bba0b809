"""
backend/tests/builders.py

Purpose:
    Seed helpers writing realistic documents straight into a FakeDB, plus
    SessionContext shortcuts for calling services as a given user.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from bson import ObjectId

from pitchside.services.session_service import SessionContext

NOW = datetime.now(timezone.utc).replace(microsecond=0)
KICKOFF = (NOW + timedelta(days=3)).replace(hour=18, minute=0, second=0)


def as_user(user_id: str, role: str = "PLAYER", name: str = "") -> SessionContext:
    return SessionContext(session_id="sess-" + user_id[-6:], user_id=user_id, role=role, name=name)


def _put(db, collection: str, doc: dict) -> str:
    doc.setdefault("_id", ObjectId())
    db[collection].docs.append(doc)
    return str(doc["_id"])


def seed_user(db, name: str, role: str = "PLAYER", **extra) -> str:
    return _put(db, "users", {
        "email": f"{name.lower().replace(' ', '.')}@example.com",
        "hashed_password": "",
        "name": name,
        "role": role,
        "is_deleted": False,
        "created_at": NOW,
        "updated_at": NOW,
        **extra,
    })


def seed_players(db, count: int, prefix: str = "Player") -> list[str]:
    return [seed_user(db, f"{prefix} {i + 1}") for i in range(count)]


def seed_pitch(db, *, owner_id: str = "owner-1", sport: str = "fut5", base_price: float = 100.0, **extra) -> str:
    return _put(db, "pitches", {
        "name": "Riverside Arena",
        "owner_id": owner_id,
        "sport": sport,
        "base_price": base_price,
        "allow_post_game_payments": False,
        **extra,
    })


def seed_team(db, name: str, manager_id: str, player_ids: list[str], **extra) -> str:
    return _put(db, "teams", {
        "name": name,
        "manager_id": manager_id,
        "player_ids": list(player_ids),
        "wins": 0,
        "losses": 0,
        "draws": 0,
        "recent_form": [],
        **extra,
    })


def seed_reservation(
    db,
    pitch_id: str,
    *,
    actor_id: str,
    total_amount: float = 100.0,
    status: str = "Confirmed",
    payment_status: str = "Pending",
    actor_role: str = "MANAGER",
    team_id: str | None = None,
    date: datetime = KICKOFF,
) -> str:
    return _put(db, "reservations", {
        "pitch_id": pitch_id,
        "pitch_name": "Riverside Arena",
        "date": date,
        "total_amount": total_amount,
        "actor_id": actor_id,
        "actor_role": actor_role,
        "team_id": team_id,
        "status": status,
        "payment_status": payment_status,
    })


def seed_match(
    db,
    *,
    pitch_id: str,
    manager_id: str,
    reservation_id: str | None = None,
    status: str = "PendingOpponent",
    team_a_id: str | None = None,
    team_b_id: str | None = None,
    team_a_players: list[str] | None = None,
    team_b_players: list[str] | None = None,
    **extra,
) -> str:
    doc = {
        "date": KICKOFF,
        "pitch_id": pitch_id,
        "reservation_id": reservation_id,
        "manager_id": manager_id,
        "status": status,
        "team_a_id": team_a_id,
        "team_b_id": team_b_id,
        "team_a_players": list(team_a_players or []),
        "team_b_players": list(team_b_players or []),
        "player_applications": [],
        "allow_external_players": True,
        "allow_challenges": False,
        "roster_split_saved": False,
        "events": [],
        "score_a": 0,
        "score_b": 0,
        "mvp_player_id": None,
        "started_at": None,
        "finished_at": None,
        "version": 0,
        "created_at": NOW,
        "updated_at": NOW,
    }
    doc.update(extra)
    return _put(db, "matches", doc)


def seed_profiles(db, player_ids: list[str]) -> None:
    for player_id in player_ids:
        _put(db, "player_profiles", {
            "user_ref": player_id,
            "goals": 0,
            "assists": 0,
            "yellow_cards": 0,
            "red_cards": 0,
            "victories": 0,
            "defeats": 0,
            "draws": 0,
            "mvps": 0,
            "recent_form": [],
        })


def event_doc(player_id: str, type_: str, side: str, minute: int = 10) -> dict:
    return {
        "id": str(ObjectId()),
        "type": type_,
        "player_id": player_id,
        "player_name": "",
        "team_id": side,
        "minute": minute,
        "timestamp": NOW,
    }


def match_doc(db, match_id: str) -> dict:
    return next(d for d in db.matches.docs if str(d["_id"]) == match_id)


def notifications_for(db, recipient_id: str, type_: str | None = None) -> list[dict]:
    return [
        n for n in db.notifications.docs
        if n["recipient_id"] == recipient_id and (type_ is None or n.get("type") == type_)
    ]
