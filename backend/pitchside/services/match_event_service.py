"""
backend/pitchside/services/match_event_service.py

Purpose:
    Live event recorder. Appends Goal / Assist / YellowCard / RedCard entries
    to a running match (append-only, never edited) and derives everything
    else from that log: the scoreboard, per-player statistics, MVP scores
    and the match report. Finalize reads the same derivations, so the log is
    the only source of score and stats.

Dependencies:
    - pitchside.services.write_batch
    - pitchside.models.match
"""

from __future__ import annotations

import logging
import uuid
from typing import Iterable, Optional

from pitchside.config import settings
from pitchside.errors import ConflictError, PermissionDenied, ValidationError
from pitchside.models.match import (
    MVP_EVENT_SCORE,
    MatchEvent,
    MatchEventCreate,
    MatchEventType,
    MatchInDB,
    MatchReport,
    MatchStatus,
    PlayerMatchStats,
    Scoreboard,
)
from pitchside.models.pitch import game_duration
from pitchside.models.user import UserRole
from pitchside.services.event_models import MatchUpdatedEvent
from pitchside.services.snapshot_service import (
    load_match,
    load_pitch,
    load_user_names,
    match_guard,
    versioned,
)
from pitchside.services.write_batch import WriteBatch
from pitchside.utils import utcnow

logger = logging.getLogger("pitchside.match_event_service")


def compute_scoreboard(events: Iterable[MatchEvent]) -> Scoreboard:
    board = Scoreboard()
    for event in events:
        if event.type != MatchEventType.goal:
            continue
        if event.team_id == "A":
            board.score_a += 1
        elif event.team_id == "B":
            board.score_b += 1
    return board


def is_sent_off(match: MatchInDB, player_id: str) -> bool:
    return any(e.player_id == player_id and e.type == MatchEventType.red_card for e in match.events)


def aggregate_player_stats(match: MatchInDB, names: Optional[dict[str, str]] = None) -> dict[str, PlayerMatchStats]:
    """Per-player lines for every roster player plus anyone who appears in the log."""
    names = names or {}
    lines: dict[str, PlayerMatchStats] = {}
    for player_id in match.confirmed_players:
        lines[player_id] = PlayerMatchStats(
            player_id=player_id,
            player_name=names.get(player_id, ""),
            team_id=match.side_of(player_id),
        )
    for event in match.events:
        line = lines.get(event.player_id)
        if line is None:
            line = lines[event.player_id] = PlayerMatchStats(
                player_id=event.player_id,
                player_name=event.player_name,
                team_id=event.team_id,
            )
        if not line.player_name:
            line.player_name = event.player_name
        if event.type == MatchEventType.goal:
            line.goals += 1
        elif event.type == MatchEventType.assist:
            line.assists += 1
        elif event.type == MatchEventType.yellow_card:
            line.yellow_cards += 1
        elif event.type == MatchEventType.red_card:
            line.red_cards += 1
        line.mvp_score += MVP_EVENT_SCORE[event.type]
    return lines


def pick_mvp(lines: dict[str, PlayerMatchStats]) -> Optional[str]:
    """Highest positive MVP score wins; ties go to the lowest player id."""
    best: Optional[PlayerMatchStats] = None
    for line in sorted(lines.values(), key=lambda l: l.player_id):
        if line.mvp_score <= 0:
            continue
        if best is None or line.mvp_score > best.mvp_score:
            best = line
    return best.player_id if best else None


async def record_event(session, match_id: str, body: MatchEventCreate) -> MatchEvent:
    """Append one event to a running match."""
    match = await load_match(match_id)
    if session.user_id != match.manager_id and session.role != UserRole.REFEREE.value:
        raise PermissionDenied("Only the match manager or a referee can record events.")
    if match.status != MatchStatus.in_progress:
        raise ConflictError("Events can only be recorded while the match is in progress.")

    pitch = await load_pitch(match.pitch_id)
    max_minute = game_duration(pitch.sport) + settings.EVENT_MINUTE_GRACE
    if body.minute < 0 or body.minute > max_minute:
        raise ValidationError(f"Minute must be between 0 and {max_minute}.")

    side = match.side_of(body.player_id)
    if side is None:
        raise ValidationError("Player is not on the roster of this match.")
    if is_sent_off(match, body.player_id):
        raise ValidationError("Player has been sent off.")

    names = await load_user_names([body.player_id])
    event = MatchEvent(
        id=uuid.uuid4().hex,
        type=body.type,
        player_id=body.player_id,
        player_name=names.get(body.player_id, ""),
        team_id=side,
        minute=body.minute,
        timestamp=utcnow(),
    )

    event_doc = event.model_dump()
    event_doc["type"] = event.type.value
    update: dict = {"$push": {"events": event_doc}}
    if event.type == MatchEventType.goal:
        update["$inc"] = {"score_a" if side == "A" else "score_b": 1}

    batch = WriteBatch(source="match_event_service.record_event")
    # Appends are guarded on status only: concurrent events must not conflict.
    batch.update(
        "matches",
        {"_id": match_guard(match)["_id"], "status": MatchStatus.in_progress.value},
        versioned(update),
        guard="The match is no longer in progress.",
    )
    batch.publish(
        MatchUpdatedEvent(
            source="match_event_service",
            match_id=match.id,
            previous_status=match.status.value,
            new_status=match.status.value,
            changed_fields=["events", "score"],
        )
    )
    await batch.commit()
    logger.info("Match %s: %s by %s at %d'", match.id, event.type.value, event.player_id, event.minute)
    return event


async def get_scoreboard(match_id: str) -> Scoreboard:
    match = await load_match(match_id)
    return compute_scoreboard(match.events)


async def build_match_report(match_id: str) -> MatchReport:
    match = await load_match(match_id)
    names = await load_user_names(match.confirmed_players)
    lines = aggregate_player_stats(match, names)
    mvp_id = match.mvp_player_id if match.status == MatchStatus.finished else pick_mvp(lines)
    return MatchReport(
        match_id=match.id,
        status=match.status,
        scoreboard=compute_scoreboard(match.events),
        players=sorted(lines.values(), key=lambda l: (-l.mvp_score, l.player_id)),
        mvp_player_id=mvp_id,
        finished_at=match.finished_at,
    )
