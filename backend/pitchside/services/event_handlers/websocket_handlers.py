"""
backend/pitchside/services/event_handlers/websocket_handlers.py

Purpose:
    Event bus subscribers that push committed state changes to WebSocket
    clients: match changes to connections subscribed to that match, new
    notifications to their recipient only.

Dependencies:
    - pitchside.database
    - pitchside.services.event_models
    - pitchside.services.websocket_manager
"""

from __future__ import annotations

import logging
from typing import Any

import pitchside.database as _db
from pitchside.config import settings
from pitchside.errors import NotFoundError
from pitchside.models.common import to_object_id
from pitchside.services.event_models import BaseEvent
from pitchside.services.websocket_manager import websocket_manager
from pitchside.utils import ensure_utc

logger = logging.getLogger("pitchside.event_handlers.websocket")


def _meta(event: BaseEvent) -> dict[str, Any]:
    return {
        "event_id": str(getattr(event, "event_id", "")),
        "correlation_id": str(getattr(event, "correlation_id", "")),
        "occurred_at": ensure_utc(getattr(event, "occurred_at")).isoformat(),
    }


def _iso(value) -> str | None:
    return ensure_utc(value).isoformat() if value else None


async def handle_match_changed_ws(event: BaseEvent) -> None:
    """match.created / match.updated / match.finalized: send the current match state."""
    if not settings.WS_EVENTS_ENABLED:
        return
    match_id = str(getattr(event, "match_id", "") or "")
    if not match_id:
        return
    try:
        match_oid = to_object_id(match_id)
    except NotFoundError:
        return

    match_doc = await _db.db.matches.find_one(
        {"_id": match_oid},
        {
            "_id": 1,
            "status": 1,
            "score_a": 1,
            "score_b": 1,
            "team_a_players": 1,
            "team_b_players": 1,
            "team_b_id": 1,
            "mvp_player_id": 1,
            "version": 1,
            "updated_at": 1,
        },
    )
    if not match_doc:
        return

    await websocket_manager.broadcast(
        event_type=event.event_type,
        data={
            "match_id": str(match_doc["_id"]),
            "status": str(match_doc.get("status") or ""),
            "score": {"A": int(match_doc.get("score_a") or 0), "B": int(match_doc.get("score_b") or 0)},
            "confirmed_count": len(match_doc.get("team_a_players") or []) + len(match_doc.get("team_b_players") or []),
            "team_b_id": match_doc.get("team_b_id"),
            "mvp_player_id": match_doc.get("mvp_player_id"),
            "version": int(match_doc.get("version") or 0),
            "updated_at": _iso(match_doc.get("updated_at")),
            "changed_fields": list(getattr(event, "changed_fields", []) or []),
        },
        selectors={"match_ids": [match_id]},
        meta=_meta(event),
    )


async def handle_match_cancelled_ws(event: BaseEvent) -> None:
    if not settings.WS_EVENTS_ENABLED:
        return
    match_id = str(getattr(event, "match_id", "") or "")
    if not match_id:
        return
    # The match record is gone; subscribers get the id only.
    await websocket_manager.broadcast(
        event_type="match.cancelled",
        data={"match_id": match_id, "reservation_id": getattr(event, "reservation_id", None)},
        selectors={"match_ids": [match_id]},
        meta=_meta(event),
    )


async def handle_payment_updated_ws(event: BaseEvent) -> None:
    if not settings.WS_EVENTS_ENABLED:
        return
    match_id = str(getattr(event, "match_id", "") or "")
    await websocket_manager.broadcast(
        event_type="payment.updated",
        data={
            "payment_id": str(getattr(event, "payment_id", "")),
            "reservation_id": str(getattr(event, "reservation_id", "")),
            "match_id": match_id or None,
            "payer_id": str(getattr(event, "payer_id", "")),
            "status": str(getattr(event, "new_status", "")),
        },
        selectors={"match_ids": [match_id] if match_id else []},
        meta=_meta(event),
    )


async def handle_notification_created_ws(event: BaseEvent) -> None:
    if not settings.WS_EVENTS_ENABLED:
        return
    recipient_id = str(getattr(event, "recipient_id", "") or "")
    if not recipient_id:
        return
    try:
        notification_oid = to_object_id(getattr(event, "notification_id", ""))
    except NotFoundError:
        return
    doc = await _db.db.notifications.find_one({"_id": notification_oid})
    if not doc:
        return
    delivered = await websocket_manager.broadcast(
        event_type="notification.created",
        data={
            "id": str(doc["_id"]),
            "type": doc.get("type"),
            "message": str(doc.get("message") or ""),
            "link": str(doc.get("link") or ""),
            "status": doc.get("status"),
            "created_at": _iso(doc.get("created_at")),
        },
        recipient_ids=[recipient_id],
        meta=_meta(event),
    )
    logger.debug("Notification %s pushed to %d connection(s)", doc["_id"], delivered)
