"""
backend/pitchside/services/notification_service.py

Purpose:
    Notification inbox. Records are built here and written by the write batch
    of the operation that caused them; this module only reads and marks them.

Dependencies:
    - pitchside.database
"""

from __future__ import annotations

import logging
from typing import Any

import pitchside.database as _db
from pitchside.errors import NotFoundError
from pitchside.models.common import to_object_id
from pitchside.utils import utcnow

logger = logging.getLogger("pitchside.notification_service")


def build_notification(
    recipient_id: str,
    message: str,
    link: str = "",
    *,
    type: str | None = None,
    payload: dict[str, Any] | None = None,
    status: str | None = None,
) -> dict:
    doc: dict[str, Any] = {
        "recipient_id": str(recipient_id),
        "message": message,
        "link": link,
        "read": False,
        "created_at": utcnow(),
    }
    if type is not None:
        doc["type"] = type
    if payload is not None:
        doc["payload"] = payload
    if status is not None:
        doc["status"] = status
    return doc


async def list_notifications(session, *, unread_only: bool = False, limit: int = 50) -> list[dict]:
    query: dict[str, Any] = {"recipient_id": session.user_id}
    if unread_only:
        query["read"] = False
    return await _db.db.notifications.find(query).sort("created_at", -1).to_list(length=limit)


async def mark_read(session, notification_id: str) -> None:
    result = await _db.db.notifications.update_one(
        {"_id": to_object_id(notification_id, what="Notification"), "recipient_id": session.user_id},
        {"$set": {"read": True}},
    )
    if result.matched_count == 0:
        raise NotFoundError("Notification not found.")


async def mark_all_read(session) -> int:
    result = await _db.db.notifications.update_many(
        {"recipient_id": session.user_id, "read": False},
        {"$set": {"read": True}},
    )
    return result.modified_count
