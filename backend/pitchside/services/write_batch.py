"""
backend/pitchside/services/write_batch.py

Purpose:
    Atomic write batch for multi-record lifecycle operations. A command reads
    its snapshot, stages every insert/update/delete plus the notifications it
    owes, and commits everything in one MongoDB transaction. Guarded writes
    carry the snapshot's version/status in their filter; if the record moved
    on, the whole batch aborts with ConflictError and nothing is applied.
    Domain events are published only after a successful commit.

Dependencies:
    - motor (client sessions / transactions)
    - pymongo.errors
    - pitchside.services.event_bus
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from bson import ObjectId
from pymongo.errors import DuplicateKeyError, PyMongoError

import pitchside.database as _db
from pitchside.errors import ConflictError, TransportFailure
from pitchside.services.event_bus import event_bus
from pitchside.services.event_models import BaseEvent, NotificationCreatedEvent
from pitchside.services.notification_service import build_notification

logger = logging.getLogger("pitchside.write_batch")


@dataclass
class _StagedWrite:
    kind: str  # insert | update | update_many | delete | delete_many
    collection: str
    filter: dict | None = None
    document: dict | None = None
    update: dict | None = None
    guard: str | None = None  # conflict detail when the write matches nothing


class WriteBatch:
    def __init__(self, *, source: str) -> None:
        self.source = source
        self._writes: list[_StagedWrite] = []
        self._events: list[BaseEvent] = []
        self._committed = False

    def __len__(self) -> int:
        return len(self._writes)

    @property
    def events(self) -> list[BaseEvent]:
        return list(self._events)

    def insert(self, collection: str, document: dict) -> ObjectId:
        doc = dict(document)
        doc.setdefault("_id", ObjectId())
        self._writes.append(_StagedWrite("insert", collection, document=doc))
        return doc["_id"]

    def update(self, collection: str, filter: dict, update: dict, *, guard: str | None = None) -> None:
        self._writes.append(_StagedWrite("update", collection, filter=filter, update=update, guard=guard))

    def update_many(self, collection: str, filter: dict, update: dict) -> None:
        self._writes.append(_StagedWrite("update_many", collection, filter=filter, update=update))

    def delete(self, collection: str, filter: dict, *, guard: str | None = None) -> None:
        self._writes.append(_StagedWrite("delete", collection, filter=filter, guard=guard))

    def delete_many(self, collection: str, filter: dict) -> None:
        self._writes.append(_StagedWrite("delete_many", collection, filter=filter))

    def notify(
        self,
        recipient_id: str,
        message: str,
        link: str = "",
        *,
        type: str | None = None,
        payload: dict[str, Any] | None = None,
        status: str | None = None,
    ) -> ObjectId:
        """Stage one inbox record; push delivery follows the commit."""
        doc = build_notification(recipient_id, message, link, type=type, payload=payload, status=status)
        notification_id = self.insert("notifications", doc)
        self._events.append(
            NotificationCreatedEvent(
                source=self.source,
                notification_id=str(notification_id),
                recipient_id=str(recipient_id),
                notification_type=type,
            )
        )
        return notification_id

    def publish(self, event: BaseEvent) -> None:
        self._events.append(event)

    async def commit(self) -> None:
        if self._committed:
            raise RuntimeError("write batch already committed")
        if self._writes:
            try:
                async with await _db.client.start_session() as session:
                    async with session.start_transaction():
                        for write in self._writes:
                            await self._apply(write, session)
            except DuplicateKeyError as exc:
                logger.warning("Write batch %s hit a duplicate key: %s", self.source, exc)
                raise ConflictError("Duplicate entry.") from exc
            except PyMongoError as exc:
                logger.error("Write batch %s failed: %s", self.source, exc, exc_info=True)
                raise TransportFailure() from exc
        self._committed = True
        logger.debug("Committed %s: %d writes, %d events", self.source, len(self._writes), len(self._events))
        for event in self._events:
            await event_bus.publish(event)

    @staticmethod
    async def _apply(write: _StagedWrite, session) -> None:
        collection = _db.db[write.collection]
        if write.kind == "insert":
            await collection.insert_one(write.document, session=session)
        elif write.kind == "update":
            result = await collection.update_one(write.filter, write.update, session=session)
            if write.guard and result.matched_count == 0:
                raise ConflictError(write.guard)
        elif write.kind == "update_many":
            await collection.update_many(write.filter, write.update, session=session)
        elif write.kind == "delete":
            result = await collection.delete_one(write.filter, session=session)
            if write.guard and result.deleted_count == 0:
                raise ConflictError(write.guard)
        elif write.kind == "delete_many":
            await collection.delete_many(write.filter, session=session)
        else:
            raise ValueError(f"unknown write kind: {write.kind}")
