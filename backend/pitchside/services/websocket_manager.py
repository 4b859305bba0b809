"""
backend/pitchside/services/websocket_manager.py

Purpose:
    Process-local registry of live websocket connections. A connection
    follows a set of match ids and, optionally, a set of event types; match
    pushes (state, roster, event log, payment progress) reach the followers
    of that match. Notifications are addressed to a recipient instead and
    go to every connection of that user whatever it follows.

Dependencies:
    - fastapi.WebSocket
    - pitchside.config
    - pitchside.utils
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from fastapi import WebSocket

from pitchside.config import settings
from pitchside.utils import utcnow

logger = logging.getLogger("pitchside.websocket_manager")


def _ids(values: Any) -> set[str]:
    if not isinstance(values, list):
        return set()
    return {str(v).strip() for v in values if v is not None and str(v).strip()}


@dataclass
class Subscription:
    match_ids: set[str] = field(default_factory=set)
    event_types: set[str] = field(default_factory=set)

    @classmethod
    def from_payload(cls, payload: Any) -> "Subscription":
        if not isinstance(payload, dict):
            return cls()
        return cls(match_ids=_ids(payload.get("match_ids")), event_types=_ids(payload.get("event_types")))

    def merge(self, other: "Subscription") -> None:
        self.match_ids |= other.match_ids
        self.event_types |= other.event_types

    def remove(self, other: "Subscription") -> None:
        self.match_ids -= other.match_ids
        self.event_types -= other.event_types

    def accepts(self, event_type: str, match_ids: set[str]) -> bool:
        if self.event_types and event_type not in self.event_types:
            return False
        # Following no match means following all of them.
        return not self.match_ids or bool(self.match_ids & match_ids)

    def as_dict(self) -> dict[str, list[str]]:
        return {"match_ids": sorted(self.match_ids), "event_types": sorted(self.event_types)}


@dataclass
class ManagedConnection:
    connection_id: str
    user_id: str
    websocket: WebSocket
    subscription: Subscription
    connected_at: datetime
    last_seen_at: datetime


class WebSocketManager:
    def __init__(self, *, max_connections: int, heartbeat_seconds: int) -> None:
        self._capacity = max(1, int(max_connections))
        self._heartbeat_seconds = max(1, int(heartbeat_seconds))
        self._connections: dict[str, ManagedConnection] = {}
        self._guard = asyncio.Lock()
        self._heartbeat: asyncio.Task | None = None
        self._running = False
        self._broadcasts = 0
        self._send_failures = 0
        self._evicted = 0
        self._errors: deque[dict[str, Any]] = deque(maxlen=200)

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        async with self._guard:
            if self._running:
                return
            self._running = True
            self._heartbeat = asyncio.create_task(self._ping_forever(), name="ws_heartbeat")
        logger.info("WebSocket manager started (heartbeat every %ss)", self._heartbeat_seconds)

    async def stop(self) -> None:
        async with self._guard:
            if not self._running:
                return
            self._running = False
            task, self._heartbeat = self._heartbeat, None
            self._connections.clear()
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        logger.info("WebSocket manager stopped")

    async def connect(self, websocket: WebSocket, *, user_id: str, initial_filters: dict[str, Any] | None = None) -> str:
        await websocket.accept()
        now = utcnow()
        conn = ManagedConnection(
            connection_id=str(uuid.uuid4()),
            user_id=str(user_id),
            websocket=websocket,
            subscription=Subscription.from_payload(initial_filters or {}),
            connected_at=now,
            last_seen_at=now,
        )
        async with self._guard:
            if len(self._connections) >= self._capacity:
                raise RuntimeError("max_connections_exceeded")
            self._connections[conn.connection_id] = conn
        return conn.connection_id

    async def disconnect(self, connection_id: str) -> None:
        async with self._guard:
            self._connections.pop(connection_id, None)

    async def touch(self, connection_id: str) -> None:
        conn = self._connections.get(connection_id)
        if conn is not None:
            conn.last_seen_at = utcnow()

    async def update_filters(self, connection_id: str, command_type: str, payload: dict[str, Any]) -> dict[str, list[str]]:
        """Apply a subscribe, unsubscribe or replace_subscriptions command."""
        async with self._guard:
            conn = self._connections.get(connection_id)
            if conn is None:
                raise RuntimeError("connection_not_found")
            incoming = Subscription.from_payload(payload)
            if command_type == "subscribe":
                conn.subscription.merge(incoming)
            elif command_type == "unsubscribe":
                conn.subscription.remove(incoming)
            elif command_type == "replace_subscriptions":
                conn.subscription = incoming
            else:
                raise ValueError("unsupported_command")
            conn.last_seen_at = utcnow()
            return conn.subscription.as_dict()

    async def broadcast(
        self,
        *,
        event_type: str,
        data: dict[str, Any],
        selectors: dict[str, Any] | None = None,
        recipient_ids: list[str] | None = None,
        meta: dict[str, Any] | None = None,
    ) -> int:
        """Push one message and return how many connections took it.

        ``recipient_ids`` addresses the message to those users' connections
        and bypasses match subscriptions entirely.
        """
        if recipient_ids is not None:
            users = _ids(recipient_ids)
            targets = [c for c in self._connections.values() if c.user_id in users]
        else:
            match_ids = _ids((selectors or {}).get("match_ids"))
            targets = [c for c in self._connections.values() if c.subscription.accepts(event_type, match_ids)]

        message = {"type": event_type, "data": data, "meta": meta or {}}
        delivered = 0
        for conn in targets:
            try:
                await conn.websocket.send_json(message)
            except Exception as exc:
                self._send_failures += 1
                self._errors.append({
                    "ts": utcnow().isoformat(),
                    "connection_id": conn.connection_id,
                    "event_type": event_type,
                    "error": str(exc),
                })
                await self._evict(conn.connection_id)
            else:
                delivered += 1
        self._broadcasts += 1
        return delivered

    def stats(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "active_connections": len(self._connections),
            "max_connections": self._capacity,
            "heartbeat_seconds": self._heartbeat_seconds,
            "broadcast_total": self._broadcasts,
            "send_failures": self._send_failures,
            "dropped_connections": self._evicted,
            "last_errors": list(self._errors),
        }

    async def _evict(self, connection_id: str) -> None:
        await self.disconnect(connection_id)
        self._evicted += 1
        logger.debug("Dropped websocket connection %s", connection_id)

    async def _ping_forever(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_seconds)
            ping = {"type": "ping", "data": {"ts": utcnow().isoformat()}}
            for conn in list(self._connections.values()):
                try:
                    await conn.websocket.send_json(ping)
                except Exception:
                    await self._evict(conn.connection_id)


websocket_manager = WebSocketManager(
    max_connections=settings.WS_MAX_CONNECTIONS,
    heartbeat_seconds=settings.WS_HEARTBEAT_SECONDS,
)
