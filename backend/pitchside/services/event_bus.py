"""
backend/pitchside/services/event_bus.py

Purpose:
    Process-local fan-out of committed domain events. Write batches hand
    their events over after the transaction lands; each subscribed route
    (the websocket pushes) drains its own bounded queue
    with a small worker pool, so a slow or failing route never holds up a
    request or another route. When a queue is full the event is dropped and
    counted rather than awaited.

Dependencies:
    - asyncio
    - pitchside.config
    - pitchside.services.event_models
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter, deque
from collections.abc import Awaitable, Callable
from typing import Any

from pitchside.config import settings
from pitchside.services.event_models import BaseEvent, normalize_event_time
from pitchside.utils import ensure_utc, utcnow

logger = logging.getLogger("pitchside.event_bus")

EventHandler = Callable[[BaseEvent], Awaitable[None]]


class _Route:
    """One handler bound to one event type, with its own queue and workers."""

    def __init__(self, event_type: str, name: str, handler: EventHandler, workers: int, queue_limit: int) -> None:
        self.event_type = event_type
        self.name = name
        self.handler = handler
        self.worker_count = workers
        self.queue_limit = queue_limit
        self.inbox: asyncio.Queue[BaseEvent] = asyncio.Queue(maxsize=queue_limit)
        self.tasks: list[asyncio.Task] = []
        self.handled = 0
        self.failed = 0
        self.dropped = 0

    @property
    def key(self) -> str:
        return f"{self.event_type}:{self.name}"

    def offer(self, event: BaseEvent) -> bool:
        try:
            self.inbox.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            return False
        return True

    def snapshot(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "name": self.name,
            "concurrency": self.worker_count,
            "queue_depth": self.inbox.qsize(),
            "queue_limit": self.queue_limit,
            "handled_total": self.handled,
            "failed_total": self.failed,
            "dropped_total": self.dropped,
        }


class InMemoryEventBus:
    def __init__(
        self,
        *,
        ingress_maxsize: int,
        handler_maxsize: int,
        default_concurrency: int,
        error_buffer_size: int,
    ) -> None:
        self._route_queue_limit = max(1, int(handler_maxsize))
        self._default_workers = max(1, int(default_concurrency))
        self._ingress: asyncio.Queue[BaseEvent] = asyncio.Queue(maxsize=max(1, int(ingress_maxsize)))
        self._routes: dict[str, list[_Route]] = {}
        self._pump: asyncio.Task | None = None
        self._running = False
        self._lifecycle = asyncio.Lock()

        self._accepted = 0
        self._rejected = 0
        self._by_type: Counter[str] = Counter()
        self._failures: deque[dict[str, Any]] = deque(maxlen=max(1, int(error_buffer_size)))

    @property
    def running(self) -> bool:
        return self._running

    def _all_routes(self) -> list[_Route]:
        return [route for routes in self._routes.values() for route in routes]

    def subscribe(
        self,
        event_type: str,
        handler: EventHandler,
        *,
        handler_name: str,
        concurrency: int = 1,
    ) -> None:
        route = _Route(
            event_type,
            handler_name,
            handler,
            max(1, int(concurrency or self._default_workers)),
            self._route_queue_limit,
        )
        self._routes.setdefault(event_type, []).append(route)
        if self._running:
            self._launch(route)

    async def start(self) -> None:
        async with self._lifecycle:
            if self._running:
                return
            self._running = True
            for route in self._all_routes():
                if not route.tasks:
                    self._launch(route)
            self._pump = asyncio.create_task(self._route_ingress(), name="event_bus_pump")
        logger.info("Event bus started with %d routes", len(self._all_routes()))

    async def stop(self) -> None:
        async with self._lifecycle:
            if not self._running:
                return
            self._running = False
            pending = [self._pump] if self._pump else []
            self._pump = None
            for route in self._all_routes():
                pending.extend(route.tasks)
                route.tasks = []
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Event bus stopped")

    async def publish(self, event: BaseEvent) -> None:
        if not settings.EVENT_BUS_ENABLED:
            # Nothing will ever drain the queue.
            return
        event = normalize_event_time(event)
        try:
            self._ingress.put_nowait(event)
        except asyncio.QueueFull:
            self._rejected += 1
            logger.warning("Event bus ingress full, dropping %s (%s)", event.event_type, event.correlation_id)
            return
        self._accepted += 1
        self._by_type[event.event_type] += 1

    def stats(self) -> dict[str, Any]:
        routes = self._all_routes()
        return {
            "enabled": bool(settings.EVENT_BUS_ENABLED),
            "running": self._running,
            "published_total": self._accepted,
            "handled_total": sum(r.handled for r in routes),
            "failed_total": sum(r.failed for r in routes),
            "dropped_total": self._rejected + sum(r.dropped for r in routes),
            "ingress_queue_depth": self._ingress.qsize(),
            "ingress_queue_limit": self._ingress.maxsize,
            "per_event_type": dict(self._by_type),
            "per_handler": {r.key: r.snapshot() for r in routes},
            "recent_errors": list(self._failures),
        }

    def _launch(self, route: _Route) -> None:
        route.tasks = [
            asyncio.create_task(self._drain(route), name=f"event_bus:{route.key}:{n}")
            for n in range(route.worker_count)
        ]

    async def _route_ingress(self) -> None:
        while True:
            event = await self._ingress.get()
            for route in self._routes.get(event.event_type, ()):
                if not route.offer(event):
                    logger.warning("Route %s is backed up, dropping %s", route.key, event.event_id)

    async def _drain(self, route: _Route) -> None:
        while True:
            event = await route.inbox.get()
            picked_up = utcnow()
            try:
                await route.handler(event)
            except Exception as exc:
                route.failed += 1
                self._record_failure(route, event, picked_up, exc)
            else:
                route.handled += 1

    def _record_failure(self, route: _Route, event: BaseEvent, picked_up, exc: Exception) -> None:
        lag = picked_up - ensure_utc(event.occurred_at)
        self._failures.append({
            "event_id": event.event_id,
            "event_type": event.event_type,
            "source": event.source,
            "handler_name": route.name,
            "correlation_id": event.correlation_id,
            "ts": picked_up.isoformat(),
            "processing_lag_ms": int(lag.total_seconds() * 1000),
            "error": str(exc),
        })
        logger.error(
            "Handler %s failed on %s (correlation_id=%s)",
            route.key,
            event.event_id,
            event.correlation_id,
            exc_info=True,
        )


event_bus = InMemoryEventBus(
    ingress_maxsize=settings.EVENT_BUS_INGRESS_QUEUE_MAXSIZE,
    handler_maxsize=settings.EVENT_BUS_HANDLER_QUEUE_MAXSIZE,
    default_concurrency=settings.EVENT_BUS_HANDLER_DEFAULT_CONCURRENCY,
    error_buffer_size=settings.EVENT_BUS_ERROR_BUFFER_SIZE,
)
