"""
backend/pitchside/services/event_handlers/__init__.py

Purpose:
    Central registration entrypoint for event bus subscribers. Subscribers
    only push committed changes to connected clients; no state transition
    depends on one of them running.

Dependencies:
    - pitchside.services.event_bus
    - pitchside.services.event_handlers.websocket_handlers
"""

from __future__ import annotations

from pitchside.config import settings
from pitchside.services.event_bus import InMemoryEventBus
from pitchside.services.event_handlers.websocket_handlers import (
    handle_match_cancelled_ws,
    handle_match_changed_ws,
    handle_notification_created_ws,
    handle_payment_updated_ws,
)


def register_event_handlers(bus: InMemoryEventBus) -> None:
    if not settings.EVENT_HANDLER_WS_BROADCAST_ENABLED:
        return
    bus.subscribe("match.created", handle_match_changed_ws, handler_name="ws_match_created", concurrency=1)
    bus.subscribe("match.updated", handle_match_changed_ws, handler_name="ws_match_updated", concurrency=1)
    bus.subscribe("match.finalized", handle_match_changed_ws, handler_name="ws_match_finalized", concurrency=1)
    bus.subscribe("match.cancelled", handle_match_cancelled_ws, handler_name="ws_match_cancelled", concurrency=1)
    bus.subscribe("payment.updated", handle_payment_updated_ws, handler_name="ws_payment_updated", concurrency=1)
    bus.subscribe(
        "notification.created",
        handle_notification_created_ws,
        handler_name="ws_notification_created",
        concurrency=1,
    )
