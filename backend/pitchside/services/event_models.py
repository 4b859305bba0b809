"""
backend/pitchside/services/event_models.py

Purpose:
    Domain event contracts for in-process reactive workflows. Events are
    published only after the write batch that caused them has committed and
    carry ids, not documents: subscribers reload what they need.

Dependencies:
    - pydantic
    - pitchside.utils
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from pitchside.utils import ensure_utc, utcnow

EventType = Literal[
    "match.created",
    "match.updated",
    "match.finalized",
    "match.cancelled",
    "payment.updated",
    "notification.created",
]


def make_event_id() -> str:
    return str(uuid.uuid4())


def make_correlation_id() -> str:
    return str(uuid.uuid4())


class BaseEvent(BaseModel):
    event_id: str = Field(default_factory=make_event_id)
    event_type: EventType
    occurred_at: datetime = Field(default_factory=utcnow)
    correlation_id: str = Field(default_factory=make_correlation_id)
    source: str


class MatchCreatedEvent(BaseEvent):
    event_type: Literal["match.created"] = "match.created"
    match_id: str
    reservation_id: str | None = None
    status: str


class MatchUpdatedEvent(BaseEvent):
    event_type: Literal["match.updated"] = "match.updated"
    match_id: str
    previous_status: str | None = None
    new_status: str
    changed_fields: list[str] = Field(default_factory=list)


class MatchFinalizedEvent(BaseEvent):
    event_type: Literal["match.finalized"] = "match.finalized"
    match_id: str
    final_score: dict[str, int] = Field(default_factory=dict)
    mvp_player_id: str | None = None


class MatchCancelledEvent(BaseEvent):
    event_type: Literal["match.cancelled"] = "match.cancelled"
    match_id: str
    reservation_id: str | None = None
    participant_ids: list[str] = Field(default_factory=list)


class PaymentUpdatedEvent(BaseEvent):
    event_type: Literal["payment.updated"] = "payment.updated"
    payment_id: str
    reservation_id: str
    match_id: str | None = None
    payer_id: str
    new_status: str


class NotificationCreatedEvent(BaseEvent):
    event_type: Literal["notification.created"] = "notification.created"
    notification_id: str
    recipient_id: str
    notification_type: str | None = None


def normalize_event_time(event: BaseEvent) -> BaseEvent:
    event.occurred_at = ensure_utc(event.occurred_at)
    return event
