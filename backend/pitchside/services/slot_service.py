"""
backend/pitchside/services/slot_service.py

Purpose:
    Slot availability resolver. Derives the state and price of one hourly
    pitch slot for one viewer from the reservations, matches and promotions
    around it. resolve_slot() is pure; list_day_slots() loads one day of
    records and resolves every opening hour.

Dependencies:
    - pitchside.models.pitch
    - pitchside.database (list_day_slots only)
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Optional

import pitchside.database as _db
from pitchside.config import settings
from pitchside.models.common import from_doc
from pitchside.models.match import MatchInDB, MatchStatus
from pitchside.models.payment import ReservationInDB, ReservationPaymentStatus, ReservationStatus
from pitchside.models.pitch import PitchInDB, PromotionInDB, SlotInfo, SlotStatus, player_capacity
from pitchside.services.snapshot_service import load_pitch
from pitchside.utils import ensure_utc, utcnow


def _same_hour(a: datetime, b: datetime) -> bool:
    a, b = ensure_utc(a), ensure_utc(b)
    return a.date() == b.date() and a.hour == b.hour


def best_promotion(
    promotions: Iterable[PromotionInDB],
    pitch_id: str,
    slot_start: datetime,
) -> Optional[PromotionInDB]:
    """Highest discount among the promotions covering the slot; first one wins ties."""
    slot_start = ensure_utc(slot_start)
    day = slot_start.date()
    best: Optional[PromotionInDB] = None
    for promo in promotions:
        if promo.pitch_ids and pitch_id not in promo.pitch_ids:
            continue
        if not (ensure_utc(promo.valid_from).date() <= day <= ensure_utc(promo.valid_to).date()):
            continue
        if not promo.covers_day(slot_start):
            continue
        if slot_start.hour not in promo.applicable_hours:
            continue
        if best is None or promo.discount_percent > best.discount_percent:
            best = promo
    return best


def resolve_slot(
    slot_start: datetime,
    pitch: PitchInDB,
    viewer,
    reservations: Iterable[ReservationInDB],
    matches: Iterable[MatchInDB],
    promotions: Iterable[PromotionInDB],
    now: Optional[datetime] = None,
) -> SlotInfo:
    slot_start = ensure_utc(slot_start)
    now = ensure_utc(now or utcnow())
    base_price = pitch.base_price or 0.0

    if slot_start < now:
        return SlotInfo(start=slot_start, status=SlotStatus.past, price=base_price)

    reservation = next(
        (
            r for r in reservations
            if r.status != ReservationStatus.canceled and _same_hour(r.date, slot_start)
        ),
        None,
    )
    if reservation is None:
        promo = best_promotion(promotions, pitch.id, slot_start)
        price = base_price * (1 - promo.discount_percent / 100) if promo else base_price
        return SlotInfo(
            start=slot_start,
            status=SlotStatus.available,
            price=round(price, 2),
            promotion_id=promo.id if promo else None,
        )

    def info(status: SlotStatus, price: float, match: Optional[MatchInDB] = None) -> SlotInfo:
        return SlotInfo(
            start=slot_start,
            status=status,
            price=price,
            match_id=match.id if match else None,
            reservation_id=reservation.id,
        )

    if reservation.status == ReservationStatus.pending:
        return info(SlotStatus.pending, reservation.total_amount)

    match = next((m for m in matches if m.reservation_id == reservation.id), None)
    if match is None:
        return info(SlotStatus.booked, reservation.total_amount)
    if match.status == MatchStatus.in_progress:
        return info(SlotStatus.live, reservation.total_amount, match)
    if (
        match.status in (MatchStatus.finished, MatchStatus.cancelled)
        or reservation.payment_status == ReservationPaymentStatus.paid
        or match.team_b_id is not None
    ):
        return info(SlotStatus.booked, reservation.total_amount, match)

    if viewer is not None:
        if match.allow_challenges and viewer.is_manager and match.manager_id != viewer.user_id:
            return info(SlotStatus.open_for_team, 0.0, match)
        capacity = player_capacity(pitch.sport)
        if (
            match.allow_external_players
            and viewer.is_player
            and capacity
            and len(match.confirmed_players) < capacity
        ):
            return info(SlotStatus.open_for_players, round(reservation.total_amount / capacity, 2), match)

    return info(SlotStatus.booked, reservation.total_amount, match)


async def list_day_slots(pitch_id: str, day: date, session=None) -> list[SlotInfo]:
    """Resolve every opening hour of one pitch day for the session's viewer."""
    pitch = await load_pitch(pitch_id)
    opening = pitch.opening_hour if pitch.opening_hour is not None else settings.SLOT_DEFAULT_OPENING_HOUR
    closing = pitch.closing_hour if pitch.closing_hour is not None else settings.SLOT_DEFAULT_CLOSING_HOUR

    day_start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    day_end = day_start + timedelta(days=1)

    reservation_docs = await _db.db.reservations.find({
        "pitch_id": pitch.id,
        "date": {"$gte": day_start, "$lt": day_end},
        "status": {"$ne": ReservationStatus.canceled.value},
    }).to_list(length=48)
    reservations = [from_doc(ReservationInDB, d) for d in reservation_docs]

    matches: list[MatchInDB] = []
    if reservations:
        match_docs = await _db.db.matches.find(
            {"reservation_id": {"$in": [r.id for r in reservations]}}
        ).to_list(length=len(reservations))
        matches = [from_doc(MatchInDB, d) for d in match_docs]

    promo_docs = await _db.db.promotions.find({
        "valid_from": {"$lt": day_end},
        "valid_to": {"$gte": day_start},
    }).to_list(length=200)
    promotions = [from_doc(PromotionInDB, d) for d in promo_docs]

    now = utcnow()
    return [
        resolve_slot(day_start + timedelta(hours=hour), pitch, session, reservations, matches, promotions, now)
        for hour in range(opening, closing)
    ]
