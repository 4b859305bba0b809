"""
backend/pitchside/services/reservation_service.py

Purpose:
    Reservation intake. The booking gateway writes reservations as Pending;
    the pitch owner confirms or cancels them here. Confirmation creates the
    match in the same transaction, so a Confirmed reservation always has its
    match.

Dependencies:
    - pitchside.services.match_service
    - pitchside.services.write_batch
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Request

import pitchside.database as _db
from pitchside.errors import ConflictError, PermissionDenied
from pitchside.models.common import to_object_id
from pitchside.models.payment import ReservationInDB, ReservationResponse, ReservationStatus
from pitchside.models.user import UserRole
from pitchside.services.audit_service import log_audit
from pitchside.services.match_service import stage_match_creation
from pitchside.services.snapshot_service import load_pitch, load_reservation
from pitchside.services.write_batch import WriteBatch
from pitchside.utils import format_match_day

logger = logging.getLogger("pitchside.reservation_service")

NOT_PENDING = "This reservation is no longer pending."


def _response(reservation: ReservationInDB, match_id: Optional[str] = None, **changes) -> ReservationResponse:
    data = reservation.model_dump()
    data.update(changes, match_id=match_id)
    return ReservationResponse.model_validate(data)


async def _require_owner(session, reservation: ReservationInDB) -> None:
    if session.role == UserRole.ADMIN.value:
        return
    pitch = await load_pitch(reservation.pitch_id)
    if pitch.owner_id != session.user_id:
        raise PermissionDenied("Only the pitch owner can do this.")


async def confirm_reservation(session, reservation_id: str, request: Optional[Request] = None) -> ReservationResponse:
    reservation = await load_reservation(reservation_id)
    await _require_owner(session, reservation)
    if reservation.status != ReservationStatus.pending:
        raise ConflictError(NOT_PENDING)

    batch = WriteBatch(source="reservation_service.confirm")
    batch.update(
        "reservations",
        {"_id": to_object_id(reservation.id), "status": ReservationStatus.pending.value},
        {"$set": {"status": ReservationStatus.confirmed.value}},
        guard=NOT_PENDING,
    )
    match_id = await stage_match_creation(batch, reservation)
    await batch.commit()

    await log_audit(
        actor_id=session.user_id,
        target_id=reservation.id,
        action="RESERVATION_CONFIRMED",
        metadata={"match_id": str(match_id)},
        request=request,
    )
    logger.info("Reservation %s confirmed, match %s created", reservation.id, match_id)
    return _response(reservation, str(match_id), status=ReservationStatus.confirmed)


async def cancel_reservation(session, reservation_id: str) -> ReservationResponse:
    """Withdraw a booking that was not confirmed yet (booker or pitch owner)."""
    reservation = await load_reservation(reservation_id)
    if reservation.actor_id != session.user_id:
        await _require_owner(session, reservation)
    if reservation.status != ReservationStatus.pending:
        raise ConflictError(NOT_PENDING)

    batch = WriteBatch(source="reservation_service.cancel")
    batch.update(
        "reservations",
        {"_id": to_object_id(reservation.id), "status": ReservationStatus.pending.value},
        {"$set": {"status": ReservationStatus.canceled.value}},
        guard=NOT_PENDING,
    )
    if reservation.actor_id != session.user_id:
        batch.notify(
            reservation.actor_id,
            f"Your booking at {reservation.pitch_name or 'the pitch'} on {format_match_day(reservation.date)} was declined.",
            "/dashboard/reservations",
        )
    await batch.commit()
    logger.info("Reservation %s cancelled by %s", reservation.id, session.user_id)
    return _response(reservation, status=ReservationStatus.canceled)


async def list_reservations(session, status: Optional[str] = None, limit: int = 100) -> list[dict]:
    """Own bookings; owners see the bookings of their pitches."""
    if session.role == UserRole.OWNER.value:
        pitches = await _db.db.pitches.find({"owner_id": session.user_id}, {"_id": 1}).to_list(length=200)
        query: dict = {"pitch_id": {"$in": [str(p["_id"]) for p in pitches]}}
    else:
        query = {"actor_id": session.user_id}
    if status:
        query["status"] = status
    docs = await _db.db.reservations.find(query).sort("date", -1).to_list(length=limit)

    ids = [str(d["_id"]) for d in docs]
    matches = await _db.db.matches.find({"reservation_id": {"$in": ids}}, {"reservation_id": 1}).to_list(length=len(ids) or 1)
    match_by_reservation = {m["reservation_id"]: str(m["_id"]) for m in matches}
    for doc in docs:
        doc["match_id"] = match_by_reservation.get(str(doc["_id"]))
    return docs
