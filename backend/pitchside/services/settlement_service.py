"""
backend/pitchside/services/settlement_service.py

Purpose:
    Settlement engine for reservation payments: the manager paying the
    booking in full or splitting it, self-scoped payment of each share,
    server-side reconciliation of the reservation once every share is paid,
    reminders, and the refund/cancel cascade staged into a match deletion.

    Split rounding: each share is the total divided by the number of
    confirmed players, rounded down to the cent. The leftover cents stay with
    the manager and are recorded as split_remainder on the manager's booking
    payment, so shares plus remainder always add up to the total.

Dependencies:
    - pitchside.services.write_batch
    - pitchside.services.event_bus
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from fastapi import Request

import pitchside.database as _db
from pitchside.errors import CapacityViolation, ConflictError, NotFoundError, PermissionDenied
from pitchside.models.common import from_doc, to_object_id
from pitchside.models.match import MatchInDB
from pitchside.models.notification import NotificationType
from pitchside.models.payment import (
    PaymentInDB,
    PaymentStatus,
    PaymentType,
    ReservationInDB,
    ReservationPaymentStatus,
    SplitPaymentResult,
)
from pitchside.models.user import UserRole
from pitchside.services.audit_service import log_audit
from pitchside.services.event_bus import event_bus
from pitchside.services.event_models import MatchUpdatedEvent, PaymentUpdatedEvent
from pitchside.services.snapshot_service import load_match, load_pitch, load_reservation
from pitchside.services.write_batch import WriteBatch
from pitchside.utils import format_amount, format_match_day, utcnow

logger = logging.getLogger("pitchside.settlement_service")

PAYMENTS_LINK = "/dashboard/payments"
ALREADY_SPLIT = "Payment for this booking was already initiated."


def split_amounts(total: float, count: int) -> tuple[float, float]:
    """Per-player share rounded down to cents, plus the leftover cents."""
    if count <= 0:
        raise ValueError("count must be positive")
    cents = int((Decimal(str(total)) * 100).to_integral_value(rounding=ROUND_HALF_UP))
    share_cents = cents // count
    remainder_cents = cents - share_cents * count
    return share_cents / 100, remainder_cents / 100


async def initiate_split_payment(session, match_id: str, request: Optional[Request] = None) -> SplitPaymentResult:
    """Manager pays the booking up front; every confirmed player owes a share."""
    match = await load_match(match_id)
    if match.manager_id != session.user_id:
        raise PermissionDenied("Only the match manager can split the payment.")
    if not match.reservation_id:
        raise CapacityViolation("This match has no reservation to pay.")
    reservation = await load_reservation(match.reservation_id)
    if reservation.payment_status != ReservationPaymentStatus.pending:
        raise ConflictError(ALREADY_SPLIT)

    players = match.confirmed_players
    if not players:
        raise CapacityViolation("No confirmed players to split the payment with.")

    share, remainder = split_amounts(reservation.total_amount, len(players))
    now = utcnow()
    day = format_match_day(reservation.date)

    batch = WriteBatch(source="settlement_service.initiate_split")
    manager_payment_id = batch.insert("payments", {
        "payer_id": session.user_id,
        "payer_role": UserRole.MANAGER.value,
        "reservation_id": reservation.id,
        "match_id": match.id,
        "type": PaymentType.booking.value,
        "amount": reservation.total_amount,
        "status": PaymentStatus.paid.value,
        "split_remainder": remainder,
        "created_at": now,
        "paid_at": now,
    })
    split_ids: list[str] = []
    for player_id in players:
        payment_id = batch.insert("payments", {
            "payer_id": player_id,
            "payer_role": UserRole.PLAYER.value,
            "reservation_id": reservation.id,
            "match_id": match.id,
            "type": PaymentType.booking_split.value,
            "amount": share,
            "status": PaymentStatus.pending.value,
            "created_at": now,
            "paid_at": None,
        })
        split_ids.append(str(payment_id))
        batch.notify(
            player_id,
            f"A payment of {format_amount(share)} is required to confirm the game on {day}.",
            PAYMENTS_LINK,
            type=NotificationType.payment_request.value,
            payload={"payment_id": str(payment_id), "match_id": match.id},
        )
    batch.update(
        "reservations",
        {"_id": to_object_id(reservation.id), "payment_status": ReservationPaymentStatus.pending.value},
        {"$set": {"payment_status": ReservationPaymentStatus.split.value, "updated_at": now}},
        guard=ALREADY_SPLIT,
    )
    batch.publish(
        MatchUpdatedEvent(
            source="settlement_service",
            match_id=match.id,
            previous_status=match.status.value,
            new_status=match.status.value,
            changed_fields=["payments"],
        )
    )
    await batch.commit()

    await log_audit(
        actor_id=session.user_id,
        target_id=reservation.id,
        action="SPLIT_INITIATED",
        metadata={"match_id": match.id, "players": len(players), "share": share, "remainder": remainder},
        request=request,
    )
    logger.info(
        "Split payment for reservation %s: %d x %s (remainder %s)",
        reservation.id, len(players), share, remainder,
    )
    return SplitPaymentResult(
        reservation_id=reservation.id,
        manager_payment_id=str(manager_payment_id),
        split_payment_ids=split_ids,
        share=share,
        remainder=remainder,
    )


async def pay_in_full(session, match_id: str, request: Optional[Request] = None) -> PaymentInDB:
    """Manager pays the whole booking alone; the reservation is Paid at once."""
    match = await load_match(match_id)
    if match.manager_id != session.user_id:
        raise PermissionDenied("Only the match manager can pay the booking.")
    if not match.reservation_id:
        raise CapacityViolation("This match has no reservation to pay.")
    reservation = await load_reservation(match.reservation_id)
    if reservation.payment_status != ReservationPaymentStatus.pending:
        raise ConflictError(ALREADY_SPLIT)
    pitch = await load_pitch(reservation.pitch_id)

    now = utcnow()
    document = {
        "payer_id": session.user_id,
        "payer_role": UserRole.MANAGER.value,
        "reservation_id": reservation.id,
        "match_id": match.id,
        "type": PaymentType.booking.value,
        "amount": reservation.total_amount,
        "status": PaymentStatus.paid.value,
        "split_remainder": 0.0,
        "created_at": now,
        "paid_at": now,
    }
    batch = WriteBatch(source="settlement_service.pay_in_full")
    document["_id"] = batch.insert("payments", document)
    batch.update(
        "reservations",
        {"_id": to_object_id(reservation.id), "payment_status": ReservationPaymentStatus.pending.value},
        {"$set": {"payment_status": ReservationPaymentStatus.paid.value, "updated_at": now}},
        guard=ALREADY_SPLIT,
    )
    batch.notify(
        pitch.owner_id,
        f"Payment received for the booking at {reservation.pitch_name or pitch.name} "
        f"on {format_match_day(reservation.date)}. The game is confirmed.",
        "/dashboard/schedule",
        type=NotificationType.payment_completed.value,
        payload={"reservation_id": reservation.id, "match_id": match.id},
    )
    batch.publish(
        PaymentUpdatedEvent(
            source="settlement_service",
            payment_id=str(document["_id"]),
            reservation_id=reservation.id,
            match_id=match.id,
            payer_id=session.user_id,
            new_status=PaymentStatus.paid.value,
        )
    )
    await batch.commit()

    await log_audit(
        actor_id=session.user_id,
        target_id=reservation.id,
        action="BOOKING_PAID_IN_FULL",
        metadata={"match_id": match.id, "amount": reservation.total_amount},
        request=request,
    )
    logger.info("Reservation %s paid in full by %s", reservation.id, session.user_id)
    return from_doc(PaymentInDB, document)


async def pay_own_payment(session, payment_id: str) -> PaymentInDB:
    """Mark one of the caller's own pending payments as paid.

    The caller only ever writes their own payment. Paying a split share then
    reconciles the reservation server-side, so the last share flips it to
    Paid whether or not anything listens on the event bus.
    """
    oid = to_object_id(payment_id, what="Payment")
    doc = await _db.db.payments.find_one({"_id": oid, "payer_id": session.user_id})
    if not doc:
        raise NotFoundError("Payment not found.")
    if doc.get("status") != PaymentStatus.pending.value:
        raise ConflictError("This payment is not pending.")

    now = utcnow()
    result = await _db.db.payments.update_one(
        {"_id": oid, "payer_id": session.user_id, "status": PaymentStatus.pending.value},
        {"$set": {"status": PaymentStatus.paid.value, "paid_at": now}},
    )
    if result.matched_count == 0:
        raise ConflictError("This payment is not pending.")

    doc.update({"status": PaymentStatus.paid.value, "paid_at": now})
    if doc.get("type") == PaymentType.booking_split.value:
        try:
            await reconcile_reservation(str(doc["reservation_id"]))
        except NotFoundError:
            logger.info("Reservation %s gone before reconciliation", doc["reservation_id"])
    await event_bus.publish(
        PaymentUpdatedEvent(
            source="settlement_service",
            payment_id=str(oid),
            reservation_id=str(doc["reservation_id"]),
            match_id=doc.get("match_id"),
            payer_id=session.user_id,
            new_status=PaymentStatus.paid.value,
        )
    )
    logger.info("Payment %s paid by %s", oid, session.user_id)
    return from_doc(PaymentInDB, doc)


async def reconcile_reservation(reservation_id: str) -> bool:
    """Mark a split reservation Paid once no share is pending. Returns True if it changed."""
    reservation = await load_reservation(reservation_id)
    if reservation.payment_status != ReservationPaymentStatus.split:
        return False
    pending = await _db.db.payments.count_documents({
        "reservation_id": reservation.id,
        "type": PaymentType.booking_split.value,
        "status": PaymentStatus.pending.value,
    })
    if pending:
        return False

    manager_payment = await _db.db.payments.find_one({
        "reservation_id": reservation.id,
        "type": PaymentType.booking.value,
    })
    batch = WriteBatch(source="settlement_service.reconcile")
    batch.update(
        "reservations",
        {"_id": to_object_id(reservation.id), "payment_status": ReservationPaymentStatus.split.value},
        {"$set": {"payment_status": ReservationPaymentStatus.paid.value, "updated_at": utcnow()}},
        guard="Reservation already reconciled.",
    )
    if manager_payment:
        batch.notify(
            manager_payment["payer_id"],
            f"All players have paid for the game on {format_match_day(reservation.date)}.",
            PAYMENTS_LINK,
            type=NotificationType.payment_completed.value,
            payload={"reservation_id": reservation.id, "match_id": manager_payment.get("match_id")},
        )
    try:
        await batch.commit()
    except ConflictError:
        logger.debug("Reservation %s was reconciled concurrently", reservation.id)
        return False
    logger.info("Reservation %s fully paid", reservation.id)
    return True


async def remind_payment(session, payment_id: str) -> None:
    """Manager nudges a player about a pending share."""
    doc = await _db.db.payments.find_one({"_id": to_object_id(payment_id, what="Payment")})
    if not doc:
        raise NotFoundError("Payment not found.")
    payment = from_doc(PaymentInDB, doc)
    if payment.type != PaymentType.booking_split or payment.status != PaymentStatus.pending:
        raise ConflictError("Only pending split payments can be reminded.")
    if not payment.match_id:
        raise NotFoundError("Match not found.")
    match = await load_match(payment.match_id)
    if match.manager_id != session.user_id:
        raise PermissionDenied("Only the match manager can send payment reminders.")

    batch = WriteBatch(source="settlement_service.remind")
    batch.notify(
        payment.payer_id,
        f"Reminder: You have a pending payment for the game on {format_match_day(match.date)}.",
        PAYMENTS_LINK,
        type=NotificationType.payment_reminder.value,
        payload={"payment_id": payment.id, "match_id": match.id},
    )
    await batch.commit()


async def stage_cancellation(batch: WriteBatch, match: MatchInDB, reservation: ReservationInDB) -> list[str]:
    """Stage refund/cancel of every payment of the reservation plus its deletion.

    Paid payments become Refunded, pending ones Cancelled. Every distinct
    payer and the manager get one cancellation notice. Returns the notified
    user ids.
    """
    payments = await _db.db.payments.find({"reservation_id": reservation.id}).to_list(length=500)
    now = utcnow()
    batch.update_many(
        "payments",
        {"reservation_id": reservation.id, "status": PaymentStatus.paid.value},
        {"$set": {"status": PaymentStatus.refunded.value, "updated_at": now}},
    )
    batch.update_many(
        "payments",
        {"reservation_id": reservation.id, "status": PaymentStatus.pending.value},
        {"$set": {"status": PaymentStatus.cancelled.value, "updated_at": now}},
    )

    outcome = {
        PaymentStatus.paid.value: PaymentStatus.refunded.value,
        PaymentStatus.pending.value: PaymentStatus.cancelled.value,
    }
    recipients: list[str] = []
    for payment in payments:
        payer_id = str(payment["payer_id"])
        if payer_id not in recipients:
            recipients.append(payer_id)
        new_status = outcome.get(payment.get("status"))
        if new_status:
            batch.publish(
                PaymentUpdatedEvent(
                    source="settlement_service",
                    payment_id=str(payment["_id"]),
                    reservation_id=reservation.id,
                    match_id=match.id,
                    payer_id=payer_id,
                    new_status=new_status,
                )
            )
    if match.manager_id and match.manager_id not in recipients:
        recipients.append(match.manager_id)

    day = format_match_day(match.date)
    for recipient_id in recipients:
        batch.notify(
            recipient_id,
            f"The game on {day} has been cancelled. Payments have been refunded/cancelled.",
            PAYMENTS_LINK,
            type=NotificationType.match_cancelled.value,
            payload={"match_id": match.id},
        )
    batch.delete("reservations", {"_id": to_object_id(reservation.id)})
    return recipients


async def list_payments_for_session(session, status: Optional[str] = None, limit: int = 100) -> list[dict]:
    query: dict = {"payer_id": session.user_id}
    if status:
        query["status"] = status
    return await _db.db.payments.find(query).sort("created_at", -1).to_list(length=limit)
