"""Reservation and payment models for settlement."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


# ---------- Reservation ----------

class ReservationStatus(str, Enum):
    pending = "Pending"
    confirmed = "Confirmed"
    canceled = "Canceled"


class ReservationPaymentStatus(str, Enum):
    pending = "Pending"
    split = "Split"
    paid = "Paid"


class ReservationInDB(BaseModel):
    """Field booking as written by the booking gateway."""
    id: str
    pitch_id: str
    pitch_name: str = ""
    date: datetime
    total_amount: float
    actor_id: str
    actor_role: str
    team_id: Optional[str] = None
    status: ReservationStatus = ReservationStatus.pending
    payment_status: ReservationPaymentStatus = ReservationPaymentStatus.pending


class ReservationResponse(BaseModel):
    id: str
    pitch_id: str
    pitch_name: str = ""
    date: datetime
    total_amount: float
    status: ReservationStatus
    payment_status: ReservationPaymentStatus
    match_id: Optional[str] = None


# ---------- Payment ----------

class PaymentType(str, Enum):
    booking = "booking"
    booking_split = "booking_split"


class PaymentStatus(str, Enum):
    pending = "Pending"
    paid = "Paid"
    cancelled = "Cancelled"
    refunded = "Refunded"


class PaymentInDB(BaseModel):
    id: str
    payer_id: str
    payer_role: str
    reservation_id: str
    match_id: Optional[str] = None
    type: PaymentType
    amount: float
    status: PaymentStatus = PaymentStatus.pending
    split_remainder: float = 0.0  # booking payments only
    created_at: datetime
    paid_at: Optional[datetime] = None


class PaymentResponse(BaseModel):
    """Payment data returned to the client."""
    id: str
    reservation_id: str
    match_id: Optional[str] = None
    type: PaymentType
    amount: float
    status: PaymentStatus
    created_at: datetime
    paid_at: Optional[datetime] = None


class SplitPaymentResult(BaseModel):
    reservation_id: str
    manager_payment_id: str
    split_payment_ids: list[str]
    share: float
    remainder: float
