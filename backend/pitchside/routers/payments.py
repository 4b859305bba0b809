from typing import Optional

from fastapi import APIRouter, Depends, Query

from pitchside.models.common import from_doc
from pitchside.models.payment import PaymentInDB, PaymentResponse
from pitchside.services.session_service import SessionContext, get_session
from pitchside.services.settlement_service import list_payments_for_session, pay_own_payment, remind_payment

router = APIRouter(prefix="/api/payments", tags=["payments"])


def _payment_response(payment: PaymentInDB) -> PaymentResponse:
    return PaymentResponse.model_validate(payment.model_dump())


@router.get("/", response_model=list[PaymentResponse])
async def my_payments(
    status_filter: Optional[str] = Query(None, alias="status"),
    session: SessionContext = Depends(get_session),
):
    docs = await list_payments_for_session(session, status=status_filter)
    return [_payment_response(from_doc(PaymentInDB, d)) for d in docs]


@router.post("/{payment_id}/pay", response_model=PaymentResponse)
async def pay(payment_id: str, session: SessionContext = Depends(get_session)):
    """Pay one of your own pending shares."""
    return _payment_response(await pay_own_payment(session, payment_id))


@router.post("/{payment_id}/remind")
async def remind(payment_id: str, session: SessionContext = Depends(get_session)):
    await remind_payment(session, payment_id)
    return {"message": "Reminder sent."}
