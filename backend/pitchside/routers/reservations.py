from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from pitchside.models.common import from_doc
from pitchside.models.payment import ReservationInDB, ReservationResponse
from pitchside.services.reservation_service import cancel_reservation, confirm_reservation, list_reservations
from pitchside.services.session_service import SessionContext, get_session

router = APIRouter(prefix="/api/reservations", tags=["reservations"])


@router.get("/", response_model=list[ReservationResponse])
async def reservations(
    status_filter: Optional[str] = Query(None, alias="status"),
    session: SessionContext = Depends(get_session),
):
    docs = await list_reservations(session, status=status_filter)
    return [
        ReservationResponse.model_validate({**from_doc(ReservationInDB, d).model_dump(), "match_id": d.get("match_id")})
        for d in docs
    ]


@router.post("/{reservation_id}/confirm", response_model=ReservationResponse)
async def confirm(reservation_id: str, request: Request, session: SessionContext = Depends(get_session)):
    """Owner confirms a pending booking; the match is created with it."""
    return await confirm_reservation(session, reservation_id, request=request)


@router.post("/{reservation_id}/cancel", response_model=ReservationResponse)
async def cancel(reservation_id: str, session: SessionContext = Depends(get_session)):
    return await cancel_reservation(session, reservation_id)
