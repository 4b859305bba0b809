from datetime import date

from fastapi import APIRouter, Depends, Query

from pitchside.models.pitch import SlotInfo
from pitchside.services.session_service import SessionContext, get_session
from pitchside.services.slot_service import list_day_slots

router = APIRouter(prefix="/api/pitches", tags=["pitches"])


@router.get("/{pitch_id}/slots", response_model=list[SlotInfo])
async def day_slots(
    pitch_id: str,
    day: date = Query(..., description="Calendar day, YYYY-MM-DD"),
    session: SessionContext = Depends(get_session),
):
    """Hourly slots of one pitch day as seen by the caller."""
    return await list_day_slots(pitch_id, day, session)
