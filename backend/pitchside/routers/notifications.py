from fastapi import APIRouter, Depends, Query

from pitchside.models.common import from_doc
from pitchside.models.notification import NotificationInDB, NotificationResponse
from pitchside.services.notification_service import list_notifications, mark_all_read, mark_read
from pitchside.services.session_service import SessionContext, get_session

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("/", response_model=list[NotificationResponse])
async def inbox(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    session: SessionContext = Depends(get_session),
):
    docs = await list_notifications(session, unread_only=unread_only, limit=limit)
    return [NotificationResponse.model_validate(from_doc(NotificationInDB, d).model_dump()) for d in docs]


@router.post("/{notification_id}/read")
async def read(notification_id: str, session: SessionContext = Depends(get_session)):
    await mark_read(session, notification_id)
    return {"message": "Marked as read."}


@router.post("/read-all")
async def read_all(session: SessionContext = Depends(get_session)):
    updated = await mark_all_read(session)
    return {"updated": updated}
