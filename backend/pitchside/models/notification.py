from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel


class NotificationType(str, Enum):
    challenge = "Challenge"
    challenge_response = "ChallengeResponse"
    match_invitation = "MatchInvitation"
    invitation_response = "InvitationResponse"
    application = "Application"
    application_response = "ApplicationResponse"
    match_created = "MatchCreated"
    match_cancelled = "MatchCancelled"
    payment_request = "PaymentRequest"
    payment_reminder = "PaymentReminder"
    payment_completed = "PaymentCompleted"


class NotificationInDB(BaseModel):
    """Inbox entry as stored in MongoDB."""
    id: str
    recipient_id: str
    message: str
    link: str = ""
    type: Optional[NotificationType] = None
    payload: Optional[Dict[str, Any]] = None
    status: Optional[str] = None  # challenges only: pending | accepted | declined
    read: bool = False
    created_at: datetime


class NotificationResponse(BaseModel):
    id: str
    message: str
    link: str = ""
    type: Optional[NotificationType] = None
    payload: Optional[Dict[str, Any]] = None
    status: Optional[str] = None
    read: bool = False
    created_at: datetime
