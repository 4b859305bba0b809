"""
backend/pitchside/models/roster.py

Purpose:
    Roster intake records (invitations, challenges) and the resolved
    RosterEntry view handed to clients instead of raw records.

Dependencies:
    - pydantic
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ValidationError as PydanticValidationError

from pitchside.models.match import TeamSide
from pitchside.models.payment import PaymentStatus


class InvitationStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    declined = "declined"


class ChallengeStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    declined = "declined"


class PlayerInvitationInDB(BaseModel):
    id: str
    match_id: str
    team_id: Optional[str] = None
    player_id: str
    manager_id: str
    status: InvitationStatus = InvitationStatus.pending
    invited_at: datetime
    responded_at: Optional[datetime] = None


class InvitationCreate(BaseModel):
    """Request body for inviting a known player."""
    player_id: str
    team_id: Optional[str] = None  # defaults to the inviting manager's team


class InvitationResponse(BaseModel):
    id: str
    match_id: str
    team_id: Optional[str] = None
    player_id: str
    status: InvitationStatus
    invited_at: datetime
    responded_at: Optional[datetime] = None


class RespondRequest(BaseModel):
    """Accept/decline body shared by invitations, applications and challenges."""
    accept: bool


class ChallengeCreate(BaseModel):
    team_id: str  # challenging team


class ChallengePayload(BaseModel):
    """Payload a Challenge notification must carry to be actionable."""
    match_id: str
    challenger_team_id: str
    challenger_team_name: str
    challenger_manager_id: str

    @classmethod
    def parse(cls, raw: object) -> Optional["ChallengePayload"]:
        """Return the payload, or None when it is missing or malformed."""
        if not isinstance(raw, dict):
            return None
        try:
            payload = cls.model_validate(raw)
        except PydanticValidationError:
            return None
        if not all((payload.match_id, payload.challenger_team_id, payload.challenger_manager_id)):
            return None
        return payload


class ChallengeResponse(BaseModel):
    id: str
    match_id: str
    challenger_team_id: str
    challenger_team_name: str
    challenger_manager_id: str
    status: ChallengeStatus
    created_at: datetime


# ---------- Roster view ----------

class RosterEntryStatus(str, Enum):
    confirmed = "confirmed"
    invited = "invited"
    applied = "applied"
    declined = "declined"


class RosterPlayer(BaseModel):
    id: str
    name: str = ""


class RosterPayment(BaseModel):
    id: str
    status: PaymentStatus
    amount: float


class RosterEntry(BaseModel):
    """One resolved roster row: who, where they stand, which side, what they owe."""
    player: RosterPlayer
    status: RosterEntryStatus
    team: Optional[TeamSide] = None
    payment: Optional[RosterPayment] = None


class RosterView(BaseModel):
    match_id: str
    capacity: int
    confirmed_count: int
    entries: List[RosterEntry] = []
