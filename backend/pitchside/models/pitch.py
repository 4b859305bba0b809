"""Pitch, promotion and slot availability models."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class Sport(str, Enum):
    fut5 = "fut5"
    futsal = "futsal"
    fut7 = "fut7"
    fut11 = "fut11"


# Players on both sides together.
PLAYER_CAPACITY = {
    Sport.fut5: 10,
    Sport.futsal: 10,
    Sport.fut7: 14,
    Sport.fut11: 22,
}

GAME_DURATION_MINUTES = {
    Sport.fut5: 40,
    Sport.futsal: 40,
    Sport.fut7: 50,
    Sport.fut11: 90,
}


def player_capacity(sport: Optional[str]) -> int:
    """Roster capacity for a sport; unknown sports have no capacity."""
    try:
        return PLAYER_CAPACITY[Sport(sport)]
    except ValueError:
        return 0


def game_duration(sport: Optional[str]) -> int:
    try:
        return GAME_DURATION_MINUTES[Sport(sport)]
    except ValueError:
        return 60


class PitchInDB(BaseModel):
    """Pitch document as stored in MongoDB (read-only for this service)."""
    id: str
    name: str
    owner_id: str
    sport: str
    base_price: float = 0.0
    allow_post_game_payments: bool = False
    allow_cancellations_after_payment: bool = False
    opening_hour: Optional[int] = None
    closing_hour: Optional[int] = None


class PromotionInDB(BaseModel):
    id: str
    name: str = ""
    discount_percent: float = Field(0.0, ge=0, le=100)
    valid_from: datetime
    valid_to: datetime
    applicable_days: List[int] = []  # 0=Sunday ... 6=Saturday, as the booking data stores them
    applicable_hours: List[int] = []
    pitch_ids: List[str] = []  # empty = every pitch

    def covers_day(self, moment: datetime) -> bool:
        # datetime.weekday() counts from Monday.
        return (moment.weekday() + 1) % 7 in self.applicable_days


class SlotStatus(str, Enum):
    past = "Past"
    pending = "Pending"
    live = "Live"
    booked = "Booked"
    open_for_team = "OpenForTeam"
    open_for_players = "OpenForPlayers"
    available = "Available"


class SlotInfo(BaseModel):
    """Resolved state of one hourly slot, as seen by one viewer."""
    start: datetime
    status: SlotStatus
    price: float
    match_id: Optional[str] = None
    reservation_id: Optional[str] = None
    promotion_id: Optional[str] = None
