from typing import List, Literal

from pydantic import BaseModel

MatchResult = Literal["W", "D", "L"]

# Rolling form keeps the most recent results only.
RECENT_FORM_LENGTH = 5


class TeamInDB(BaseModel):
    """Team document as stored in MongoDB."""
    id: str
    name: str
    manager_id: str
    player_ids: List[str] = []
    wins: int = 0
    losses: int = 0
    draws: int = 0
    recent_form: List[MatchResult] = []


class PlayerProfileInDB(BaseModel):
    """Career statistics of one player, keyed by the user id in user_ref."""
    id: str
    user_ref: str
    goals: int = 0
    assists: int = 0
    yellow_cards: int = 0
    red_cards: int = 0
    victories: int = 0
    defeats: int = 0
    draws: int = 0
    mvps: int = 0
    recent_form: List[MatchResult] = []
