"""
backend/pitchside/models/match.py

Purpose:
    Match record, live event log entries and the derived views (scoreboard,
    per-player stats, match report) exchanged between the state machine, the
    event recorder and the API layer.

Dependencies:
    - pydantic
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

TeamSide = Literal["A", "B"]


class MatchStatus(str, Enum):
    pending_opponent = "PendingOpponent"
    scheduled = "Scheduled"
    in_progress = "InProgress"
    finished = "Finished"
    cancelled = "Cancelled"


# Statuses before kickoff: roster and settings may still change.
PRE_START_STATUSES = (MatchStatus.pending_opponent.value, MatchStatus.scheduled.value)


class MatchEventType(str, Enum):
    goal = "Goal"
    assist = "Assist"
    yellow_card = "YellowCard"
    red_card = "RedCard"


# Points per event used to rank the match MVP.
MVP_EVENT_SCORE = {
    MatchEventType.goal: 3,
    MatchEventType.assist: 2,
    MatchEventType.yellow_card: -1,
    MatchEventType.red_card: -3,
}


class MatchEvent(BaseModel):
    """One immutable entry of the live event log."""
    id: str
    type: MatchEventType
    player_id: str
    player_name: str = ""
    team_id: TeamSide
    minute: int = Field(ge=0)
    timestamp: datetime


class MatchInDB(BaseModel):
    """Full match document as stored in MongoDB."""
    id: str
    date: datetime
    pitch_id: str
    reservation_id: Optional[str] = None
    manager_id: Optional[str] = None
    status: MatchStatus = MatchStatus.pending_opponent
    team_a_id: Optional[str] = None
    team_b_id: Optional[str] = None  # None = practice match
    team_a_players: List[str] = []
    team_b_players: List[str] = []
    player_applications: List[str] = []
    allow_external_players: bool = True
    allow_challenges: bool = False
    roster_split_saved: bool = False
    events: List[MatchEvent] = []
    score_a: int = 0
    score_b: int = 0
    mvp_player_id: Optional[str] = None
    mvp_votes_finalized: bool = False  # set once the vote result replaced the event MVP
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_practice(self) -> bool:
        return self.team_b_id is None

    @property
    def confirmed_players(self) -> List[str]:
        return list(self.team_a_players) + list(self.team_b_players)

    def side_of(self, player_id: str) -> Optional[TeamSide]:
        if player_id in self.team_a_players:
            return "A"
        if player_id in self.team_b_players:
            return "B"
        return None


class MatchSettingsUpdate(BaseModel):
    """Request body for toggling the open intake channels."""
    allow_external_players: Optional[bool] = None
    allow_challenges: Optional[bool] = None


class RosterSplitUpdate(BaseModel):
    """Request body for saving a manual A/B split of a practice match."""
    team_a_players: List[str]
    team_b_players: List[str]
    expected_version: Optional[int] = None  # omit for last-write-wins


class MatchEventCreate(BaseModel):
    player_id: str
    type: MatchEventType
    minute: int = Field(ge=0)


class Scoreboard(BaseModel):
    score_a: int = 0
    score_b: int = 0


class PlayerMatchStats(BaseModel):
    """Per-player aggregate of one match's event log."""
    player_id: str
    player_name: str = ""
    team_id: Optional[TeamSide] = None
    goals: int = 0
    assists: int = 0
    yellow_cards: int = 0
    red_cards: int = 0
    mvp_score: int = 0


class MatchReport(BaseModel):
    match_id: str
    status: MatchStatus
    scoreboard: Scoreboard
    players: List[PlayerMatchStats] = []
    mvp_player_id: Optional[str] = None
    finished_at: Optional[datetime] = None


class MatchResponse(BaseModel):
    """Match data returned to the client."""
    id: str
    date: datetime
    pitch_id: str
    reservation_id: Optional[str] = None
    manager_id: Optional[str] = None
    status: MatchStatus
    team_a_id: Optional[str] = None
    team_b_id: Optional[str] = None
    team_a_players: List[str] = []
    team_b_players: List[str] = []
    player_applications: List[str] = []
    allow_external_players: bool
    allow_challenges: bool
    events: List[MatchEvent] = []
    score_a: int = 0
    score_b: int = 0
    mvp_player_id: Optional[str] = None
    mvp_votes_finalized: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    version: int = 0
