from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel


class MvpVoteCreate(BaseModel):
    """Request body for casting an MVP vote."""
    voted_for_id: str


class MvpVoteSummary(BaseModel):
    match_id: str
    voting_open: bool
    closes_at: Optional[datetime] = None
    total_votes: int = 0
    votes: Dict[str, int] = {}
    leader_id: Optional[str] = None
    my_vote: Optional[str] = None
    finalized: bool = False
