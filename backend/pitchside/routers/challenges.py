from fastapi import APIRouter, Depends

from pitchside.models.roster import ChallengeResponse, RespondRequest
from pitchside.services.roster_service import respond_to_challenge
from pitchside.services.session_service import SessionContext, get_session

router = APIRouter(prefix="/api/challenges", tags=["challenges"])


@router.post("/{challenge_id}/respond", response_model=ChallengeResponse)
async def respond(challenge_id: str, body: RespondRequest, session: SessionContext = Depends(get_session)):
    """Accept or decline a team challenge. Accepting declines the competing ones."""
    return await respond_to_challenge(session, challenge_id, body.accept)
