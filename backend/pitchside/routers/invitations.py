from fastapi import APIRouter, Depends

from pitchside.models.common import from_doc
from pitchside.models.roster import InvitationResponse, PlayerInvitationInDB, RespondRequest
from pitchside.services.roster_service import list_invitations_for_session, respond_to_invitation
from pitchside.services.session_service import SessionContext, get_session

router = APIRouter(prefix="/api/invitations", tags=["invitations"])


def _invitation_response(doc: dict) -> InvitationResponse:
    return InvitationResponse.model_validate(from_doc(PlayerInvitationInDB, doc).model_dump())


@router.get("/", response_model=list[InvitationResponse])
async def my_invitations(session: SessionContext = Depends(get_session)):
    """Pending invitations addressed to the caller."""
    return [_invitation_response(d) for d in await list_invitations_for_session(session)]


@router.post("/{invitation_id}/respond", response_model=InvitationResponse)
async def respond(invitation_id: str, body: RespondRequest, session: SessionContext = Depends(get_session)):
    return _invitation_response(await respond_to_invitation(session, invitation_id, body.accept))
