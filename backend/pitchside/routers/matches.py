from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status

from pitchside.models.common import from_doc
from pitchside.models.match import (
    MatchEvent,
    MatchEventCreate,
    MatchInDB,
    MatchReport,
    MatchResponse,
    MatchSettingsUpdate,
    RosterSplitUpdate,
    Scoreboard,
)
from pitchside.models.mvp import MvpVoteCreate, MvpVoteSummary
from pitchside.models.payment import PaymentResponse, SplitPaymentResult
from pitchside.models.roster import (
    ChallengeCreate,
    ChallengeResponse,
    InvitationCreate,
    InvitationResponse,
    PlayerInvitationInDB,
    RespondRequest,
    RosterView,
)
from pitchside.services import match_event_service, match_service, mvp_service, roster_service
from pitchside.services.session_service import SessionContext, get_session
from pitchside.services.settlement_service import initiate_split_payment, pay_in_full

router = APIRouter(prefix="/api/matches", tags=["matches"])


def _match_response(match: MatchInDB) -> MatchResponse:
    return MatchResponse.model_validate(match.model_dump())


@router.get("/", response_model=list[MatchResponse])
async def list_matches(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    session: SessionContext = Depends(get_session),
):
    """Matches the caller manages or plays in, newest first."""
    docs = await match_service.list_matches_for_session(session, status=status_filter, limit=limit)
    return [_match_response(from_doc(MatchInDB, d)) for d in docs]


@router.get("/{match_id}", response_model=MatchResponse)
async def get_match(match_id: str, session: SessionContext = Depends(get_session)):
    return _match_response(await match_service.get_match(match_id))


@router.patch("/{match_id}/settings", response_model=MatchResponse)
async def update_settings(match_id: str, body: MatchSettingsUpdate, session: SessionContext = Depends(get_session)):
    return _match_response(await match_service.update_match_settings(session, match_id, body))


@router.put("/{match_id}/split", response_model=MatchResponse)
async def save_split(match_id: str, body: RosterSplitUpdate, session: SessionContext = Depends(get_session)):
    """Save the A/B split of a practice match before kickoff."""
    return _match_response(await match_service.save_roster_split(session, match_id, body))


@router.post("/{match_id}/start", response_model=MatchResponse)
async def start(match_id: str, request: Request, session: SessionContext = Depends(get_session)):
    return _match_response(await match_service.start_match(session, match_id, request=request))


@router.post("/{match_id}/finalize", response_model=MatchReport)
async def finalize(match_id: str, request: Request, session: SessionContext = Depends(get_session)):
    return await match_service.finalize_match(session, match_id, request=request)


@router.delete("/{match_id}")
async def delete(match_id: str, request: Request, session: SessionContext = Depends(get_session)):
    """Cancel the match; payments are refunded or cancelled."""
    notified = await match_service.delete_match(session, match_id, request=request)
    return {"message": "Match cancelled.", "notified": len(notified)}


# ---------- Live events ----------

@router.post("/{match_id}/events", status_code=status.HTTP_201_CREATED, response_model=MatchEvent)
async def record_event(match_id: str, body: MatchEventCreate, session: SessionContext = Depends(get_session)):
    return await match_event_service.record_event(session, match_id, body)


@router.get("/{match_id}/scoreboard", response_model=Scoreboard)
async def scoreboard(match_id: str, session: SessionContext = Depends(get_session)):
    return await match_event_service.get_scoreboard(match_id)


@router.get("/{match_id}/report", response_model=MatchReport)
async def report(match_id: str, session: SessionContext = Depends(get_session)):
    return await match_event_service.build_match_report(match_id)


# ---------- Roster ----------

@router.get("/{match_id}/roster", response_model=RosterView)
async def roster(match_id: str, session: SessionContext = Depends(get_session)):
    return await roster_service.get_roster(match_id)


@router.post("/{match_id}/invitations", status_code=status.HTTP_201_CREATED, response_model=InvitationResponse)
async def invite(match_id: str, body: InvitationCreate, session: SessionContext = Depends(get_session)):
    invitation = await roster_service.invite_player(session, match_id, body)
    return InvitationResponse.model_validate(from_doc(PlayerInvitationInDB, invitation).model_dump())


@router.post("/{match_id}/applications", status_code=status.HTTP_201_CREATED)
async def apply(match_id: str, session: SessionContext = Depends(get_session)):
    await roster_service.apply_to_match(session, match_id)
    return {"message": "Application sent."}


@router.post("/{match_id}/applications/{player_id}")
async def respond_application(
    match_id: str,
    player_id: str,
    body: RespondRequest,
    session: SessionContext = Depends(get_session),
):
    await roster_service.respond_to_application(session, match_id, player_id, body.accept)
    return {"message": "Application accepted." if body.accept else "Application declined."}


@router.post("/{match_id}/challenges", status_code=status.HTTP_201_CREATED, response_model=ChallengeResponse)
async def challenge(match_id: str, body: ChallengeCreate, session: SessionContext = Depends(get_session)):
    return await roster_service.send_challenge(session, match_id, body.team_id)


@router.get("/{match_id}/challenges", response_model=list[ChallengeResponse])
async def list_challenges(match_id: str, session: SessionContext = Depends(get_session)):
    return await roster_service.list_challenges(session, match_id)


# ---------- Settlement / MVP ----------

@router.post("/{match_id}/split-payment", response_model=SplitPaymentResult)
async def split_payment(match_id: str, request: Request, session: SessionContext = Depends(get_session)):
    """Manager pays the booking; every confirmed player gets a share to pay."""
    return await initiate_split_payment(session, match_id, request=request)


@router.post("/{match_id}/pay-in-full", response_model=PaymentResponse)
async def pay_booking_in_full(match_id: str, request: Request, session: SessionContext = Depends(get_session)):
    """Manager pays the whole booking; the reservation is settled at once."""
    payment = await pay_in_full(session, match_id, request=request)
    return PaymentResponse.model_validate(payment.model_dump())


@router.get("/{match_id}/mvp", response_model=MvpVoteSummary)
async def mvp_summary(match_id: str, session: SessionContext = Depends(get_session)):
    return await mvp_service.get_vote_summary(session, match_id)


@router.post("/{match_id}/mvp", response_model=MvpVoteSummary)
async def mvp_vote(match_id: str, body: MvpVoteCreate, session: SessionContext = Depends(get_session)):
    return await mvp_service.cast_vote(session, match_id, body.voted_for_id)


@router.post("/{match_id}/mvp/finalize", response_model=MvpVoteSummary)
async def mvp_finalize(match_id: str, request: Request, session: SessionContext = Depends(get_session)):
    """Manager closes voting; the vote leader becomes the match MVP."""
    return await mvp_service.finalize_votes(session, match_id, request=request)
