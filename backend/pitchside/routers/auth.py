import logging

from fastapi import APIRouter, Depends, Request, Response

from pitchside.models.user import SessionResponse, SignInRequest
from pitchside.services.session_service import (
    SessionContext,
    clear_session_cookie,
    close_session,
    get_session,
    open_session,
    set_session_cookie,
)

logger = logging.getLogger("pitchside.auth")
router = APIRouter(prefix="/api/auth", tags=["auth"])


def _session_response(ctx: SessionContext) -> SessionResponse:
    return SessionResponse(
        user_id=ctx.user_id,
        name=ctx.name,
        role=ctx.role,
        expires_at=ctx.expires_at,
        session_id=ctx.session_id,
    )


@router.post("/sign-in", response_model=SessionResponse)
async def sign_in(body: SignInRequest, request: Request, response: Response):
    """Sign in with email and password; the session travels in an httpOnly cookie."""
    token, ctx = await open_session(body.email, body.password, request)
    set_session_cookie(response, token)
    return _session_response(ctx)


@router.post("/sign-out")
async def sign_out(request: Request, response: Response, session: SessionContext = Depends(get_session)):
    await close_session(session, request)
    clear_session_cookie(response)
    return {"message": "Signed out."}


@router.get("/me", response_model=SessionResponse)
async def me(session: SessionContext = Depends(get_session)):
    return _session_response(session)
