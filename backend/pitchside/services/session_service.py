"""
backend/pitchside/services/session_service.py

Purpose:
    Explicitly scoped sessions. Sign-in verifies the password, stores a
    session record and issues a JWT cookie whose jti is that record's id;
    sign-out deletes the record, which revokes the token immediately. Every
    request resolves its own SessionContext, which is passed to the services
    as an argument. Nothing about the signed-in user is held process-wide.

Dependencies:
    - PyJWT
    - argon2-cffi
    - pitchside.database
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerifyMismatchError
from fastapi import HTTPException, Request, Response, status
from jwt.exceptions import InvalidTokenError as JWTError

import pitchside.database as _db
from pitchside.config import settings
from pitchside.errors import NotFoundError
from pitchside.models.common import to_object_id
from pitchside.models.user import UserRole
from pitchside.services.audit_service import log_audit
from pitchside.utils import ensure_utc, utcnow

logger = logging.getLogger("pitchside.session")
ph = PasswordHasher()

ALGORITHM = "HS256"
SESSION_COOKIE = "session_token"


@dataclass(frozen=True)
class SessionContext:
    """The authenticated actor of one request."""
    session_id: str
    user_id: str
    role: str
    name: str = ""
    expires_at: Optional[datetime] = None

    @property
    def is_manager(self) -> bool:
        return self.role == UserRole.MANAGER.value

    @property
    def is_player(self) -> bool:
        return self.role == UserRole.PLAYER.value


def decode_jwt(token: str) -> dict:
    """Decode a JWT, trying the current secret first, then the old one.

    This allows zero-downtime rotation of JWT_SECRET: set JWT_SECRET to the
    new value and JWT_SECRET_OLD to the previous one, then clear
    JWT_SECRET_OLD once SESSION_EXPIRE_HOURS have passed.
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[ALGORITHM])
    except JWTError:
        if settings.JWT_SECRET_OLD:
            return jwt.decode(token, settings.JWT_SECRET_OLD, algorithms=[ALGORITHM])
        raise


def hash_password(password: str) -> str:
    return ph.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    try:
        return ph.verify(hashed, password)
    except (VerifyMismatchError, InvalidHashError):
        return False


def create_session_token(session_id: str, user_id: str, expires_at: datetime) -> str:
    payload = {
        "sub": user_id,
        "exp": expires_at,
        "type": "session",
        "jti": session_id,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=ALGORITHM)


async def open_session(email: str, password: str, request: Optional[Request] = None) -> tuple[str, SessionContext]:
    """Sign in: verify credentials and create a new session record."""
    user = await _db.db.users.find_one({"email": email.strip().lower(), "is_deleted": False})
    if not user or not verify_password(password, user.get("hashed_password", "")):
        logger.warning("Sign-in rejected for %s", email)
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid email or password.")

    now = utcnow()
    expires_at = now + timedelta(hours=settings.SESSION_EXPIRE_HOURS)
    session_id = secrets.token_hex(16)
    user_id = str(user["_id"])
    role = str(user.get("role") or UserRole.PLAYER.value)

    await _db.db.sessions.insert_one({
        "_id": session_id,
        "user_id": user_id,
        "role": role,
        "created_at": now,
        "expires_at": expires_at,
    })
    await log_audit(actor_id=user_id, target_id=user_id, action="SESSION_OPENED", request=request)
    logger.info("Session opened for user %s", user_id)

    ctx = SessionContext(
        session_id=session_id,
        user_id=user_id,
        role=role,
        name=str(user.get("name") or ""),
        expires_at=expires_at,
    )
    return create_session_token(session_id, user_id, expires_at), ctx


async def close_session(ctx: SessionContext, request: Optional[Request] = None) -> None:
    """Sign out: tear the session down so its token stops resolving."""
    await _db.db.sessions.delete_one({"_id": ctx.session_id})
    await log_audit(actor_id=ctx.user_id, target_id=ctx.user_id, action="SESSION_CLOSED", request=request)
    logger.info("Session closed for user %s", ctx.user_id)


async def resolve_session(token: Optional[str]) -> Optional[SessionContext]:
    """Turn a session token into a SessionContext, or None if it is not valid."""
    if not token:
        return None
    try:
        payload = decode_jwt(token)
    except JWTError:
        return None
    if payload.get("type") != "session" or not payload.get("jti") or not payload.get("sub"):
        return None

    record = await _db.db.sessions.find_one({"_id": payload["jti"]})
    if not record or record.get("user_id") != payload["sub"]:
        return None
    expires_at = record.get("expires_at")
    if expires_at and ensure_utc(expires_at) <= utcnow():
        return None

    try:
        user_oid = to_object_id(payload["sub"], what="User")
    except NotFoundError:
        return None
    user = await _db.db.users.find_one({"_id": user_oid, "is_deleted": False}, {"name": 1, "role": 1})
    if not user:
        return None

    return SessionContext(
        session_id=payload["jti"],
        user_id=payload["sub"],
        role=str(user.get("role") or record.get("role") or UserRole.PLAYER.value),
        name=str(user.get("name") or ""),
        expires_at=ensure_utc(expires_at) if expires_at else None,
    )


async def get_session(request: Request) -> SessionContext:
    """FastAPI dependency: the session of the calling client."""
    ctx = await resolve_session(request.cookies.get(SESSION_COOKIE))
    if ctx is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Not signed in.")
    request.state.user_id = ctx.user_id
    return ctx


def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=SESSION_COOKIE,
        value=token,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        max_age=settings.SESSION_EXPIRE_HOURS * 3600,
        path="/",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE, path="/")
