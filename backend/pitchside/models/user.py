from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, EmailStr


class UserRole(str, Enum):
    PLAYER = "PLAYER"
    MANAGER = "MANAGER"
    OWNER = "OWNER"
    PROMOTER = "PROMOTER"
    REFEREE = "REFEREE"
    ADMIN = "ADMIN"


class UserInDB(BaseModel):
    """Full user document as stored in MongoDB."""
    email: EmailStr
    hashed_password: str
    name: str
    role: UserRole = UserRole.PLAYER
    is_deleted: bool = False
    created_at: datetime
    updated_at: datetime


class SignInRequest(BaseModel):
    """Request body for sign-in."""
    email: EmailStr
    password: str


class SessionResponse(BaseModel):
    """Active session returned to the client."""
    user_id: str
    name: str
    role: UserRole
    expires_at: datetime
    session_id: Optional[str] = None
