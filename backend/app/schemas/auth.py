"""Authentication schemas."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.models.user import RolUsuario


class UserRegister(BaseModel):
    """User registration request."""

    nombre: str = Field(..., min_length=1, max_length=100)
    apellido: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6)
    rol: RolUsuario


class UserLogin(BaseModel):
    """User login request."""

    email: EmailStr
    password: str


class SessionRefresh(BaseModel):
    """Token refresh request."""

    session_id: str
    refresh_token: str


class SessionRef(BaseModel):
    """Logout / logout-all request."""

    session_id: str


class SessionTokens(BaseModel):
    """Token pair bound to a session."""

    access_token: str
    refresh_token: str
    session_id: str
    expires_at: datetime
    token_type: str = "bearer"


class UserResponse(BaseModel):
    """User info response."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    nombre: str
    apellido: str
    email: str
    rol: RolUsuario
    created_at: datetime | None = None


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str
