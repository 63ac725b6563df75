"""Authentication API endpoints."""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_request_meta, get_session_protocol, require_roles
from app.models.user import Usuario
from app.schemas.auth import (
    MessageResponse,
    SessionRef,
    SessionRefresh,
    SessionTokens,
    UserLogin,
    UserRegister,
    UserResponse,
)
from app.services.credentials import authenticate, register_user
from app.services.session_protocol import IssuedSession, RequestMeta, SessionProtocol

router = APIRouter(prefix="/auth", tags=["auth"])


def _tokens(issued: IssuedSession) -> SessionTokens:
    return SessionTokens(
        access_token=issued.access_token,
        refresh_token=issued.refresh_token,
        session_id=issued.session_id,
        expires_at=issued.expires_at,
    )


@router.post("/login", response_model=SessionTokens)
def login(
    credentials: UserLogin,
    meta: RequestMeta = Depends(get_request_meta),
    db: Session = Depends(get_db),
    protocol: SessionProtocol = Depends(get_session_protocol),
):
    """Login and open a new session."""
    user = authenticate(db, credentials.email, credentials.password)
    return _tokens(protocol.create(user, meta))


@router.post("/register", response_model=SessionTokens, status_code=status.HTTP_201_CREATED)
def register(
    user_data: UserRegister,
    db: Session = Depends(get_db),
    protocol: SessionProtocol = Depends(get_session_protocol),
):
    """Register a new user and open their first session."""
    user = register_user(
        db,
        nombre=user_data.nombre,
        apellido=user_data.apellido,
        email=user_data.email,
        password=user_data.password,
        rol=user_data.rol,
    )
    # Registration sessions start without a client fingerprint.
    return _tokens(protocol.create(user, RequestMeta()))


@router.post("/refresh", response_model=SessionTokens)
def refresh_tokens(
    body: SessionRefresh,
    meta: RequestMeta = Depends(get_request_meta),
    protocol: SessionProtocol = Depends(get_session_protocol),
):
    """Rotate the session's refresh token and issue a new access token."""
    return _tokens(protocol.refresh(body.session_id, body.refresh_token, meta))


@router.post("/logout", response_model=MessageResponse)
def logout(body: SessionRef, protocol: SessionProtocol = Depends(get_session_protocol)):
    """Close one session."""
    return MessageResponse(message=protocol.logout(body.session_id))


@router.post("/logout-all", response_model=MessageResponse)
def logout_all(body: SessionRef, protocol: SessionProtocol = Depends(get_session_protocol)):
    """Close every session of the user owning ``session_id``."""
    return MessageResponse(message=protocol.logout_all(body.session_id))


@router.get("/me", response_model=UserResponse)
def me(current_user: Usuario = Depends(require_roles())):
    return current_user
