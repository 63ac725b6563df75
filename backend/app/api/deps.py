"""Shared API dependencies."""
from collections.abc import Callable
from datetime import datetime

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from app.database import get_db
from app.errors import Forbidden, InvalidAccessToken
from app.models.user import RolUsuario, Usuario
from app.services.session_protocol import RequestMeta, SessionProtocol
from app.services.session_store import SqlAlchemySessionStore
from app.services.tokens import TokenSigner

__all__ = [
    "get_db",
    "get_clock",
    "get_request_meta",
    "get_session_protocol",
    "get_current_user",
    "require_roles",
]


def get_clock() -> Callable[[], datetime]:
    """Clock used for session timestamps (naive UTC)."""
    return datetime.utcnow


def get_request_ip(request: Request) -> str | None:
    """Extract best-effort client IP for session metadata."""
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip() or None
    if request.client:
        return request.client.host
    return None


def get_request_meta(request: Request) -> RequestMeta:
    return RequestMeta(
        ip=get_request_ip(request),
        user_agent=request.headers.get("user-agent") or None,
        device=request.headers.get("x-device") or None,
    )


def get_session_protocol(
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> SessionProtocol:
    return SessionProtocol(SqlAlchemySessionStore(db), clock=clock)


def get_bearer_token(authorization: str | None = Header(None, alias="Authorization")) -> str:
    if not authorization:
        raise InvalidAccessToken("Missing Authorization header")
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise InvalidAccessToken("Invalid Authorization header")
    return parts[1]


def get_current_user(
    token: str = Depends(get_bearer_token),
    db: Session = Depends(get_db),
) -> Usuario:
    """Resolve the account behind a bearer access token."""
    payload = TokenSigner().decode(token)
    user = db.get(Usuario, payload["sub"])
    if user is None:
        raise InvalidAccessToken("User not found")
    return user


def require_roles(*roles: RolUsuario) -> Callable[[Usuario], Usuario]:
    """
    Use: Depends(require_roles(RolUsuario.ADMIN, RolUsuario.SECRETARIA))
    With no roles, any authenticated user passes.
    """
    allowed = set(roles)

    def _checker(user: Usuario = Depends(get_current_user)) -> Usuario:
        if allowed and user.rol not in allowed:
            raise Forbidden(f"Role '{user.rol.value}' is not allowed here")
        return user

    return _checker
