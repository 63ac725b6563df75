"""Persistence capability used by the session protocol."""
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy.orm import Session

from app.models.auth import AuthSession
from app.models.user import Usuario


class SessionStore(Protocol):
    """Repository of session rows and their owning accounts."""

    def create_session(
        self,
        user_id: str,
        refresh_token_hash: str,
        expires_at: datetime,
        last_used_at: datetime,
        device: str | None,
        ip_address: str | None,
        user_agent: str | None,
    ) -> AuthSession: ...

    def find_session(self, session_id: str) -> AuthSession | None: ...

    def update_session(self, session_id: str, patch: dict[str, Any]) -> None: ...

    def update_many_sessions(self, user_id: str, patch: dict[str, Any]) -> int:
        """Apply ``patch`` to every session of ``user_id``, revoked or not."""
        ...

    def find_user(self, user_id: str) -> Usuario | None: ...


class SqlAlchemySessionStore:
    """SessionStore over a SQLAlchemy ORM session.

    Every write is committed immediately so that revocations triggered by a
    failing refresh survive the error response.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def create_session(
        self,
        user_id: str,
        refresh_token_hash: str,
        expires_at: datetime,
        last_used_at: datetime,
        device: str | None,
        ip_address: str | None,
        user_agent: str | None,
    ) -> AuthSession:
        session = AuthSession(
            user_id=user_id,
            refresh_token_hash=refresh_token_hash,
            expires_at=expires_at,
            last_used_at=last_used_at,
            created_at=last_used_at,
            device=device,
            ip_address=ip_address,
            user_agent=user_agent,
            revoked=False,
        )
        self.db.add(session)
        self.db.commit()
        self.db.refresh(session)
        return session

    def find_session(self, session_id: str) -> AuthSession | None:
        return self.db.get(AuthSession, session_id)

    def update_session(self, session_id: str, patch: dict[str, Any]) -> None:
        self.db.query(AuthSession).filter(AuthSession.id == session_id).update(
            patch,
            synchronize_session="fetch",
        )
        self.db.commit()

    def update_many_sessions(self, user_id: str, patch: dict[str, Any]) -> int:
        updated = self.db.query(AuthSession).filter(AuthSession.user_id == user_id).update(
            patch,
            synchronize_session="fetch",
        )
        self.db.commit()
        return updated

    def find_user(self, user_id: str) -> Usuario | None:
        return self.db.get(Usuario, user_id)
