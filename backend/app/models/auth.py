"""Authentication/session models."""
import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import relationship

from app.database import Base


class AuthSession(Base):
    """One login lifecycle with a rotating refresh token."""

    __tablename__ = "auth_sessions"
    __table_args__ = (
        Index("ix_auth_sessions_user_revoked", "user_id", "revoked"),
        Index("ix_auth_sessions_expires_at", "expires_at"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("usuarios.id", ondelete="CASCADE"), nullable=False, index=True)
    # SHA-256 of the current refresh token; NULL once invalidated.
    refresh_token_hash = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=False)
    last_used_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    device = Column(String(255))
    ip_address = Column(String(45))
    user_agent = Column(String(255))
    revoked = Column(Boolean, nullable=False, default=False)
    revoked_at = Column(DateTime)

    user = relationship("Usuario", back_populates="sessions")
