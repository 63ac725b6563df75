"""Refresh-session protocol: creation, rotation, reuse detection and revocation.

A session is either active or revoked (terminal). ``refresh`` runs an ordered
chain of guards against the stored row; the first guard that fails decides the
outcome of the call. Some guards revoke the session before failing, so the
revocation persists even though the caller receives an error.
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
import hmac
import logging
import math

from app.config import Settings, get_settings
from app.errors import (
    AuthError,
    InvalidSession,
    IpMismatch,
    RefreshTokenExpired,
    SessionExpiredInactivity,
    SessionRevoked,
    SuspiciousActivity,
    TooManyRequests,
    UserAgentMismatch,
)
from app.models.auth import AuthSession
from app.models.user import RolUsuario, Usuario
from app.services.session_store import SessionStore
from app.services.tokens import TokenSigner, generate_refresh_token, hash_refresh_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestMeta:
    """Client fingerprint captured from the inbound request."""

    ip: str | None = None
    user_agent: str | None = None
    device: str | None = None


@dataclass(frozen=True)
class IssuedSession:
    access_token: str
    refresh_token: str
    session_id: str
    expires_at: datetime


@dataclass(frozen=True)
class RefreshContext:
    """Everything a guard may look at besides the stored session."""

    now: datetime
    presented_token_hash: str
    meta: RequestMeta
    inactivity_window: timedelta
    min_refresh_interval: timedelta


@dataclass(frozen=True)
class Guard:
    name: str
    violated: Callable[[AuthSession | None, RefreshContext], bool]
    error: Callable[[AuthSession | None, RefreshContext], AuthError]
    revokes: bool = False


def _tokens_match(session: AuthSession, ctx: RefreshContext) -> bool:
    stored = session.refresh_token_hash
    if not stored:
        return False
    return hmac.compare_digest(stored, ctx.presented_token_hash)


def _retry_after(session: AuthSession, ctx: RefreshContext) -> TooManyRequests:
    remaining = ctx.min_refresh_interval - (ctx.now - session.last_used_at)
    return TooManyRequests(retry_after=math.ceil(remaining.total_seconds()))


REFRESH_GUARDS: tuple[Guard, ...] = (
    Guard(
        name="session_exists",
        violated=lambda s, ctx: s is None,
        error=lambda s, ctx: InvalidSession(),
    ),
    Guard(
        name="not_revoked",
        violated=lambda s, ctx: bool(s.revoked),
        error=lambda s, ctx: SessionRevoked(),
    ),
    Guard(
        name="token_matches",
        violated=lambda s, ctx: not _tokens_match(s, ctx),
        error=lambda s, ctx: SuspiciousActivity(),
        revokes=True,
    ),
    Guard(
        name="not_expired",
        violated=lambda s, ctx: s.expires_at < ctx.now,
        error=lambda s, ctx: RefreshTokenExpired(),
    ),
    Guard(
        name="recently_active",
        violated=lambda s, ctx: ctx.now - s.last_used_at > ctx.inactivity_window,
        error=lambda s, ctx: SessionExpiredInactivity(),
        revokes=True,
    ),
    Guard(
        name="ip_matches",
        violated=lambda s, ctx: s.ip_address is not None and s.ip_address != ctx.meta.ip,
        error=lambda s, ctx: IpMismatch(),
        revokes=True,
    ),
    Guard(
        name="user_agent_matches",
        violated=lambda s, ctx: s.user_agent is not None and s.user_agent != ctx.meta.user_agent,
        error=lambda s, ctx: UserAgentMismatch(),
        revokes=True,
    ),
    Guard(
        name="rate_limit",
        violated=lambda s, ctx: ctx.now - s.last_used_at < ctx.min_refresh_interval,
        error=_retry_after,
    ),
)


def first_failing_guard(
    session: AuthSession | None,
    ctx: RefreshContext,
    guards: tuple[Guard, ...] = REFRESH_GUARDS,
) -> Guard | None:
    """Return the first guard the session violates, or None if all pass."""
    for guard in guards:
        if guard.violated(session, ctx):
            return guard
    return None


class SessionProtocol:
    """Creates, rotates and revokes refresh sessions."""

    def __init__(
        self,
        store: SessionStore,
        signer: TokenSigner | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.signer = signer or TokenSigner(self.settings)
        self.clock = clock

    @property
    def session_ttl(self) -> timedelta:
        return timedelta(days=self.settings.session_ttl_days)

    def _new_refresh_token(self) -> str:
        return generate_refresh_token(self.settings.refresh_token_bytes)

    def _issue(self, user: Usuario, session_id: str, refresh_token: str, expires_at: datetime, now: datetime) -> IssuedSession:
        return IssuedSession(
            access_token=self.signer.issue(user.id, RolUsuario(user.rol).value, now=now),
            refresh_token=refresh_token,
            session_id=session_id,
            expires_at=expires_at,
        )

    def _revoke(self, session_id: str, now: datetime, reason: str) -> None:
        self.store.update_session(
            session_id,
            {"revoked": True, "revoked_at": now, "refresh_token_hash": None},
        )
        logger.warning(f"Revoked session {session_id}: {reason}")

    def create(self, user: Usuario, meta: RequestMeta | None = None) -> IssuedSession:
        """Open a new session for ``user`` and issue its first token pair."""
        meta = meta or RequestMeta()
        now = self.clock()
        refresh_token = self._new_refresh_token()
        expires_at = now + self.session_ttl

        session = self.store.create_session(
            user_id=user.id,
            refresh_token_hash=hash_refresh_token(refresh_token),
            expires_at=expires_at,
            last_used_at=now,
            device=meta.device,
            ip_address=meta.ip,
            user_agent=meta.user_agent,
        )
        logger.info(f"Opened session {session.id} for user {user.id}")
        return self._issue(user, session.id, refresh_token, expires_at, now)

    def refresh(self, session_id: str, refresh_token: str, meta: RequestMeta | None = None) -> IssuedSession:
        """Validate the presented token and rotate it."""
        meta = meta or RequestMeta()
        now = self.clock()
        session = self.store.find_session(session_id)
        ctx = RefreshContext(
            now=now,
            presented_token_hash=hash_refresh_token(refresh_token),
            meta=meta,
            inactivity_window=timedelta(days=self.settings.session_inactivity_days),
            min_refresh_interval=timedelta(seconds=self.settings.refresh_min_interval_seconds),
        )

        failed = first_failing_guard(session, ctx)
        if failed is not None:
            if failed.revokes:
                self._revoke(session.id, now, failed.name)
            else:
                logger.info(f"Refresh rejected for session {session_id}: {failed.name}")
            raise failed.error(session, ctx)

        user = self.store.find_user(session.user_id)
        if user is None:
            raise InvalidSession()

        new_refresh_token = self._new_refresh_token()
        expires_at = now + self.session_ttl
        patch = {
            "refresh_token_hash": hash_refresh_token(new_refresh_token),
            "expires_at": expires_at,
            "last_used_at": now,
        }
        # Bind fingerprint fields the session did not capture at creation.
        if session.ip_address is None and meta.ip is not None:
            patch["ip_address"] = meta.ip
        if session.user_agent is None and meta.user_agent is not None:
            patch["user_agent"] = meta.user_agent
        if session.device is None and meta.device is not None:
            patch["device"] = meta.device

        self.store.update_session(session.id, patch)
        logger.debug(f"Rotated refresh token for session {session.id}")
        return self._issue(user, session.id, new_refresh_token, expires_at, now)

    def logout(self, session_id: str) -> str:
        """Revoke one session; repeating it on a revoked session is a no-op."""
        session = self.store.find_session(session_id)
        if session is None:
            raise InvalidSession()

        if session.revoked:
            return "Session already closed"

        self.store.update_session(
            session.id,
            {"revoked": True, "revoked_at": self.clock(), "refresh_token_hash": None},
        )
        logger.info(f"Closed session {session.id}")
        return "Session closed"

    def logout_all(self, session_id: str) -> str:
        """Revoke every session belonging to the owner of ``session_id``."""
        session = self.store.find_session(session_id)
        if session is None:
            raise InvalidSession()

        count = self.store.update_many_sessions(
            session.user_id,
            {"revoked": True, "revoked_at": self.clock(), "refresh_token_hash": None},
        )
        logger.info(f"Closed {count} sessions for user {session.user_id}")
        return "All sessions closed"
