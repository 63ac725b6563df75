"""Access-token signing and opaque refresh-token helpers."""
from datetime import datetime, timedelta
import hashlib
import secrets

from jose import JWTError, jwt

from app.config import Settings, get_settings
from app.errors import InvalidAccessToken


def generate_refresh_token(num_bytes: int = 48) -> str:
    """Return a fresh high-entropy opaque refresh token (hex-encoded)."""
    return secrets.token_hex(num_bytes)


def hash_refresh_token(token: str) -> str:
    """Hash a refresh token before persisting or comparing it."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenSigner:
    """Issues and verifies short-lived JWT access tokens."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    def issue(self, subject: str, role: str, now: datetime | None = None) -> str:
        """Create a signed access token carrying subject id and role."""
        issued_at = now or datetime.utcnow()
        expire = issued_at + timedelta(minutes=self.settings.access_token_expire_minutes)
        claims = {
            "sub": subject,
            "rol": role,
            "type": "access",
            "iat": issued_at,
            "exp": expire,
        }
        return jwt.encode(claims, self.settings.secret_key, algorithm=self.settings.algorithm)

    def decode(self, token: str) -> dict:
        """Verify signature, expiry and token type; return the claims."""
        try:
            payload = jwt.decode(
                token,
                self.settings.secret_key,
                algorithms=[self.settings.algorithm],
            )
        except JWTError as exc:
            raise InvalidAccessToken() from exc

        if payload.get("type") != "access" or not payload.get("sub"):
            raise InvalidAccessToken("Invalid token")
        return payload
