"""Authentication error taxonomy with stable machine-readable codes."""
from __future__ import annotations

from fastapi import Request, status
from fastapi.responses import JSONResponse


class AuthError(Exception):
    """Authorization-class failure surfaced directly to the caller."""

    code: str = "AUTH_ERROR"
    http_status: int = status.HTTP_401_UNAUTHORIZED
    message: str = "Not authenticated"

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def headers(self) -> dict[str, str] | None:
        return {"WWW-Authenticate": "Bearer"}


class InvalidCredentials(AuthError):
    code = "INVALID_CREDENTIALS"
    message = "Invalid email or password"


class EmailAlreadyRegistered(AuthError):
    code = "EMAIL_ALREADY_REGISTERED"
    http_status = status.HTTP_400_BAD_REQUEST
    message = "Email already registered"

    def headers(self) -> dict[str, str] | None:
        return None


class InvalidSession(AuthError):
    code = "INVALID_SESSION"
    message = "Invalid session"


class SessionRevoked(AuthError):
    code = "SESSION_REVOKED"
    message = "Session revoked"


class SuspiciousActivity(AuthError):
    code = "SUSPICIOUS_ACTIVITY"
    message = "Suspicious activity: session revoked"


class RefreshTokenExpired(AuthError):
    code = "REFRESH_TOKEN_EXPIRED"
    message = "Refresh token expired"


class SessionExpiredInactivity(AuthError):
    code = "SESSION_EXPIRED_INACTIVITY"
    message = "Session expired due to inactivity"


class IpMismatch(AuthError):
    code = "IP_MISMATCH"
    message = "IP address changed: session revoked"


class UserAgentMismatch(AuthError):
    code = "USER_AGENT_MISMATCH"
    message = "User-Agent changed: session revoked"


class TooManyRequests(AuthError):
    """Transient throttle; the caller may retry after ``retry_after`` seconds."""

    code = "TOO_MANY_REQUESTS"
    http_status = status.HTTP_429_TOO_MANY_REQUESTS
    message = "Too many refresh requests, wait before retrying"

    def __init__(self, retry_after: int = 1, message: str | None = None) -> None:
        self.retry_after = max(1, retry_after)
        super().__init__(message)

    def headers(self) -> dict[str, str] | None:
        return {"Retry-After": str(self.retry_after)}


class InvalidAccessToken(AuthError):
    code = "INVALID_ACCESS_TOKEN"
    message = "Invalid or expired access token"


class Forbidden(AuthError):
    code = "FORBIDDEN"
    http_status = status.HTTP_403_FORBIDDEN
    message = "Insufficient role"

    def headers(self) -> dict[str, str] | None:
        return None


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render an AuthError as ``{"detail", "code"}`` with its mapped status."""
    return JSONResponse(
        status_code=exc.http_status,
        content={"detail": exc.message, "code": exc.code},
        headers=exc.headers(),
    )
