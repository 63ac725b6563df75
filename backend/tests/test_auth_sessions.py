import os
import sys
from datetime import datetime, timedelta

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef")

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.api import deps
from app.api.auth import router as auth_router
from app.database import Base
from app.errors import AuthError, auth_error_handler
from app.models import AuthSession, RolUsuario, Usuario
from app.services.session_protocol import SessionProtocol
from app.services.session_store import SqlAlchemySessionStore
from app.services.tokens import hash_refresh_token

PASSWORD = "TestPass123!"


class FakeClock:
    def __init__(self):
        self.now = datetime.utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def _build_test_client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    app = FastAPI()
    app.add_exception_handler(AuthError, auth_error_handler)
    app.include_router(auth_router, prefix="/api")

    @app.get("/api/admin-only")
    def admin_only(user=Depends(deps.require_roles(RolUsuario.ADMIN))):
        return {"id": user.id}

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    clock = FakeClock()
    app.dependency_overrides[deps.get_db] = override_get_db
    app.dependency_overrides[deps.get_clock] = lambda: clock
    return TestClient(app), TestingSessionLocal, clock


def _register(client: TestClient, email: str, rol: str = "PROFESIONAL"):
    response = client.post(
        "/api/auth/register",
        json={
            "nombre": "Laura",
            "apellido": "Gómez",
            "email": email,
            "password": PASSWORD,
            "rol": rol,
        },
    )
    assert response.status_code == 201
    return response


def _login(client: TestClient, email: str, **kwargs):
    response = client.post("/api/auth/login", json={"email": email, "password": PASSWORD}, **kwargs)
    assert response.status_code == 200
    return response.json()


def _refresh(client: TestClient, tokens: dict, **kwargs):
    return client.post(
        "/api/auth/refresh",
        json={"session_id": tokens["session_id"], "refresh_token": tokens["refresh_token"]},
        **kwargs,
    )


def _session_row(session_local, session_id: str) -> AuthSession:
    db = session_local()
    try:
        return db.get(AuthSession, session_id)
    finally:
        db.close()


def test_register_returns_session_tokens():
    client, session_local, _ = _build_test_client()

    data = _register(client, "laura@example.com").json()

    assert {"access_token", "refresh_token", "session_id", "expires_at"} <= data.keys()
    assert data["token_type"] == "bearer"
    row = _session_row(session_local, data["session_id"])
    assert row.ip_address is None
    assert row.user_agent is None


def test_register_rejects_duplicate_email():
    client, _, _ = _build_test_client()
    _register(client, "dup@example.com")

    response = client.post(
        "/api/auth/register",
        json={
            "nombre": "Otra",
            "apellido": "Persona",
            "email": "DUP@example.com",
            "password": PASSWORD,
            "rol": "SECRETARIA",
        },
    )

    assert response.status_code == 400
    assert response.json()["code"] == "EMAIL_ALREADY_REGISTERED"


def test_login_with_bad_credentials_fails_uniformly():
    client, _, _ = _build_test_client()
    _register(client, "ana@example.com")

    wrong_password = client.post("/api/auth/login", json={"email": "ana@example.com", "password": "nope123"})
    unknown_email = client.post("/api/auth/login", json={"email": "nadie@example.com", "password": PASSWORD})

    assert wrong_password.status_code == 401
    assert unknown_email.status_code == 401
    assert wrong_password.json() == unknown_email.json()
    assert wrong_password.json()["code"] == "INVALID_CREDENTIALS"


def test_login_binds_session_to_request_fingerprint():
    client, session_local, _ = _build_test_client()
    _register(client, "bind@example.com")

    tokens = _login(client, "bind@example.com", headers={"X-Device": "consultorio-2"})

    row = _session_row(session_local, tokens["session_id"])
    assert row.ip_address == "testclient"
    assert row.user_agent == "testclient"
    assert row.device == "consultorio-2"


def test_refresh_rotates_and_reuse_revokes_session():
    client, session_local, clock = _build_test_client()
    _register(client, "rot@example.com")
    first = _login(client, "rot@example.com")

    clock.advance(seconds=5)
    rotated = _refresh(client, first)
    assert rotated.status_code == 200
    second = rotated.json()
    assert second["refresh_token"] != first["refresh_token"]
    assert second["session_id"] == first["session_id"]

    clock.advance(seconds=5)
    replay = _refresh(client, first)
    assert replay.status_code == 401
    assert replay.json()["code"] == "SUSPICIOUS_ACTIVITY"
    assert _session_row(session_local, first["session_id"]).revoked is True

    clock.advance(seconds=5)
    after = _refresh(client, second)
    assert after.status_code == 401
    assert after.json()["code"] == "SESSION_REVOKED"


def test_refresh_from_other_ip_revokes_session():
    client, session_local, clock = _build_test_client()
    _register(client, "ip@example.com")
    tokens = _login(client, "ip@example.com", headers={"X-Forwarded-For": "1.2.3.4"})

    clock.advance(seconds=5)
    moved = _refresh(client, tokens, headers={"X-Forwarded-For": "9.9.9.9"})
    assert moved.status_code == 401
    assert moved.json()["code"] == "IP_MISMATCH"
    assert _session_row(session_local, tokens["session_id"]).revoked is True

    clock.advance(seconds=5)
    back = _refresh(client, tokens, headers={"X-Forwarded-For": "1.2.3.4"})
    assert back.status_code == 401
    assert back.json()["code"] == "SESSION_REVOKED"


def test_refresh_too_soon_is_throttled():
    client, session_local, clock = _build_test_client()
    _register(client, "flood@example.com")
    tokens = _login(client, "flood@example.com")

    clock.advance(seconds=1)
    response = _refresh(client, tokens)

    assert response.status_code == 429
    assert response.json()["code"] == "TOO_MANY_REQUESTS"
    assert response.headers["retry-after"] == "2"
    row = _session_row(session_local, tokens["session_id"])
    assert row.revoked is False

    clock.advance(seconds=2)
    assert _refresh(client, tokens).status_code == 200


def test_logout_is_idempotent():
    client, session_local, _ = _build_test_client()
    _register(client, "out@example.com")
    tokens = _login(client, "out@example.com")

    first = client.post("/api/auth/logout", json={"session_id": tokens["session_id"]})
    second = client.post("/api/auth/logout", json={"session_id": tokens["session_id"]})

    assert first.status_code == 200
    assert first.json()["message"] == "Session closed"
    assert second.status_code == 200
    assert second.json()["message"] == "Session already closed"
    row = _session_row(session_local, tokens["session_id"])
    assert row.revoked is True
    assert row.refresh_token_hash is None


def test_logout_unknown_session_fails():
    client, _, _ = _build_test_client()

    response = client.post("/api/auth/logout", json={"session_id": "does-not-exist"})

    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_SESSION"


def test_logout_all_revokes_every_session_of_user():
    client, session_local, clock = _build_test_client()
    _register(client, "multi@example.com")
    _register(client, "other@example.com")
    sessions = [_login(client, "multi@example.com") for _ in range(3)]
    other = _login(client, "other@example.com")

    response = client.post("/api/auth/logout-all", json={"session_id": sessions[0]["session_id"]})
    assert response.status_code == 200

    clock.advance(seconds=5)
    assert _refresh(client, sessions[2]).status_code == 401
    assert _refresh(client, other).status_code == 200

    db = session_local()
    try:
        user_id = db.get(AuthSession, sessions[0]["session_id"]).user_id
        active = db.query(AuthSession).filter(
            AuthSession.user_id == user_id,
            AuthSession.revoked.is_(False),
        ).count()
        assert active == 0
    finally:
        db.close()


def test_me_requires_valid_access_token():
    client, _, _ = _build_test_client()
    tokens = _register(client, "me@example.com", rol="SECRETARIA").json()

    missing = client.get("/api/auth/me")
    garbage = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    ok = client.get("/api/auth/me", headers={"Authorization": f"Bearer {tokens['access_token']}"})

    assert missing.status_code == 401
    assert garbage.status_code == 401
    assert garbage.json()["code"] == "INVALID_ACCESS_TOKEN"
    assert ok.status_code == 200
    assert ok.json()["email"] == "me@example.com"
    assert ok.json()["rol"] == "SECRETARIA"


def test_require_roles_rejects_other_roles():
    client, _, _ = _build_test_client()
    staff = _register(client, "staff@example.com", rol="PROFESIONAL").json()
    admin = _register(client, "admin@example.com", rol="ADMIN").json()

    denied = client.get("/api/admin-only", headers={"Authorization": f"Bearer {staff['access_token']}"})
    allowed = client.get("/api/admin-only", headers={"Authorization": f"Bearer {admin['access_token']}"})

    assert denied.status_code == 403
    assert denied.json()["code"] == "FORBIDDEN"
    assert allowed.status_code == 200


def test_logout_all_clears_sessions_revoked_earlier():
    client, session_local, clock = _build_test_client()
    _register(client, "leak@example.com")
    leaked = _login(client, "leak@example.com", headers={"X-Forwarded-For": "1.2.3.4"})
    current = _login(client, "leak@example.com", headers={"X-Forwarded-For": "1.2.3.4"})

    clock.advance(seconds=5)
    moved = _refresh(client, leaked, headers={"X-Forwarded-For": "9.9.9.9"})
    assert moved.json()["code"] == "IP_MISMATCH"
    assert _session_row(session_local, leaked["session_id"]).refresh_token_hash is None

    # A row revoked before hashes were cleared on revocation.
    db = session_local()
    try:
        db.get(AuthSession, leaked["session_id"]).refresh_token_hash = hash_refresh_token(leaked["refresh_token"])
        db.commit()
    finally:
        db.close()

    response = client.post("/api/auth/logout-all", json={"session_id": current["session_id"]})
    assert response.status_code == 200

    for tokens in (leaked, current):
        row = _session_row(session_local, tokens["session_id"])
        assert row.revoked is True
        assert row.refresh_token_hash is None


def test_register_keeps_no_account_when_session_cannot_open():
    client, session_local, _ = _build_test_client()

    def failing_protocol(db=Depends(deps.get_db)):
        store = SqlAlchemySessionStore(db)

        def create_session(**kwargs):
            raise RuntimeError("session table unavailable")

        store.create_session = create_session
        return SessionProtocol(store)

    client.app.dependency_overrides[deps.get_session_protocol] = failing_protocol
    with pytest.raises(RuntimeError, match="session table unavailable"):
        client.post(
            "/api/auth/register",
            json={
                "nombre": "Laura",
                "apellido": "Gómez",
                "email": "half@example.com",
                "password": PASSWORD,
                "rol": "PROFESIONAL",
            },
        )

    db = session_local()
    try:
        assert db.query(Usuario).filter(Usuario.email == "half@example.com").count() == 0
    finally:
        db.close()

    del client.app.dependency_overrides[deps.get_session_protocol]
    _register(client, "half@example.com")
