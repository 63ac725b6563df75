"""Password hashing and credential verification."""
import logging

import bcrypt
from sqlalchemy.orm import Session

from app.errors import EmailAlreadyRegistered, InvalidCredentials
from app.models.user import RolUsuario, Usuario

logger = logging.getLogger(__name__)

# Compared against when the email is unknown so both failure paths hash once.
_DUMMY_HASH = bcrypt.hashpw(b"consultorio-dummy-password", bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return bcrypt.checkpw(
        plain_password.encode("utf-8"),
        hashed_password.encode("utf-8"),
    )


def get_password_hash(password: str) -> str:
    """Hash a password."""
    return bcrypt.hashpw(
        password.encode("utf-8"),
        bcrypt.gensalt(),
    ).decode("utf-8")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def authenticate(db: Session, email: str, password: str) -> Usuario:
    """Return the account for ``email`` if ``password`` matches.

    Unknown emails and wrong passwords fail identically with InvalidCredentials.
    """
    user = db.query(Usuario).filter(Usuario.email == normalize_email(email)).first()

    if user is None:
        verify_password(password, _DUMMY_HASH)
        logger.info("Login failed: unknown email")
        raise InvalidCredentials()

    if not verify_password(password, user.password_hash):
        logger.info(f"Login failed: bad password for user {user.id}")
        raise InvalidCredentials()

    return user


def register_user(
    db: Session,
    nombre: str,
    apellido: str,
    email: str,
    password: str,
    rol: RolUsuario,
) -> Usuario:
    """Add a new account to ``db`` without committing; duplicate emails are rejected."""
    email = normalize_email(email)
    if db.query(Usuario).filter(Usuario.email == email).first():
        raise EmailAlreadyRegistered()

    user = Usuario(
        nombre=nombre,
        apellido=apellido,
        email=email,
        password_hash=get_password_hash(password),
        rol=rol,
    )
    db.add(user)
    # Committed together with the first session row.
    db.flush()
    logger.info(f"Registered user {user.id} with role {user.rol.value}")
    return user
