"""SQLAlchemy models package."""
from app.models.user import RolUsuario, Usuario
from app.models.auth import AuthSession

__all__ = [
    "RolUsuario",
    "Usuario",
    "AuthSession",
]
