"""User account model."""
import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, Enum, String
from sqlalchemy.orm import relationship

from app.database import Base


class RolUsuario(str, enum.Enum):
    """Clinic roles carried in access tokens."""

    ADMIN = "ADMIN"
    PROFESIONAL = "PROFESIONAL"
    SECRETARIA = "SECRETARIA"
    FACTURADOR = "FACTURADOR"
    PACIENTE = "PACIENTE"


class Usuario(Base):
    """Clinic staff or patient account."""

    __tablename__ = "usuarios"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    nombre = Column(String(100), nullable=False)
    apellido = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    rol = Column(Enum(RolUsuario, name="rol_usuario"), nullable=False, default=RolUsuario.PACIENTE)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    sessions = relationship("AuthSession", back_populates="user", cascade="all, delete-orphan")
