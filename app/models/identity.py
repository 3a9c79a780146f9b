import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class PrincipalRole(enum.Enum):
    student = "student"
    teacher = "teacher"
    admin = "admin"


PRIVILEGED_ROLES = frozenset({PrincipalRole.teacher, PrincipalRole.admin})


class MfaMethod(enum.Enum):
    app = "app"
    sms = "sms"


class MfaCodePurpose(enum.Enum):
    setup = "setup"
    login = "login"


# ---------------------------------------------------------------------------
# Principals
# ---------------------------------------------------------------------------


class Principal(Base):
    __tablename__ = "principals"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    first_name: Mapped[str] = mapped_column(String(80), nullable=False)
    last_name: Mapped[str] = mapped_column(String(80), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(120))
    role: Mapped[PrincipalRole] = mapped_column(
        Enum(PrincipalRole), default=PrincipalRole.student
    )
    password_hash: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(40))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    mfa_enrollment = relationship(
        "MfaEnrollment", back_populates="principal", uselist=False
    )

    @property
    def full_name(self) -> str:
        if self.display_name:
            return self.display_name
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES


# ---------------------------------------------------------------------------
# MFA enrollments
# ---------------------------------------------------------------------------


class MfaEnrollment(Base):
    __tablename__ = "mfa_enrollments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    principal_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("principals.id"), nullable=False, unique=True
    )
    method: Mapped[MfaMethod] = mapped_column(Enum(MfaMethod), nullable=False)
    # base32, never logged
    secret: Mapped[str | None] = mapped_column(String(128))
    enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    phone_number: Mapped[str | None] = mapped_column(String(40))

    pending_code_hash: Mapped[str | None] = mapped_column(String(64))
    pending_code_purpose: Mapped[MfaCodePurpose | None] = mapped_column(
        Enum(MfaCodePurpose)
    )
    pending_code_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )

    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_used_step: Mapped[int | None] = mapped_column(Integer)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    principal = relationship("Principal", back_populates="mfa_enrollment")
