# src/tibabu_connect/models/user.py
"""SQLAlchemy models for platform users and doctor profiles."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tibabu_connect.db.session import Base
from tibabu_connect.db.time import utcnow

ROLE_PATIENT = "patient"
ROLE_DOCTOR = "doctor"
ROLE_ADMIN = "admin"
USER_ROLES = (ROLE_PATIENT, ROLE_DOCTOR, ROLE_ADMIN)


def new_user_id() -> str:
    """Return a fresh opaque user identifier."""
    return uuid.uuid4().hex


class User(Base):
    """Account owned by the platform's user directory.

    The messaging core only reads from this table: existence checks and the
    public projection (name, email, profile image, role).
    """

    __tablename__ = "user_account"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_user_id)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    profile_image: Mapped[str | None] = mapped_column(Text, nullable=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default=ROLE_PATIENT)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    doctor_profile: Mapped[DoctorProfile | None] = relationship(
        "DoctorProfile",
        back_populates="user",
        cascade="all, delete-orphan",
        uselist=False,
    )

    @property
    def is_doctor(self) -> bool:
        """Return True when the account belongs to a doctor."""
        return self.role == ROLE_DOCTOR


class DoctorProfile(Base):
    """Professional details attached to a doctor account."""

    __tablename__ = "doctor_profile"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("user_account.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    specialty: Mapped[str] = mapped_column(Text, nullable=False)
    license_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    consultation_fee: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    user: Mapped[User] = relationship("User", back_populates="doctor_profile")
