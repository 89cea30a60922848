"""Read-only helpers over the user directory used by the messaging core."""
from __future__ import annotations

from typing import Any, Sequence

from sqlalchemy.orm import Session, selectinload

from tibabu_connect.core.settings import settings
from tibabu_connect.models import DoctorProfile, User
from tibabu_connect.models.user import ROLE_DOCTOR

__all__ = [
    "get_user",
    "list_users_for_messaging",
    "public_profile",
]


def get_user(db: Session, user_id: str) -> User | None:
    """Return a single user by primary key."""
    return db.get(User, user_id)


def public_profile(user: User, specialty: str | None = None) -> dict[str, Any]:
    """Return the public projection of ``user``.

    Doctors are decorated with their specialty, falling back to the
    configured default when no profile exists.
    """
    profile: dict[str, Any] = {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "profile_image": user.profile_image,
        "role": user.role,
        "specialty": None,
    }
    if user.is_doctor:
        if specialty is None and user.doctor_profile is not None:
            specialty = user.doctor_profile.specialty
        profile["specialty"] = specialty or settings.default_specialty
    return profile


def list_users_for_messaging(
    db: Session,
    exclude_user_id: str,
    role: str | None = None,
) -> Sequence[dict[str, Any]]:
    """Return users the caller can start a conversation with, sorted by name.

    Doctors are only listed once their profile has been verified.
    """
    query = (
        db.query(User)
        .options(selectinload(User.doctor_profile))
        .filter(User.id != exclude_user_id, User.is_active.is_(True))
    )
    if role:
        query = query.filter(User.role == role)

    users = []
    for user in query.order_by(User.name.asc()).all():
        if user.role != ROLE_DOCTOR:
            users.append(public_profile(user))
            continue

        doctor: DoctorProfile | None = user.doctor_profile
        if doctor is None or not doctor.is_verified:
            continue
        entry = public_profile(user, doctor.specialty)
        entry.update(
            consultation_fee=float(doctor.consultation_fee or 0),
            is_available=bool(doctor.is_available),
            is_verified=True,
        )
        users.append(entry)
    return users
