"""SQLAlchemy models for the Tibabu Connect application."""

from .message import Message
from .user import DoctorProfile, User

__all__ = [
    "DoctorProfile",
    "Message",
    "User",
]
