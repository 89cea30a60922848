# src/tibabu_connect/models/message.py
"""Models describing messages exchanged between two users."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tibabu_connect.db.session import Base
from tibabu_connect.db.time import utcnow

from .user import User

MESSAGE_TYPE_TEXT = "text"
MESSAGE_TYPE_IMAGE = "image"
MESSAGE_TYPE_FILE = "file"
MESSAGE_TYPE_AUDIO = "audio"
MESSAGE_TYPES = (MESSAGE_TYPE_TEXT, MESSAGE_TYPE_IMAGE, MESSAGE_TYPE_FILE, MESSAGE_TYPE_AUDIO)


class Message(Base):
    """A single message from ``sender_id`` to ``receiver_id``.

    Rows are append-only: after insert only ``is_read`` and ``read_at`` change,
    and only from unread to read.
    """

    __tablename__ = "message"
    __table_args__ = (
        CheckConstraint("sender_id <> receiver_id", name="ck_message_distinct_parties"),
        UniqueConstraint("sender_id", "idempotency_key", name="uq_message_sender_idempotency"),
        Index("ix_message_pair_created", "sender_id", "receiver_id", "created_at"),
        Index("ix_message_receiver_unread", "receiver_id", "is_read"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    sender_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("user_account.id", ondelete="CASCADE"), nullable=False
    )
    receiver_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("user_account.id", ondelete="CASCADE"), nullable=False
    )

    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    message_type: Mapped[str] = mapped_column(String(16), nullable=False, default=MESSAGE_TYPE_TEXT)

    file_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Appointments live in the booking service; only the reference is kept here.
    appointment_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    idempotency_key: Mapped[str | None] = mapped_column(String(128), nullable=True)

    sender: Mapped[User] = relationship("User", foreign_keys=[sender_id], lazy="joined")
    receiver: Mapped[User] = relationship("User", foreign_keys=[receiver_id], lazy="joined")

    @property
    def attachment(self) -> dict[str, Any] | None:
        """Return the attachment descriptor, or None for plain messages."""
        if self.file_url is None:
            return None
        return {
            "url": self.file_url,
            "file_name": self.file_name,
            "file_size": self.file_size,
        }

    def counterparty_of(self, user_id: str) -> str:
        """Return the participant that is not ``user_id``."""
        return self.receiver_id if self.sender_id == user_id else self.sender_id
