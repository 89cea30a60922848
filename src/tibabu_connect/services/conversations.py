"""Conversation index derived from the message store at read time."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import case, func, or_, select
from sqlalchemy.orm import Session

from tibabu_connect.core.settings import settings
from tibabu_connect.db.time import as_utc
from tibabu_connect.models import DoctorProfile, Message, User

from .messages import conversation_id

__all__ = ["ConversationIndex", "ConversationSummary"]


@dataclass(frozen=True)
class ConversationSummary:
    """State of the thread between the querying user and one counterparty."""

    conversation_id: str
    counterparty: User
    specialty: str | None
    last_message: Message
    unread_count: int


class ConversationIndex:
    """Groups a user's messages by counterparty.

    Nothing is stored: every call aggregates over the message table, so the
    index can never disagree with the messages it summarizes.
    """

    def __init__(self, db: Session, default_specialty: str | None = None) -> None:
        self.db = db
        self.default_specialty = default_specialty or settings.default_specialty

    def _latest_message_ids(self, user_id: str) -> list[int]:
        counterparty = case(
            (Message.sender_id == user_id, Message.receiver_id),
            else_=Message.sender_id,
        )
        ranked = (
            select(
                Message.id.label("message_id"),
                func.row_number()
                .over(
                    partition_by=counterparty,
                    order_by=[Message.created_at.desc(), Message.id.desc()],
                )
                .label("position"),
            )
            .where(or_(Message.sender_id == user_id, Message.receiver_id == user_id))
            .subquery()
        )
        return list(
            self.db.scalars(select(ranked.c.message_id).where(ranked.c.position == 1))
        )

    def _unread_by_sender(self, user_id: str) -> dict[str, int]:
        rows = self.db.execute(
            select(Message.sender_id, func.count(Message.id))
            .where(Message.receiver_id == user_id, Message.is_read.is_(False))
            .group_by(Message.sender_id)
        ).all()
        return {sender_id: int(count) for sender_id, count in rows}

    def _specialties(self, doctor_ids: list[str]) -> dict[str, str]:
        if not doctor_ids:
            return {}
        rows = self.db.execute(
            select(DoctorProfile.user_id, DoctorProfile.specialty).where(
                DoctorProfile.user_id.in_(doctor_ids)
            )
        ).all()
        return {user_id: specialty for user_id, specialty in rows if specialty}

    def list_conversations(self, user_id: str) -> list[ConversationSummary]:
        """Return one summary per counterparty, most recent thread first."""
        latest_ids = self._latest_message_ids(user_id)
        if not latest_ids:
            return []

        latest = list(self.db.scalars(select(Message).where(Message.id.in_(latest_ids))))
        unread = self._unread_by_sender(user_id)

        counterparties = {
            message.counterparty_of(user_id): (
                message.receiver if message.sender_id == user_id else message.sender
            )
            for message in latest
        }
        specialties = self._specialties(
            [uid for uid, user in counterparties.items() if user.is_doctor]
        )

        summaries = []
        for message in latest:
            other_id = message.counterparty_of(user_id)
            other = counterparties[other_id]
            summaries.append(
                ConversationSummary(
                    conversation_id=conversation_id(user_id, other_id),
                    counterparty=other,
                    specialty=(
                        specialties.get(other_id, self.default_specialty)
                        if other.is_doctor
                        else None
                    ),
                    last_message=message,
                    unread_count=unread.get(other_id, 0),
                )
            )

        summaries.sort(
            key=lambda summary: (as_utc(summary.last_message.created_at), summary.last_message.id),
            reverse=True,
        )
        return summaries
