"""Message store: persistence and retrieval of messages between two users."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import PurePath

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from tibabu_connect.core.settings import settings
from tibabu_connect.db.time import utcnow
from tibabu_connect.models import Message, User
from tibabu_connect.models.message import MESSAGE_TYPE_TEXT, MESSAGE_TYPES

from .attachments import AttachmentStore, PendingUpload, StoredAttachment, get_attachment_store
from .errors import ForbiddenError, MessageValidationError, NotFoundError

__all__ = [
    "CONVERSATION_ID_DELIMITER",
    "MessageService",
    "SendResult",
    "ThreadPage",
    "conversation_id",
    "is_participant",
]

logger = logging.getLogger(__name__)

CONVERSATION_ID_DELIMITER = "-"


def conversation_id(user_a: str, user_b: str) -> str:
    """Return the canonical id of the conversation between two users.

    The ids are sorted so both participants derive the same value.
    """
    return CONVERSATION_ID_DELIMITER.join(sorted((user_a, user_b)))


def is_participant(conversation_id: str, user_id: str) -> bool:
    """Return True when `user_id` is one of the two ids in `conversation_id`."""
    return user_id in conversation_id.split(CONVERSATION_ID_DELIMITER)


@dataclass(frozen=True)
class SendResult:
    """Outcome of a send: the stored message and whether it was new."""

    message: Message
    created: bool

    @property
    def conversation_id(self) -> str:
        return conversation_id(self.message.sender_id, self.message.receiver_id)


@dataclass(frozen=True)
class ThreadPage:
    """A page of a thread in display order (oldest first)."""

    messages: list[Message]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.page_size else 0


def _pair_filter(user_a: str, user_b: str):
    return or_(
        and_(Message.sender_id == user_a, Message.receiver_id == user_b),
        and_(Message.sender_id == user_b, Message.receiver_id == user_a),
    )


def _check_replay(
    existing: Message,
    receiver_id: str,
    content: str | None,
    upload: PendingUpload | None,
) -> None:
    """Reject reuse of an idempotency key for a different message."""
    same_attachment = (
        existing.file_name is None
        if upload is None
        else existing.file_name == PurePath(upload.filename).name
        and existing.file_size == upload.size
    )
    if (
        existing.receiver_id != receiver_id
        or existing.content != (content or "")
        or not same_attachment
    ):
        raise MessageValidationError("Idempotency-Key was already used for a different message")


class MessageService:
    """Durable record of individual messages.

    Messages are append-only; the only mutation is the unread -> read
    transition performed by :meth:`mark_read`.
    """

    def __init__(self, db: Session, attachments: AttachmentStore | None = None) -> None:
        self.db = db
        self.attachments = attachments or get_attachment_store()

    def _find_by_idempotency_key(self, sender_id: str, key: str) -> Message | None:
        return (
            self.db.query(Message)
            .filter(Message.sender_id == sender_id, Message.idempotency_key == key)
            .first()
        )

    def _validate_content(
        self,
        content: str,
        message_type: str,
        upload: PendingUpload | None,
    ) -> None:
        if message_type not in MESSAGE_TYPES:
            raise MessageValidationError(
                f"Unsupported message type '{message_type}'"
            )
        if not content.strip() and upload is None:
            raise MessageValidationError("Message content is required")
        if len(content) > settings.message_max_length:
            raise MessageValidationError(
                f"Message content exceeds {settings.message_max_length} characters"
            )
        if upload is not None:
            self.attachments.validate(upload)

    def send_message(
        self,
        sender_id: str,
        receiver_id: str,
        content: str | None,
        message_type: str = MESSAGE_TYPE_TEXT,
        upload: PendingUpload | None = None,
        appointment_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> SendResult:
        """Persist a new unread message from ``sender_id`` to ``receiver_id``.

        Args:
            sender_id: Authenticated caller.
            receiver_id: Counterparty; must exist in the user directory.
            content: Text body; may be empty only when ``upload`` is given.
            message_type: One of ``text``, ``image``, ``file``, ``audio``.
                Overridden by the attachment's content type when a file is sent.
            upload: Optional file received with the request.
            appointment_id: Optional booking reference.
            idempotency_key: Optional client key; a repeated key from the same
                sender returns the earlier message instead of creating one.
                The repeat must name the same receiver, content and attachment.

        Raises:
            NotFoundError: If the receiver does not exist.
            MessageValidationError: If the message is malformed, or the
                idempotency key was already used for a different message.
        """
        if idempotency_key:
            existing = self._find_by_idempotency_key(sender_id, idempotency_key)
            if existing is not None:
                _check_replay(existing, receiver_id, content, upload)
                logger.debug("Idempotent replay of message %s", existing.id)
                return SendResult(message=existing, created=False)

        receiver = self.db.get(User, receiver_id)
        if receiver is None:
            raise NotFoundError("Receiver not found")
        if receiver_id == sender_id:
            raise MessageValidationError("Cannot send a message to yourself")

        content = content or ""
        self._validate_content(content, message_type, upload)

        stored: StoredAttachment | None = None
        if upload is not None:
            stored = self.attachments.save(upload)
            message_type = stored.message_type

        message = Message(
            sender_id=sender_id,
            receiver_id=receiver_id,
            content=content,
            message_type=message_type,
            file_url=stored.url if stored else None,
            file_name=stored.file_name if stored else None,
            file_size=stored.file_size if stored else None,
            appointment_id=appointment_id,
            is_read=False,
            idempotency_key=idempotency_key,
        )

        try:
            self.db.add(message)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            if stored is not None:
                self.attachments.discard(stored)
            if idempotency_key:
                # Lost a race against a concurrent send carrying the same key.
                existing = self._find_by_idempotency_key(sender_id, idempotency_key)
                if existing is not None:
                    _check_replay(existing, receiver_id, content, upload)
                    return SendResult(message=existing, created=False)
            raise
        except SQLAlchemyError:
            self.db.rollback()
            if stored is not None:
                self.attachments.discard(stored)
            raise

        self.db.refresh(message)
        logger.debug("Persisted message %s from %s to %s", message.id, sender_id, receiver_id)
        return SendResult(message=message, created=True)

    def get_conversation(
        self,
        user_a: str,
        user_b: str,
        page: int = 1,
        page_size: int | None = None,
    ) -> ThreadPage:
        """Return one page of the thread between two users.

        Pages are counted from the newest message backwards; each page is
        returned oldest-first for display.
        """
        page = max(1, page)
        page_size = page_size or settings.conversation_page_size
        page_size = max(1, min(page_size, settings.conversation_max_page_size))

        query = self.db.query(Message).filter(_pair_filter(user_a, user_b))
        total = query.count()
        newest_first = (
            query.order_by(Message.created_at.desc(), Message.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return ThreadPage(
            messages=list(reversed(newest_first)),
            total=total,
            page=page,
            page_size=page_size,
        )

    def mark_read(self, sender_id: str, receiver_id: str) -> int:
        """Mark every unread message from ``sender_id`` to ``receiver_id`` read.

        Returns the number of messages that changed state; repeating the call
        changes nothing.
        """
        updated = (
            self.db.query(Message)
            .filter(
                Message.sender_id == sender_id,
                Message.receiver_id == receiver_id,
                Message.is_read.is_(False),
            )
            .update(
                {Message.is_read: True, Message.read_at: utcnow()},
                synchronize_session="fetch",
            )
        )
        self.db.commit()
        return int(updated or 0)

    def count_unread(self, user_id: str) -> int:
        """Return how many messages addressed to ``user_id`` are unread."""
        count = (
            self.db.query(func.count(Message.id))
            .filter(Message.receiver_id == user_id, Message.is_read.is_(False))
            .scalar()
        )
        return int(count or 0)

    def delete_message(self, message_id: int, requester_id: str) -> None:
        """Delete a message on behalf of its sender.

        Raises:
            NotFoundError: If the message does not exist.
            ForbiddenError: If ``requester_id`` is not the sender.
        """
        message = self.db.get(Message, message_id)
        if message is None:
            raise NotFoundError("Message not found")
        if message.sender_id != requester_id:
            raise ForbiddenError("Not authorized")

        self.db.delete(message)
        self.db.commit()
