# src/tibabu_connect/services/__init__.py
"""Business logic services for the Tibabu Connect application."""

from .attachments import AttachmentStore
from .conversations import ConversationIndex
from .errors import ForbiddenError, MessageValidationError, MessagingError, NotFoundError
from .fanout import FanOutRouter
from .messages import MessageService, conversation_id, is_participant
from .presence import InMemorySessionRegistry, SessionRegistry

__all__ = [
    "AttachmentStore",
    "ConversationIndex",
    "FanOutRouter",
    "ForbiddenError",
    "InMemorySessionRegistry",
    "MessageService",
    "MessageValidationError",
    "MessagingError",
    "NotFoundError",
    "SessionRegistry",
    "conversation_id",
    "is_participant",
]
