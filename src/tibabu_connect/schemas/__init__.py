"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .message import (
    AttachmentInfo,
    ConversationEntry,
    ConversationListResponse,
    ConversationPage,
    MarkReadResponse,
    MessageResponse,
    SendMessageResponse,
    UnreadCountResponse,
)
from .realtime import RealtimeEnvelope
from .user import MessagingUser, MessagingUsersResponse, UserPublic

__all__ = [
    "AttachmentInfo",
    "ConversationEntry", "ConversationListResponse", "ConversationPage",
    "MarkReadResponse", "MessageResponse", "SendMessageResponse", "UnreadCountResponse",
    "MessagingUser", "MessagingUsersResponse", "UserPublic",
    "RealtimeEnvelope",
]
