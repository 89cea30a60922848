"""Message and conversation Pydantic schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .user import UserPublic


class AttachmentInfo(BaseModel):
    """Descriptor of a file attached to a message."""

    url: str
    file_name: str | None = None
    file_size: int | None = None


class MessageResponse(BaseModel):
    """Schema for a message returned by the API and pushed over the socket."""

    id: int
    sender: UserPublic
    receiver: UserPublic
    content: str
    message_type: str
    attachment: AttachmentInfo | None = None
    appointment_id: str | None = None
    is_read: bool
    read_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SendMessageResponse(BaseModel):
    """Response returned after a message was persisted."""

    message: MessageResponse
    success: bool = True


class ConversationPage(BaseModel):
    """One page of a thread, oldest message first."""

    messages: list[MessageResponse]
    total_pages: int
    current_page: int
    total: int


class ConversationEntry(BaseModel):
    """Derived summary of the thread with one counterparty."""

    id: str = Field(..., description="Canonical conversation id of the pair")
    user: UserPublic
    last_message: MessageResponse
    unread_count: int = 0


class ConversationListResponse(BaseModel):
    """Conversation index of the caller, most recent first."""

    conversations: list[ConversationEntry]


class UnreadCountResponse(BaseModel):
    """Number of unread messages addressed to the caller."""

    unread_count: int


class MarkReadResponse(BaseModel):
    """Result of marking a counterparty's messages as read."""

    status: str = "marked_as_read"
    updated: int
