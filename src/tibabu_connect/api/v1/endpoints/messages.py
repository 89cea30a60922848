# src/tibabu_connect/api/v1/endpoints/messages.py
"""Message and conversation endpoints for the Tibabu Connect API."""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import (
    APIRouter,
    BackgroundTasks,
    File,
    Form,
    Header,
    HTTPException,
    Query,
    Response,
    UploadFile,
    status,
)

from tibabu_connect.core.settings import settings
from tibabu_connect.models import Message
from tibabu_connect.models.message import MESSAGE_TYPE_TEXT
from tibabu_connect.schemas.message import (
    ConversationListResponse,
    ConversationPage,
    MarkReadResponse,
    MessageResponse,
    SendMessageResponse,
    UnreadCountResponse,
)
from tibabu_connect.services.attachments import PendingUpload
from tibabu_connect.services.conversations import ConversationIndex
from tibabu_connect.services.errors import ForbiddenError, MessageValidationError, NotFoundError
from tibabu_connect.services.messages import MessageService
from tibabu_connect.services.users import public_profile

from ..dependencies import AttachmentStoreDep, CurrentUserDep, FanOutRouterDep, SessionDep

router = APIRouter(prefix="/messages", tags=["messages"])


def _serialize_message(message: Message) -> dict[str, Any]:
    """Serialize a Message instance into API payload form."""
    payload = MessageResponse.model_validate(message).model_dump(mode="json")
    payload["sender"] = public_profile(message.sender)
    payload["receiver"] = public_profile(message.receiver)
    return payload


@router.post(
    "/send",
    status_code=status.HTTP_201_CREATED,
    response_model=SendMessageResponse,
)
async def send_message(
    current_user: CurrentUserDep,
    db: SessionDep,
    fanout: FanOutRouterDep,
    attachments: AttachmentStoreDep,
    background_tasks: BackgroundTasks,
    response: Response,
    receiver_id: Annotated[str, Form()],
    content: Annotated[str | None, Form()] = None,
    message_type: Annotated[str, Form()] = MESSAGE_TYPE_TEXT,
    appointment_id: Annotated[str | None, Form()] = None,
    file: Annotated[UploadFile | None, File()] = None,
    idempotency_key: Annotated[str | None, Header(alias="Idempotency-Key")] = None,
) -> dict[str, Any]:
    """Send a message, optionally with one attached file.

    The response is returned as soon as the message is stored; real-time
    delivery runs afterwards as a background task.
    """
    upload: PendingUpload | None = None
    if file is not None:
        upload = PendingUpload(
            filename=file.filename or "",
            content_type=file.content_type or "application/octet-stream",
            data=await file.read(),
        )

    service = MessageService(db, attachments)
    try:
        result = service.send_message(
            sender_id=current_user.id,
            receiver_id=receiver_id,
            content=content,
            message_type=message_type,
            upload=upload,
            appointment_id=appointment_id,
            idempotency_key=idempotency_key,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except MessageValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    payload = _serialize_message(result.message)
    if result.created:
        background_tasks.add_task(fanout.notify_message, payload, result.conversation_id)
    else:
        response.status_code = status.HTTP_200_OK

    return {"message": payload, "success": True}


@router.get("/conversation/{other_user_id}", response_model=ConversationPage)
async def get_conversation(
    other_user_id: str,
    current_user: CurrentUserDep,
    db: SessionDep,
    page: int = Query(1, ge=1),
    limit: int = Query(
        settings.conversation_page_size,
        ge=1,
        le=settings.conversation_max_page_size,
    ),
) -> dict[str, Any]:
    """Return one page of the thread with another user, oldest first."""
    thread = MessageService(db).get_conversation(current_user.id, other_user_id, page, limit)
    return {
        "messages": [_serialize_message(message) for message in thread.messages],
        "total_pages": thread.total_pages,
        "current_page": thread.page,
        "total": thread.total,
    }


@router.get("/conversations", response_model=ConversationListResponse)
async def list_conversations(
    current_user: CurrentUserDep,
    db: SessionDep,
) -> dict[str, Any]:
    """Return the caller's conversations, most recently active first."""
    summaries = ConversationIndex(db).list_conversations(current_user.id)
    return {
        "conversations": [
            {
                "id": summary.conversation_id,
                "user": public_profile(summary.counterparty, summary.specialty),
                "last_message": _serialize_message(summary.last_message),
                "unread_count": summary.unread_count,
            }
            for summary in summaries
        ]
    }


@router.put("/read/{sender_id}", response_model=MarkReadResponse)
async def mark_messages_read(
    sender_id: str,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> dict[str, Any]:
    """Mark every unread message from ``sender_id`` to the caller as read."""
    updated = MessageService(db).mark_read(sender_id, current_user.id)
    return {"status": "marked_as_read", "updated": updated}


@router.get("/unread/count", response_model=UnreadCountResponse)
async def get_unread_count(
    current_user: CurrentUserDep,
    db: SessionDep,
) -> dict[str, int]:
    """Return the number of unread messages addressed to the caller."""
    return {"unread_count": MessageService(db).count_unread(current_user.id)}


@router.delete("/{message_id}")
async def delete_message(
    message_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> dict[str, str]:
    """Delete a message; only its sender may do so."""
    try:
        MessageService(db).delete_message(message_id, current_user.id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    return {"status": "message_deleted"}
