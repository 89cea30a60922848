# src/tibabu_connect/api/v1/endpoints/realtime.py
"""WebSocket channel for pushed messages and typing indicators.

Every frame in either direction is a JSON object ``{"event": ..., "data": ...}``.
A connection must send ``authenticate`` with a bearer token before it may
join rooms or emit typing indicators.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from contextlib import AbstractContextManager
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from sqlalchemy.orm import Session

from tibabu_connect.core.security import InvalidTokenError, decode_subject
from tibabu_connect.models import User
from tibabu_connect.schemas.realtime import RealtimeEnvelope
from tibabu_connect.services.fanout import FanOutRouter
from tibabu_connect.services.messages import is_participant
from tibabu_connect.services.presence import RealtimeConnection

from ..dependencies import FanOutRouterDep, SessionFactoryDep

router = APIRouter(tags=["realtime"])

logger = logging.getLogger(__name__)

EVENT_AUTHENTICATE = "authenticate"
EVENT_AUTHENTICATED = "authenticated"
EVENT_JOIN = "join-conversation"
EVENT_LEAVE = "leave-conversation"
EVENT_NEW_MESSAGE = "new-message"
EVENT_TYPING = "typing"
EVENT_ERROR = "error"


def _extract_token(data: Any) -> str | None:
    if isinstance(data, str):
        return data
    if isinstance(data, dict):
        token = data.get("token")
        return token if isinstance(token, str) else None
    return None


def _extract_conversation_id(data: Any) -> str | None:
    if isinstance(data, str):
        return data
    if isinstance(data, dict):
        value = data.get("conversation_id")
        return value if isinstance(value, str) else None
    return None


class _ChannelHandler:
    """Dispatches inbound events for one connection."""

    def __init__(
        self,
        connection: RealtimeConnection,
        fanout: FanOutRouter,
        sessions: Callable[[], AbstractContextManager[Session]],
    ) -> None:
        self.connection = connection
        self.fanout = fanout
        self.sessions = sessions

    async def error(self, detail: str) -> None:
        await self.connection.emit(EVENT_ERROR, {"detail": detail})

    async def dispatch(self, envelope: RealtimeEnvelope) -> None:
        handler = {
            EVENT_AUTHENTICATE: self.on_authenticate,
            EVENT_JOIN: self.on_join,
            EVENT_LEAVE: self.on_leave,
            EVENT_NEW_MESSAGE: self.on_new_message,
            EVENT_TYPING: self.on_typing,
        }.get(envelope.event)
        if handler is None:
            await self.error(f"Unknown event '{envelope.event}'")
            return
        await handler(envelope.data)

    async def on_authenticate(self, data: Any) -> None:
        token = _extract_token(data)
        if not token:
            await self.error("Token required")
            return
        try:
            user_id = decode_subject(token)
        except InvalidTokenError:
            logger.info("Rejected authenticate on connection %s", self.connection.id)
            await self.error("Could not validate credentials")
            return

        with self.sessions() as db:
            user = db.get(User, user_id)
            active = user is not None and user.is_active
        if not active:
            logger.info("Rejected authenticate for unknown or inactive user %s", user_id)
            await self.error("User not found")
            return

        self.fanout.authenticate(self.connection, user_id)
        await self.connection.emit(EVENT_AUTHENTICATED, {"user_id": user_id})

    async def _authorized_room(self, data: Any) -> str | None:
        """Return the conversation id in ``data`` if the caller may use it."""
        if self.connection.user_id is None:
            await self.error("Not authenticated")
            return None
        conversation_id = _extract_conversation_id(data)
        if not conversation_id:
            await self.error("conversation_id required")
            return None
        if not is_participant(conversation_id, self.connection.user_id):
            await self.error("Not a participant of this conversation")
            return None
        return conversation_id

    async def on_join(self, data: Any) -> None:
        conversation_id = await self._authorized_room(data)
        if conversation_id is not None:
            self.fanout.join_room(self.connection, conversation_id)

    async def on_leave(self, data: Any) -> None:
        conversation_id = _extract_conversation_id(data)
        if conversation_id:
            self.fanout.leave_room(self.connection, conversation_id)

    async def on_new_message(self, data: Any) -> None:
        conversation_id = await self._authorized_room(data)
        if conversation_id is None:
            return
        message = data.get("message") if isinstance(data, dict) else None
        await self.fanout.relay_message(
            conversation_id,
            {"message": message, "conversation_id": conversation_id},
            origin=self.connection,
        )

    async def on_typing(self, data: Any) -> None:
        conversation_id = await self._authorized_room(data)
        if conversation_id is None:
            return
        is_typing = bool(data.get("is_typing")) if isinstance(data, dict) else False
        await self.fanout.notify_typing(
            conversation_id,
            self.connection.user_id,
            is_typing,
            origin=self.connection,
        )


@router.websocket("/ws")
async def realtime_channel(
    websocket: WebSocket,
    fanout: FanOutRouterDep,
    sessions: SessionFactoryDep,
) -> None:
    """Serve one client's real-time channel until it disconnects."""
    await websocket.accept()
    connection = RealtimeConnection(websocket)
    handler = _ChannelHandler(connection, fanout, sessions)
    logger.info("Client connected: %s", connection.id)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                envelope = RealtimeEnvelope.model_validate(json.loads(raw))
            except (ValueError, ValidationError):
                await handler.error("Malformed frame")
                continue
            await handler.dispatch(envelope)
    except WebSocketDisconnect:
        logger.info("Client disconnected: %s", connection.id)
    finally:
        fanout.disconnect(connection)
