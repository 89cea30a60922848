"""Real-time fan-out of new messages to connected clients.

Delivery is best effort. The message store is the source of truth and every
push can be reconciled by the client with a fetch, so the router never
retries and never reports a failed emit to the request that caused it.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any

from fastapi import WebSocketDisconnect

from .presence import InMemorySessionRegistry, RealtimeConnection, SessionRegistry

__all__ = [
    "EVENT_MESSAGE_RECEIVED",
    "EVENT_MESSAGE_SENT",
    "EVENT_USER_TYPING",
    "FanOutRouter",
    "get_fanout_router",
]

logger = logging.getLogger(__name__)

EVENT_MESSAGE_RECEIVED = "message-received"
EVENT_MESSAGE_SENT = "message-sent"
EVENT_USER_TYPING = "user-typing"

# Errors a send on a dead socket can surface depending on the ASGI server.
TRANSPORT_ERRORS = (WebSocketDisconnect, RuntimeError, OSError)


class FanOutRouter:
    """Routes events to conversation rooms and to individual users.

    A room is keyed by the canonical conversation id. A connection may join
    any number of rooms; a user has at most one bound connection, held by
    the session registry.
    """

    def __init__(self, registry: SessionRegistry | None = None) -> None:
        self.registry = registry or InMemorySessionRegistry()
        self._rooms: dict[str, set[RealtimeConnection]] = defaultdict(set)

    def authenticate(self, connection: RealtimeConnection, user_id: str) -> None:
        """Bind ``connection`` to ``user_id``, replacing any older binding."""
        if connection.user_id and connection.user_id != user_id:
            self.registry.unbind(connection.user_id, connection)
        connection.user_id = user_id
        previous = self.registry.bind(user_id, connection)
        if previous is not None:
            logger.info("Connection %s replaced %s for user %s", connection.id, previous.id, user_id)
        logger.info("User authenticated: %s (connection %s)", user_id, connection.id)

    def join_room(self, connection: RealtimeConnection, conversation_id: str) -> None:
        """Add ``connection`` to a conversation room; joining twice is a no-op."""
        self._rooms[conversation_id].add(connection)
        connection.rooms.add(conversation_id)
        logger.info("Connection %s joined conversation %s", connection.id, conversation_id)

    def leave_room(self, connection: RealtimeConnection, conversation_id: str) -> None:
        """Remove ``connection`` from a room; leaving a room not joined is a no-op."""
        members = self._rooms.get(conversation_id)
        if members is not None:
            members.discard(connection)
            if not members:
                del self._rooms[conversation_id]
        connection.rooms.discard(conversation_id)
        logger.info("Connection %s left conversation %s", connection.id, conversation_id)

    def room_members(self, conversation_id: str) -> list[RealtimeConnection]:
        """Return a snapshot of the connections in a room."""
        return list(self._rooms.get(conversation_id, ()))

    def disconnect(self, connection: RealtimeConnection) -> None:
        """Forget ``connection``: leave its rooms and drop its user binding.

        A stale connection closing after a newer one was bound for the same
        user leaves the newer binding intact.
        """
        for conversation_id in list(connection.rooms):
            self.leave_room(connection, conversation_id)
        if connection.user_id is not None:
            if self.registry.unbind(connection.user_id, connection):
                logger.info("User disconnected: %s (connection %s)", connection.user_id, connection.id)

    async def _deliver(self, connection: RealtimeConnection, event: str, data: Any) -> bool:
        try:
            await connection.emit(event, data)
        except TRANSPORT_ERRORS as exc:
            logger.warning("Dropping connection %s after failed %s emit: %s", connection.id, event, exc)
            self.disconnect(connection)
            return False
        return True

    async def emit_to_room(
        self,
        conversation_id: str,
        event: str,
        data: Any,
        exclude: RealtimeConnection | None = None,
    ) -> int:
        """Emit to every member of a room; return how many sends succeeded."""
        targets = [conn for conn in self.room_members(conversation_id) if conn is not exclude]
        if not targets:
            return 0
        results = await asyncio.gather(*(self._deliver(conn, event, data) for conn in targets))
        return sum(results)

    async def emit_to_user(self, user_id: str, event: str, data: Any) -> bool:
        """Emit to the connection bound to ``user_id``; absence is not an error."""
        connection = self.registry.lookup(user_id)
        if connection is None:
            logger.debug("No live connection for %s; skipping %s", user_id, event)
            return False
        return await self._deliver(connection, event, data)

    async def notify_message(self, message: dict[str, Any], conversation_id: str) -> None:
        """Push a freshly persisted message.

        The room gets ``message-received`` with the conversation id attached;
        the sender's and receiver's own connections get ``message-sent`` and
        ``message-received`` so clients that have not joined the room still
        hear about it.
        """
        sender_id = message["sender"]["id"]
        receiver_id = message["receiver"]["id"]
        logger.debug("Emitting message %s to conversation %s", message.get("id"), conversation_id)
        await asyncio.gather(
            self.emit_to_room(
                conversation_id,
                EVENT_MESSAGE_RECEIVED,
                {"message": message, "conversation_id": conversation_id},
            ),
            self.emit_to_user(sender_id, EVENT_MESSAGE_SENT, message),
            self.emit_to_user(receiver_id, EVENT_MESSAGE_RECEIVED, message),
        )

    async def notify_typing(
        self,
        conversation_id: str,
        user_id: str,
        is_typing: bool,
        origin: RealtimeConnection | None = None,
    ) -> None:
        """Broadcast a typing indicator to the room, skipping the typist."""
        await self.emit_to_room(
            conversation_id,
            EVENT_USER_TYPING,
            {"user_id": user_id, "is_typing": bool(is_typing)},
            exclude=origin,
        )

    async def relay_message(
        self,
        conversation_id: str,
        message: Any,
        origin: RealtimeConnection | None = None,
    ) -> None:
        """Relay a client-supplied message to the other members of a room."""
        await self.emit_to_room(conversation_id, EVENT_MESSAGE_RECEIVED, message, exclude=origin)


class _FanOutRouterSingleton:
    """Singleton wrapper for FanOutRouter."""

    _instance: FanOutRouter | None = None

    @classmethod
    def get_instance(cls) -> FanOutRouter:
        if cls._instance is None:
            cls._instance = FanOutRouter()
        return cls._instance


def get_fanout_router() -> FanOutRouter:
    """Return the process-wide fan-out router."""
    return _FanOutRouterSingleton.get_instance()
