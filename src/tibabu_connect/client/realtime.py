"""Listener for the server's real-time channel.

The listener connects once with a bounded open timeout. When the connection
drops it stays down; reconnecting is an explicit new :meth:`connect` call.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed

from .api import MessagingAPIError
from .config import ClientConfig

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], Awaitable[Any]]


class RealtimeListener:
    """Receives pushed events and sends room and typing events for one user."""

    def __init__(
        self,
        config: ClientConfig,
        connect: Callable[..., Awaitable[Any]] | None = None,
    ) -> None:
        self.config = config
        self._connect = connect or websockets.connect
        self._websocket: Any = None
        self._task: asyncio.Task[None] | None = None
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self.user_id: str | None = None

    @property
    def connected(self) -> bool:
        return self._websocket is not None

    def on(self, event: str, handler: EventHandler) -> None:
        """Register ``handler`` to be awaited with the data of each ``event``."""
        self._handlers[event].append(handler)

    async def connect(self) -> None:
        """Open the channel, authenticate, and start reading events."""
        if self.connected:
            return

        url = self.config.websocket_url
        try:
            self._websocket = await self._connect(
                url,
                open_timeout=self.config.connect_timeout_seconds,
            )
        except (OSError, TimeoutError) as exc:
            logger.warning("Could not open real-time channel %s: %s", url, exc)
            raise

        await self._send("authenticate", {"token": self.config.token})
        self._task = asyncio.create_task(self._run())

    async def join(self, conversation_id: str) -> None:
        await self._send("join-conversation", {"conversation_id": conversation_id})

    async def leave(self, conversation_id: str) -> None:
        await self._send("leave-conversation", {"conversation_id": conversation_id})

    async def send_typing(self, conversation_id: str, is_typing: bool) -> None:
        await self._send("typing", {"conversation_id": conversation_id, "is_typing": is_typing})

    async def close(self) -> None:
        """Close the channel and wait for the reader to finish."""
        if self._websocket is not None:
            await self._websocket.close()
        if self._task is not None:
            await self._task
            self._task = None

    async def _send(self, event: str, data: Any) -> None:
        if self._websocket is None:
            raise RuntimeError("Real-time channel is not connected")
        await self._websocket.send(json.dumps({"event": event, "data": data}))

    async def _run(self) -> None:
        websocket = self._websocket
        try:
            async for raw in websocket:
                await self._dispatch(raw)
        except ConnectionClosed as exc:
            logger.info("Real-time channel closed: %s", exc)
        finally:
            self._websocket = None
            self.user_id = None

    async def _dispatch(self, raw: str | bytes) -> None:
        try:
            frame = json.loads(raw)
        except ValueError:
            logger.warning("Discarding malformed frame from real-time channel")
            return
        if not isinstance(frame, dict):
            logger.warning("Discarding malformed frame from real-time channel")
            return

        event = frame.get("event")
        data = frame.get("data")
        if event == "authenticated" and isinstance(data, dict):
            self.user_id = data.get("user_id")
            logger.info("Real-time channel authenticated as %s", self.user_id)
        elif event == "error":
            logger.warning("Real-time channel reported an error: %s", data)

        for handler in list(self._handlers.get(event, ())):
            try:
                await handler(data)
            except (MessagingAPIError, ValueError, KeyError, TypeError) as exc:
                logger.error("Handler for %s failed: %s", event, exc, exc_info=True)
