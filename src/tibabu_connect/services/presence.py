"""Presence registry: which live connection belongs to which user.

The registry is process-local. A deployment running several API instances
needs a shared implementation of :class:`SessionRegistry` (for example one
backed by a key-value store plus a pub/sub relay); the fan-out router only
talks to the interface.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any

from tibabu_connect.core.settings import settings

__all__ = [
    "InMemorySessionRegistry",
    "PresenceLogWorker",
    "RealtimeConnection",
    "SessionRegistry",
]

logger = logging.getLogger(__name__)

_connection_ids = itertools.count(1)


class RealtimeConnection:
    """A live WebSocket together with the rooms it has joined."""

    def __init__(self, websocket: Any) -> None:
        self.id = next(_connection_ids)
        self.websocket = websocket
        self.user_id: str | None = None
        self.rooms: set[str] = set()

    async def emit(self, event: str, data: Any) -> None:
        """Send one ``{"event", "data"}`` envelope to the peer."""
        await self.websocket.send_json({"event": event, "data": data})

    def __repr__(self) -> str:
        return f"RealtimeConnection(id={self.id}, user_id={self.user_id!r})"


class SessionRegistry(ABC):
    """Maps an authenticated user id to at most one live connection."""

    @abstractmethod
    def bind(self, user_id: str, connection: RealtimeConnection) -> RealtimeConnection | None:
        """Bind ``connection`` to ``user_id`` and return the connection it replaced."""

    @abstractmethod
    def unbind(self, user_id: str, connection: RealtimeConnection) -> bool:
        """Remove the binding only if ``connection`` is the one currently bound."""

    @abstractmethod
    def lookup(self, user_id: str) -> RealtimeConnection | None:
        """Return the connection bound to ``user_id``, if any."""

    @abstractmethod
    def connected_user_ids(self) -> list[str]:
        """Return the ids of every user with a bound connection."""


class InMemorySessionRegistry(SessionRegistry):
    """Single-process registry backed by a dict.

    All methods are synchronous so each one runs without interleaving on the
    event loop.
    """

    def __init__(self) -> None:
        self._bindings: dict[str, RealtimeConnection] = {}

    def bind(self, user_id: str, connection: RealtimeConnection) -> RealtimeConnection | None:
        previous = self._bindings.get(user_id)
        self._bindings[user_id] = connection
        if previous is connection:
            return None
        return previous

    def unbind(self, user_id: str, connection: RealtimeConnection) -> bool:
        if self._bindings.get(user_id) is not connection:
            return False
        del self._bindings[user_id]
        return True

    def lookup(self, user_id: str) -> RealtimeConnection | None:
        return self._bindings.get(user_id)

    def connected_user_ids(self) -> list[str]:
        return sorted(self._bindings)

    def __len__(self) -> int:
        return len(self._bindings)


class PresenceLogWorker:
    """Periodically logs which users hold a live connection."""

    def __init__(self, registry: SessionRegistry, interval: float | None = None) -> None:
        self.registry = registry
        self.interval = max(
            0.1,
            float(interval if interval is not None else settings.presence_log_interval_seconds),
        )
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    async def start(self) -> None:
        """Start the background logging loop."""
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background logging loop."""
        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except TimeoutError:
                logger.info("Currently connected users: %s", self.registry.connected_user_ids())
