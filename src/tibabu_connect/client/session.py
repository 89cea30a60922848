"""Messaging session: keeps a :class:`ConversationCache` in step with the server.

The session combines explicit fetches, a periodic poll of the conversation
list, and pushed events from a :class:`RealtimeListener`. Pushes are only a
latency optimization; the poll alone keeps the cache correct.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .api import MessagingAPI, MessagingAPIError
from .cache import ConversationCache, PushOutcome
from .realtime import RealtimeListener

logger = logging.getLogger(__name__)

PUSH_EVENTS = ("message-received", "message-sent")


class MessagingSession:
    """Client-side state and actions for one signed-in user."""

    def __init__(
        self,
        api: MessagingAPI,
        user_id: str,
        listener: RealtimeListener | None = None,
        poll_interval: float | None = None,
    ) -> None:
        self.api = api
        self.cache = ConversationCache(user_id)
        self.listener = listener
        self.poll_interval = max(
            0.1,
            float(poll_interval if poll_interval is not None else api.config.poll_interval_seconds),
        )
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

        if listener is not None:
            for event in PUSH_EVENTS:
                listener.on(event, self.handle_push)

    async def start(self) -> None:
        """Load the conversation list, connect the listener and start polling."""
        await self.refresh_conversations()
        if self.listener is not None:
            await self.listener.connect()
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop polling and close the listener."""
        if self._task is not None:
            self._stopping.set()
            await self._task
            self._task = None
        if self.listener is not None:
            await self.listener.close()

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
            except TimeoutError:
                await self.refresh_conversations()

    async def refresh_conversations(self) -> bool:
        """Fetch the conversation list; on failure the cache enters its error state."""
        try:
            entries = await self.api.list_conversations()
        except MessagingAPIError as exc:
            logger.warning("Fetching conversations failed: %s", exc)
            self.cache.mark_fetch_failed(exc.detail)
            return False
        self.cache.replace_conversations(entries)
        return True

    async def select_user(self, counterparty_id: str) -> list[dict[str, Any]]:
        """Open the thread with ``counterparty_id`` and mark it read."""
        previous = self.cache.open_counterparty_id
        self.cache.open_thread(counterparty_id)

        if self.listener is not None and self.listener.connected:
            if previous and previous != counterparty_id:
                await self.listener.leave(self.cache.conversation_id_for(previous))
            await self.listener.join(self.cache.conversation_id_for(counterparty_id))

        page = await self.api.get_conversation(counterparty_id)
        self.cache.load_thread(counterparty_id, page["messages"])
        await self._mark_read(counterparty_id)
        return self.cache.thread_messages

    async def send(
        self,
        receiver_id: str,
        content: str = "",
        *,
        message_type: str = "text",
        appointment_id: str | None = None,
        attachment: tuple[str, bytes, str] | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        """Send a message; failures propagate so the caller can offer a retry.

        Retrying with the same ``idempotency_key`` cannot create a duplicate.
        """
        message = await self.api.send_message(
            receiver_id,
            content,
            message_type=message_type,
            appointment_id=appointment_id,
            attachment=attachment,
            idempotency_key=idempotency_key,
        )
        self.cache.upsert_message(message)
        await self.refresh_conversations()
        return message

    async def delete(self, message_id: int) -> None:
        await self.api.delete_message(message_id)
        self.cache.discard_message(message_id)

    async def set_typing(self, is_typing: bool) -> None:
        """Tell the open thread's room whether the user is typing."""
        counterparty_id = self.cache.open_counterparty_id
        if counterparty_id is None or self.listener is None or not self.listener.connected:
            return
        await self.listener.send_typing(self.cache.conversation_id_for(counterparty_id), is_typing)

    async def handle_push(self, payload: Any) -> PushOutcome | None:
        """Merge a pushed message into the cache and follow up on it."""
        try:
            outcome = self.cache.apply_push(payload)
        except ValueError as exc:
            logger.warning("Ignoring pushed event: %s", exc)
            return None

        if outcome.needs_profile:
            try:
                profile = await self.api.get_user(outcome.counterparty_id)
            except MessagingAPIError as exc:
                logger.warning("Profile lookup for %s failed: %s", outcome.counterparty_id, exc)
            else:
                self.cache.set_counterparty(profile)

        if outcome.needs_mark_read:
            await self._mark_read(outcome.counterparty_id)
        return outcome

    async def _mark_read(self, counterparty_id: str) -> None:
        try:
            await self.api.mark_read(counterparty_id)
        except MessagingAPIError as exc:
            logger.warning("Marking messages from %s read failed: %s", counterparty_id, exc)
