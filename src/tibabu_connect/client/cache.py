"""In-memory view of a user's conversations and open thread.

Three sources update the view independently: explicit fetches, the periodic
poll, and pushed events. Every merge is keyed by message id so that the same
message arriving from two sources is applied once.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

__all__ = [
    "ConversationCache",
    "ConversationState",
    "PushOutcome",
    "unwrap_message",
]

_EPOCH = datetime.min.replace(tzinfo=UTC)

STATE_LOADING = "loading"
STATE_ERROR = "error"
STATE_EMPTY = "empty"
STATE_READY = "ready"


def _timestamp(message: dict[str, Any]) -> datetime:
    raw = message.get("created_at")
    if isinstance(raw, datetime):
        value = raw
    elif isinstance(raw, str):
        try:
            value = datetime.fromisoformat(raw)
        except ValueError:
            return _EPOCH
    else:
        return _EPOCH
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value


def _order_key(message: dict[str, Any]) -> tuple[datetime, int]:
    return _timestamp(message), int(message.get("id") or 0)


def _party_id(party: Any) -> str | None:
    if isinstance(party, dict):
        return party.get("id")
    if isinstance(party, str):
        return party
    return None


def _pair_id(user_a: str, user_b: str) -> str:
    return "-".join(sorted((user_a, user_b)))


def unwrap_message(payload: Any) -> dict[str, Any]:
    """Return the message from a bare payload or a ``{message, conversation_id}`` wrapper."""
    if isinstance(payload, dict) and isinstance(payload.get("message"), dict):
        payload = payload["message"]
    if not isinstance(payload, dict) or payload.get("id") is None:
        raise ValueError("Push payload does not carry a message")
    return payload


@dataclass
class ConversationState:
    """Local state of the thread with one counterparty."""

    counterparty: dict[str, Any]
    conversation_id: str
    last_message: dict[str, Any] | None = None
    unread_count: int = 0
    provisional: bool = False

    @property
    def counterparty_id(self) -> str:
        return self.counterparty["id"]


@dataclass(frozen=True)
class PushOutcome:
    """What applying a pushed message changed, for the caller to follow up on."""

    counterparty_id: str
    duplicate: bool = False
    appended: bool = False
    needs_mark_read: bool = False
    notified: bool = False
    needs_profile: bool = False


@dataclass
class ConversationCache:
    """Conversation list, open thread and notification markers for one user."""

    user_id: str
    conversations: dict[str, ConversationState] = field(default_factory=dict)
    notifications: set[str] = field(default_factory=set)
    open_counterparty_id: str | None = None
    error: str | None = None
    loaded: bool = False
    _thread: dict[int, dict[str, Any]] = field(default_factory=dict, init=False, repr=False)
    _seen_ids: set[int] = field(default_factory=set, init=False, repr=False)

    @property
    def state(self) -> str:
        """One of ``loading``, ``error``, ``empty`` or ``ready``."""
        if self.error is not None:
            return STATE_ERROR
        if not self.loaded:
            return STATE_LOADING
        return STATE_READY if self.conversations else STATE_EMPTY

    @property
    def total_unread(self) -> int:
        return sum(entry.unread_count for entry in self.conversations.values())

    @property
    def thread_messages(self) -> list[dict[str, Any]]:
        """Messages of the open thread in display order."""
        return sorted(self._thread.values(), key=_order_key)

    def sorted_conversations(self) -> list[ConversationState]:
        """Conversations with the most recent activity first."""
        return sorted(
            self.conversations.values(),
            key=lambda entry: _order_key(entry.last_message) if entry.last_message else (_EPOCH, 0),
            reverse=True,
        )

    def replace_conversations(self, entries: list[dict[str, Any]]) -> None:
        """Install a fetched conversation list; server counts replace local ones.

        A fetched entry whose last message is older than the cached one was
        read before a push arrived; the cached last message and unread count
        win over it. Provisional entries the server did not return yet are
        kept.
        """
        fresh: dict[str, ConversationState] = {}
        for raw in entries:
            user = dict(raw["user"])
            last_message = raw.get("last_message")
            entry = ConversationState(
                counterparty=user,
                conversation_id=raw.get("id") or _pair_id(self.user_id, user["id"]),
                last_message=last_message,
                unread_count=int(raw.get("unread_count") or 0),
            )
            if last_message is not None:
                self._seen_ids.add(last_message["id"])

            cached = self.conversations.get(entry.counterparty_id)
            if cached is not None and cached.last_message is not None and (
                last_message is None
                or _order_key(cached.last_message) > _order_key(last_message)
            ):
                entry.last_message = cached.last_message
                entry.unread_count = max(entry.unread_count, cached.unread_count)

            if entry.counterparty_id == self.open_counterparty_id:
                entry.unread_count = 0
            fresh[entry.counterparty_id] = entry

        for counterparty_id, entry in self.conversations.items():
            if entry.provisional and counterparty_id not in fresh:
                fresh[counterparty_id] = entry

        self.conversations = fresh
        self.notifications = {
            counterparty_id
            for counterparty_id in self.notifications
            if counterparty_id in fresh and counterparty_id != self.open_counterparty_id
        }
        self.notifications.update(
            counterparty_id
            for counterparty_id, entry in fresh.items()
            if entry.unread_count > 0 and counterparty_id != self.open_counterparty_id
        )
        self.error = None
        self.loaded = True

    def mark_fetch_failed(self, detail: str) -> None:
        """Record that the conversation list could not be fetched."""
        self.error = detail

    def conversation_id_for(self, counterparty_id: str) -> str:
        return _pair_id(self.user_id, counterparty_id)

    def set_counterparty(self, profile: dict[str, Any]) -> None:
        """Replace the stored profile of a counterparty, e.g. after a lookup."""
        entry = self.conversations.get(profile["id"])
        if entry is not None:
            entry.counterparty = dict(profile)

    def open_thread(self, counterparty_id: str) -> None:
        """Make ``counterparty_id`` the open thread and clear its notification."""
        if counterparty_id != self.open_counterparty_id:
            self._thread = {}
        self.open_counterparty_id = counterparty_id
        self.notifications.discard(counterparty_id)

    def close_thread(self) -> None:
        self.open_counterparty_id = None
        self._thread = {}

    def load_thread(self, counterparty_id: str, messages: list[dict[str, Any]]) -> bool:
        """Merge a fetched page into the open thread.

        Returns False, leaving the cache untouched, when another thread was
        opened while the page was in flight.
        """
        if counterparty_id != self.open_counterparty_id:
            return False
        for message in messages:
            self._upsert_thread(message)
            self._seen_ids.add(message["id"])
        entry = self.conversations.get(counterparty_id)
        if entry is not None:
            entry.unread_count = 0
            if messages:
                self._advance_last_message(entry, max(messages, key=_order_key))
        return True

    def upsert_message(self, message: dict[str, Any]) -> None:
        """Apply a message the user sent through this client."""
        counterparty_id = _party_id(message.get("receiver"))
        if counterparty_id is None:
            raise ValueError("Message has no receiver")
        self._seen_ids.add(message["id"])
        entry = self._ensure_entry(message.get("receiver"), counterparty_id)
        self._advance_last_message(entry, message)
        if counterparty_id == self.open_counterparty_id:
            self._upsert_thread(message)

    def discard_message(self, message_id: int) -> None:
        self._thread.pop(message_id, None)

    def apply_push(self, payload: Any) -> PushOutcome:
        """Merge a pushed message; repeated deliveries of one id count once.

        Raises:
            ValueError: If the payload carries no message, or a message that
                does not involve this user.
        """
        message = unwrap_message(payload)
        sender, receiver = message.get("sender"), message.get("receiver")
        sender_id, receiver_id = _party_id(sender), _party_id(receiver)
        if self.user_id not in (sender_id, receiver_id):
            raise ValueError("Pushed message does not involve this user")

        incoming = receiver_id == self.user_id and sender_id != self.user_id
        counterparty, counterparty_id = (sender, sender_id) if incoming else (receiver, receiver_id)
        if counterparty_id is None:
            raise ValueError("Pushed message has no counterparty")

        duplicate = message["id"] in self._seen_ids
        self._seen_ids.add(message["id"])

        needs_profile = counterparty_id not in self.conversations and not isinstance(
            counterparty, dict
        )
        entry = self._ensure_entry(counterparty, counterparty_id)
        newer = self._advance_last_message(entry, message)

        if counterparty_id == self.open_counterparty_id:
            self._upsert_thread(message)
            entry.unread_count = 0
            return PushOutcome(
                counterparty_id=counterparty_id,
                duplicate=duplicate,
                appended=not duplicate,
                needs_mark_read=incoming and not duplicate,
                needs_profile=needs_profile,
            )

        notified = incoming and newer and not duplicate
        if notified:
            entry.unread_count += 1
            self.notifications.add(counterparty_id)
        return PushOutcome(
            counterparty_id=counterparty_id,
            duplicate=duplicate,
            notified=notified,
            needs_profile=needs_profile,
        )

    def available_counterparties(
        self,
        candidates: list[dict[str, Any]],
        search: str = "",
    ) -> list[dict[str, Any]]:
        """Users one could start a new thread with, minus existing conversations."""
        term = search.strip().lower()
        available = []
        for candidate in candidates:
            candidate_id = candidate.get("id")
            if candidate_id == self.user_id or candidate_id in self.conversations:
                continue
            if term and not any(
                term in str(candidate.get(key) or "").lower()
                for key in ("name", "email", "specialty")
            ):
                continue
            available.append(candidate)
        return available

    def _ensure_entry(self, counterparty: Any, counterparty_id: str) -> ConversationState:
        entry = self.conversations.get(counterparty_id)
        if entry is None:
            profile = dict(counterparty) if isinstance(counterparty, dict) else {"id": counterparty_id}
            entry = ConversationState(
                counterparty=profile,
                conversation_id=_pair_id(self.user_id, counterparty_id),
                provisional=True,
            )
            self.conversations[counterparty_id] = entry
        return entry

    @staticmethod
    def _advance_last_message(entry: ConversationState, message: dict[str, Any]) -> bool:
        if entry.last_message is None or _order_key(message) > _order_key(entry.last_message):
            entry.last_message = message
            return True
        return False

    def _upsert_thread(self, message: dict[str, Any]) -> None:
        if _party_id(message.get("receiver")) == self.user_id:
            message = {**message, "is_read": True}
        self._thread[message["id"]] = message
