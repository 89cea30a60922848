"""Client-side reconciliation layer for the Tibabu Connect messaging API."""

from .api import MessagingAPI, MessagingAPIError
from .cache import ConversationCache, ConversationState, PushOutcome
from .config import ClientConfig
from .realtime import RealtimeListener
from .session import MessagingSession

__all__ = [
    "ClientConfig",
    "ConversationCache",
    "ConversationState",
    "MessagingAPI",
    "MessagingAPIError",
    "MessagingSession",
    "PushOutcome",
    "RealtimeListener",
]
