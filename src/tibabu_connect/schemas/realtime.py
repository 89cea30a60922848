"""WebSocket envelope models for the real-time channel."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class RealtimeEnvelope(BaseModel):
    """One event in either direction: ``{"event": name, "data": payload}``."""

    event: str = Field(..., min_length=1)
    data: Any = None
