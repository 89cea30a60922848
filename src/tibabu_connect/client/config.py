"""Configuration for clients of the messaging API."""

from __future__ import annotations

from dataclasses import dataclass

API_PREFIX = "/api/v1"


@dataclass(frozen=True)
class ClientConfig:
    """Immutable configuration for a messaging client."""

    base_url: str
    token: str
    ws_url: str | None = None
    timeout_seconds: float = 10.0
    connect_timeout_seconds: float = 10.0
    poll_interval_seconds: float = 10.0

    @property
    def api_url(self) -> str:
        return self.base_url.rstrip("/") + API_PREFIX

    @property
    def websocket_url(self) -> str:
        """Return the real-time channel URL, derived from ``base_url`` if unset."""
        if self.ws_url:
            return self.ws_url
        base = self.base_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return f"{base}{API_PREFIX}/ws"
