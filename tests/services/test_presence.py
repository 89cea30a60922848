"""Tests for the session registry and the presence log worker."""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from tibabu_connect.services.presence import (
    InMemorySessionRegistry,
    PresenceLogWorker,
    RealtimeConnection,
)


def _connection() -> RealtimeConnection:
    return RealtimeConnection(MagicMock())


def test_bind_and_lookup():
    registry = InMemorySessionRegistry()
    conn = _connection()

    assert registry.bind("u1", conn) is None
    assert registry.lookup("u1") is conn
    assert registry.connected_user_ids() == ["u1"]


def test_rebind_replaces_previous_binding():
    registry = InMemorySessionRegistry()
    old, new = _connection(), _connection()
    registry.bind("u1", old)

    assert registry.bind("u1", new) is old
    assert registry.lookup("u1") is new
    assert len(registry) == 1


def test_stale_unbind_keeps_newer_binding():
    registry = InMemorySessionRegistry()
    old, new = _connection(), _connection()
    registry.bind("u1", old)
    registry.bind("u1", new)

    assert registry.unbind("u1", old) is False
    assert registry.lookup("u1") is new
    assert registry.unbind("u1", new) is True
    assert registry.lookup("u1") is None


@pytest.mark.asyncio
async def test_emit_sends_envelope():
    websocket = MagicMock()
    websocket.send_json = AsyncMock()
    conn = RealtimeConnection(websocket)

    await conn.emit("message-sent", {"id": 1})

    websocket.send_json.assert_awaited_once_with({"event": "message-sent", "data": {"id": 1}})


@pytest.mark.asyncio
async def test_presence_worker_logs_connected_users(caplog):
    registry = InMemorySessionRegistry()
    registry.bind("u1", _connection())
    worker = PresenceLogWorker(registry, interval=0.1)

    with caplog.at_level(logging.INFO, logger="tibabu_connect.services.presence"):
        await worker.start()
        await asyncio.sleep(0.25)
        await worker.stop()

    assert any("u1" in record.getMessage() for record in caplog.records)


@pytest.mark.asyncio
async def test_presence_worker_stop_without_start():
    worker = PresenceLogWorker(InMemorySessionRegistry(), interval=1)
    await worker.stop()
