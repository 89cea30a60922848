"""Tests for the client messaging session."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from tibabu_connect.client.api import MessagingAPI, MessagingAPIError
from tibabu_connect.client.config import ClientConfig
from tibabu_connect.client.realtime import RealtimeListener
from tibabu_connect.client.session import MessagingSession

ME = "a" * 32
DOCTOR = "b" * 32


def _message(message_id: int, sender: str, receiver: str, minute: int = 0) -> dict:
    return {
        "id": message_id,
        "sender": {"id": sender, "name": "S", "email": "s@example.com", "role": "patient"},
        "receiver": {"id": receiver, "name": "R", "email": "r@example.com", "role": "doctor"},
        "content": "hi",
        "is_read": False,
        "created_at": f"2026-03-01T10:{minute:02d}:00+00:00",
    }


@pytest.fixture
def api():
    mock = AsyncMock(spec=MessagingAPI)
    mock.config = ClientConfig(base_url="http://test", token="t", poll_interval_seconds=0.1)
    mock.list_conversations.return_value = []
    mock.get_conversation.return_value = {"messages": [], "total": 0, "total_pages": 0, "current_page": 1}
    mock.mark_read.return_value = 0
    return mock


@pytest.fixture
def session(api):
    return MessagingSession(api, ME)


@pytest.mark.asyncio
async def test_refresh_failure_sets_error_state(session, api):
    api.list_conversations.side_effect = MessagingAPIError(500, "Server error")

    assert await session.refresh_conversations() is False
    assert session.cache.state == "error"
    assert session.cache.error == "Server error"


@pytest.mark.asyncio
async def test_select_user_fetches_and_marks_read(session, api):
    api.get_conversation.return_value = {"messages": [_message(1, DOCTOR, ME)]}
    session.cache.apply_push(_message(1, DOCTOR, ME))

    messages = await session.select_user(DOCTOR)

    api.get_conversation.assert_awaited_once_with(DOCTOR)
    api.mark_read.assert_awaited_once_with(DOCTOR)
    assert [m["id"] for m in messages] == [1]
    assert DOCTOR not in session.cache.notifications


@pytest.mark.asyncio
async def test_mark_read_failure_is_swallowed(session, api):
    api.mark_read.side_effect = MessagingAPIError(None, "offline")
    await session.select_user(DOCTOR)
    assert session.cache.open_counterparty_id == DOCTOR


@pytest.mark.asyncio
async def test_send_failure_propagates(session, api):
    api.send_message.side_effect = MessagingAPIError(400, "Message content is required")
    with pytest.raises(MessagingAPIError):
        await session.send(DOCTOR, "")


@pytest.mark.asyncio
async def test_send_upserts_and_refreshes(session, api):
    sent = _message(3, ME, DOCTOR)
    api.send_message.return_value = sent
    await session.select_user(DOCTOR)

    result = await session.send(DOCTOR, "hi", idempotency_key="k-1")

    assert result == sent
    assert api.send_message.await_args.kwargs["idempotency_key"] == "k-1"
    assert [m["id"] for m in session.cache.thread_messages] == [3]
    assert api.list_conversations.await_count == 1


@pytest.mark.asyncio
async def test_push_into_open_thread_marks_read(session, api):
    await session.select_user(DOCTOR)
    api.mark_read.reset_mock()

    outcome = await session.handle_push({"message": _message(4, DOCTOR, ME), "conversation_id": "x"})
    await session.handle_push(_message(4, DOCTOR, ME))

    assert outcome.appended is True
    api.mark_read.assert_awaited_once_with(DOCTOR)


@pytest.mark.asyncio
async def test_push_with_bare_sender_fetches_profile(session, api):
    api.get_user.return_value = {"id": DOCTOR, "name": "Dr. Baraka", "email": "b@example.com", "role": "doctor"}

    await session.handle_push({"id": 6, "sender": DOCTOR, "receiver": ME})

    api.get_user.assert_awaited_once_with(DOCTOR)
    assert session.cache.conversations[DOCTOR].counterparty["name"] == "Dr. Baraka"


@pytest.mark.asyncio
async def test_malformed_push_is_ignored(session):
    assert await session.handle_push("garbage") is None


@pytest.mark.asyncio
async def test_poller_refreshes_until_stopped(session, api):
    await session.start()
    await asyncio.sleep(0.35)
    await session.stop()

    calls = api.list_conversations.await_count
    assert calls >= 2
    await asyncio.sleep(0.15)
    assert api.list_conversations.await_count == calls


@pytest.mark.asyncio
async def test_listener_events_are_routed_to_session(api, mocker):
    listener = mocker.MagicMock(spec=RealtimeListener)
    session = MessagingSession(api, ME, listener=listener)

    registered = {call.args[0] for call in listener.on.call_args_list}
    assert registered == {"message-received", "message-sent"}
    assert all(call.args[1] == session.handle_push for call in listener.on.call_args_list)
