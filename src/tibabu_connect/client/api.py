"""Async HTTP client for the messaging REST surface."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

import httpx

from .config import ClientConfig

logger = logging.getLogger(__name__)

HTTP_BAD_REQUEST = 400


class MessagingAPIError(RuntimeError):
    """Raised when a messaging API call fails.

    ``status_code`` is ``None`` when the request never produced a response.
    """

    def __init__(self, status_code: int | None, detail: str) -> None:
        super().__init__(f"{status_code or 'network'}: {detail}")
        self.status_code = status_code
        self.detail = detail


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, Mapping) and "detail" in body:
        return str(body["detail"])
    return str(body)


class MessagingAPI:
    """HTTP client wrapper for the messaging endpoints of one user."""

    def __init__(
        self,
        config: ClientConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.api_url,
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    headers={"Authorization": f"Bearer {self.config.token}"},
                    transport=self._transport,
                )
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        data: Mapping[str, Any] | None = None,
        files: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        client = await self._ensure_client()
        try:
            response = await client.request(
                method,
                path,
                params=params,
                data=data,
                files=files,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise MessagingAPIError(None, f"Request failed: {exc}") from exc

        if response.status_code >= HTTP_BAD_REQUEST:
            raise MessagingAPIError(response.status_code, _error_detail(response))
        return response.json()

    async def send_message(
        self,
        receiver_id: str,
        content: str = "",
        *,
        message_type: str = "text",
        appointment_id: str | None = None,
        attachment: tuple[str, bytes, str] | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        """Send a message and return the persisted message payload.

        Args:
            receiver_id: Counterparty user id.
            content: Text body; may be empty when ``attachment`` is given.
            message_type: Kind of message; replaced server-side for attachments.
            appointment_id: Optional booking reference.
            attachment: Optional ``(filename, data, content_type)`` triple.
            idempotency_key: Optional key; resending with the same key returns
                the original message instead of a duplicate.
        """
        form = {"receiver_id": receiver_id, "content": content, "message_type": message_type}
        if appointment_id:
            form["appointment_id"] = appointment_id
        files = {"file": attachment} if attachment is not None else None
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None

        body = await self._request("POST", "/messages/send", data=form, files=files, headers=headers)
        return body["message"]

    async def get_conversation(
        self,
        other_user_id: str,
        page: int = 1,
        limit: int | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"page": page}
        if limit is not None:
            params["limit"] = limit
        return await self._request("GET", f"/messages/conversation/{other_user_id}", params=params)

    async def list_conversations(self) -> list[dict[str, Any]]:
        body = await self._request("GET", "/messages/conversations")
        return list(body["conversations"])

    async def mark_read(self, sender_id: str) -> int:
        body = await self._request("PUT", f"/messages/read/{sender_id}")
        return int(body.get("updated", 0))

    async def unread_count(self) -> int:
        body = await self._request("GET", "/messages/unread/count")
        return int(body["unread_count"])

    async def delete_message(self, message_id: int) -> None:
        await self._request("DELETE", f"/messages/{message_id}")

    async def get_user(self, user_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/users/{user_id}")

    async def list_users_for_messaging(self, role: str | None = None) -> list[dict[str, Any]]:
        params = {"role": role} if role else None
        body = await self._request("GET", "/users/messaging", params=params)
        return list(body["users"])

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None
