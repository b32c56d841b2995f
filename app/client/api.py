"""HTTP client for the coach API."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from uuid import UUID

import httpx

TokenProvider = Callable[[], Awaitable[str]]


class CoachApiError(Exception):
    """Non-success answer from the coach API."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _error_message(response: httpx.Response, body: bytes) -> str:
    try:
        data = json.loads(body)
    except ValueError:
        return body.decode("utf-8", "replace")[:200] or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        return str(data.get("error") or data.get("detail") or f"HTTP {response.status_code}")
    return f"HTTP {response.status_code}"


class CoachApiClient:
    """Thin async wrapper over ``/api/v1/coach``.

    ``token`` is either a static bearer token or an async callable returning a
    fresh one (sessions from the hosted auth provider expire).
    """

    def __init__(
        self,
        base_url: str,
        token: str | TokenProvider,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._owns_client = client is None
        self._token = token

    async def _headers(self) -> dict[str, str]:
        token = self._token if isinstance(self._token, str) else await self._token()
        return {"Authorization": f"Bearer {token}"}

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        resp = await self._client.request(method, url, headers=await self._headers(), **kwargs)
        if not resp.is_success:
            raise CoachApiError(resp.status_code, _error_message(resp, resp.content))
        return resp

    async def create_conversation(self, title: str | None = None) -> dict:
        resp = await self._request("POST", "/api/v1/coach/conversations", json={"title": title})
        return resp.json()

    async def list_conversations(self) -> list[dict]:
        resp = await self._request("GET", "/api/v1/coach/conversations")
        return resp.json()

    async def list_messages(self, conversation_id: UUID | str) -> list[dict]:
        resp = await self._request("GET", f"/api/v1/coach/conversations/{conversation_id}/messages")
        return resp.json()

    async def cancel(self, conversation_id: UUID | str) -> bool:
        resp = await self._request("POST", f"/api/v1/coach/conversations/{conversation_id}/cancel")
        return bool(resp.json().get("cancelled"))

    @asynccontextmanager
    async def open_reply(
        self,
        message: str,
        conversation_id: UUID | str | None = None,
    ) -> AsyncIterator[httpx.Response]:
        """Open the chunked reply stream; raises ``CoachApiError`` on an error status.

        Leaving the block closes the connection, which is also how an
        in-flight reply is abandoned.
        """
        body: dict = {"message": message}
        if conversation_id is not None:
            body["conversationId"] = str(conversation_id)

        async with self._client.stream(
            "POST",
            "/api/v1/coach/chat",
            json=body,
            headers=await self._headers(),
        ) as resp:
            if not resp.is_success:
                raw = await resp.aread()
                raise CoachApiError(resp.status_code, _error_message(resp, raw))
            yield resp

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
