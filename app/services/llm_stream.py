"""Streaming driver for an OpenAI-compatible chat-completions endpoint.

Opens one chunked POST, parses SSE frames as they arrive and yields text
deltas. Status problems are raised from ``open()`` before any text is
produced, so the API can still answer 503. Once iteration starts:

- ``[DONE]`` ends the stream normally;
- the cancellation token is checked at every read boundary and raises
  ``TurnCancelledError`` with the buffer discarded;
- a broken connection or a body that ends without ``[DONE]`` raises
  ``StreamInterruptedError``.

The HTTP response is closed on every exit path.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator

import httpx

from app.config import get_settings
from app.core.cancellation import CancellationToken
from app.core.errors import StreamInterruptedError, TurnCancelledError, UpstreamUnavailableError
from app.core.logging import get_logger
from app.core.sse import SSEFrame, SSEFrameParser

logger = get_logger(__name__)
settings = get_settings()


class CompletionStream:
    """An open model response. Iterate once to receive text fragments."""

    def __init__(
        self,
        response: httpx.Response,
        token: CancellationToken,
        *,
        model: str,
        started_at: float | None = None,
    ) -> None:
        self._response = response
        self._token = token
        self._parser = SSEFrameParser()
        self._parts: list[str] = []
        self._closed = False
        self.model = model
        self.started_at = started_at or time.perf_counter()
        self.finished_at: float | None = None
        self.done = False
        self.usage: dict | None = None

    @property
    def text(self) -> str:
        """Text accumulated so far (empty after cancellation)."""
        return "".join(self._parts)

    @property
    def elapsed_ms(self) -> int:
        end = self.finished_at or time.perf_counter()
        return int((end - self.started_at) * 1000)

    @property
    def total_tokens(self) -> int | None:
        if not self.usage:
            return None
        return self.usage.get("total_tokens") or self.usage.get("completion_tokens")

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        cancelled = asyncio.ensure_future(self._token.wait())
        try:
            self._token.raise_if_cancelled()
            chunks = self._response.aiter_text()
            while True:
                chunk = await self._read(chunks, cancelled)
                if chunk is None:
                    break
                for frame in self._parser.feed(chunk):
                    if self._accept(frame):
                        return
                    if frame.content:
                        self._token.raise_if_cancelled()
                        yield frame.content

            self._token.raise_if_cancelled()
            for frame in self._parser.flush():
                if self._accept(frame):
                    return
                if frame.content:
                    yield frame.content

            raise StreamInterruptedError("AI response ended before completion")
        except TurnCancelledError:
            self._parts.clear()
            logger.info("llm_stream_cancelled", reason=self._token.reason)
            raise
        except httpx.HTTPError as e:
            logger.warning("llm_stream_broken", error=str(e), received_chars=len(self.text))
            raise StreamInterruptedError() from e
        finally:
            cancelled.cancel()
            if self._parser.dropped:
                logger.debug("llm_stream_frames_dropped", count=self._parser.dropped)
            await self.aclose()

    async def _read(self, chunks: AsyncIterator[str], cancelled: asyncio.Future) -> str | None:
        """Next body chunk, or None at end of body.

        A cancel that arrives while the upstream is silent abandons the
        pending read instead of waiting for the next chunk.
        """
        read = asyncio.ensure_future(anext(chunks))
        try:
            await asyncio.wait({read, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not read.done():
                read.cancel()
                await asyncio.wait({read})
        self._token.raise_if_cancelled()
        try:
            return read.result()
        except StopAsyncIteration:
            return None

    def _accept(self, frame: SSEFrame) -> bool:
        """Record a frame. Returns True when it terminates the stream."""
        if frame.usage:
            self.usage = frame.usage
        if frame.done:
            self.done = True
            self.finished_at = time.perf_counter()
            return True
        if frame.content:
            self._parts.append(frame.content)
        return False

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            await self._response.aclose()


class CompletionStreamer:
    """Opens streaming chat completions against the configured model API."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(
                settings.llm_read_timeout_seconds,
                connect=settings.llm_connect_timeout_seconds,
            ),
        )
        self._owns_client = client is None
        self.api_key = api_key if api_key is not None else settings.llm_api_key
        self.base_url = (base_url or settings.llm_base_url).rstrip("/")
        self.model = model or settings.llm_model
        self.max_tokens = max_tokens or settings.llm_max_tokens
        self.temperature = temperature if temperature is not None else settings.llm_temperature

    def build_payload(self, messages: list[dict]) -> dict:
        return {
            "model": self.model,
            "messages": messages,
            "stream": True,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }

    async def open(
        self,
        messages: list[dict],
        token: CancellationToken,
    ) -> CompletionStream:
        """Send the request and validate the status line.

        Raises ``UpstreamUnavailableError`` when the API cannot be reached or
        answers with a non-success status.
        """
        token.raise_if_cancelled()
        started = time.perf_counter()
        request = self._client.build_request(
            "POST",
            f"{self.base_url}/chat/completions",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
                "Accept": "text/event-stream",
            },
            json=self.build_payload(messages),
        )

        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            logger.error("llm_upstream_unreachable", error=str(e))
            raise UpstreamUnavailableError() from e

        if not response.is_success:
            body = await response.aread()
            await response.aclose()
            logger.error(
                "llm_upstream_error",
                status_code=response.status_code,
                body=body[:500].decode("utf-8", "replace"),
            )
            raise UpstreamUnavailableError()

        return CompletionStream(response, token, model=self.model, started_at=started)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
