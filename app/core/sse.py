"""Incremental parser for chat-completion SSE bodies.

The upstream body arrives in arbitrary network reads. Lines are buffered
until their newline shows up, so a ``data:`` frame split across two reads is
parsed once it is whole. A complete line whose JSON still fails to decode is
held and retried joined with the following line, then dropped. Nothing in
here raises on bad input.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field

DATA_PREFIX = "data:"
DONE_TOKEN = "[DONE]"


@dataclass
class SSEFrame:
    """One decoded frame from the model stream."""

    content: str | None = None
    usage: dict | None = None
    done: bool = False


@dataclass
class SSEFrameParser:
    """Feed decoded text chunks, get back completed frames."""

    _buffer: str = ""
    _pending: str | None = None
    dropped: int = field(default=0)

    def feed(self, chunk: str) -> list[SSEFrame]:
        self._buffer += chunk
        frames: list[SSEFrame] = []
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            frame = self._parse_line(line.rstrip("\r"))
            if frame is not None:
                frames.append(frame)
        return frames

    def flush(self) -> list[SSEFrame]:
        """Parse whatever is left once the body has ended without a final newline."""
        frames: list[SSEFrame] = []
        if self._buffer:
            line, self._buffer = self._buffer, ""
            frame = self._parse_line(line.rstrip("\r"))
            if frame is not None:
                frames.append(frame)
        if self._pending is not None:
            self._pending = None
            self.dropped += 1
        return frames

    def _parse_line(self, line: str) -> SSEFrame | None:
        if not line:
            # Blank line separates events; a held fragment cannot continue past it.
            if self._pending is not None:
                self._pending = None
                self.dropped += 1
            return None

        if line.startswith(DATA_PREFIX):
            if self._pending is not None:
                self._pending = None
                self.dropped += 1
            payload = line[len(DATA_PREFIX):]
            if payload.startswith(" "):
                payload = payload[1:]
            if payload.strip() == DONE_TOKEN:
                return SSEFrame(done=True)
            return self._decode(payload)

        if line.startswith(":"):
            # SSE comment / keep-alive
            return None

        if self._pending is not None:
            joined = self._pending + line
            self._pending = None
            return self._decode(joined)

        # event:, id:, retry: fields carry nothing for chat completions
        return None

    def _decode(self, payload: str) -> SSEFrame | None:
        try:
            data = json.loads(payload)
        except (json.JSONDecodeError, ValueError):
            self._pending = payload
            return None
        if not isinstance(data, dict):
            return None
        return SSEFrame(content=_delta_content(data), usage=data.get("usage") or None)


def _delta_content(data: dict) -> str | None:
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta") or {}
    content = delta.get("content") if isinstance(delta, dict) else None
    return content if isinstance(content, str) and content else None
