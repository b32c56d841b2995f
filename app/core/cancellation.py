"""Cancellation tokens and the per-conversation active turn registry."""

from __future__ import annotations

import asyncio
from uuid import UUID

from app.core.errors import TurnCancelledError
from app.core.logging import get_logger

logger = get_logger(__name__)


class CancellationToken:
    """Cancellation flag that stream readers check at each read boundary and await alongside pending reads."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TurnCancelledError(self.reason or "cancelled")

    async def wait(self) -> None:
        await self._event.wait()


class ActiveTurnRegistry:
    """Tracks the single in-flight turn of each conversation.

    Beginning a turn cancels whatever turn was already running for the same
    conversation. Conversations never share a token.
    """

    def __init__(self) -> None:
        self._tokens: dict[UUID, CancellationToken] = {}
        self._lock = asyncio.Lock()

    async def begin(self, conversation_id: UUID) -> CancellationToken:
        async with self._lock:
            previous = self._tokens.get(conversation_id)
            if previous is not None and not previous.cancelled:
                previous.cancel("superseded")
                logger.info("coach_turn_superseded", conversation_id=str(conversation_id))
            token = CancellationToken()
            self._tokens[conversation_id] = token
            return token

    async def cancel(self, conversation_id: UUID) -> bool:
        """Cancel the running turn, if any. Returns whether one was running."""
        async with self._lock:
            token = self._tokens.pop(conversation_id, None)
        if token is None or token.cancelled:
            return False
        token.cancel("user_cancelled")
        return True

    async def finish(self, conversation_id: UUID, token: CancellationToken) -> None:
        """Unregister ``token`` unless a newer turn already replaced it."""
        async with self._lock:
            if self._tokens.get(conversation_id) is token:
                del self._tokens[conversation_id]

    def is_active(self, conversation_id: UUID) -> bool:
        token = self._tokens.get(conversation_id)
        return token is not None and not token.cancelled


# Singleton
active_turns = ActiveTurnRegistry()
