"""Chat controller: client-side state machine for one coach conversation.

States: ``idle → sending → streaming → idle``. A turn ends back in ``idle``
whether it completed, was cancelled or failed, so the next message can be
sent right away. At most one turn is in flight; sending while streaming
cancels the running turn first.

The reply being generated lives in ``live_bubble`` and is never mixed into
``messages``. On completion the persisted history is reloaded and replaces
the bubble; on cancellation or failure the bubble is dropped.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from uuid import UUID, uuid4

import httpx

from app.client.api import CoachApiClient, CoachApiError
from app.core.cancellation import CancellationToken
from app.core.errors import TurnCancelledError
from app.core.logging import get_logger

logger = get_logger(__name__)

Notifier = Callable[[str, str], None]  # (level, text)


class ChatState(StrEnum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"


class TurnOutcome(StrEnum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class LiveBubble:
    """The "typing" bubble shown while a reply streams in."""

    id: str
    content: str = ""


def _log_notifier(level: str, text: str) -> None:
    logger.info("coach_notification", level=level, text=text)


class CoachChatController:
    def __init__(
        self,
        api: CoachApiClient,
        conversation_id: UUID | str | None = None,
        *,
        notify: Notifier | None = None,
    ) -> None:
        self.api = api
        self.conversation_id = str(conversation_id) if conversation_id else None
        self.notify = notify or _log_notifier
        self.state = ChatState.IDLE
        self.messages: list[dict] = []
        self.live_bubble: LiveBubble | None = None
        self.error: str | None = None
        self._task: asyncio.Task | None = None
        self._token: CancellationToken | None = None

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    async def load(self) -> None:
        if self.conversation_id is None:
            self.messages = []
            return
        self.messages = await self.api.list_messages(self.conversation_id)

    async def send(self, content: str) -> TurnOutcome:
        """Run one turn to its end and report how it ended."""
        if self.busy:
            await self.cancel()

        token = CancellationToken()
        task = asyncio.create_task(self._run_turn(content, token))
        self._token = token
        self._task = task
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and not (current and current.cancelling()):
                # Cancelled through cancel() before the turn got to run
                self._reset()
                return TurnOutcome.CANCELLED
            raise
        finally:
            if self._task is task:
                self._task = None
                self._token = None

    async def cancel(self) -> bool:
        """Stop the in-flight turn. Nothing of the partial reply is kept."""
        task, token = self._task, self._token
        if task is None or task.done():
            return False
        if token is not None:
            token.cancel("user_cancelled")
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self._reset()
        return True

    def _reset(self) -> None:
        self.live_bubble = None
        self.state = ChatState.IDLE

    async def _run_turn(self, content: str, token: CancellationToken) -> TurnOutcome:
        self.state = ChatState.SENDING
        self.error = None
        self.messages.append({"role": "user", "content": content, "pending": True})
        bubble = LiveBubble(id=f"streaming-{uuid4().hex[:12]}")

        try:
            async with self.api.open_reply(content, self.conversation_id) as reply:
                self.conversation_id = reply.headers.get("x-conversation-id") or self.conversation_id
                self.state = ChatState.STREAMING
                self.live_bubble = bubble
                async for fragment in reply.aiter_text():
                    token.raise_if_cancelled()
                    bubble.content += fragment
            token.raise_if_cancelled()
            await self._finalize(bubble)
            return TurnOutcome.COMPLETED
        except (asyncio.CancelledError, TurnCancelledError):
            logger.info("coach_turn_cancelled", conversation_id=self.conversation_id)
            return TurnOutcome.CANCELLED
        except (CoachApiError, httpx.HTTPError) as e:
            self.error = e.message if isinstance(e, CoachApiError) else "Connection to the coach was lost"
            logger.warning("coach_turn_failed", conversation_id=self.conversation_id, error=str(e))
            self.notify("error", self.error)
            return TurnOutcome.FAILED
        finally:
            self._reset()

    async def _finalize(self, bubble: LiveBubble) -> None:
        """Swap the live bubble for the persisted history."""
        try:
            history = await self.api.list_messages(self.conversation_id)
        except (CoachApiError, httpx.HTTPError) as e:
            logger.warning("coach_history_reload_failed", error=str(e))
            self.messages.append({"role": "assistant", "content": bubble.content, "pending": True})
            self.notify("warning", "Could not refresh the conversation")
            return

        self.messages = history
        if not history or history[-1].get("role") != "assistant":
            self.messages.append({"role": "assistant", "content": bubble.content, "pending": True})
            self.notify("warning", "Reply was not saved")
