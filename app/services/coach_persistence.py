"""Conversation persistence for coach turns.

Ordering:
- the user message is committed on submission, before the model is called;
- the assistant message is written only after ``[DONE]``, followed by the
  conversation update and the memory upserts.

Nothing is written for a cancelled or broken stream. Failures after the reply
has been delivered are logged and reported through ``AssistantTurnResult``;
they never unwind the delivery.
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID

from app.core.logging import get_logger
from app.core.streams import ChangeFeedPublisher
from app.models.coach_conversation import CoachConversation
from app.models.coach_message import CoachMessage, MessageRole
from app.schemas.coach import CoachContext
from app.services.coach_repository import CoachRepository, open_repository
from app.services.memory_extractor import MemoryExtractor, PatternMemoryExtractor

logger = get_logger(__name__)

RepositoryFactory = Callable[[], AbstractAsyncContextManager[CoachRepository]]

# Minimum gap between a question and its answer, so display order is never ambiguous
ANSWER_MIN_GAP = timedelta(microseconds=1)


@dataclass
class AssistantTurnResult:
    saved: bool
    message_id: UUID | None = None
    memories_saved: int = 0


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TurnPersistence:
    """Writes both halves of a turn through the injected repository."""

    def __init__(
        self,
        repository_factory: RepositoryFactory = open_repository,
        extractor: MemoryExtractor | None = None,
        change_feed: ChangeFeedPublisher | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repository_factory = repository_factory
        self.extractor = extractor or PatternMemoryExtractor()
        self.change_feed = change_feed
        self.clock = clock

    async def record_user_turn(
        self,
        repo: CoachRepository,
        conversation: CoachConversation,
        user_id: UUID,
        content: str,
    ) -> CoachMessage:
        """Commit the user's message. Errors propagate: the turn cannot start without it."""
        now = self.clock()
        message = await repo.add_message(
            conversation_id=conversation.id,
            user_id=user_id,
            role=MessageRole.USER.value,
            content=content,
            created_at=now,
        )
        await repo.touch_conversation(conversation.id, now)
        await repo.commit()
        await self._publish(message)
        return message

    async def record_assistant_turn(
        self,
        *,
        conversation_id: UUID,
        user_id: UUID,
        content: str,
        model: str,
        context: CoachContext,
        answers: CoachMessage,
        tokens_used: int | None = None,
        processing_time_ms: int | None = None,
    ) -> AssistantTurnResult:
        """Persist a completed reply, update the conversation, then upsert memories."""
        created_at = max(self.clock(), answers.created_at + ANSWER_MIN_GAP)

        async with self.repository_factory() as repo:
            try:
                message = await repo.add_message(
                    conversation_id=conversation_id,
                    user_id=user_id,
                    role=MessageRole.ASSISTANT.value,
                    content=content,
                    created_at=created_at,
                    model=model,
                    tokens_used=tokens_used,
                    processing_time_ms=processing_time_ms,
                    context_snapshot=context.model_dump(mode="json"),
                )
                await repo.touch_conversation(conversation_id, created_at)
                await repo.commit()
            except Exception:
                logger.exception("coach_reply_save_failed", conversation_id=str(conversation_id))
                await repo.rollback()
                return AssistantTurnResult(saved=False)

            memories_saved = await self._save_memories(repo, user_id, content, message.id)

        await self._publish(message)
        logger.info(
            "coach_reply_saved",
            conversation_id=str(conversation_id),
            message_id=str(message.id),
            memories_saved=memories_saved,
        )
        return AssistantTurnResult(saved=True, message_id=message.id, memories_saved=memories_saved)

    async def _save_memories(
        self,
        repo: CoachRepository,
        user_id: UUID,
        content: str,
        message_id: UUID,
    ) -> int:
        try:
            candidates = self.extractor.extract(content)
            for candidate in candidates:
                await repo.upsert_memory(user_id, candidate, source_message_id=message_id)
            if candidates:
                await repo.commit()
            return len(candidates)
        except Exception:
            logger.exception("coach_memory_upsert_failed", message_id=str(message_id))
            await repo.rollback()
            return 0

    async def _publish(self, message: CoachMessage) -> None:
        if self.change_feed is None:
            return
        try:
            await self.change_feed.message_created(message)
        except Exception:
            logger.warning("change_feed_publish_failed", message_id=str(message.id), exc_info=True)
