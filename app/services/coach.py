"""Coach turn orchestration.

``start_turn`` does everything that may still fail with a proper status code
(conversation lookup, user message commit, context assembly, upstream open).
``relay`` is the response body: it forwards text fragments and, once
``[DONE]`` has been seen, writes the reply before the body ends, so a client
that reloads history after the stream closes finds the persisted message.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from uuid import UUID

from app.config import get_settings
from app.core.cancellation import ActiveTurnRegistry, CancellationToken, active_turns
from app.core.errors import ConversationNotFoundError, StreamInterruptedError, TurnCancelledError
from app.core.logging import conversation_id_var, get_logger
from app.models.coach_conversation import CoachConversation
from app.models.coach_message import CoachMessage
from app.schemas.coach import CoachContext
from app.services.coach_context import ContextAssembler
from app.services.coach_persistence import AssistantTurnResult, TurnPersistence
from app.services.coach_prompts import render_system_prompt
from app.services.coach_repository import CoachRepository
from app.services.llm_stream import CompletionStream, CompletionStreamer

logger = get_logger(__name__)
settings = get_settings()

TITLE_MAX_CHARS = 60


def title_from_message(message: str) -> str:
    text = " ".join(message.split())
    if not text:
        return settings.coach_default_title
    if len(text) <= TITLE_MAX_CHARS:
        return text
    return text[: TITLE_MAX_CHARS - 1].rstrip() + "…"


@dataclass
class CoachTurn:
    """One in-flight turn, from the committed user message to the open model stream."""

    conversation: CoachConversation
    user_id: UUID
    user_message: CoachMessage
    context: CoachContext
    stream: CompletionStream
    token: CancellationToken
    outcome: str = "streaming"
    result: AssistantTurnResult | None = field(default=None)


class CoachService:
    def __init__(
        self,
        streamer: CompletionStreamer,
        persistence: TurnPersistence,
        registry: ActiveTurnRegistry = active_turns,
        history_limit: int | None = None,
    ) -> None:
        self.streamer = streamer
        self.persistence = persistence
        self.registry = registry
        self.history_limit = history_limit or settings.coach_history_limit

    async def resolve_conversation(
        self,
        repo: CoachRepository,
        user_id: UUID,
        conversation_id: UUID | None,
        first_message: str,
    ) -> CoachConversation:
        if conversation_id is None:
            conversation = await repo.create_conversation(user_id, title_from_message(first_message))
            logger.info("coach_conversation_created", conversation_id=str(conversation.id))
            return conversation

        conversation = await repo.get_conversation(conversation_id, user_id)
        if conversation is None:
            raise ConversationNotFoundError()
        return conversation

    async def start_turn(
        self,
        repo: CoachRepository,
        user_id: UUID,
        message: str,
        conversation_id: UUID | None = None,
    ) -> CoachTurn:
        conversation = await self.resolve_conversation(repo, user_id, conversation_id, message)
        conversation_id_var.set(str(conversation.id))

        # The previous turn must be cancelled before this user message is committed.
        token = await self.registry.begin(conversation.id)
        try:
            user_message = await self.persistence.record_user_turn(repo, conversation, user_id, message)

            context = await ContextAssembler(repo).assemble(user_id)
            history = await repo.list_recent_messages(conversation.id, self.history_limit)
            messages = [{"role": "system", "content": render_system_prompt(context)}]
            messages.extend({"role": m.role, "content": m.content} for m in history)

            stream = await self.streamer.open(messages, token)
        except BaseException:
            await self.registry.finish(conversation.id, token)
            raise

        logger.info(
            "coach_turn_started",
            conversation_id=str(conversation.id),
            history_len=len(history),
            model=stream.model,
        )
        return CoachTurn(
            conversation=conversation,
            user_id=user_id,
            user_message=user_message,
            context=context,
            stream=stream,
            token=token,
        )

    async def relay(self, turn: CoachTurn) -> AsyncIterator[str]:
        """Forward fragments to the client, then persist the completed reply.

        A cancelled turn ends the body quietly. An interrupted upstream
        re-raises so the server aborts the chunked body and the client sees a
        transport failure rather than a short, seemingly complete answer.
        """
        conversation_id = turn.conversation.id
        try:
            async for fragment in turn.stream:
                yield fragment
        except TurnCancelledError:
            turn.outcome = "cancelled"
            logger.info("coach_turn_cancelled", conversation_id=str(conversation_id))
            return
        except StreamInterruptedError:
            turn.outcome = "interrupted"
            logger.warning("coach_turn_interrupted", conversation_id=str(conversation_id))
            raise
        finally:
            if turn.outcome == "streaming" and not turn.stream.done:
                # Consumer went away (client disconnect) before [DONE]
                turn.outcome = "abandoned"
            await turn.stream.aclose()
            await self.registry.finish(conversation_id, turn.token)

        turn.outcome = "completed"
        reply = turn.stream.text
        if not reply:
            logger.warning("coach_turn_empty_reply", conversation_id=str(conversation_id))
            return

        turn.result = await self.persistence.record_assistant_turn(
            conversation_id=conversation_id,
            user_id=turn.user_id,
            content=reply,
            model=turn.stream.model,
            context=turn.context,
            answers=turn.user_message,
            tokens_used=turn.stream.total_tokens,
            processing_time_ms=turn.stream.elapsed_ms,
        )
        logger.info(
            "coach_turn_completed",
            conversation_id=str(conversation_id),
            response_len=len(reply),
            saved=turn.result.saved,
            processing_time_ms=turn.stream.elapsed_ms,
        )
