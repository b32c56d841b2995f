"""Coach endpoints: streaming chat, conversations, cancellation, change feed."""

import json
from uuid import UUID

from fastapi import APIRouter, status
from fastapi.responses import StreamingResponse

from app.config import get_settings
from app.core.errors import ConversationNotFoundError
from app.core.logging import get_logger
from app.core.streams import EVENT_HEARTBEAT, EVENT_TIMEOUT, conversation_topic, get_redis, subscribe
from app.deps import Coach, CurrentUser, Repository
from app.schemas.coach import ChatRequest, ConversationCreate, ConversationRead, MessageRead

settings = get_settings()
logger = get_logger(__name__)

router = APIRouter()


def _format_sse(event: str, data: str) -> str:
    """Format SSE message with multi-line support."""
    lines = data.split("\n")
    data_lines = "\n".join(f"data: {line}" for line in lines)
    return f"event: {event}\n{data_lines}\n\n"


@router.post("/chat")
async def chat(
    request: ChatRequest,
    user: CurrentUser,
    repo: Repository,
    coach: Coach,
) -> StreamingResponse:
    """Send one message to the coach and stream the reply as plain text.

    Flow:
    1. Resolve (or create) the conversation
    2. Commit the user message
    3. Assemble context, open the model stream (503 if unavailable)
    4. Stream text fragments; the reply is saved once the model finishes
    """
    turn = await coach.start_turn(repo, user.id, request.message, request.conversation_id)

    return StreamingResponse(
        coach.relay(turn),
        media_type="text/plain; charset=utf-8",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
            "X-Conversation-Id": str(turn.conversation.id),
        },
    )


@router.post(
    "/conversations",
    response_model=ConversationRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_conversation(
    body: ConversationCreate,
    user: CurrentUser,
    repo: Repository,
) -> ConversationRead:
    conversation = await repo.create_conversation(user.id, body.title or settings.coach_default_title)
    await repo.commit()
    return ConversationRead.model_validate(conversation)


@router.get("/conversations", response_model=list[ConversationRead])
async def list_conversations(
    user: CurrentUser,
    repo: Repository,
) -> list[ConversationRead]:
    conversations = await repo.list_conversations(user.id)
    return [ConversationRead.model_validate(c) for c in conversations]


@router.get("/conversations/{conversation_id}/messages", response_model=list[MessageRead])
async def list_messages(
    conversation_id: UUID,
    user: CurrentUser,
    repo: Repository,
) -> list[MessageRead]:
    conversation = await repo.get_conversation(conversation_id, user.id)
    if conversation is None:
        raise ConversationNotFoundError()
    messages = await repo.list_messages(conversation_id)
    return [MessageRead.model_validate(m) for m in messages]


@router.post("/conversations/{conversation_id}/cancel", status_code=status.HTTP_202_ACCEPTED)
async def cancel_turn(
    conversation_id: UUID,
    user: CurrentUser,
    repo: Repository,
    coach: Coach,
) -> dict:
    """Cancel the in-flight reply of a conversation. Nothing of it is saved."""
    conversation = await repo.get_conversation(conversation_id, user.id)
    if conversation is None:
        raise ConversationNotFoundError()
    cancelled = await coach.registry.cancel(conversation_id)
    logger.info("coach_cancel_requested", conversation_id=str(conversation_id), cancelled=cancelled)
    return {"cancelled": cancelled}


@router.get("/conversations/{conversation_id}/events")
async def conversation_events(
    conversation_id: UUID,
    user: CurrentUser,
    repo: Repository,
) -> StreamingResponse:
    """SSE change feed for one conversation (new messages)."""
    conversation = await repo.get_conversation(conversation_id, user.id)
    if conversation is None:
        raise ConversationNotFoundError()

    redis = await get_redis()

    async def event_generator():
        consumer = subscribe(
            redis,
            conversation_topic(conversation_id),
            heartbeat_interval=settings.change_feed_heartbeat_interval,
            hard_timeout=settings.change_feed_hard_timeout,
        )
        async for raw_event in consumer:
            event_type = raw_event.get("type", "")
            if event_type == EVENT_HEARTBEAT:
                yield ": heartbeat\n\n"
                continue
            if event_type == EVENT_TIMEOUT:
                return

            data_str = raw_event.get("data", "{}")
            try:
                data = json.loads(data_str)
            except (json.JSONDecodeError, TypeError):
                data = {"raw": data_str}
            yield _format_sse(event_type, json.dumps(data))

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
