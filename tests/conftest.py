"""Shared test fixtures: in-memory coach repository and a scripted model API."""

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, date, datetime
from types import SimpleNamespace
from uuid import UUID, uuid4

import httpx
import pytest

from app.models.coach_conversation import CoachConversation
from app.models.coach_memory import CoachMemory
from app.models.coach_message import CoachMessage
from app.schemas.memory import MemoryCandidate


class FakeCoachRepository:
    """``CoachRepository`` over plain dicts.

    Messages are staged until ``commit()`` and dropped on ``rollback()``.
    Set ``fail_on_role`` to make ``add_message`` raise for that role.
    """

    def __init__(self) -> None:
        self.profiles: dict[UUID, SimpleNamespace] = {}
        self.checkins: dict[tuple[UUID, date], SimpleNamespace] = {}
        self.day_plans: dict[tuple[UUID, date], int] = {}
        self.completion_dates: dict[UUID, list[date]] = {}
        self.savings: dict[UUID, float] = {}
        self.wellness_spending: dict[UUID, float] = {}
        self.conversations: dict[UUID, CoachConversation] = {}
        self.messages: list[CoachMessage] = []
        self.memories: dict[tuple[UUID, str, str], CoachMemory] = {}
        self.fail_on_role: str | None = None
        self.commits = 0
        self.rollbacks = 0
        self._staged: list[CoachMessage] = []
        self._touches: list[tuple[UUID, datetime]] = []

    # ── Context sources ──────────────────────────────────────────

    async def get_profile(self, user_id):
        return self.profiles.get(user_id)

    async def get_checkin(self, user_id, day):
        return self.checkins.get((user_id, day))

    async def get_day_plan_completion(self, user_id, day):
        return self.day_plans.get((user_id, day))

    async def list_completion_dates(self, user_id, since):
        return sorted(
            {d for d in self.completion_dates.get(user_id, []) if d >= since},
            reverse=True,
        )

    async def sum_savings(self, user_id, since):
        return self.savings.get(user_id, 0.0)

    async def sum_wellness_spending(self, user_id, since):
        return self.wellness_spending.get(user_id, 0.0)

    async def list_active_memories(self, user_id, limit):
        active = [m for (uid, _, _), m in self.memories.items() if uid == user_id and m.is_active]
        return active[:limit]

    # ── Conversations & messages ─────────────────────────────────

    async def create_conversation(self, user_id, title):
        conversation = CoachConversation(
            id=uuid4(),
            user_id=user_id,
            title=title,
            is_pinned=False,
            is_active=True,
            message_count=0,
            created_at=datetime.now(UTC),
        )
        self.conversations[conversation.id] = conversation
        return conversation

    async def get_conversation(self, conversation_id, user_id):
        conversation = self.conversations.get(conversation_id)
        if conversation is None or conversation.user_id != user_id:
            return None
        return conversation

    async def list_conversations(self, user_id):
        return [c for c in self.conversations.values() if c.user_id == user_id]

    async def list_messages(self, conversation_id):
        return sorted(
            (m for m in self.messages if m.conversation_id == conversation_id),
            key=lambda m: m.created_at,
        )

    async def list_recent_messages(self, conversation_id, limit):
        return (await self.list_messages(conversation_id))[-limit:]

    async def add_message(
        self,
        *,
        conversation_id,
        user_id,
        role,
        content,
        created_at,
        model=None,
        tokens_used=None,
        processing_time_ms=None,
        context_snapshot=None,
    ):
        if self.fail_on_role == role:
            raise RuntimeError("database unavailable")
        message = CoachMessage(
            id=uuid4(),
            conversation_id=conversation_id,
            user_id=user_id,
            role=role,
            content=content,
            created_at=created_at,
            model=model,
            tokens_used=tokens_used,
            processing_time_ms=processing_time_ms,
            context_snapshot=context_snapshot,
        )
        self._staged.append(message)
        return message

    async def touch_conversation(self, conversation_id, at):
        self._touches.append((conversation_id, at))

    # ── Memory ───────────────────────────────────────────────────

    async def upsert_memory(self, user_id, candidate: MemoryCandidate, source_message_id=None):
        key = (user_id, candidate.category, candidate.key)
        existing = self.memories.get(key)
        if existing is None:
            self.memories[key] = CoachMemory(
                id=uuid4(),
                user_id=user_id,
                category=candidate.category,
                key=candidate.key,
                value=candidate.value,
                confidence=candidate.confidence,
                is_active=True,
                source_message_id=source_message_id,
            )
            return
        existing.value = candidate.value
        existing.confidence = candidate.confidence
        existing.is_active = True
        existing.source_message_id = source_message_id

    # ── Unit of work ─────────────────────────────────────────────

    async def commit(self):
        self.commits += 1
        self.messages.extend(self._staged)
        self._staged.clear()
        for conversation_id, at in self._touches:
            conversation = self.conversations.get(conversation_id)
            if conversation is not None:
                conversation.message_count += 1
                conversation.last_message_at = at
        self._touches.clear()

    async def rollback(self):
        self.rollbacks += 1
        self._staged.clear()
        self._touches.clear()

    # ── Test helpers ─────────────────────────────────────────────

    def messages_by_role(self, role: str) -> list[CoachMessage]:
        return [m for m in self.messages if m.role == role]


@pytest.fixture
def repo() -> FakeCoachRepository:
    return FakeCoachRepository()


@pytest.fixture
def repo_factory(repo):
    """Repository factory handing out the shared fake, like ``open_repository``."""

    @asynccontextmanager
    async def factory():
        yield repo

    return factory


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


# ─── Scripted model API ──────────────────────────────────────────────


def sse_chunk(content: str) -> bytes:
    payload = {"choices": [{"index": 0, "delta": {"content": content}}]}
    return f"data: {json.dumps(payload)}\n\n".encode()


SSE_DONE = b"data: [DONE]\n\n"

# Body item that leaves the upstream connection open and silent.
SSE_STALL = object()


async def _body(chunks: list) -> AsyncIterator[bytes]:
    for chunk in chunks:
        if chunk is SSE_STALL:
            await asyncio.sleep(3600)
            continue
        if isinstance(chunk, Exception):
            raise chunk
        yield chunk


@pytest.fixture
def llm_requests() -> list[httpx.Request]:
    return []


@pytest.fixture
def make_llm_client(llm_requests):
    """Build an ``httpx.AsyncClient`` whose chat-completions endpoint replays ``chunks``.

    ``chunks`` items are raw body reads; an exception item is raised mid-body
    and ``SSE_STALL`` keeps the connection open without sending anything.
    """

    def factory(
        chunks: list | None = None,
        *,
        status_code: int = 200,
        connect_error: bool = False,
    ) -> httpx.AsyncClient:
        def handler(request: httpx.Request) -> httpx.Response:
            llm_requests.append(request)
            if connect_error:
                raise httpx.ConnectError("connection refused", request=request)
            if status_code != 200:
                return httpx.Response(status_code, json={"error": {"message": "overloaded"}})
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                content=_body(list(chunks or [])),
            )

        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return factory


@pytest.fixture
def hello_chunks() -> list[bytes]:
    return [sse_chunk("Hel"), sse_chunk("lo"), SSE_DONE]


@pytest.fixture
def sse() -> SimpleNamespace:
    """Frame builders for scripting model bodies: ``sse.chunk("Hi")``, ``sse.done``, ``sse.stall``."""
    return SimpleNamespace(chunk=sse_chunk, done=SSE_DONE, stall=SSE_STALL)
