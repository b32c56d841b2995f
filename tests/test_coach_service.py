"""Tests for coach turn orchestration (start_turn + relay) against the in-memory repository."""

import asyncio
import json
from uuid import uuid4

import pytest

from app.core.cancellation import ActiveTurnRegistry
from app.core.errors import ConversationNotFoundError, StreamInterruptedError, UpstreamUnavailableError
from app.core.logging import conversation_id_var
from app.services.coach import CoachService, title_from_message
from app.services.coach_persistence import TurnPersistence
from app.services.llm_stream import CompletionStreamer


@pytest.fixture
def make_service(repo_factory, make_llm_client):
    def factory(chunks=None, **llm_kwargs) -> CoachService:
        streamer = CompletionStreamer(
            make_llm_client(chunks, **llm_kwargs),
            api_key="sk-test",
            base_url="http://llm.test/v1",
            model="test-model",
        )
        return CoachService(
            streamer=streamer,
            persistence=TurnPersistence(repository_factory=repo_factory),
            registry=ActiveTurnRegistry(),
            history_limit=20,
        )

    return factory


async def _drain(service: CoachService, turn) -> str:
    return "".join([fragment async for fragment in service.relay(turn)])


class TestTitleFromMessage:
    def test_short_message(self):
        assert title_from_message("  How do I   sleep better? ") == "How do I sleep better?"

    def test_long_message_is_ellipsized(self):
        title = title_from_message("word " * 40)
        assert len(title) <= 60
        assert title.endswith("…")

    def test_blank_message_uses_default(self):
        assert title_from_message("   ") == "New Conversation"


class TestStartTurn:
    async def test_new_conversation_and_user_message_first(self, repo, user_id, make_service, hello_chunks):
        service = make_service(hello_chunks)
        turn = await service.start_turn(repo, user_id, "I feel tired")

        assert turn.conversation.title == "I feel tired"
        assert [m.role for m in repo.messages] == ["user"]
        assert service.registry.is_active(turn.conversation.id)
        assert conversation_id_var.get() == str(turn.conversation.id)
        await _drain(service, turn)

    async def test_unknown_conversation_is_404(self, repo, user_id, make_service, hello_chunks):
        with pytest.raises(ConversationNotFoundError):
            await make_service(hello_chunks).start_turn(repo, user_id, "hi", uuid4())

    async def test_foreign_conversation_is_404(self, repo, user_id, make_service, hello_chunks):
        other = await repo.create_conversation(uuid4(), "theirs")
        with pytest.raises(ConversationNotFoundError):
            await make_service(hello_chunks).start_turn(repo, user_id, "hi", other.id)

    async def test_prompt_carries_system_context_and_history(
        self, repo, user_id, make_service, hello_chunks, llm_requests,
    ):
        service = make_service(hello_chunks)
        first = await service.start_turn(repo, user_id, "first question")
        await _drain(service, first)

        second = await service.start_turn(repo, user_id, "second question", first.conversation.id)
        await _drain(service, second)

        body = json.loads(llm_requests[-1].content)
        roles = [m["role"] for m in body["messages"]]
        assert roles == ["system", "user", "assistant", "user"]
        assert "COACHING MEMORY" in body["messages"][0]["content"]
        assert body["messages"][-1]["content"] == "second question"

    async def test_upstream_unavailable_keeps_user_message(self, repo, user_id, make_service):
        service = make_service(status_code=502)
        with pytest.raises(UpstreamUnavailableError):
            await service.start_turn(repo, user_id, "hello?")

        assert [m.role for m in repo.messages] == ["user"]
        (conversation,) = repo.conversations.values()
        assert not service.registry.is_active(conversation.id)

    async def test_running_turn_is_cancelled_before_next_user_message_commits(
        self, repo, user_id, make_service, sse,
    ):
        service = make_service([sse.chunk("Hel"), sse.stall, sse.done])
        first = await service.start_turn(repo, user_id, "first")
        relay = service.relay(first)
        assert await relay.__anext__() == "Hel"

        seen_at_commit = []
        commit = repo.commit

        async def recording_commit():
            seen_at_commit.append(first.token.cancelled)
            await commit()

        repo.commit = recording_commit
        second = await service.start_turn(repo, user_id, "second", first.conversation.id)

        assert seen_at_commit[0] is True
        assert first.token.reason == "superseded"
        with pytest.raises(StopAsyncIteration):
            await asyncio.wait_for(relay.__anext__(), timeout=1)
        assert [(m.role, m.content) for m in repo.messages] == [("user", "first"), ("user", "second")]

        await service.registry.cancel(second.conversation.id)
        await second.stream.aclose()

    async def test_failed_user_commit_releases_registration(self, repo, user_id, make_service, hello_chunks):
        conversation = await repo.create_conversation(user_id, "Sleep")
        service = make_service(hello_chunks)
        repo.fail_on_role = "user"

        with pytest.raises(RuntimeError):
            await service.start_turn(repo, user_id, "hi", conversation.id)

        assert not service.registry.is_active(conversation.id)


class TestRelay:
    async def test_completed_turn_is_persisted(self, repo, user_id, make_service, hello_chunks):
        service = make_service(hello_chunks)
        turn = await service.start_turn(repo, user_id, "hi")

        assert await _drain(service, turn) == "Hello"
        assert turn.outcome == "completed"
        assert turn.result.saved is True

        history = await repo.list_messages(turn.conversation.id)
        assert [(m.role, m.content) for m in history] == [("user", "hi"), ("assistant", "Hello")]
        assert history[0].created_at < history[1].created_at
        assert not service.registry.is_active(turn.conversation.id)

    async def test_cancelled_turn_persists_nothing(self, repo, user_id, make_service, sse):
        service = make_service([sse.chunk("Hel"), sse.chunk("lo"), sse.done])
        turn = await service.start_turn(repo, user_id, "hi")

        received = []
        async for fragment in service.relay(turn):
            received.append(fragment)
            await service.registry.cancel(turn.conversation.id)

        assert received == ["Hel"]
        assert turn.outcome == "cancelled"
        assert repo.messages_by_role("assistant") == []

    async def test_cancel_reaches_silent_upstream(self, repo, user_id, make_service, sse):
        service = make_service([sse.chunk("Hel"), sse.stall, sse.done])
        turn = await service.start_turn(repo, user_id, "hi")
        relay = service.relay(turn)
        assert await relay.__anext__() == "Hel"

        pending = asyncio.ensure_future(relay.__anext__())
        await asyncio.sleep(0.01)
        assert await service.registry.cancel(turn.conversation.id) is True

        with pytest.raises(StopAsyncIteration):
            await asyncio.wait_for(pending, timeout=1)
        assert turn.outcome == "cancelled"
        assert repo.messages_by_role("assistant") == []

    async def test_superseded_turn_persists_nothing(self, repo, user_id, make_service, sse):
        service = make_service([sse.chunk("Hel"), sse.chunk("lo"), sse.done])
        turn = await service.start_turn(repo, user_id, "hi")

        relay = service.relay(turn)
        assert await relay.__anext__() == "Hel"
        await service.registry.begin(turn.conversation.id)
        with pytest.raises(StopAsyncIteration):
            await relay.__anext__()

        assert turn.token.reason == "superseded"
        assert repo.messages_by_role("assistant") == []

    async def test_interrupted_turn_raises_and_persists_nothing(self, repo, user_id, make_service, sse):
        service = make_service([sse.chunk("Hel")])
        turn = await service.start_turn(repo, user_id, "hi")

        with pytest.raises(StreamInterruptedError):
            await _drain(service, turn)

        assert turn.outcome == "interrupted"
        assert repo.messages_by_role("assistant") == []
        assert not service.registry.is_active(turn.conversation.id)

    async def test_abandoned_relay_persists_nothing(self, repo, user_id, make_service, sse):
        service = make_service([sse.chunk("Hel"), sse.chunk("lo"), sse.done])
        turn = await service.start_turn(repo, user_id, "hi")

        relay = service.relay(turn)
        await relay.__anext__()
        await relay.aclose()

        assert turn.outcome == "abandoned"
        assert repo.messages_by_role("assistant") == []
        assert not service.registry.is_active(turn.conversation.id)

    async def test_save_failure_still_delivers_reply(self, repo, user_id, make_service, hello_chunks):
        service = make_service(hello_chunks)
        turn = await service.start_turn(repo, user_id, "hi")
        repo.fail_on_role = "assistant"

        assert await _drain(service, turn) == "Hello"
        assert turn.result.saved is False
        assert repo.messages_by_role("assistant") == []

    async def test_empty_reply_is_not_saved(self, repo, user_id, make_service, sse):
        service = make_service([sse.done])
        turn = await service.start_turn(repo, user_id, "hi")

        assert await _drain(service, turn) == ""
        assert turn.result is None
        assert repo.messages_by_role("assistant") == []
