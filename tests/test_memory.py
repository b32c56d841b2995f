"""Tests for memory extraction and the memory upsert."""

from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from sqlalchemy.dialects import postgresql

from app.schemas.memory import MemoryCandidate
from app.services.coach_repository import SqlCoachRepository
from app.services.memory_extractor import NullMemoryExtractor, PatternMemoryExtractor


class TestPatternMemoryExtractor:
    def test_prefers(self):
        candidates = PatternMemoryExtractor().extract("Sounds like she prefers morning workouts.")
        assert MemoryCandidate(key="prefers", value="morning workouts") in candidates

    def test_value_stops_at_clause_boundary(self):
        candidates = PatternMemoryExtractor().extract("You enjoy long walks, especially at dusk")
        enjoy = [c for c in candidates if c.key == "enjoy"]
        assert enjoy and enjoy[0].value == "long walks"

    def test_case_insensitive(self):
        candidates = PatternMemoryExtractor().extract("PREFERS tea; hates coffee")
        assert candidates[0].key == "prefers"
        assert candidates[0].value == "tea"

    def test_doesnt_like(self):
        candidates = PatternMemoryExtractor().extract("He doesn't like crowded gyms.")
        assert [(c.key, c.value) for c in candidates] == [("doesn't", "crowded gyms")]

    @pytest.mark.parametrize("text", [
        "She doesn't like crowded gyms.",
        "She doesnt like crowded gyms.",
        "I don’t like crowded gyms.",
        "They do not like crowded gyms.",
    ])
    def test_negation_is_not_a_like(self, text):
        candidates = PatternMemoryExtractor().extract(text)
        assert all(c.key not in {"like", "likes"} for c in candidates)

    def test_like_after_negated_clause(self):
        candidates = PatternMemoryExtractor().extract("He doesn't like gyms but likes hiking.")
        assert ("likes", "hiking") in [(c.key, c.value) for c in candidates]

    def test_one_candidate_per_trigger(self):
        text = "You prefer tea. You also prefer naps."
        candidates = [c for c in PatternMemoryExtractor().extract(text) if c.key == "prefer"]
        assert len(candidates) == 1
        assert candidates[0].value == "tea"

    def test_no_trigger(self):
        assert PatternMemoryExtractor().extract("Drink water and go to bed early.") == []

    def test_empty_text(self):
        assert PatternMemoryExtractor().extract("") == []

    def test_value_is_truncated(self):
        extractor = PatternMemoryExtractor(max_value_length=5)
        candidates = extractor.extract("prefers marathons")
        assert candidates[0].value == "marat"

    def test_candidates_carry_confidence(self):
        candidates = PatternMemoryExtractor(confidence=0.8).extract("likes yoga")
        assert candidates[0].category == "preference"
        assert candidates[0].confidence == 0.8


def test_null_extractor():
    assert NullMemoryExtractor().extract("She prefers tea.") == []


class TestMemoryUpsert:
    async def test_second_upsert_overwrites(self, repo, user_id):
        await repo.upsert_memory(user_id, MemoryCandidate(key="prefers", value="tea"))
        await repo.upsert_memory(user_id, MemoryCandidate(key="prefers", value="coffee"))

        assert len(repo.memories) == 1
        (memory,) = repo.memories.values()
        assert memory.value == "coffee"

    async def test_sql_upsert_targets_unique_constraint(self):
        db = AsyncMock()
        source_id = uuid4()
        await SqlCoachRepository(db).upsert_memory(
            uuid4(), MemoryCandidate(key="likes", value="yoga"), source_message_id=source_id,
        )

        stmt = db.execute.call_args[0][0]
        sql = str(stmt.compile(dialect=postgresql.dialect()))
        assert "INSERT INTO coach_memories" in sql
        assert "ON CONFLICT ON CONSTRAINT uq_coach_memory_user_category_key DO UPDATE" in sql
        assert "updated_at = now()" in sql
