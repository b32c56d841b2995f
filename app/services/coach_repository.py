"""Coach repository: explicit read/write methods for every entity the coach touches.

The coach services receive a ``CoachRepository`` instead of reaching for a
global session, so the turn pipeline runs unchanged against Postgres or an
in-memory store.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Protocol
from uuid import UUID

from sqlalchemy import distinct, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import async_session_maker
from app.models.coach_conversation import CoachConversation
from app.models.coach_memory import CoachMemory
from app.models.coach_message import CoachMessage
from app.models.wellness import (
    DailyCheckin,
    HabitCompletion,
    HybridDayPlan,
    Profile,
    SavingsEntry,
    SpendingEntry,
)
from app.schemas.memory import MemoryCandidate


class CoachRepository(Protocol):
    # ── Context sources (read-only) ──────────────────────────────

    async def get_profile(self, user_id: UUID) -> Profile | None: ...

    async def get_checkin(self, user_id: UUID, day: date) -> DailyCheckin | None: ...

    async def get_day_plan_completion(self, user_id: UUID, day: date) -> int | None: ...

    async def list_completion_dates(self, user_id: UUID, since: date) -> list[date]: ...

    async def sum_savings(self, user_id: UUID, since: date) -> float: ...

    async def sum_wellness_spending(self, user_id: UUID, since: date) -> float: ...

    async def list_active_memories(self, user_id: UUID, limit: int) -> list[CoachMemory]: ...

    # ── Conversations & messages ─────────────────────────────────

    async def create_conversation(self, user_id: UUID, title: str | None) -> CoachConversation: ...

    async def get_conversation(
        self, conversation_id: UUID, user_id: UUID,
    ) -> CoachConversation | None: ...

    async def list_conversations(self, user_id: UUID) -> list[CoachConversation]: ...

    async def list_messages(self, conversation_id: UUID) -> list[CoachMessage]: ...

    async def list_recent_messages(self, conversation_id: UUID, limit: int) -> list[CoachMessage]: ...

    async def add_message(
        self,
        *,
        conversation_id: UUID,
        user_id: UUID,
        role: str,
        content: str,
        created_at: datetime,
        model: str | None = None,
        tokens_used: int | None = None,
        processing_time_ms: int | None = None,
        context_snapshot: dict | None = None,
    ) -> CoachMessage: ...

    async def touch_conversation(self, conversation_id: UUID, at: datetime) -> None: ...

    # ── Memory ───────────────────────────────────────────────────

    async def upsert_memory(
        self,
        user_id: UUID,
        candidate: MemoryCandidate,
        source_message_id: UUID | None = None,
    ) -> None: ...

    # ── Unit of work ─────────────────────────────────────────────

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


class SqlCoachRepository:
    """``CoachRepository`` backed by one SQLAlchemy ``AsyncSession``."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # ── Context sources ──────────────────────────────────────────

    async def get_profile(self, user_id: UUID) -> Profile | None:
        result = await self.db.execute(select(Profile).where(Profile.id == user_id))
        return result.scalar_one_or_none()

    async def get_checkin(self, user_id: UUID, day: date) -> DailyCheckin | None:
        result = await self.db.execute(
            select(DailyCheckin)
            .where(DailyCheckin.user_id == user_id)
            .where(DailyCheckin.date == day)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_day_plan_completion(self, user_id: UUID, day: date) -> int | None:
        result = await self.db.execute(
            select(HybridDayPlan.completion_percentage)
            .where(HybridDayPlan.user_id == user_id)
            .where(HybridDayPlan.date == day)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_completion_dates(self, user_id: UUID, since: date) -> list[date]:
        """Distinct completion dates on or after ``since``, newest first."""
        result = await self.db.execute(
            select(distinct(HabitCompletion.date))
            .where(HabitCompletion.user_id == user_id)
            .where(HabitCompletion.count > 0)
            .where(HabitCompletion.date >= since)
            .order_by(HabitCompletion.date.desc())
        )
        return list(result.scalars().all())

    async def sum_savings(self, user_id: UUID, since: date) -> float:
        result = await self.db.execute(
            select(func.coalesce(func.sum(SavingsEntry.amount), 0))
            .where(SavingsEntry.user_id == user_id)
            .where(SavingsEntry.date >= since)
        )
        return float(result.scalar() or 0)

    async def sum_wellness_spending(self, user_id: UUID, since: date) -> float:
        result = await self.db.execute(
            select(func.coalesce(func.sum(SpendingEntry.amount), 0))
            .where(SpendingEntry.user_id == user_id)
            .where(SpendingEntry.is_wellness.is_(True))
            .where(SpendingEntry.date >= since)
        )
        return float(result.scalar() or 0)

    async def list_active_memories(self, user_id: UUID, limit: int) -> list[CoachMemory]:
        result = await self.db.execute(
            select(CoachMemory)
            .where(CoachMemory.user_id == user_id)
            .where(CoachMemory.is_active.is_(True))
            .order_by(CoachMemory.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    # ── Conversations & messages ─────────────────────────────────

    async def create_conversation(self, user_id: UUID, title: str | None) -> CoachConversation:
        conversation = CoachConversation(user_id=user_id, title=title, message_count=0)
        self.db.add(conversation)
        await self.db.flush()
        await self.db.refresh(conversation)
        return conversation

    async def get_conversation(
        self,
        conversation_id: UUID,
        user_id: UUID,
    ) -> CoachConversation | None:
        result = await self.db.execute(
            select(CoachConversation)
            .where(CoachConversation.id == conversation_id)
            .where(CoachConversation.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def list_conversations(self, user_id: UUID) -> list[CoachConversation]:
        result = await self.db.execute(
            select(CoachConversation)
            .where(CoachConversation.user_id == user_id)
            .order_by(
                CoachConversation.last_message_at.desc().nulls_last(),
                CoachConversation.created_at.desc(),
            )
        )
        return list(result.scalars().all())

    async def list_messages(self, conversation_id: UUID) -> list[CoachMessage]:
        result = await self.db.execute(
            select(CoachMessage)
            .where(CoachMessage.conversation_id == conversation_id)
            .order_by(CoachMessage.created_at.asc())
        )
        return list(result.scalars().all())

    async def list_recent_messages(self, conversation_id: UUID, limit: int) -> list[CoachMessage]:
        """The last ``limit`` messages, oldest first."""
        result = await self.db.execute(
            select(CoachMessage)
            .where(CoachMessage.conversation_id == conversation_id)
            .order_by(CoachMessage.created_at.desc())
            .limit(limit)
        )
        return list(reversed(result.scalars().all()))

    async def add_message(
        self,
        *,
        conversation_id: UUID,
        user_id: UUID,
        role: str,
        content: str,
        created_at: datetime,
        model: str | None = None,
        tokens_used: int | None = None,
        processing_time_ms: int | None = None,
        context_snapshot: dict | None = None,
    ) -> CoachMessage:
        message = CoachMessage(
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
        self.db.add(message)
        await self.db.flush()
        return message

    async def touch_conversation(self, conversation_id: UUID, at: datetime) -> None:
        await self.db.execute(
            update(CoachConversation)
            .where(CoachConversation.id == conversation_id)
            .values(
                message_count=CoachConversation.message_count + 1,
                last_message_at=at,
            )
        )

    # ── Memory ───────────────────────────────────────────────────

    async def upsert_memory(
        self,
        user_id: UUID,
        candidate: MemoryCandidate,
        source_message_id: UUID | None = None,
    ) -> None:
        """Insert or overwrite the fact keyed by (user, category, key)."""
        stmt = (
            pg_insert(CoachMemory)
            .values(
                user_id=user_id,
                category=candidate.category,
                key=candidate.key,
                value=candidate.value,
                confidence=candidate.confidence,
                is_active=True,
                source_message_id=source_message_id,
            )
            .on_conflict_do_update(
                constraint="uq_coach_memory_user_category_key",
                set_={
                    "value": candidate.value,
                    "confidence": candidate.confidence,
                    "is_active": True,
                    "source_message_id": source_message_id,
                    "updated_at": func.now(),
                },
            )
        )
        await self.db.execute(stmt)

    # ── Unit of work ─────────────────────────────────────────────

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()


@asynccontextmanager
async def open_repository() -> AsyncIterator[CoachRepository]:
    """Fresh session-backed repository, for work that outlives the request session."""
    async with async_session_maker() as db:
        yield SqlCoachRepository(db)
