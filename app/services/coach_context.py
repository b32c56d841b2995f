"""Context assembly: snapshot of user state used to condition one coach turn.

Read-only. Any missing related row (profile, check-in, plan, finance, memory)
falls back to the defaults carried by ``CoachContext``; assembly never fails a
turn because a user has no data yet.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, date, datetime, timedelta
from uuid import UUID

from app.config import get_settings
from app.core.logging import get_logger
from app.schemas.coach import CoachContext
from app.schemas.memory import MemoryFact
from app.services.coach_repository import CoachRepository

logger = get_logger(__name__)
settings = get_settings()


def compute_streak(dates: Iterable[date], today: date) -> int:
    """Consecutive-day completion count ending today or yesterday.

    Yesterday is as valid an anchor as today: a user who completed yesterday
    and has not acted yet today keeps their streak.
    """
    ordered = sorted(set(dates), reverse=True)
    if not ordered:
        return 0

    yesterday = today - timedelta(days=1)
    anchor = ordered[0]
    if anchor not in (today, yesterday):
        return 0

    streak = 0
    expected = anchor
    for day in ordered:
        if day != expected:
            break
        streak += 1
        expected = day - timedelta(days=1)
    return streak


def month_start(today: date) -> date:
    return today.replace(day=1)


class ContextAssembler:
    """Builds a ``CoachContext`` from the repository."""

    def __init__(
        self,
        repository: CoachRepository,
        *,
        memory_limit: int | None = None,
        streak_history_days: int | None = None,
    ) -> None:
        self.repository = repository
        self.memory_limit = memory_limit or settings.coach_memory_limit
        self.streak_history_days = streak_history_days or settings.coach_streak_history_days

    async def assemble(self, user_id: UUID, today: date | None = None) -> CoachContext:
        today = today or datetime.now(UTC).date()
        repo = self.repository

        profile = await repo.get_profile(user_id)
        checkin = await repo.get_checkin(user_id, today)
        completion = await repo.get_day_plan_completion(user_id, today)
        completion_dates = await repo.list_completion_dates(
            user_id, today - timedelta(days=self.streak_history_days),
        )
        since = month_start(today)
        saved = await repo.sum_savings(user_id, since)
        wellness = await repo.sum_wellness_spending(user_id, since)
        memories = await repo.list_active_memories(user_id, self.memory_limit)

        ctx = CoachContext(
            streak=compute_streak(completion_dates, today),
            day_completion=completion or 0,
            saved_month=saved or 0.0,
            wellness_month=wellness or 0.0,
            memories=[MemoryFact.model_validate(m) for m in memories],
        )

        if profile is not None:
            ctx.name = profile.name or ctx.name
            ctx.biological_sex = profile.biological_sex or ctx.biological_sex
            ctx.personas = list(profile.active_personas or ctx.personas)
            ctx.goals = list(profile.goals or [])
            ctx.why = profile.why_statement or ""
            ctx.wake_time = profile.wake_time or ctx.wake_time
            ctx.work_start = profile.work_start or ctx.work_start
            ctx.work_end = profile.work_end or ctx.work_end
            ctx.training_preference = profile.training_preference or ctx.training_preference
            ctx.currency = profile.currency or ctx.currency

        if checkin is not None:
            ctx.energy = checkin.energy_score or ctx.energy
            ctx.clarity = checkin.mood_score or ctx.clarity
            ctx.body = checkin.focus_score or ctx.body
            ctx.day_word = checkin.day_word or ""

        logger.debug(
            "coach_context_assembled",
            has_profile=profile is not None,
            has_checkin=checkin is not None,
            streak=ctx.streak,
            memory_count=len(ctx.memories),
        )
        return ctx
