"""Wellness tables read by the coach context assembler.

These rows are written by the app's CRUD surfaces (check-ins, hybrid day,
habits, finance, profile). The coach only reads them, so only the columns it
needs are mapped.
"""

import datetime as dt
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import Boolean, Date, DateTime, Integer, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class Profile(Base):
    __tablename__ = "profiles"

    # Same id as the hosted auth user
    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(320))
    name: Mapped[str | None] = mapped_column(String(200))
    biological_sex: Mapped[str | None] = mapped_column(String(20))
    timezone: Mapped[str | None] = mapped_column(String(64))

    active_personas: Mapped[list[str] | None] = mapped_column(ARRAY(String))
    goals: Mapped[list[str] | None] = mapped_column(ARRAY(String))
    why_statement: Mapped[str | None] = mapped_column(Text)

    wake_time: Mapped[str | None] = mapped_column(String(5))
    work_start: Mapped[str | None] = mapped_column(String(5))
    work_end: Mapped[str | None] = mapped_column(String(5))
    training_preference: Mapped[str | None] = mapped_column(String(20))

    currency: Mapped[str | None] = mapped_column(String(3))

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class DailyCheckin(Base):
    __tablename__ = "daily_checkins"

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)

    energy_score: Mapped[int | None] = mapped_column(Integer)
    mood_score: Mapped[int | None] = mapped_column(Integer)
    focus_score: Mapped[int | None] = mapped_column(Integer)
    day_word: Mapped[str | None] = mapped_column(String(50))


class HybridDayPlan(Base):
    __tablename__ = "hybrid_day_plans"

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    completion_percentage: Mapped[int | None] = mapped_column(Integer)


class HabitCompletion(Base):
    __tablename__ = "habit_completions"

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    habit_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False)
    user_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)


class SavingsEntry(Base):
    __tablename__ = "savings_entries"

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)


class SpendingEntry(Base):
    __tablename__ = "spending_entries"

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    is_wellness: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
