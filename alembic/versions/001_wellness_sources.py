"""Wellness source tables read by the coach.

Revision ID: 001
Revises:
Create Date: 2026-10-19

- profiles: one row per auth user (id = auth user id)
- daily_checkins: energy / mood / focus scores per day
- hybrid_day_plans: day plan completion per day
- habit_completions: one row per habit completed on a date
- savings_entries / spending_entries: finance rows for month-to-date sums
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def upgrade() -> None:
    # --- profiles ---
    op.create_table(
        "profiles",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("name", sa.String(200), nullable=True),
        sa.Column("biological_sex", sa.String(20), nullable=True),
        sa.Column("timezone", sa.String(64), nullable=True),
        sa.Column("active_personas", postgresql.ARRAY(sa.String()), nullable=True),
        sa.Column("goals", postgresql.ARRAY(sa.String()), nullable=True),
        sa.Column("why_statement", sa.Text(), nullable=True),
        sa.Column("wake_time", sa.String(5), nullable=True),
        sa.Column("work_start", sa.String(5), nullable=True),
        sa.Column("work_end", sa.String(5), nullable=True),
        sa.Column("training_preference", sa.String(20), nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
    )

    # --- daily_checkins ---
    op.create_table(
        "daily_checkins",
        _id_column(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("energy_score", sa.Integer(), nullable=True),
        sa.Column("mood_score", sa.Integer(), nullable=True),
        sa.Column("focus_score", sa.Integer(), nullable=True),
        sa.Column("day_word", sa.String(50), nullable=True),
    )
    op.create_index("ix_daily_checkins_user_id", "daily_checkins", ["user_id"])
    op.create_unique_constraint("uq_daily_checkins_user_date", "daily_checkins", ["user_id", "date"])

    # --- hybrid_day_plans ---
    op.create_table(
        "hybrid_day_plans",
        _id_column(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("completion_percentage", sa.Integer(), nullable=True, server_default=sa.text("0")),
    )
    op.create_index("ix_hybrid_day_plans_user_id", "hybrid_day_plans", ["user_id"])
    op.create_unique_constraint("uq_hybrid_day_plans_user_date", "hybrid_day_plans", ["user_id", "date"])

    # --- habit_completions ---
    op.create_table(
        "habit_completions",
        _id_column(),
        sa.Column("habit_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False, server_default=sa.text("1")),
    )
    op.create_index("ix_habit_completions_user_id", "habit_completions", ["user_id"])
    op.create_index("ix_habit_completions_user_date", "habit_completions", ["user_id", "date"])

    # --- savings_entries ---
    op.create_table(
        "savings_entries",
        _id_column(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
    )
    op.create_index("ix_savings_entries_user_id", "savings_entries", ["user_id"])

    # --- spending_entries ---
    op.create_table(
        "spending_entries",
        _id_column(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("is_wellness", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("date", sa.Date(), nullable=False),
    )
    op.create_index("ix_spending_entries_user_id", "spending_entries", ["user_id"])


def downgrade() -> None:
    op.drop_table("spending_entries")
    op.drop_table("savings_entries")
    op.drop_table("habit_completions")
    op.drop_table("hybrid_day_plans")
    op.drop_table("daily_checkins")
    op.drop_table("profiles")
