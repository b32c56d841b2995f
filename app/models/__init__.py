"""SQLAlchemy models package."""

from app.models.coach_conversation import CoachConversation
from app.models.coach_message import CoachMessage, MessageRole
from app.models.coach_memory import CoachMemory
from app.models.wellness import (
    DailyCheckin,
    HabitCompletion,
    HybridDayPlan,
    Profile,
    SavingsEntry,
    SpendingEntry,
)

__all__ = [
    "CoachConversation",
    "CoachMessage",
    "MessageRole",
    "CoachMemory",
    "Profile",
    "DailyCheckin",
    "HybridDayPlan",
    "HabitCompletion",
    "SavingsEntry",
    "SpendingEntry",
]
