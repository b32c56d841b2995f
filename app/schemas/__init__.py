"""Pydantic schemas package."""

from app.schemas.coach import (
    ChatRequest,
    CoachContext,
    ConversationCreate,
    ConversationRead,
    MessageRead,
)
from app.schemas.memory import CoachMemoryRead, MemoryCandidate, MemoryFact

__all__ = [
    "ChatRequest",
    "CoachContext",
    "ConversationCreate",
    "ConversationRead",
    "MessageRead",
    "CoachMemoryRead",
    "MemoryCandidate",
    "MemoryFact",
]
