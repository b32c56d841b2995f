"""Coach API schemas and the per-turn context snapshot."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.memory import MemoryFact

# ── Requests ─────────────────────────────────────────────────────────


class ChatRequest(BaseModel):
    """Body of ``POST /coach/chat``. Accepts the web client's camelCase keys."""

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(min_length=1, max_length=8000)
    conversation_id: UUID | None = Field(default=None, alias="conversationId")


class ConversationCreate(BaseModel):
    title: str | None = Field(default=None, max_length=200)


# ── Read models ──────────────────────────────────────────────────────


class ConversationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    title: str | None = None
    summary: str | None = None
    is_pinned: bool = False
    is_active: bool = True
    message_count: int = 0
    last_message_at: datetime | None = None
    created_at: datetime


class MessageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    conversation_id: UUID
    role: str
    content: str
    model: str | None = None
    tokens_used: int | None = None
    processing_time_ms: int | None = None
    created_at: datetime


# ── Context snapshot ─────────────────────────────────────────────────


class CoachContext(BaseModel):
    """State the coach is conditioned on for one turn.

    Every field has the documented default, so a user with no check-ins,
    plans or finance rows still gets a complete snapshot.
    """

    name: str = "there"
    biological_sex: str = "unspecified"
    personas: list[str] = Field(default_factory=lambda: ["optimizer"])
    goals: list[str] = Field(default_factory=list)
    why: str = ""

    wake_time: str = "06:30"
    work_start: str = "08:00"
    work_end: str = "18:00"
    training_preference: str = "morning"

    energy: int = 5
    clarity: int = 5
    body: int = 5
    day_word: str = ""
    day_completion: int = 0
    streak: int = 0

    currency: str = "USD"
    saved_month: float = 0.0
    wellness_month: float = 0.0

    memories: list[MemoryFact] = Field(default_factory=list)
