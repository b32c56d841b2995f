"""Coach memory schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CoachMemoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    category: str
    key: str
    value: str
    confidence: float = 0.5
    is_active: bool = True
    source_message_id: UUID | None = None
    created_at: datetime
    updated_at: datetime


class MemoryFact(BaseModel):
    """Memory entry as it appears inside a context snapshot."""

    model_config = ConfigDict(from_attributes=True)

    category: str
    key: str
    value: str


class MemoryCandidate(BaseModel):
    """A proposed memory upsert produced by an extractor."""

    category: str = "preference"
    key: str
    value: str
    confidence: float = Field(ge=0.0, le=1.0, default=0.5)
