"""Memory extraction: cheap preference signal from a finished coach reply.

This is phrase matching, not language understanding. False positives and
misses are acceptable; what matters is that extraction never blocks or fails
a turn. Strategies are swappable behind ``MemoryExtractor``.
"""

from __future__ import annotations

import re
from typing import Protocol

from app.schemas.memory import MemoryCandidate

PREFERENCE_CATEGORY = "preference"

# Each trigger runs to the next sentence boundary (. , ;) or end of text.
PREFERENCE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bprefers?\s+(.+?)(?:[.,;]|$)", re.IGNORECASE | re.MULTILINE),
    # Negated forms ("doesn't like", "do not like") never count as a like.
    re.compile(
        r"(?<!n['’]t\s)(?<!doesnt\s)(?<!dont\s)(?<!not\s)\blikes?\s+(.+?)(?:[.,;]|$)",
        re.IGNORECASE | re.MULTILINE,
    ),
    re.compile(r"\benjoys?\s+(.+?)(?:[.,;]|$)", re.IGNORECASE | re.MULTILINE),
    re.compile(r"\bdoesn'?t\s+like\s+(.+?)(?:[.,;]|$)", re.IGNORECASE | re.MULTILINE),
)


class MemoryExtractor(Protocol):
    def extract(self, text: str) -> list[MemoryCandidate]: ...


class PatternMemoryExtractor:
    """Finds ``prefers/likes/enjoys/doesn't like <X>`` statements.

    One candidate per trigger (first match). The key is the first word of the
    matched phrase, lower-cased, so ``prefers morning workouts`` becomes
    ``preference/prefers = morning workouts``.
    """

    def __init__(
        self,
        patterns: tuple[re.Pattern[str], ...] = PREFERENCE_PATTERNS,
        *,
        confidence: float = 0.5,
        max_value_length: int = 200,
    ) -> None:
        self.patterns = patterns
        self.confidence = confidence
        self.max_value_length = max_value_length

    def extract(self, text: str) -> list[MemoryCandidate]:
        candidates: list[MemoryCandidate] = []
        if not text:
            return candidates

        for pattern in self.patterns:
            match = pattern.search(text)
            if not match:
                continue
            value = match.group(1).strip()
            if not value:
                continue
            key = match.group(0).split()[0].lower()
            candidates.append(MemoryCandidate(
                category=PREFERENCE_CATEGORY,
                key=key,
                value=value[: self.max_value_length],
                confidence=self.confidence,
            ))
        return candidates


class NullMemoryExtractor:
    """Disables memory extraction."""

    def extract(self, text: str) -> list[MemoryCandidate]:
        return []
