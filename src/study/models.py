"""
Storage-boundary records for the study engine.

The SQL layer maps ORM rows to these frozen dataclasses so engine code never
holds a live database session or sees optional/undefined JSON fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

INITIAL_EASE_FACTOR = 2.5


@dataclass(frozen=True)
class ExamRecord:
    """An exam as seen by the engine."""

    id: str
    name: str
    description: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class QuestionRecord:
    """An immutable, validated question."""

    id: int
    exam_id: str
    number: int
    text: str
    options: dict[str, str]
    correct: frozenset[str]
    explanation: str | None = None
    why_wrong: dict[str, str] = field(default_factory=dict)
    section: str | None = None
    section_id: str | None = None
    tags: tuple[str, ...] = ()
    confidence: str | None = None
    image_url: str | None = None
    source_url: str | None = None

    def is_correct(self, selected: frozenset[str] | set[str]) -> bool:
        """Unordered set equality against the correct keys."""
        return frozenset(selected) == self.correct

    def unknown_keys(self, selected: frozenset[str] | set[str]) -> set[str]:
        """Selected keys that are not options of this question."""
        return set(selected) - set(self.options)


@dataclass(frozen=True)
class AnswerRecord:
    """One graded attempt."""

    question_id: int
    selected: tuple[str, ...]
    correct: bool
    time_spent_ms: int
    answered_at: datetime
    id: int | None = None
    question_number: int | None = None


@dataclass(frozen=True)
class CardState:
    """
    SM-2 scheduling cursor for one question.

    `version` is the optimistic-lock counter read from storage; None means
    "not yet persisted" or "overwrite regardless" (snapshot import).
    """

    question_id: int
    repetitions: int = 0
    ease_factor: float = INITIAL_EASE_FACTOR
    interval_days: int = 0
    next_review: datetime | None = None
    last_grade: int | None = None
    version: int | None = None
    question_number: int | None = None

    def is_due(self, now: datetime) -> bool:
        return self.next_review is not None and self.next_review <= now


@dataclass(frozen=True)
class BookmarkRecord:
    """A flagged question."""

    question_id: int
    created_at: datetime
    question_number: int | None = None
