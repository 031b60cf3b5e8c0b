"""
Progress snapshot documents.

A snapshot references questions by their exam-scoped number, never by row
id, so it can be replayed into a differently provisioned database.
"""
from __future__ import annotations

from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.core.clock import ensure_utc
from src.study.sm2 import MAX_GRADE, MIN_GRADE


class _SnapshotModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# Naive timestamps in a snapshot are read as UTC
UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


class AnswerEntry(_SnapshotModel):
    """One historical answer."""

    question_number: int = Field(..., ge=1)
    selected: list[str] = Field(default_factory=list)
    correct: bool
    time_spent_ms: int = Field(0, ge=0)
    answered_at: UtcDatetime


class SrsCardEntry(_SnapshotModel):
    """Current scheduling cursor of one question."""

    question_number: int = Field(..., ge=1)
    ease_factor: float = Field(..., ge=1.3)
    interval_days: int = Field(..., ge=0)
    repetitions: int = Field(..., ge=0)
    next_review: UtcDatetime
    last_grade: int | None = Field(None, ge=MIN_GRADE, le=MAX_GRADE)


class BookmarkEntry(_SnapshotModel):
    question_number: int = Field(..., ge=1)
    created_at: UtcDatetime


class ProgressSnapshot(_SnapshotModel):
    """Versioned export of one exam's study history."""

    version: str = Field(..., min_length=1)
    exported_at: UtcDatetime
    exam_id: str = Field(..., min_length=1)
    answers: list[AnswerEntry] = Field(default_factory=list)
    srs_cards: list[SrsCardEntry] = Field(default_factory=list)
    bookmarks: list[BookmarkEntry] = Field(default_factory=list)

    def question_numbers(self) -> set[int]:
        """Every question number the snapshot refers to."""
        numbers = {entry.question_number for entry in self.answers}
        numbers.update(entry.question_number for entry in self.srs_cards)
        numbers.update(entry.question_number for entry in self.bookmarks)
        return numbers
