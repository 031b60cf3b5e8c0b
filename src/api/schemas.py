"""
Shared API response models.

All bodies use camelCase keys, matching the progress snapshot format.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from src.study.models import QuestionRecord


class CamelModel(BaseModel):
    """Base model serialised with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class QuestionResponse(CamelModel):
    """A question as presented to the learner."""

    id: int
    exam_id: str
    number: int
    text: str
    options: dict[str, str]
    correct: list[str]
    explanation: str | None = None
    why_wrong: dict[str, str] = {}
    section: str | None = None
    section_id: str | None = None
    tags: list[str] = []
    confidence: str | None = None
    image_url: str | None = None
    source_url: str | None = None

    @classmethod
    def from_record(cls, question: QuestionRecord) -> QuestionResponse:
        return cls(
            id=question.id,
            exam_id=question.exam_id,
            number=question.number,
            text=question.text,
            options=question.options,
            correct=sorted(question.correct),
            explanation=question.explanation,
            why_wrong=question.why_wrong,
            section=question.section,
            section_id=question.section_id,
            tags=list(question.tags),
            confidence=question.confidence,
            image_url=question.image_url,
            source_url=question.source_url,
        )


class CardResponse(CamelModel):
    question_id: int
    question_number: int | None = None
    repetitions: int
    ease_factor: float
    interval_days: int
    next_review: datetime | None = None
    last_grade: int | None = None


class BookmarkResponse(CamelModel):
    question_number: int | None = None
    created_at: datetime
