"""
Exam study models.

Implements:
- Exam: container for one exam's question bank
- Question: immutable question record, numbered per exam
- Answer: one immutable row per graded attempt
- SrsCard: the single SM-2 scheduling cursor per question
- Bookmark: user flag on a question, independent of scheduling

Every child table references its parent with ON DELETE CASCADE, and the ORM
relationships cascade deletes as well, so deleting an Exam removes its whole
study history in the same transaction.
"""
from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.clock import utcnow
from src.db.types import UTCDateTime

from .base import Base


class Exam(Base):
    """An exam whose questions are studied together."""

    __tablename__ = "exams"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    # Relationships
    questions: Mapped[list[Question]] = relationship(
        back_populates="exam", cascade="all, delete-orphan", passive_deletes=True
    )


class Question(Base):
    """
    A question as imported. Never modified after insert.

    The `number` is the stable identity used by progress snapshots; row ids
    differ between databases.
    """

    __tablename__ = "questions"
    __table_args__ = (UniqueConstraint("exam_id", "number", name="uq_questions_exam_number"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    exam_id: Mapped[str] = mapped_column(
        ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True
    )
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    options: Mapped[dict[str, str]] = mapped_column(JSON, nullable=False)
    correct: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    explanation: Mapped[str | None] = mapped_column(Text)
    why_wrong: Mapped[dict[str, str] | None] = mapped_column(JSON)

    # Metadata
    section: Mapped[str | None] = mapped_column(Text)
    section_id: Mapped[str | None] = mapped_column(String(64))
    tags: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    confidence: Mapped[str | None] = mapped_column(String(16))  # high / medium / low

    # Media / source
    image_url: Mapped[str | None] = mapped_column(Text)
    source_url: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    # Relationships
    exam: Mapped[Exam] = relationship(back_populates="questions")
    answers: Mapped[list[Answer]] = relationship(
        back_populates="question", cascade="all, delete-orphan", passive_deletes=True
    )
    card: Mapped[SrsCard | None] = relationship(
        back_populates="question", cascade="all, delete-orphan", passive_deletes=True
    )
    bookmark: Mapped[Bookmark | None] = relationship(
        back_populates="question", cascade="all, delete-orphan", passive_deletes=True
    )


class Answer(Base):
    """One graded attempt. Rows are only ever inserted."""

    __tablename__ = "answers"
    __table_args__ = (Index("ix_answers_question_answered_at", "question_id", "answered_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    question_id: Mapped[int] = mapped_column(
        ForeignKey("questions.id", ondelete="CASCADE"), nullable=False
    )
    selected: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    time_spent_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    answered_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    question: Mapped[Question] = relationship(back_populates="answers")


class SrsCard(Base):
    """
    SM-2 state for one question.

    `version` is bumped by SQLAlchemy on every UPDATE and checked in the
    WHERE clause, so two transactions that read the same version cannot
    both commit their update.
    """

    __tablename__ = "srs_cards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    question_id: Mapped[int] = mapped_column(
        ForeignKey("questions.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    repetitions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    ease_factor: Mapped[float] = mapped_column(Float, default=2.5, nullable=False)
    interval_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    next_review: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    last_grade: Mapped[int | None] = mapped_column(Integer)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    question: Mapped[Question] = relationship(back_populates="card")

    __mapper_args__ = {"version_id_col": version}


class Bookmark(Base):
    """A flagged question."""

    __tablename__ = "bookmarks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    question_id: Mapped[int] = mapped_column(
        ForeignKey("questions.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    question: Mapped[Question] = relationship(back_populates="bookmark")
