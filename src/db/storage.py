"""
Storage interface consumed by the study engine, and its SQLAlchemy implementation.

The engine never talks to SQLAlchemy directly. It opens a unit of work with
`StudyStorage.transaction()` and calls the `StorageSession` methods inside
it; everything inside one `with` block commits or rolls back together.

Database errors are translated here into the engine's error taxonomy:
- StaleDataError / IntegrityError  -> Conflict
- timeouts and lock waits          -> StorageTimeout
- other connectivity failures      -> StorageUnavailable
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Generator, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any, TypeVar

from loguru import logger
from sqlalchemy import Engine, delete, func, select, text
from sqlalchemy.exc import (
    DBAPIError,
    IntegrityError,
    InterfaceError,
    OperationalError,
)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from config import Settings
from src.core.errors import Conflict, StorageTimeout, StorageUnavailable
from src.db.database import (
    check_database_health,
    create_db_engine,
    create_session_factory,
    init_db,
)
from src.db.models import Answer, Bookmark, Exam, Question, SrsCard
from src.study.models import (
    AnswerRecord,
    BookmarkRecord,
    CardState,
    ExamRecord,
    QuestionRecord,
)

T = TypeVar("T")

SCAN_BATCH_SIZE = 200

_TIMEOUT_MARKERS = (
    "timeout",
    "timed out",
    "database is locked",
    "lock wait",
    "canceling statement",
)


# =============================================================================
# Interface
# =============================================================================


class StorageSession(ABC):
    """Operations available inside one transaction."""

    # Exams
    @abstractmethod
    def get_exam(self, exam_id: str) -> ExamRecord | None: ...

    @abstractmethod
    def list_exams(self) -> list[ExamRecord]: ...

    @abstractmethod
    def create_exam(self, name: str, description: str | None = None) -> ExamRecord: ...

    @abstractmethod
    def delete_exam(self, exam_id: str) -> dict[str, int]: ...

    # Questions
    @abstractmethod
    def get_question(self, exam_id: str, number: int) -> QuestionRecord | None: ...

    @abstractmethod
    def get_question_by_id(self, question_id: int) -> QuestionRecord | None: ...

    @abstractmethod
    def list_questions(self, exam_id: str) -> list[QuestionRecord]: ...

    @abstractmethod
    def iter_questions(self, exam_id: str) -> Iterator[QuestionRecord]: ...

    @abstractmethod
    def max_question_number(self, exam_id: str) -> int: ...

    @abstractmethod
    def add_question(self, exam_id: str, number: int, **fields: Any) -> QuestionRecord: ...

    # SRS cards
    @abstractmethod
    def get_card(self, question_id: int) -> CardState | None: ...

    @abstractmethod
    def upsert_card(self, card: CardState) -> CardState: ...

    @abstractmethod
    def iter_cards(self, exam_id: str) -> Iterator[CardState]: ...

    @abstractmethod
    def next_due_card(self, exam_id: str, now: datetime) -> CardState | None: ...

    @abstractmethod
    def first_unseen_question(self, exam_id: str) -> QuestionRecord | None: ...

    # Answers
    @abstractmethod
    def insert_answer(self, answer: AnswerRecord) -> AnswerRecord: ...

    @abstractmethod
    def answer_exists(self, question_id: int, answered_at: datetime) -> bool: ...

    @abstractmethod
    def iter_answers(self, exam_id: str) -> Iterator[AnswerRecord]: ...

    # Bookmarks
    @abstractmethod
    def list_bookmarks(self, exam_id: str) -> list[BookmarkRecord]: ...

    @abstractmethod
    def get_bookmark(self, question_id: int) -> BookmarkRecord | None: ...

    @abstractmethod
    def insert_bookmark(self, question_id: int, created_at: datetime) -> BookmarkRecord: ...

    @abstractmethod
    def delete_bookmark(self, question_id: int) -> bool: ...


class StudyStorage(ABC):
    """A handle on the persistent store; opens transactions."""

    @abstractmethod
    def transaction(self, timeout: float | None = None):
        """Context manager yielding a StorageSession; commit on success, rollback on error."""

    def with_transaction(self, fn: Callable[[StorageSession], T], timeout: float | None = None) -> T:
        """Run fn inside a single transaction and return its result."""
        with self.transaction(timeout=timeout) as tx:
            return fn(tx)

    @abstractmethod
    def health(self) -> tuple[str, str | None]: ...

    def close(self) -> None:
        """Release pooled resources."""


# =============================================================================
# Row mapping
# =============================================================================


def _to_exam(row: Exam) -> ExamRecord:
    return ExamRecord(
        id=row.id,
        name=row.name,
        description=row.description,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_question(row: Question) -> QuestionRecord:
    return QuestionRecord(
        id=row.id,
        exam_id=row.exam_id,
        number=row.number,
        text=row.text,
        options=dict(row.options),
        correct=frozenset(row.correct),
        explanation=row.explanation,
        why_wrong=dict(row.why_wrong or {}),
        section=row.section,
        section_id=row.section_id,
        tags=tuple(row.tags or ()),
        confidence=row.confidence,
        image_url=row.image_url,
        source_url=row.source_url,
    )


def _to_card(row: SrsCard, number: int | None = None) -> CardState:
    return CardState(
        question_id=row.question_id,
        repetitions=row.repetitions,
        ease_factor=row.ease_factor,
        interval_days=row.interval_days,
        next_review=row.next_review,
        last_grade=row.last_grade,
        version=row.version,
        question_number=number,
    )


def _to_answer(row: Answer, number: int | None = None) -> AnswerRecord:
    return AnswerRecord(
        id=row.id,
        question_id=row.question_id,
        selected=tuple(row.selected),
        correct=row.correct,
        time_spent_ms=row.time_spent_ms,
        answered_at=row.answered_at,
        question_number=number,
    )


def _to_bookmark(row: Bookmark, number: int | None = None) -> BookmarkRecord:
    return BookmarkRecord(
        question_id=row.question_id,
        created_at=row.created_at,
        question_number=number,
    )


def _exam_question_ids(exam_id: str):
    return select(Question.id).where(Question.exam_id == exam_id)


# =============================================================================
# SQLAlchemy implementation
# =============================================================================


class SqlStorageSession(StorageSession):
    """StorageSession bound to one SQLAlchemy Session."""

    def __init__(self, session: Session):
        self.session = session

    # ---- Exams ---------------------------------------------------------------

    def get_exam(self, exam_id: str) -> ExamRecord | None:
        row = self.session.get(Exam, exam_id)
        return _to_exam(row) if row else None

    def list_exams(self) -> list[ExamRecord]:
        rows = self.session.scalars(select(Exam).order_by(Exam.created_at.desc(), Exam.id))
        return [_to_exam(r) for r in rows]

    def create_exam(self, name: str, description: str | None = None) -> ExamRecord:
        row = Exam(name=name, description=description)
        self.session.add(row)
        self.session.flush()
        return _to_exam(row)

    def delete_exam(self, exam_id: str) -> dict[str, int]:
        question_ids = _exam_question_ids(exam_id)
        counts = {
            "bookmarks": self.session.execute(
                delete(Bookmark).where(Bookmark.question_id.in_(question_ids))
            ).rowcount,
            "answers": self.session.execute(
                delete(Answer).where(Answer.question_id.in_(question_ids))
            ).rowcount,
            "srsCards": self.session.execute(
                delete(SrsCard).where(SrsCard.question_id.in_(question_ids))
            ).rowcount,
            "questions": self.session.execute(
                delete(Question).where(Question.exam_id == exam_id)
            ).rowcount,
        }
        self.session.execute(delete(Exam).where(Exam.id == exam_id))
        return counts

    # ---- Questions -----------------------------------------------------------

    def get_question(self, exam_id: str, number: int) -> QuestionRecord | None:
        row = self.session.scalar(
            select(Question).where(Question.exam_id == exam_id, Question.number == number)
        )
        return _to_question(row) if row else None

    def get_question_by_id(self, question_id: int) -> QuestionRecord | None:
        row = self.session.get(Question, question_id)
        return _to_question(row) if row else None

    def list_questions(self, exam_id: str) -> list[QuestionRecord]:
        return list(self.iter_questions(exam_id))

    def iter_questions(self, exam_id: str) -> Iterator[QuestionRecord]:
        stmt = (
            select(Question)
            .where(Question.exam_id == exam_id)
            .order_by(Question.number)
            .execution_options(yield_per=SCAN_BATCH_SIZE)
        )
        for row in self.session.scalars(stmt):
            yield _to_question(row)

    def max_question_number(self, exam_id: str) -> int:
        value = self.session.scalar(
            select(func.max(Question.number)).where(Question.exam_id == exam_id)
        )
        return value or 0

    def add_question(self, exam_id: str, number: int, **fields: Any) -> QuestionRecord:
        row = Question(exam_id=exam_id, number=number, **fields)
        self.session.add(row)
        self.session.flush()
        return _to_question(row)

    # ---- SRS cards -----------------------------------------------------------

    def _card_row(self, question_id: int) -> SrsCard | None:
        return self.session.scalar(select(SrsCard).where(SrsCard.question_id == question_id))

    def get_card(self, question_id: int) -> CardState | None:
        row = self._card_row(question_id)
        return _to_card(row) if row else None

    def upsert_card(self, card: CardState) -> CardState:
        """
        Insert or update the card for card.question_id.

        When card.version is set, the stored version must still match it;
        otherwise another transaction updated the card first and Conflict is
        raised. A version of None overwrites unconditionally.
        """
        row = self._card_row(card.question_id)
        if row is None:
            if card.version is not None:
                raise Conflict(
                    "SRS card disappeared during update",
                    {"questionId": card.question_id},
                )
            row = SrsCard(question_id=card.question_id)
            self.session.add(row)
        elif card.version is not None and row.version != card.version:
            raise Conflict(
                "SRS card was updated concurrently",
                {"questionId": card.question_id, "expected": card.version, "found": row.version},
            )

        row.repetitions = card.repetitions
        row.ease_factor = card.ease_factor
        row.interval_days = card.interval_days
        row.next_review = card.next_review
        row.last_grade = card.last_grade
        self.session.flush()
        return _to_card(row, card.question_number)

    def iter_cards(self, exam_id: str) -> Iterator[CardState]:
        stmt = (
            select(SrsCard, Question.number)
            .join(Question, SrsCard.question_id == Question.id)
            .where(Question.exam_id == exam_id)
            .order_by(Question.number)
            .execution_options(yield_per=SCAN_BATCH_SIZE)
        )
        for row, number in self.session.execute(stmt):
            yield _to_card(row, number)

    def next_due_card(self, exam_id: str, now: datetime) -> CardState | None:
        stmt = (
            select(SrsCard, Question.number)
            .join(Question, SrsCard.question_id == Question.id)
            .where(Question.exam_id == exam_id, SrsCard.next_review <= now)
            .order_by(SrsCard.next_review, Question.number)
            .limit(1)
        )
        found = self.session.execute(stmt).first()
        if found is None:
            return None
        row, number = found
        return _to_card(row, number)

    def first_unseen_question(self, exam_id: str) -> QuestionRecord | None:
        stmt = (
            select(Question)
            .outerjoin(SrsCard, SrsCard.question_id == Question.id)
            .where(Question.exam_id == exam_id, SrsCard.id.is_(None))
            .order_by(Question.number)
            .limit(1)
        )
        row = self.session.scalar(stmt)
        return _to_question(row) if row else None

    # ---- Answers -------------------------------------------------------------

    def insert_answer(self, answer: AnswerRecord) -> AnswerRecord:
        row = Answer(
            question_id=answer.question_id,
            selected=list(answer.selected),
            correct=answer.correct,
            time_spent_ms=answer.time_spent_ms,
            answered_at=answer.answered_at,
        )
        self.session.add(row)
        self.session.flush()
        return _to_answer(row, answer.question_number)

    def answer_exists(self, question_id: int, answered_at: datetime) -> bool:
        stmt = select(Answer.id).where(
            Answer.question_id == question_id, Answer.answered_at == answered_at
        )
        return self.session.scalar(stmt.limit(1)) is not None

    def iter_answers(self, exam_id: str) -> Iterator[AnswerRecord]:
        stmt = (
            select(Answer, Question.number)
            .join(Question, Answer.question_id == Question.id)
            .where(Question.exam_id == exam_id)
            .order_by(Answer.answered_at, Question.number, Answer.id)
            .execution_options(yield_per=SCAN_BATCH_SIZE)
        )
        for row, number in self.session.execute(stmt):
            yield _to_answer(row, number)

    # ---- Bookmarks -----------------------------------------------------------

    def list_bookmarks(self, exam_id: str) -> list[BookmarkRecord]:
        stmt = (
            select(Bookmark, Question.number)
            .join(Question, Bookmark.question_id == Question.id)
            .where(Question.exam_id == exam_id)
            .order_by(Question.number)
        )
        return [_to_bookmark(row, number) for row, number in self.session.execute(stmt)]

    def get_bookmark(self, question_id: int) -> BookmarkRecord | None:
        row = self.session.scalar(select(Bookmark).where(Bookmark.question_id == question_id))
        return _to_bookmark(row) if row else None

    def insert_bookmark(self, question_id: int, created_at: datetime) -> BookmarkRecord:
        row = Bookmark(question_id=question_id, created_at=created_at)
        self.session.add(row)
        self.session.flush()
        return _to_bookmark(row)

    def delete_bookmark(self, question_id: int) -> bool:
        result = self.session.execute(delete(Bookmark).where(Bookmark.question_id == question_id))
        return result.rowcount > 0


def _is_timeout(error: DBAPIError) -> bool:
    message = str(error.orig if error.orig is not None else error).lower()
    return any(marker in message for marker in _TIMEOUT_MARKERS)


class SqlStudyStorage(StudyStorage):
    """
    StudyStorage over a SQLAlchemy engine.

    Works with SQLite (self-hosted default) and PostgreSQL.
    """

    def __init__(
        self,
        engine: Engine,
        session_factory: sessionmaker[Session] | None = None,
        default_timeout: float | None = None,
    ):
        self.engine = engine
        self.session_factory = session_factory or create_session_factory(engine)
        self.default_timeout = default_timeout

    def create_schema(self) -> None:
        """Create tables if they do not exist."""
        init_db(self.engine)

    def _apply_timeout(self, session: Session, timeout: float | None) -> None:
        if timeout is None:
            return
        millis = max(1, int(timeout * 1000))
        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            session.execute(text(f"SET LOCAL statement_timeout = {millis}"))
        elif dialect == "sqlite":
            session.execute(text(f"PRAGMA busy_timeout = {millis}"))

    @contextmanager
    def transaction(self, timeout: float | None = None) -> Generator[StorageSession, None, None]:
        session = self.session_factory()
        try:
            self._apply_timeout(session, timeout if timeout is not None else self.default_timeout)
            yield SqlStorageSession(session)
            session.commit()
        except (StaleDataError, IntegrityError) as e:
            session.rollback()
            logger.debug(f"Write conflict: {e}")
            raise Conflict("Concurrent write conflict", {"reason": str(e)}) from e
        except PoolTimeoutError as e:
            session.rollback()
            raise StorageTimeout("Timed out waiting for a database connection") from e
        except (OperationalError, InterfaceError) as e:
            session.rollback()
            if _is_timeout(e):
                raise StorageTimeout("Storage operation timed out", {"reason": str(e.orig)}) from e
            raise StorageUnavailable("Storage unavailable", {"reason": str(e.orig)}) from e
        except Exception:  # Intentionally broad - rollback on any error before re-raising
            session.rollback()
            raise
        finally:
            session.close()

    def health(self) -> tuple[str, str | None]:
        return check_database_health(self.engine)

    def close(self) -> None:
        self.engine.dispose()


def build_storage(settings: Settings) -> SqlStudyStorage:
    """Construct the storage handle for a process from settings."""
    engine = create_db_engine(settings)
    return SqlStudyStorage(engine, default_timeout=settings.storage_timeout_seconds)
