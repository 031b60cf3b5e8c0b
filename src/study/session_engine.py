"""
Session Engine: question selection, grading and atomic progress writes.

Selection is due-first:
1. Among cards with next_review <= now, the earliest next_review wins
   (ties broken by question number).
2. Otherwise the lowest-numbered question that has never been answered.
3. Otherwise the session is complete.

Grading writes exactly one new Answer and one updated SrsCard in a single
transaction. `persist_answer` and `persist_card` are the only write path for
both tables; the snapshot importer replays history through them too.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from loguru import logger

from config import Settings, get_settings
from src.bank.question_bank import require_exam
from src.core.clock import ensure_utc, utcnow
from src.core.errors import Conflict, NotFound, ValidationError
from src.db.storage import StorageSession, StudyStorage
from src.study.models import AnswerRecord, BookmarkRecord, CardState, QuestionRecord
from src.study.sm2 import SM2Scheduler, validate_grade

# =============================================================================
# Write path
# =============================================================================


def normalize_selection(question: QuestionRecord, selected_keys: Iterable[str]) -> tuple[str, ...]:
    """
    Deduplicate and sort the selected option keys.

    An empty selection is valid (it is graded as wrong). Keys that are not
    options of the question are rejected.
    """
    if isinstance(selected_keys, str):
        raise ValidationError("Selected keys must be a list of option keys")
    selected = {str(key).strip() for key in selected_keys}
    unknown = question.unknown_keys(selected)
    if unknown:
        raise ValidationError(
            "Selected keys are not options of this question",
            {"questionNumber": question.number, "unknownKeys": sorted(unknown)},
        )
    return tuple(sorted(selected))


def persist_answer(
    tx: StorageSession,
    question: QuestionRecord,
    selected: tuple[str, ...],
    elapsed_ms: int,
    answered_at: datetime,
) -> AnswerRecord:
    """Insert an immutable Answer; correctness is fixed here, once."""
    answer = AnswerRecord(
        question_id=question.id,
        selected=selected,
        correct=question.is_correct(frozenset(selected)),
        time_spent_ms=elapsed_ms,
        answered_at=answered_at,
        question_number=question.number,
    )
    return tx.insert_answer(answer)


def persist_card(tx: StorageSession, card: CardState) -> CardState:
    """Write a card state; a set version is checked against storage."""
    return tx.upsert_card(card)


# =============================================================================
# Engine
# =============================================================================


@dataclass(frozen=True)
class GradingResult:
    """Outcome of one submitted answer."""

    answer: AnswerRecord
    card: CardState
    previous_card: CardState
    grade: int
    question: QuestionRecord | None = None

    @property
    def correct(self) -> bool:
        return self.answer.correct


class SessionEngine:
    """
    Stateless request handler over the shared store.

    Args:
        storage: Storage handle constructed by the process bootstrap
        scheduler: SM2Scheduler (creates default if None)
        settings: Settings (process settings if None)
    """

    def __init__(
        self,
        storage: StudyStorage,
        scheduler: SM2Scheduler | None = None,
        settings: Settings | None = None,
    ):
        self.storage = storage
        self.scheduler = scheduler or SM2Scheduler()
        self.settings = settings or get_settings()

    # -------------------------------------------------------------------------
    # Selection
    # -------------------------------------------------------------------------

    def next_question(
        self, exam_id: str, now: datetime | None = None, timeout: float | None = None
    ) -> QuestionRecord | None:
        """
        Pick the question to present next, or None when nothing is left.

        `timeout` overrides the storage call timeout in seconds.

        Raises:
            NotFound: unknown exam
        """
        now = ensure_utc(now) if now else utcnow()

        with self.storage.transaction(timeout=timeout) as tx:
            require_exam(tx, exam_id)

            due = tx.next_due_card(exam_id, now)
            if due is not None:
                question = tx.get_question_by_id(due.question_id)
                logger.debug(
                    f"Selected due question #{question.number} (next_review={due.next_review})"
                )
                return question

            unseen = tx.first_unseen_question(exam_id)
            if unseen is not None:
                logger.debug(f"Selected new question #{unseen.number}")
            return unseen

    # -------------------------------------------------------------------------
    # Grading
    # -------------------------------------------------------------------------

    def submit_answer(
        self,
        question_id: int,
        selected_keys: Iterable[str],
        elapsed_ms: int,
        now: datetime | None = None,
        grade: int | None = None,
        exam_id: str | None = None,
        timeout: float | None = None,
    ) -> GradingResult:
        """
        Grade an answer and persist Answer + SrsCard atomically.

        Args:
            question_id: Question row id
            selected_keys: Option keys the user picked (may be empty)
            elapsed_ms: Time spent on the question
            now: Answer time (defaults to current UTC time)
            grade: Explicit 0-5 grade; defaults to 5 if correct, 0 if not
            exam_id: When given, the question must belong to this exam
            timeout: Storage call timeout in seconds (settings default if None)

        Raises:
            NotFound: unknown question (or question outside exam_id)
            ValidationError: bad keys, negative elapsed time, grade outside 0-5
            Conflict: the card kept losing concurrent update races
        """
        if isinstance(elapsed_ms, bool) or not isinstance(elapsed_ms, int) or elapsed_ms < 0:
            raise ValidationError("Elapsed time must be a non-negative integer", {"elapsedMs": elapsed_ms})
        if grade is not None:
            validate_grade(grade)
        selected_keys = list(selected_keys) if not isinstance(selected_keys, str) else selected_keys
        now = ensure_utc(now) if now else utcnow()

        attempts = 1 + self.settings.conflict_retries
        for attempt in range(1, attempts + 1):
            try:
                return self._grade_once(
                    question_id, selected_keys, elapsed_ms, now, grade, exam_id, timeout
                )
            except Conflict:
                if attempt == attempts:
                    raise
                logger.warning(
                    f"Card update conflict for question {question_id}; "
                    f"retrying ({attempt}/{attempts - 1})"
                )
        raise AssertionError("unreachable")

    def _grade_once(
        self,
        question_id: int,
        selected_keys: list[str],
        elapsed_ms: int,
        now: datetime,
        grade: int | None,
        exam_id: str | None,
        timeout: float | None,
    ) -> GradingResult:
        with self.storage.transaction(timeout=timeout) as tx:
            question = tx.get_question_by_id(question_id)
            if question is None or (exam_id is not None and question.exam_id != exam_id):
                raise NotFound("Question not found", {"questionId": question_id})

            selected = normalize_selection(question, selected_keys)
            answer = persist_answer(tx, question, selected, elapsed_ms, now)

            current = tx.get_card(question.id) or CardState(
                question_id=question.id,
                ease_factor=self.scheduler.config.initial_easiness,
            )
            effective_grade = (
                grade if grade is not None else self.scheduler.grade_from_correctness(answer.correct)
            )
            updated = persist_card(tx, self.scheduler.schedule(current, effective_grade, now))

        logger.debug(
            f"Graded question #{question.number}: correct={answer.correct} grade={effective_grade} "
            f"interval={updated.interval_days}d ef={updated.ease_factor:.2f}"
        )
        return GradingResult(
            answer=answer,
            card=updated,
            previous_card=current,
            grade=effective_grade,
            question=question,
        )

    # -------------------------------------------------------------------------
    # Bookmarks
    # -------------------------------------------------------------------------

    def _question_or_404(self, tx: StorageSession, exam_id: str, number: int) -> QuestionRecord:
        question = tx.get_question(exam_id, number)
        if question is None:
            raise NotFound("Question not found", {"examId": exam_id, "number": number})
        return question

    def add_bookmark(self, exam_id: str, number: int, now: datetime | None = None) -> BookmarkRecord:
        """Bookmark a question; an existing bookmark is returned unchanged."""
        now = ensure_utc(now) if now else utcnow()
        with self.storage.transaction() as tx:
            question = self._question_or_404(tx, exam_id, number)
            existing = tx.get_bookmark(question.id)
            if existing is not None:
                return existing
            return tx.insert_bookmark(question.id, now)

    def remove_bookmark(self, exam_id: str, number: int) -> bool:
        with self.storage.transaction() as tx:
            question = self._question_or_404(tx, exam_id, number)
            return tx.delete_bookmark(question.id)

    def toggle_bookmark(self, exam_id: str, number: int, now: datetime | None = None) -> bool:
        """Flip the bookmark; returns True when the question is now bookmarked."""
        now = ensure_utc(now) if now else utcnow()
        with self.storage.transaction() as tx:
            question = self._question_or_404(tx, exam_id, number)
            if tx.delete_bookmark(question.id):
                return False
            tx.insert_bookmark(question.id, now)
            return True

    def list_bookmarks(self, exam_id: str) -> list[BookmarkRecord]:
        with self.storage.transaction() as tx:
            require_exam(tx, exam_id)
            return tx.list_bookmarks(exam_id)

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    def start_session(self, exam_id: str) -> StudySession:
        return StudySession(self, exam_id)


# =============================================================================
# Session state machine
# =============================================================================


class SessionPhase(str, Enum):
    SELECTING_QUESTION = "selecting_question"
    PRESENTING = "presenting"
    GRADING = "grading"
    COMPLETE = "complete"


class StudySession:
    """
    One study sitting over an exam.

    SELECTING_QUESTION -> PRESENTING -> GRADING -> SELECTING_QUESTION | COMPLETE
    """

    def __init__(self, engine: SessionEngine, exam_id: str):
        self.engine = engine
        self.exam_id = exam_id
        self.phase = SessionPhase.SELECTING_QUESTION
        self.current: QuestionRecord | None = None
        self.answered = 0
        self.correct = 0

    @property
    def is_complete(self) -> bool:
        return self.phase is SessionPhase.COMPLETE

    @property
    def accuracy(self) -> float:
        """Fraction of this session's answers that were correct."""
        return self.correct / self.answered if self.answered else 0.0

    def advance(self, now: datetime | None = None) -> QuestionRecord | None:
        """Select the next question; None once the session is complete."""
        if self.phase is not SessionPhase.SELECTING_QUESTION:
            raise ValidationError(
                f"Cannot select a question while {self.phase.value}", {"phase": self.phase.value}
            )
        self.current = self.engine.next_question(self.exam_id, now)
        self.phase = SessionPhase.PRESENTING if self.current else SessionPhase.COMPLETE
        return self.current

    def submit(
        self,
        selected_keys: Iterable[str],
        elapsed_ms: int,
        now: datetime | None = None,
        grade: int | None = None,
    ) -> GradingResult:
        """Grade the presented question."""
        if self.phase is not SessionPhase.PRESENTING or self.current is None:
            raise ValidationError(
                f"No question is being presented ({self.phase.value})", {"phase": self.phase.value}
            )
        self.phase = SessionPhase.GRADING
        try:
            result = self.engine.submit_answer(
                self.current.id, selected_keys, elapsed_ms, now=now, grade=grade, exam_id=self.exam_id
            )
        except Exception:
            # Failed grading leaves the same question on screen
            self.phase = SessionPhase.PRESENTING
            raise

        self.answered += 1
        self.correct += int(result.correct)
        self.current = None
        self.phase = SessionPhase.SELECTING_QUESTION
        return result
