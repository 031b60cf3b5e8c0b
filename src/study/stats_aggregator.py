"""
Stats Aggregator: per-exam and per-section progress statistics.

Computed on demand from the stored Question/Answer/SrsCard rows; nothing is
cached, so results are correct immediately after a snapshot import or an
exam delete. Scans stream rows and poll an optional CancellationToken.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from loguru import logger

from src.bank.question_bank import require_exam
from src.core.cancellation import CancellationToken, check_cancelled
from src.core.clock import ensure_utc, round_half_up, utcnow
from src.db.storage import StorageSession, StudyStorage

UNKNOWN_SECTION = "Unknown"


@dataclass(frozen=True)
class SectionStats:
    """Distinct-question progress for one section."""

    section_id: str
    section: str
    total: int
    correct: int
    accuracy: int


@dataclass(frozen=True)
class ExamStats:
    """Progress summary for one exam."""

    total_questions: int
    answered: int
    correct: int
    accuracy: float
    due_for_review: int
    by_section: list[SectionStats] = field(default_factory=list)


@dataclass(frozen=True)
class ExamOverview:
    """One row of the exam list."""

    id: str
    name: str
    description: str | None
    question_count: int
    answered_count: int
    accuracy: float
    due_for_review: int
    created_at: datetime
    updated_at: datetime


def answer_accuracy(correct: int, answered: int) -> float:
    """Percentage with one decimal; 0 when nothing was answered."""
    if answered == 0:
        return 0.0
    return round_half_up(correct / answered * 100, 1)


def _section_sort_key(key: tuple[str | None, str | None]) -> tuple:
    section_id, section = key
    # sectionId ascending, nulls last
    return (section_id is None, section_id or "", section is None, section or "")


class StatsAggregator:
    """Read-side statistics over the study records."""

    def __init__(self, storage: StudyStorage):
        self.storage = storage

    def exam_stats(
        self,
        exam_id: str,
        now: datetime | None = None,
        cancel: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> ExamStats:
        """
        Compute stats for one exam.

        `timeout` overrides the storage call timeout in seconds.

        Raises:
            NotFound: unknown exam
            OperationCancelled: cancel token fired mid-scan
        """
        now = ensure_utc(now) if now else utcnow()
        with self.storage.transaction(timeout=timeout) as tx:
            require_exam(tx, exam_id)
            stats = self._compute(tx, exam_id, now, cancel)

        logger.debug(
            f"Stats for exam {exam_id}: answered={stats.answered} correct={stats.correct} "
            f"due={stats.due_for_review}"
        )
        return stats

    def exam_overview(
        self,
        now: datetime | None = None,
        cancel: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> list[ExamOverview]:
        """Summary row per exam, newest exam first."""
        now = ensure_utc(now) if now else utcnow()
        rows: list[ExamOverview] = []
        with self.storage.transaction(timeout=timeout) as tx:
            for exam in tx.list_exams():
                check_cancelled(cancel)
                stats = self._compute(tx, exam.id, now, cancel, with_sections=False)
                rows.append(
                    ExamOverview(
                        id=exam.id,
                        name=exam.name,
                        description=exam.description,
                        question_count=stats.total_questions,
                        answered_count=stats.answered,
                        accuracy=stats.accuracy,
                        due_for_review=stats.due_for_review,
                        created_at=exam.created_at,
                        updated_at=exam.updated_at,
                    )
                )
        return rows

    def _compute(
        self,
        tx: StorageSession,
        exam_id: str,
        now: datetime,
        cancel: CancellationToken | None,
        with_sections: bool = True,
    ) -> ExamStats:
        # question id -> section key
        sections: dict[int, tuple[str | None, str | None]] = {}
        for question in tx.iter_questions(exam_id):
            check_cancelled(cancel)
            sections[question.id] = (question.section_id, question.section)

        answered = 0
        correct = 0
        correct_questions: set[int] = set()
        for answer in tx.iter_answers(exam_id):
            check_cancelled(cancel)
            answered += 1
            if answer.correct:
                correct += 1
                correct_questions.add(answer.question_id)

        due = 0
        for card in tx.iter_cards(exam_id):
            check_cancelled(cancel)
            if card.is_due(now):
                due += 1

        by_section: list[SectionStats] = []
        if with_sections:
            totals: dict[tuple[str | None, str | None], list[int]] = {}
            for question_id, key in sections.items():
                bucket = totals.setdefault(key, [0, 0])
                bucket[0] += 1
                if question_id in correct_questions:
                    bucket[1] += 1

            for key in sorted(totals, key=_section_sort_key):
                total, section_correct = totals[key]
                section_id, section = key
                by_section.append(
                    SectionStats(
                        section_id=section_id or UNKNOWN_SECTION,
                        section=section or UNKNOWN_SECTION,
                        total=total,
                        correct=section_correct,
                        accuracy=round_half_up(section_correct / total * 100) if total else 0,
                    )
                )

        return ExamStats(
            total_questions=len(sections),
            answered=answered,
            correct=correct,
            accuracy=answer_accuracy(correct, answered),
            due_for_review=due,
            by_section=by_section,
        )
