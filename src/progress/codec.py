"""
Progress Snapshot Codec: export and idempotent re-import of study history.

Export gathers every Answer, SrsCard and Bookmark of an exam and keys them by
question number. Import validates the whole document up front, then replays
it in batches through the same write path live grading uses:

- answers are inserted unless one already exists for (questionNumber, answeredAt)
- cards are written last-writer-wins, so they converge to the snapshot
- bookmarks are inserted when absent

Because every step is idempotent, an import interrupted between batches can
simply be run again.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from config import Settings, get_settings
from src.bank.question_bank import error_list, require_exam
from src.core.cancellation import CancellationToken, check_cancelled
from src.core.clock import ensure_utc, utcnow
from src.core.errors import UnsupportedFormat, ValidationError
from src.db.storage import StorageSession, StudyStorage
from src.progress.schemas import (
    AnswerEntry,
    BookmarkEntry,
    ProgressSnapshot,
    SrsCardEntry,
)
from src.study.models import CardState, QuestionRecord
from src.study.session_engine import normalize_selection, persist_answer, persist_card


@dataclass
class ImportReport:
    """Counts from one import call."""

    answers_imported: int = 0
    answers_skipped: int = 0
    cards_written: int = 0
    bookmarks_imported: int = 0
    bookmarks_skipped: int = 0
    batches: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "answersImported": self.answers_imported,
            "answersSkipped": self.answers_skipped,
            "cardsWritten": self.cards_written,
            "bookmarksImported": self.bookmarks_imported,
            "bookmarksSkipped": self.bookmarks_skipped,
            "batches": self.batches,
        }


# One replay step: (session, questions by number, report) -> None
ReplayStep = Callable[[StorageSession, dict[int, QuestionRecord], ImportReport], None]


class ProgressCodec:
    """
    Export/import of progress snapshots.

    Args:
        storage: Storage handle constructed by the process bootstrap
        settings: Settings (process settings if None)
    """

    def __init__(self, storage: StudyStorage, settings: Settings | None = None):
        self.storage = storage
        self.settings = settings or get_settings()

    # =========================================================================
    # Export
    # =========================================================================

    def export(
        self,
        exam_id: str,
        now: datetime | None = None,
        cancel: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> ProgressSnapshot:
        """
        Snapshot all progress of one exam.

        Raises:
            NotFound: unknown exam
            OperationCancelled: cancel token fired mid-scan
        """
        now = ensure_utc(now) if now else utcnow()
        answers: list[AnswerEntry] = []
        cards: list[SrsCardEntry] = []

        with self.storage.transaction(timeout=timeout) as tx:
            require_exam(tx, exam_id)

            for answer in tx.iter_answers(exam_id):
                check_cancelled(cancel)
                answers.append(
                    AnswerEntry(
                        question_number=answer.question_number,
                        selected=list(answer.selected),
                        correct=answer.correct,
                        time_spent_ms=answer.time_spent_ms,
                        answered_at=answer.answered_at,
                    )
                )

            for card in tx.iter_cards(exam_id):
                check_cancelled(cancel)
                cards.append(
                    SrsCardEntry(
                        question_number=card.question_number,
                        ease_factor=card.ease_factor,
                        interval_days=card.interval_days,
                        repetitions=card.repetitions,
                        next_review=card.next_review,
                        last_grade=card.last_grade,
                    )
                )

            bookmarks = [
                BookmarkEntry(question_number=b.question_number, created_at=b.created_at)
                for b in tx.list_bookmarks(exam_id)
            ]

        snapshot = ProgressSnapshot(
            version=self.settings.snapshot_version,
            exported_at=now,
            exam_id=exam_id,
            answers=answers,
            srs_cards=cards,
            bookmarks=bookmarks,
        )
        logger.info(
            f"Exported exam {exam_id}: {len(answers)} answers, {len(cards)} cards, "
            f"{len(bookmarks)} bookmarks"
        )
        return snapshot

    # =========================================================================
    # JSON form
    # =========================================================================

    @staticmethod
    def dumps(snapshot: ProgressSnapshot, indent: int | None = 2) -> str:
        return snapshot.model_dump_json(by_alias=True, indent=indent)

    def loads(self, raw: str | bytes | Mapping[str, Any]) -> ProgressSnapshot:
        """
        Parse a snapshot document.

        Raises:
            ValidationError: not JSON, missing/blank version, malformed entries
            UnsupportedFormat: well-formed version that is not accepted
        """
        if isinstance(raw, (str, bytes)):
            try:
                document = json.loads(raw)
            except json.JSONDecodeError as e:
                raise ValidationError("Snapshot is not valid JSON", {"reason": str(e)}) from e
        else:
            document = raw

        if not isinstance(document, Mapping):
            raise ValidationError("Snapshot must be a JSON object")

        version = document.get("version")
        if not isinstance(version, str) or not version.strip():
            raise ValidationError("Snapshot version is missing or blank", {"version": version})
        self._check_version(version.strip())

        try:
            return ProgressSnapshot.model_validate(document)
        except PydanticValidationError as e:
            raise ValidationError(
                "Snapshot is malformed",
                {"errors": error_list(e)},
            ) from e

    def _check_version(self, version: str) -> None:
        supported = self.settings.supported_snapshot_versions
        if version not in supported:
            raise UnsupportedFormat(
                f"Unsupported snapshot version {version}",
                {"version": version, "supported": list(supported)},
            )

    # =========================================================================
    # Import
    # =========================================================================

    def import_snapshot(
        self,
        exam_id: str,
        snapshot: ProgressSnapshot | str | bytes | Mapping[str, Any],
        remap: bool = False,
        cancel: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> ImportReport:
        """
        Replay a snapshot into an exam.

        Args:
            exam_id: Target exam
            snapshot: Parsed snapshot or its JSON form
            remap: Accept a snapshot exported from another exam id (a
                re-provisioned copy of the same exam)
            cancel: Polled between batches
            timeout: Storage call timeout in seconds for each transaction

        Raises:
            ValidationError: malformed snapshot, exam mismatch, unresolved
                question numbers, unknown selected keys
            UnsupportedFormat: snapshot version not accepted
            NotFound: unknown exam
            OperationCancelled: cancel token fired between batches
        """
        if not isinstance(snapshot, ProgressSnapshot):
            snapshot = self.loads(snapshot)
        else:
            self._check_version(snapshot.version)

        questions = self._resolve_questions(exam_id, snapshot, remap, timeout)
        steps = self._plan(snapshot, questions)

        report = ImportReport()
        batch_size = self.settings.import_batch_size
        for start in range(0, len(steps), batch_size):
            check_cancelled(cancel)
            batch = steps[start : start + batch_size]
            with self.storage.transaction(timeout=timeout) as tx:
                for step in batch:
                    step(tx, questions, report)
            report.batches += 1

        logger.info(
            f"Imported snapshot into exam {exam_id}: "
            f"{report.answers_imported} answers ({report.answers_skipped} already present), "
            f"{report.cards_written} cards, {report.bookmarks_imported} bookmarks "
            f"in {report.batches} batch(es)"
        )
        return report

    def _resolve_questions(
        self,
        exam_id: str,
        snapshot: ProgressSnapshot,
        remap: bool,
        timeout: float | None,
    ) -> dict[int, QuestionRecord]:
        """Map every referenced number to a question and validate selections, before any write."""
        with self.storage.transaction(timeout=timeout) as tx:
            require_exam(tx, exam_id)
            questions = {q.number: q for q in tx.iter_questions(exam_id)}

        if snapshot.exam_id != exam_id and not remap:
            raise ValidationError(
                "Snapshot was exported from a different exam",
                {"snapshotExamId": snapshot.exam_id, "examId": exam_id},
            )

        missing = sorted(n for n in snapshot.question_numbers() if n not in questions)
        if missing:
            raise ValidationError(
                "Snapshot refers to questions this exam does not have",
                {"examId": exam_id, "missingNumbers": missing},
            )

        invalid: list[dict[str, Any]] = []
        for index, entry in enumerate(snapshot.answers):
            try:
                normalize_selection(questions[entry.question_number], entry.selected)
            except ValidationError as e:
                invalid.append({"index": index, **e.details})
        if invalid:
            raise ValidationError("Snapshot answers select unknown options", {"invalid": invalid})

        return questions

    def _plan(
        self, snapshot: ProgressSnapshot, questions: dict[int, QuestionRecord]
    ) -> list[ReplayStep]:
        # Answers first so the snapshot's card state is what remains
        steps: list[ReplayStep] = []
        steps.extend(_answer_step(entry) for entry in snapshot.answers)
        steps.extend(_card_step(entry) for entry in snapshot.srs_cards)
        steps.extend(_bookmark_step(entry) for entry in snapshot.bookmarks)
        return steps


def _answer_step(entry: AnswerEntry) -> ReplayStep:
    def step(tx: StorageSession, questions: dict[int, QuestionRecord], report: ImportReport) -> None:
        question = questions[entry.question_number]
        if tx.answer_exists(question.id, entry.answered_at):
            report.answers_skipped += 1
            return
        selected = normalize_selection(question, entry.selected)
        answer = persist_answer(tx, question, selected, entry.time_spent_ms, entry.answered_at)
        if answer.correct != entry.correct:
            logger.warning(
                f"Snapshot answer for question #{question.number} at {entry.answered_at} "
                f"recorded correct={entry.correct}, recomputed {answer.correct}"
            )
        report.answers_imported += 1

    return step


def _card_step(entry: SrsCardEntry) -> ReplayStep:
    def step(tx: StorageSession, questions: dict[int, QuestionRecord], report: ImportReport) -> None:
        question = questions[entry.question_number]
        persist_card(
            tx,
            CardState(
                question_id=question.id,
                repetitions=entry.repetitions,
                ease_factor=entry.ease_factor,
                interval_days=entry.interval_days,
                next_review=entry.next_review,
                last_grade=entry.last_grade,
                version=None,
                question_number=question.number,
            ),
        )
        report.cards_written += 1

    return step


def _bookmark_step(entry: BookmarkEntry) -> ReplayStep:
    def step(tx: StorageSession, questions: dict[int, QuestionRecord], report: ImportReport) -> None:
        question = questions[entry.question_number]
        if tx.get_bookmark(question.id) is not None:
            report.bookmarks_skipped += 1
            return
        tx.insert_bookmark(question.id, entry.created_at)
        report.bookmarks_imported += 1

    return step
