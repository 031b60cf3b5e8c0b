"""
Question Bank: read-only view over an exam's questions, plus validated ingestion.

Questions are immutable once stored. The only write path is `ingest()`, which
validates every document before storing any of them.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from src.bank.schemas import ExamData, QuestionData
from src.core.errors import NotFound, ValidationError
from src.db.storage import StorageSession, StudyStorage
from src.study.models import ExamRecord, QuestionRecord


def error_list(error: PydanticValidationError) -> list[dict[str, str]]:
    return [
        {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
        for err in error.errors()
    ]


def parse_questions(documents: Iterable[Mapping[str, Any]]) -> list[QuestionData]:
    """
    Validate raw question documents.

    Raises:
        ValidationError: listing every invalid document by position
    """
    parsed: list[QuestionData] = []
    problems: list[dict[str, Any]] = []

    for index, document in enumerate(documents):
        try:
            parsed.append(QuestionData.model_validate(document))
        except PydanticValidationError as e:
            problems.append({"index": index, "errors": error_list(e)})

    if problems:
        raise ValidationError(
            f"{len(problems)} question document(s) are invalid", {"invalid": problems}
        )
    return parsed


def require_exam(tx: StorageSession, exam_id: str) -> ExamRecord:
    """Return the exam or raise NotFound."""
    exam = tx.get_exam(exam_id)
    if exam is None:
        raise NotFound("Exam not found", {"examId": exam_id})
    return exam


class QuestionBank:
    """Read access to questions keyed by (exam, number), plus exam provisioning."""

    def __init__(self, storage: StudyStorage):
        self.storage = storage

    # ---- Exams ---------------------------------------------------------------

    def create_exam(self, name: str, description: str | None = None) -> ExamRecord:
        try:
            data = ExamData(name=name, description=description)
        except PydanticValidationError as e:
            raise ValidationError("Invalid exam", {"errors": error_list(e)}) from e

        with self.storage.transaction() as tx:
            exam = tx.create_exam(data.name, data.description)
        logger.info(f"Created exam {exam.id} ({exam.name!r})")
        return exam

    def get_exam(self, exam_id: str) -> ExamRecord:
        with self.storage.transaction() as tx:
            return require_exam(tx, exam_id)

    def list_exams(self) -> list[ExamRecord]:
        with self.storage.transaction() as tx:
            return tx.list_exams()

    def delete_exam(self, exam_id: str) -> dict[str, int]:
        """
        Delete an exam with its questions, answers, cards and bookmarks.

        Returns:
            Deleted row counts keyed questions/answers/srsCards/bookmarks
        """
        with self.storage.transaction() as tx:
            require_exam(tx, exam_id)
            counts = tx.delete_exam(exam_id)
        logger.info(f"Deleted exam {exam_id}: {counts}")
        return counts

    # ---- Questions -----------------------------------------------------------

    def get(self, exam_id: str, number: int) -> QuestionRecord:
        with self.storage.transaction() as tx:
            question = tx.get_question(exam_id, number)
        if question is None:
            raise NotFound("Question not found", {"examId": exam_id, "number": number})
        return question

    def get_by_id(self, question_id: int) -> QuestionRecord:
        with self.storage.transaction() as tx:
            question = tx.get_question_by_id(question_id)
        if question is None:
            raise NotFound("Question not found", {"questionId": question_id})
        return question

    def list_questions(self, exam_id: str) -> list[QuestionRecord]:
        with self.storage.transaction() as tx:
            require_exam(tx, exam_id)
            return tx.list_questions(exam_id)

    def count(self, exam_id: str) -> int:
        return len(self.list_questions(exam_id))

    def ingest(
        self,
        exam_id: str,
        documents: Iterable[Mapping[str, Any]],
        start_number: int | None = None,
    ) -> list[QuestionRecord]:
        """
        Validate and store question documents for an exam.

        Documents without an explicit `number` are numbered sequentially
        after the exam's current highest number, or from `start_number`.
        All documents are stored in one transaction; any invalid document
        rejects the whole batch.
        """
        if start_number is not None and start_number < 1:
            raise ValidationError("Start number must be at least 1", {"startNumber": start_number})
        parsed = parse_questions(documents)

        with self.storage.transaction() as tx:
            require_exam(tx, exam_id)
            next_number = (
                start_number if start_number is not None else tx.max_question_number(exam_id) + 1
            )

            planned: list[tuple[int, QuestionData]] = []
            for data in parsed:
                if data.number is None:
                    number = next_number
                else:
                    number = data.number
                next_number = max(next_number, number + 1)
                planned.append((number, data))

            numbers = [number for number, _ in planned]
            duplicates = sorted({n for n in numbers if numbers.count(n) > 1})
            existing = [n for n in numbers if tx.get_question(exam_id, n) is not None]
            if duplicates or existing:
                raise ValidationError(
                    "Question numbers must be unique within an exam",
                    {"duplicates": duplicates, "existing": sorted(existing)},
                )

            stored = [
                tx.add_question(exam_id, number, **data.to_storage_fields())
                for number, data in planned
            ]

        logger.info(f"Ingested {len(stored)} questions into exam {exam_id}")
        return stored
