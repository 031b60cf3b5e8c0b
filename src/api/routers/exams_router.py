"""
Exams router.

Endpoints for:
- Exam provisioning (create, list, delete)
- Exam detail with progress statistics
- Question ingestion
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Body, Depends, Query, status
from pydantic import Field

from src.api.dependencies import get_question_bank, get_stats_aggregator
from src.api.schemas import CamelModel, QuestionResponse
from src.bank.question_bank import QuestionBank
from src.study.stats_aggregator import StatsAggregator

router = APIRouter()


# ========================================
# Request/Response Models
# ========================================


class ExamCreateRequest(CamelModel):
    """Request model for creating an exam."""

    name: str = Field(..., description="Exam name (1-200 characters)")
    description: str | None = Field(None, description="Optional description")


class ExamResponse(CamelModel):
    id: str
    name: str
    description: str | None
    created_at: datetime
    updated_at: datetime


class ExamOverviewResponse(ExamResponse):
    """One row of the exam list."""

    question_count: int
    answered_count: int
    accuracy: float
    due_for_review: int


class SectionStatsResponse(CamelModel):
    section_id: str
    section: str
    total: int
    correct: int
    accuracy: int


class ExamDetailResponse(ExamResponse):
    """Exam with its progress statistics."""

    total_questions: int
    answered: int
    correct: int
    accuracy: float
    due_for_review: int
    by_section: list[SectionStatsResponse]


class DeleteExamResponse(CamelModel):
    deleted: dict[str, int]


class IngestResponse(CamelModel):
    ingested: int
    numbers: list[int]


# ========================================
# Exam Endpoints
# ========================================


@router.get("", response_model=list[ExamOverviewResponse], summary="List exams")
def list_exams(
    stats: StatsAggregator = Depends(get_stats_aggregator),
) -> list[ExamOverviewResponse]:
    """List every exam with question count, accuracy and due reviews, newest first."""
    return [ExamOverviewResponse.model_validate(row) for row in stats.exam_overview()]


@router.post(
    "",
    response_model=ExamResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create exam",
)
def create_exam(
    request: ExamCreateRequest,
    bank: QuestionBank = Depends(get_question_bank),
) -> ExamResponse:
    exam = bank.create_exam(request.name, request.description)
    return ExamResponse.model_validate(exam)


@router.get("/{exam_id}", response_model=ExamDetailResponse, summary="Exam detail and stats")
def get_exam(
    exam_id: str,
    bank: QuestionBank = Depends(get_question_bank),
    stats: StatsAggregator = Depends(get_stats_aggregator),
) -> ExamDetailResponse:
    exam = bank.get_exam(exam_id)
    exam_stats = stats.exam_stats(exam_id)
    return ExamDetailResponse(
        id=exam.id,
        name=exam.name,
        description=exam.description,
        created_at=exam.created_at,
        updated_at=exam.updated_at,
        total_questions=exam_stats.total_questions,
        answered=exam_stats.answered,
        correct=exam_stats.correct,
        accuracy=exam_stats.accuracy,
        due_for_review=exam_stats.due_for_review,
        by_section=[SectionStatsResponse.model_validate(s) for s in exam_stats.by_section],
    )


@router.delete("/{exam_id}", response_model=DeleteExamResponse, summary="Delete exam")
def delete_exam(
    exam_id: str,
    bank: QuestionBank = Depends(get_question_bank),
) -> DeleteExamResponse:
    """Delete an exam together with its questions, answers, cards and bookmarks."""
    return DeleteExamResponse(deleted=bank.delete_exam(exam_id))


# ========================================
# Question Endpoints
# ========================================


@router.get("/{exam_id}/questions", response_model=list[QuestionResponse], summary="List questions")
def list_questions(
    exam_id: str,
    bank: QuestionBank = Depends(get_question_bank),
) -> list[QuestionResponse]:
    return [QuestionResponse.from_record(q) for q in bank.list_questions(exam_id)]


@router.post(
    "/{exam_id}/questions",
    response_model=IngestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Ingest questions",
)
def ingest_questions(
    exam_id: str,
    documents: list[dict[str, Any]] = Body(..., description="Question documents"),
    start_number: int | None = Query(None, alias="startNumber", ge=1),
    bank: QuestionBank = Depends(get_question_bank),
) -> IngestResponse:
    """
    Validate and store question documents.

    Every document is validated before any is stored; one invalid document
    rejects the whole request.
    """
    stored = bank.ingest(exam_id, documents, start_number=start_number)
    return IngestResponse(ingested=len(stored), numbers=[q.number for q in stored])
