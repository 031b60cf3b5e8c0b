"""
Study router.

Endpoints for:
- Next-question selection (due reviews first, then unseen questions)
- Answer grading with SM-2 rescheduling
- Bookmarks
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, status
from loguru import logger
from pydantic import Field

from src.api.dependencies import get_session_engine
from src.api.schemas import BookmarkResponse, CamelModel, CardResponse, QuestionResponse
from src.study.session_engine import SessionEngine

router = APIRouter()


# ========================================
# Request/Response Models
# ========================================


class NextQuestionResponse(CamelModel):
    """Next question to present, or complete=True when nothing is left."""

    complete: bool
    question: QuestionResponse | None = None


class AnswerSubmitRequest(CamelModel):
    """Request model for grading an answer."""

    question_id: int = Field(..., description="Question row id")
    selected: list[str] = Field(default_factory=list, description="Selected option keys")
    elapsed_ms: int = Field(0, description="Time spent on the question in milliseconds")
    grade: int | None = Field(None, description="Explicit 0-5 grade (default: 5 if correct, 0 if not)")


class AnswerSubmitResponse(CamelModel):
    """Grading outcome."""

    answer_id: int | None
    question_number: int | None
    correct: bool
    grade: int
    selected: list[str]
    correct_keys: list[str]
    answered_at: datetime
    card: CardResponse


# ========================================
# Study Endpoints
# ========================================


@router.get("/{exam_id}/study/next", response_model=NextQuestionResponse, summary="Next question")
def next_question(
    exam_id: str,
    engine: SessionEngine = Depends(get_session_engine),
) -> NextQuestionResponse:
    question = engine.next_question(exam_id)
    if question is None:
        return NextQuestionResponse(complete=True)
    return NextQuestionResponse(complete=False, question=QuestionResponse.from_record(question))


@router.post(
    "/{exam_id}/study/answers",
    response_model=AnswerSubmitResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Grade an answer",
)
def submit_answer(
    exam_id: str,
    request: AnswerSubmitRequest,
    engine: SessionEngine = Depends(get_session_engine),
) -> AnswerSubmitResponse:
    """
    Grade a submission and reschedule its card.

    The answer and the card update are stored atomically.
    """
    result = engine.submit_answer(
        request.question_id,
        request.selected,
        request.elapsed_ms,
        grade=request.grade,
        exam_id=exam_id,
    )
    logger.info(
        f"Answer for exam {exam_id} question #{result.answer.question_number}: "
        f"correct={result.correct}, next review in {result.card.interval_days}d"
    )
    return AnswerSubmitResponse(
        answer_id=result.answer.id,
        question_number=result.answer.question_number,
        correct=result.correct,
        grade=result.grade,
        selected=list(result.answer.selected),
        correct_keys=sorted(result.question.correct),
        answered_at=result.answer.answered_at,
        card=CardResponse.model_validate(result.card),
    )


# ========================================
# Bookmark Endpoints
# ========================================


@router.get("/{exam_id}/bookmarks", response_model=list[BookmarkResponse], summary="List bookmarks")
def list_bookmarks(
    exam_id: str,
    engine: SessionEngine = Depends(get_session_engine),
) -> list[BookmarkResponse]:
    return [BookmarkResponse.model_validate(b) for b in engine.list_bookmarks(exam_id)]


@router.put("/{exam_id}/bookmarks/{number}", response_model=BookmarkResponse, summary="Add bookmark")
def add_bookmark(
    exam_id: str,
    number: int,
    engine: SessionEngine = Depends(get_session_engine),
) -> BookmarkResponse:
    bookmark = engine.add_bookmark(exam_id, number)
    return BookmarkResponse(question_number=number, created_at=bookmark.created_at)


@router.delete("/{exam_id}/bookmarks/{number}", summary="Remove bookmark")
def remove_bookmark(
    exam_id: str,
    number: int,
    engine: SessionEngine = Depends(get_session_engine),
) -> dict[str, bool]:
    return {"removed": engine.remove_bookmark(exam_id, number)}
