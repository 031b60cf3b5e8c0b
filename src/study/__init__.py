"""
Study Engine Module.

Provides:
- SM-2 scheduling (sm2)
- Question selection, grading and bookmarks (session_engine)
- Per-exam and per-section statistics (stats_aggregator)

Only the storage-free pieces are re-exported here; the storage layer imports
the records from this package, so the engines are imported from their modules.
"""

from src.study.models import (
    INITIAL_EASE_FACTOR,
    AnswerRecord,
    BookmarkRecord,
    CardState,
    ExamRecord,
    QuestionRecord,
)
from src.study.sm2 import SM2Config, SM2Scheduler, schedule, validate_grade

__all__ = [
    "INITIAL_EASE_FACTOR",
    "ExamRecord",
    "QuestionRecord",
    "AnswerRecord",
    "CardState",
    "BookmarkRecord",
    "SM2Config",
    "SM2Scheduler",
    "schedule",
    "validate_grade",
]
