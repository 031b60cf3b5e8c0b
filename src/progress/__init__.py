"""
Progress snapshots - versioned export and idempotent re-import of study history.
"""

from src.progress.codec import ImportReport, ProgressCodec
from src.progress.schemas import AnswerEntry, BookmarkEntry, ProgressSnapshot, SrsCardEntry

__all__ = [
    "ProgressCodec",
    "ImportReport",
    "ProgressSnapshot",
    "AnswerEntry",
    "SrsCardEntry",
    "BookmarkEntry",
]
