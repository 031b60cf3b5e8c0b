# SQLAlchemy models
from .base import Base
from .exam import (
    Answer,
    Bookmark,
    Exam,
    Question,
    SrsCard,
)

__all__ = [
    # Base
    "Base",
    # Exam study data
    "Exam",
    "Question",
    "Answer",
    "SrsCard",
    "Bookmark",
]
