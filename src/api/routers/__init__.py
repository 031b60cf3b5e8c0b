"""API routers for examdeck."""

from src.api.routers import exams_router, progress_router, study_router

__all__ = [
    "exams_router",
    "study_router",
    "progress_router",
]
