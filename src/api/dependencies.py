"""FastAPI dependencies: storage handle and engine construction."""

from __future__ import annotations

from fastapi import Request

from config import Settings
from src.bank.question_bank import QuestionBank
from src.db.storage import StudyStorage
from src.progress.codec import ProgressCodec
from src.study.session_engine import SessionEngine
from src.study.stats_aggregator import StatsAggregator


def get_storage(request: Request) -> StudyStorage:
    """Storage handle created in the application lifespan."""
    return request.app.state.storage


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_question_bank(request: Request) -> QuestionBank:
    return QuestionBank(get_storage(request))


def get_session_engine(request: Request) -> SessionEngine:
    return SessionEngine(get_storage(request), settings=get_app_settings(request))


def get_stats_aggregator(request: Request) -> StatsAggregator:
    return StatsAggregator(get_storage(request))


def get_progress_codec(request: Request) -> ProgressCodec:
    return ProgressCodec(get_storage(request), settings=get_app_settings(request))
