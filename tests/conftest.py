"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
Every storage-backed fixture runs on SQLite, so no external database is needed.
"""
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config import Settings  # noqa: E402
from src.bank.question_bank import QuestionBank  # noqa: E402
from src.db.storage import build_storage  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (SQLite database)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def settings():
    """Settings bound to a private in-memory SQLite database."""
    return Settings(_env_file=None, database_url="sqlite:///:memory:", log_level="DEBUG")


@pytest.fixture
def storage(settings):
    """Storage handle with tables created."""
    handle = build_storage(settings)
    handle.create_schema()
    yield handle
    handle.close()


@pytest.fixture
def now():
    """Fixed 'current time' for deterministic scheduling."""
    return datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_question(number=None, correct=("A",), section=None, section_id=None, **extra):
    """Build a question document with options A-D."""
    document = {
        "text": f"Question {number or '?'}",
        "options": {"A": "Alpha", "B": "Bravo", "C": "Charlie", "D": "Delta"},
        "correct": list(correct),
        "explanation": "Because.",
        "section": section,
        "sectionId": section_id,
    }
    if number is not None:
        document["number"] = number
    document.update(extra)
    return document


@pytest.fixture
def bank(storage):
    return QuestionBank(storage)


@pytest.fixture
def exam(bank):
    """An exam with five single-answer questions (correct key A) in two sections."""
    record = bank.create_exam("CCNA 200-301", "Networking fundamentals")
    bank.ingest(
        record.id,
        [
            make_question(1, section="Network Fundamentals", section_id="1.1"),
            make_question(2, section="Network Fundamentals", section_id="1.1"),
            make_question(3, section="Network Access", section_id="2.1"),
            make_question(4, correct=("A", "C"), section="Network Access", section_id="2.1"),
            make_question(5),
        ],
    )
    return record


@pytest.fixture
def question_doc():
    """Factory for question documents (see make_question)."""
    return make_question
