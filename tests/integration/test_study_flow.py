"""
Integration Tests for the Study Flow.

Tests the core learning path against file-backed SQLite databases:
1. QuestionBank provisions an exam and ingests questions
2. StudySession walks due reviews and unseen questions over several days
3. StatsAggregator reports progress after the storage is reopened
4. ProgressCodec moves progress to a second database
"""

from datetime import timedelta

import pytest

from config import Settings
from src.bank.question_bank import QuestionBank
from src.db.storage import build_storage
from src.progress.codec import ProgressCodec
from src.study.session_engine import SessionEngine
from src.study.stats_aggregator import StatsAggregator

pytestmark = pytest.mark.integration


def make_settings(path) -> Settings:
    return Settings(_env_file=None, database_url=f"sqlite:///{path}")


@pytest.fixture
def database(tmp_path):
    """Open storage on a file database, yielding (settings, storage)."""
    opened = []

    def open_storage(name="study.db"):
        settings = make_settings(tmp_path / name)
        storage = build_storage(settings)
        storage.create_schema()
        opened.append(storage)
        return settings, storage

    yield open_storage

    for storage in opened:
        storage.close()


def seed(storage, question_doc):
    bank = QuestionBank(storage)
    exam = bank.create_exam("CCNA 200-301")
    bank.ingest(
        exam.id,
        [
            question_doc(section="Network Fundamentals", section_id="1.1"),
            question_doc(section="Network Fundamentals", section_id="1.1"),
            question_doc(section="IP Connectivity", section_id="3.1", correct=("A", "B")),
        ],
    )
    return exam


class TestMultiDayStudy:
    def test_reviews_come_back_on_schedule(self, database, question_doc, now):
        settings, storage = database()
        exam = seed(storage, question_doc)
        engine = SessionEngine(storage, settings=settings)

        # Day 0: see everything, miss question 3
        session = engine.start_session(exam.id)
        answers = {1: ["A"], 2: ["A"], 3: ["A"]}
        seen = []
        while (question := session.advance(now)) is not None:
            seen.append(question.number)
            session.submit(answers[question.number], 1500, now=now)

        assert seen == [1, 2, 3]
        assert session.is_complete
        assert session.answered == 3
        assert session.correct == 2

        # Day 1: all three are due, ties broken by number
        day1 = now + timedelta(days=1)
        session = engine.start_session(exam.id)
        seen = []
        while (question := session.advance(day1)) is not None:
            seen.append(question.number)
            session.submit(["A", "B"] if question.number == 3 else ["A"], 900, now=day1)

        assert seen == [1, 2, 3]

        # Day 2: only the relearned question is due; the others wait 6 days
        assert engine.next_question(exam.id, now + timedelta(days=2)).number == 3
        assert engine.next_question(exam.id, now + timedelta(days=6)).number == 3
        with storage.transaction() as tx:
            cards = {c.question_number: c for c in tx.iter_cards(exam.id)}
        assert cards[1].interval_days == 6
        assert cards[1].repetitions == 2
        assert cards[3].interval_days == 1
        assert cards[3].repetitions == 1

    def test_progress_survives_reopen(self, database, question_doc, now):
        settings, storage = database()
        exam = seed(storage, question_doc)
        engine = SessionEngine(storage, settings=settings)
        engine.submit_answer(QuestionBank(storage).get(exam.id, 1).id, ["A"], 10, now=now)
        engine.add_bookmark(exam.id, 2, now)
        storage.close()

        _, reopened = database()
        stats = StatsAggregator(reopened).exam_stats(exam.id, now + timedelta(days=1))

        assert stats.answered == 1
        assert stats.correct == 1
        assert stats.due_for_review == 1
        assert [b.question_number for b in SessionEngine(reopened).list_bookmarks(exam.id)] == [2]


class TestMoveProgress:
    def test_snapshot_moves_between_databases(self, database, question_doc, now):
        source_settings, source = database("laptop.db")
        target_settings, target = database("desktop.db")
        exam = seed(source, question_doc)
        engine = SessionEngine(source, settings=source_settings)
        bank = QuestionBank(source)
        for number, keys in ((1, ["A"]), (2, ["C"]), (3, ["A", "B"])):
            engine.submit_answer(bank.get(exam.id, number).id, keys, 700, now=now)

        raw = ProgressCodec.dumps(ProgressCodec(source, settings=source_settings).export(exam.id, now=now))

        target_exam = seed(target, question_doc)
        report = ProgressCodec(target, settings=target_settings).import_snapshot(
            target_exam.id, raw, remap=True
        )

        later = now + timedelta(days=1)
        expected = StatsAggregator(source).exam_stats(exam.id, later)
        actual = StatsAggregator(target).exam_stats(target_exam.id, later)
        assert report.answers_imported == 3
        assert (actual.answered, actual.correct, actual.accuracy, actual.due_for_review) == (
            expected.answered,
            expected.correct,
            expected.accuracy,
            expected.due_for_review,
        )
        assert actual.by_section == expected.by_section
