"""
Unit tests for the Stats Aggregator.
"""

from datetime import timedelta

import pytest

from src.core.cancellation import CancellationToken
from src.core.errors import NotFound, OperationCancelled
from src.study.session_engine import SessionEngine
from src.study.stats_aggregator import StatsAggregator, answer_accuracy


@pytest.fixture
def engine(storage, settings):
    return SessionEngine(storage, settings=settings)


@pytest.fixture
def aggregator(storage):
    return StatsAggregator(storage)


@pytest.fixture
def ten_question_exam(bank, question_doc):
    exam = bank.create_exam("Ten")
    documents = [
        question_doc(section="Routing" if n <= 5 else None, section_id="3.1" if n <= 5 else None)
        for n in range(1, 11)
    ]
    bank.ingest(exam.id, documents)
    return exam


def answer(engine, bank, exam, number, keys, now):
    return engine.submit_answer(bank.get(exam.id, number).id, keys, 100, now=now)


class TestExamStats:
    def test_four_answered_three_correct(self, aggregator, engine, bank, ten_question_exam, now):
        exam = ten_question_exam
        answer(engine, bank, exam, 1, ["A"], now)
        answer(engine, bank, exam, 2, ["A"], now)
        answer(engine, bank, exam, 3, ["A"], now)
        answer(engine, bank, exam, 6, ["B"], now)

        stats = aggregator.exam_stats(exam.id, now)

        assert stats.total_questions == 10
        assert stats.answered == 4
        assert stats.correct == 3
        assert stats.accuracy == 75.0

    def test_unanswered_questions_count_in_section_total_only(
        self, aggregator, engine, bank, ten_question_exam, now
    ):
        exam = ten_question_exam
        answer(engine, bank, exam, 1, ["A"], now)
        answer(engine, bank, exam, 6, ["B"], now)

        stats = aggregator.exam_stats(exam.id, now)
        routing, unknown = stats.by_section

        assert (routing.section_id, routing.total, routing.correct, routing.accuracy) == (
            "3.1",
            5,
            1,
            20,
        )
        assert (unknown.section_id, unknown.section) == ("Unknown", "Unknown")
        assert (unknown.total, unknown.correct, unknown.accuracy) == (5, 0, 0)

    def test_section_correct_counts_distinct_questions(self, aggregator, engine, bank, exam, now):
        answer(engine, bank, exam, 1, ["A"], now)
        answer(engine, bank, exam, 1, ["A"], now + timedelta(minutes=1))
        answer(engine, bank, exam, 1, ["B"], now + timedelta(minutes=2))

        stats = aggregator.exam_stats(exam.id, now)
        fundamentals = stats.by_section[0]

        assert stats.answered == 3
        assert stats.correct == 2
        assert stats.accuracy == 66.7
        assert (fundamentals.total, fundamentals.correct, fundamentals.accuracy) == (2, 1, 50)

    def test_sections_ordered_by_section_id_nulls_last(self, aggregator, exam, now):
        stats = aggregator.exam_stats(exam.id, now)

        assert [s.section_id for s in stats.by_section] == ["1.1", "2.1", "Unknown"]

    def test_due_for_review_uses_now(self, aggregator, engine, bank, exam, now):
        answer(engine, bank, exam, 1, ["A"], now)
        answer(engine, bank, exam, 2, ["B"], now)

        assert aggregator.exam_stats(exam.id, now).due_for_review == 0
        assert aggregator.exam_stats(exam.id, now + timedelta(days=1)).due_for_review == 2

    def test_empty_exam(self, aggregator, bank, now):
        exam = bank.create_exam("Empty")

        stats = aggregator.exam_stats(exam.id, now)

        assert stats.total_questions == 0
        assert stats.accuracy == 0.0
        assert stats.by_section == []

    def test_unknown_exam(self, aggregator, now):
        with pytest.raises(NotFound):
            aggregator.exam_stats("missing", now)

    def test_cancelled_token_aborts(self, aggregator, exam, now):
        token = CancellationToken()
        token.cancel("user navigated away")

        with pytest.raises(OperationCancelled):
            aggregator.exam_stats(exam.id, now, cancel=token)

    def test_caller_timeout_is_forwarded(self, aggregator, storage, exam, now, monkeypatch):
        timeouts = []
        real_transaction = storage.transaction

        def recording(timeout=None):
            timeouts.append(timeout)
            return real_transaction(timeout=timeout)

        monkeypatch.setattr(storage, "transaction", recording)

        aggregator.exam_stats(exam.id, now, timeout=1.5)
        aggregator.exam_overview(now, timeout=1.5)

        assert timeouts == [1.5, 1.5]


class TestOverview:
    def test_one_row_per_exam_newest_first(self, aggregator, engine, bank, exam, now):
        answer(engine, bank, exam, 1, ["A"], now)
        newer = bank.create_exam("Newer")

        rows = aggregator.exam_overview(now)

        assert [row.id for row in rows] == [newer.id, exam.id]
        assert rows[1].question_count == 5
        assert rows[1].answered_count == 1
        assert rows[1].accuracy == 100.0
        assert rows[0].question_count == 0


class TestAccuracy:
    @pytest.mark.parametrize(
        "correct,answered,expected",
        [(0, 0, 0.0), (1, 3, 33.3), (2, 3, 66.7), (1, 8, 12.5), (3, 4, 75.0)],
    )
    def test_one_decimal_half_up(self, correct, answered, expected):
        assert answer_accuracy(correct, answered) == expected
