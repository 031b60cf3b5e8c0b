"""
SM-2 Spaced Repetition Scheduler.

Pure scheduling: given a card's current state and a recall grade, compute the
next state. No I/O and no clock reads; the caller supplies `now`.

SM-2 Grade Scale:
0 - Complete blackout, wrong response
1 - Incorrect, but upon seeing answer remembered
2 - Incorrect, but answer seemed easy to recall
3 - Correct, but with significant difficulty
4 - Correct, with some hesitation
5 - Correct, with perfect recall
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from src.core.clock import round_half_up
from src.core.errors import ValidationError
from src.study.models import INITIAL_EASE_FACTOR, CardState

MIN_GRADE = 0
MAX_GRADE = 5
PASSING_GRADE = 3


@dataclass(frozen=True)
class SM2Config:
    """Configuration for SM-2 algorithm."""

    initial_easiness: float = INITIAL_EASE_FACTOR
    minimum_easiness: float = 1.3
    first_interval: int = 1  # Days for first review
    second_interval: int = 6  # Days for second review


def validate_grade(grade: object) -> int:
    """Reject anything that is not an integer in 0..5."""
    if isinstance(grade, bool) or not isinstance(grade, int):
        raise ValidationError("Grade must be an integer", {"grade": repr(grade)})
    if not MIN_GRADE <= grade <= MAX_GRADE:
        raise ValidationError(
            f"Grade must be between {MIN_GRADE} and {MAX_GRADE}", {"grade": grade}
        )
    return grade


class SM2Scheduler:
    """
    Implements the SM-2 spaced repetition algorithm.

    The SuperMemo 2 algorithm calculates optimal review intervals
    based on performance history. Each card has:
    - Easiness Factor (EF): How easy the item is (2.5 default, min 1.3)
    - Interval: Days until next review
    - Repetitions: Consecutive correct recalls
    """

    def __init__(self, config: SM2Config | None = None):
        self.config = config or SM2Config()

    def schedule(self, state: CardState, grade: int, now: datetime) -> CardState:
        """
        Calculate the card state after a review.

        Args:
            state: Current card state (repetitions, ease factor, interval)
            grade: Recall grade (0-5)
            now: Review time; next_review is now + interval days

        Returns:
            New CardState carrying last_grade=grade. The version of the input
            is kept so the write can be checked against it.
        """
        validate_grade(grade)

        # EF' = EF + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02))
        ef_delta = 0.1 - (5 - grade) * (0.08 + (5 - grade) * 0.02)
        new_ef = max(self.config.minimum_easiness, state.ease_factor + ef_delta)

        if grade < PASSING_GRADE:
            # Failed - reset progression, keep the lowered ease
            new_repetitions = 0
            new_interval = self.config.first_interval
        else:
            new_repetitions = state.repetitions + 1

            if new_repetitions == 1:
                new_interval = self.config.first_interval
            elif new_repetitions == 2:
                new_interval = self.config.second_interval
            else:
                new_interval = round_half_up(state.interval_days * new_ef)

        return CardState(
            question_id=state.question_id,
            repetitions=new_repetitions,
            ease_factor=new_ef,
            interval_days=new_interval,
            next_review=now + timedelta(days=new_interval),
            last_grade=grade,
            version=state.version,
            question_number=state.question_number,
        )

    def grade_from_correctness(self, is_correct: bool) -> int:
        """Binary grading: perfect recall when correct, blackout when not."""
        return MAX_GRADE if is_correct else MIN_GRADE


_default_scheduler = SM2Scheduler()


def schedule(state: CardState, grade: int, now: datetime) -> CardState:
    """Module-level shortcut using the default SM-2 configuration."""
    return _default_scheduler.schedule(state, grade, now)
