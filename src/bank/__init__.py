"""
Question Bank - immutable question records keyed by exam-scoped number.
"""

from src.bank.question_bank import QuestionBank, parse_questions, require_exam
from src.bank.schemas import QuestionData

__all__ = ["QuestionBank", "QuestionData", "parse_questions", "require_exam"]
