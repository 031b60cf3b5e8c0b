"""
Unit tests for question validation and the Question Bank.
"""

import pytest

from src.bank.question_bank import QuestionBank, parse_questions
from src.bank.schemas import QuestionData
from src.core.errors import NotFound, ValidationError


class TestQuestionData:
    def test_camel_case_document(self, question_doc):
        data = QuestionData.model_validate(
            question_doc(
                section="Security",
                section_id=5.1,
                whyWrong={"B": "Not quite"},
                imageUrl="https://example.com/q.png",
                confidence="high",
            )
        )

        assert data.section_id == "5.1"
        assert data.why_wrong == {"B": "Not quite"}
        assert data.image_url == "https://example.com/q.png"
        assert data.confidence == "high"

    def test_blank_metadata_becomes_none(self, question_doc):
        data = QuestionData.model_validate(question_doc(section="  ", section_id=""))

        assert data.section is None
        assert data.section_id is None

    def test_duplicate_correct_keys_collapse(self, question_doc):
        data = QuestionData.model_validate(question_doc(correct=("A", "A", "C")))

        assert data.correct == ["A", "C"]

    @pytest.mark.parametrize(
        "overrides",
        [
            {"correct": []},
            {"correct": ["Z"]},
            {"text": "   "},
            {"options": {}},
            {"confidence": "certain"},
            {"number": 0},
        ],
    )
    def test_invalid_documents_rejected(self, question_doc, overrides):
        document = question_doc()
        document.update(overrides)

        with pytest.raises(ValidationError) as exc:
            parse_questions([document])

        assert exc.value.details["invalid"][0]["index"] == 0

    def test_all_invalid_documents_reported(self, question_doc):
        documents = [question_doc(), question_doc(correct=["Z"]), question_doc(correct=[])]

        with pytest.raises(ValidationError) as exc:
            parse_questions(documents)

        assert [item["index"] for item in exc.value.details["invalid"]] == [1, 2]


class TestIngest:
    def test_sequential_numbering_after_existing(self, bank, exam, question_doc):
        stored = bank.ingest(exam.id, [question_doc(), question_doc()])

        assert [q.number for q in stored] == [6, 7]
        assert bank.count(exam.id) == 7

    def test_start_number(self, bank, exam, question_doc):
        stored = bank.ingest(exam.id, [question_doc(), question_doc()], start_number=100)

        assert [q.number for q in stored] == [100, 101]

    def test_existing_number_rejected(self, bank, exam, question_doc):
        with pytest.raises(ValidationError) as exc:
            bank.ingest(exam.id, [question_doc(3)])

        assert exc.value.details["existing"] == [3]

    def test_duplicate_numbers_in_batch_rejected(self, bank, exam, question_doc):
        with pytest.raises(ValidationError) as exc:
            bank.ingest(exam.id, [question_doc(10), question_doc(10)])

        assert exc.value.details["duplicates"] == [10]

    def test_invalid_document_stores_nothing(self, bank, exam, question_doc):
        with pytest.raises(ValidationError):
            bank.ingest(exam.id, [question_doc(), question_doc(correct=["Q"])])

        assert bank.count(exam.id) == 5

    def test_unknown_exam(self, bank, question_doc):
        with pytest.raises(NotFound):
            bank.ingest("missing", [question_doc()])


class TestLookup:
    def test_get_by_number(self, bank, exam):
        question = bank.get(exam.id, 4)

        assert question.number == 4
        assert question.correct == frozenset({"A", "C"})
        assert question.section_id == "2.1"

    def test_get_missing_number(self, bank, exam):
        with pytest.raises(NotFound):
            bank.get(exam.id, 99)

    def test_list_is_ordered_by_number(self, bank, exam):
        assert [q.number for q in bank.list_questions(exam.id)] == [1, 2, 3, 4, 5]

    def test_get_by_id(self, bank, exam):
        question = bank.get(exam.id, 2)

        assert bank.get_by_id(question.id) == question

    def test_correctness_is_set_equality(self, bank, exam):
        question = bank.get(exam.id, 4)

        assert question.is_correct({"C", "A"})
        assert not question.is_correct({"A"})
        assert not question.is_correct(set())


class TestExams:
    def test_create_trims_name(self, storage):
        bank = QuestionBank(storage)

        exam = bank.create_exam("  Security+  ", "")

        assert exam.name == "Security+"
        assert exam.description is None
        assert bank.get_exam(exam.id) == exam

    @pytest.mark.parametrize("name", ["", "   ", "x" * 201])
    def test_invalid_name_rejected(self, storage, name):
        with pytest.raises(ValidationError):
            QuestionBank(storage).create_exam(name)

    def test_list_exams(self, bank, exam):
        assert [e.id for e in bank.list_exams()] == [exam.id]

    def test_delete_unknown_exam(self, bank):
        with pytest.raises(NotFound):
            bank.delete_exam("missing")
