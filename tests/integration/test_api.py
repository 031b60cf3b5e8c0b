"""
Integration Tests for the HTTP API.

Drives the FastAPI app end to end over an in-memory SQLite database.
"""

import json

import pytest
from fastapi.testclient import TestClient

from src.api.main import create_app
from src.core.errors import StorageUnavailable
from src.study.session_engine import SessionEngine

pytestmark = pytest.mark.integration


QUESTIONS = [
    {
        "text": "Which layer routes packets?",
        "options": {"A": "Network", "B": "Transport", "C": "Session"},
        "correct": ["A"],
        "section": "OSI",
        "sectionId": "1.2",
        "explanation": "Routing is a layer 3 function.",
    },
    {
        "text": "Which are private ranges?",
        "options": {"A": "10.0.0.0/8", "B": "8.8.8.0/24", "C": "192.168.0.0/16"},
        "correct": ["A", "C"],
        "section": "Addressing",
        "sectionId": "1.6",
    },
    {
        "text": "Default OSPF cost reference bandwidth?",
        "options": {"A": "10 Mbps", "B": "100 Mbps"},
        "correct": ["B"],
    },
]


@pytest.fixture
def client(settings, storage):
    app = create_app(settings=settings, storage=storage)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def exam_id(client):
    response = client.post("/api/exams", json={"name": "CCNA", "description": "Practice"})
    assert response.status_code == 201
    exam_id = response.json()["id"]

    response = client.post(f"/api/exams/{exam_id}/questions", json=QUESTIONS)
    assert response.status_code == 201
    assert response.json() == {"ingested": 3, "numbers": [1, 2, 3]}
    return exam_id


def answer(client, exam_id, selected):
    question = client.get(f"/api/exams/{exam_id}/study/next").json()["question"]
    return client.post(
        f"/api/exams/{exam_id}/study/answers",
        json={"questionId": question["id"], "selected": selected, "elapsedMs": 900},
    )


class TestHealth:
    def test_root(self, client):
        assert client.get("/").json()["service"] == "examdeck"

    def test_health_ok(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["components"]["database"] == "ok"

    def test_health_down(self, client, storage, monkeypatch):
        monkeypatch.setattr(storage, "health", lambda: ("error", "connection refused"))

        response = client.get("/api/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"


class TestExams:
    def test_list_overview(self, client, exam_id):
        rows = client.get("/api/exams").json()

        assert rows[0]["id"] == exam_id
        assert rows[0]["questionCount"] == 3
        assert rows[0]["answeredCount"] == 0
        assert rows[0]["dueForReview"] == 0

    def test_detail_shape(self, client, exam_id):
        answer(client, exam_id, ["A"])
        answer(client, exam_id, ["A"])

        body = client.get(f"/api/exams/{exam_id}").json()

        assert body["name"] == "CCNA"
        assert body["totalQuestions"] == 3
        assert body["answered"] == 2
        assert body["correct"] == 1
        assert body["accuracy"] == 50.0
        assert body["dueForReview"] == 0
        assert body["bySection"][0] == {
            "sectionId": "1.2",
            "section": "OSI",
            "total": 1,
            "correct": 1,
            "accuracy": 100,
        }
        assert body["bySection"][-1]["sectionId"] == "Unknown"

    def test_create_validation_error(self, client):
        response = client.post("/api/exams", json={"name": "   "})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_missing_exam_is_404(self, client):
        response = client.get("/api/exams/nope")

        assert response.status_code == 404
        assert response.json()["error"] == {
            "code": "NOT_FOUND",
            "message": "Exam not found",
            "details": {"examId": "nope"},
        }

    def test_invalid_questions_rejected_as_batch(self, client, exam_id):
        response = client.post(
            f"/api/exams/{exam_id}/questions",
            json=[QUESTIONS[0], {"text": "Broken", "options": {"A": "x"}, "correct": ["B"]}],
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"]["invalid"][0]["index"] == 1
        assert len(client.get(f"/api/exams/{exam_id}/questions").json()) == 3

    def test_delete_cascades(self, client, exam_id):
        answer(client, exam_id, ["A"])
        client.put(f"/api/exams/{exam_id}/bookmarks/2")

        response = client.delete(f"/api/exams/{exam_id}")

        assert response.json()["deleted"] == {
            "questions": 3,
            "answers": 1,
            "srsCards": 1,
            "bookmarks": 1,
        }
        assert client.get(f"/api/exams/{exam_id}").status_code == 404


class TestStudy:
    def test_next_then_grade(self, client, exam_id):
        body = client.get(f"/api/exams/{exam_id}/study/next").json()
        assert body["complete"] is False
        assert body["question"]["number"] == 1

        response = answer(client, exam_id, ["A"])

        assert response.status_code == 201
        result = response.json()
        assert result["correct"] is True
        assert result["grade"] == 5
        assert result["correctKeys"] == ["A"]
        assert result["card"]["intervalDays"] == 1
        assert result["card"]["repetitions"] == 1

    def test_complete_when_all_scheduled(self, client, exam_id):
        for _ in range(3):
            answer(client, exam_id, ["A"])

        assert client.get(f"/api/exams/{exam_id}/study/next").json() == {
            "complete": True,
            "question": None,
        }

    def test_unknown_key_is_400(self, client, exam_id):
        response = answer(client, exam_id, ["Z"])

        assert response.status_code == 400
        assert response.json()["error"]["details"]["unknownKeys"] == ["Z"]

    def test_grade_out_of_range_is_400(self, client, exam_id):
        question = client.get(f"/api/exams/{exam_id}/study/next").json()["question"]

        response = client.post(
            f"/api/exams/{exam_id}/study/answers",
            json={"questionId": question["id"], "selected": ["A"], "grade": 9},
        )

        assert response.status_code == 400

    def test_storage_outage_is_503_with_retry_after(self, client, exam_id, monkeypatch):
        def unavailable(*args, **kwargs):
            raise StorageUnavailable("Storage unavailable")

        monkeypatch.setattr(SessionEngine, "next_question", unavailable)

        response = client.get(f"/api/exams/{exam_id}/study/next")

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "1"
        assert response.json()["error"]["code"] == "STORAGE_UNAVAILABLE"

    def test_bookmarks(self, client, exam_id):
        assert client.put(f"/api/exams/{exam_id}/bookmarks/3").json()["questionNumber"] == 3
        assert [b["questionNumber"] for b in client.get(f"/api/exams/{exam_id}/bookmarks").json()] == [3]

        assert client.delete(f"/api/exams/{exam_id}/bookmarks/3").json() == {"removed": True}
        assert client.get(f"/api/exams/{exam_id}/bookmarks").json() == []

    def test_bookmark_unknown_question(self, client, exam_id):
        assert client.put(f"/api/exams/{exam_id}/bookmarks/42").status_code == 404


class TestProgress:
    def test_export_import_round_trip(self, client, exam_id):
        answer(client, exam_id, ["A"])
        answer(client, exam_id, ["C"])
        client.put(f"/api/exams/{exam_id}/bookmarks/1")

        exported = client.get(f"/api/exams/{exam_id}/progress")
        assert exported.status_code == 200
        snapshot = exported.json()
        assert snapshot["version"] == "1.0.0"
        assert snapshot["examId"] == exam_id

        copy_id = client.post("/api/exams", json={"name": "CCNA copy"}).json()["id"]
        client.post(f"/api/exams/{copy_id}/questions", json=QUESTIONS)

        rejected = client.post(f"/api/exams/{copy_id}/progress", json=snapshot)
        assert rejected.status_code == 400

        imported = client.post(f"/api/exams/{copy_id}/progress?remap=true", json=snapshot)
        assert imported.status_code == 200
        assert imported.json()["imported"]["answersImported"] == 2

        original = client.get(f"/api/exams/{exam_id}").json()
        copy = client.get(f"/api/exams/{copy_id}").json()
        for key in ("answered", "correct", "accuracy", "dueForReview", "bySection"):
            assert copy[key] == original[key]

    def test_reimport_is_idempotent(self, client, exam_id):
        answer(client, exam_id, ["A"])
        snapshot = client.get(f"/api/exams/{exam_id}/progress").json()

        report = client.post(f"/api/exams/{exam_id}/progress", json=snapshot).json()["imported"]

        assert report["answersImported"] == 0
        assert report["answersSkipped"] == 1
        assert client.get(f"/api/exams/{exam_id}").json()["answered"] == 1

    def test_unsupported_version(self, client, exam_id):
        snapshot = json.loads(client.get(f"/api/exams/{exam_id}/progress").text)
        snapshot["version"] = "9.0.0"

        response = client.post(f"/api/exams/{exam_id}/progress", json=snapshot)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "UNSUPPORTED_FORMAT"
