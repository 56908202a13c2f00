"""
End-to-end tests for the session routes.

The quiz service is mocked with httpx MockTransport (start returns the
three-question quiz, submit answers 501) and sessions use a ManualClock, so
nothing here depends on wall-clock time.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from quiz_engine.clock import ManualClock
from quiz_engine.config import Settings
from quiz_engine.deps import get_quiz_client, get_registry
from quiz_engine.main import app
from quiz_engine.registry import SessionRegistry


@pytest.fixture
def registry(test_engine):
    registry = SessionRegistry(Settings(), engine=test_engine, clock_factory=ManualClock)
    yield registry
    registry.close()


@pytest.fixture
def client(registry, quiz_client):
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_quiz_client] = lambda: quiz_client
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def session_id(client):
    response = client.post("/quizzes/quiz-js-basics/sessions")
    assert response.status_code == 201
    return response.json()["session"]["session_id"]


def test_home(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


class TestCreateSession:
    def test_returns_questions_without_answers(self, client):
        response = client.post("/quizzes/quiz-js-basics/sessions")

        assert response.status_code == 201
        body = response.json()
        assert body["title"] == "JavaScript Basics"
        assert body["attempt_number"] == 2
        assert body["total_points"] == 6
        assert body["session"]["state"] == "not_started"
        assert body["session"]["remaining_seconds"] == 60
        assert [q["id"] for q in body["questions"]] == ["q1", "q2", "q3"]
        assert all("correct_answer" not in q for q in body["questions"])

    def test_initiation_service_down(self, client, quiz_service):
        quiz_service.start = httpx.ConnectError("refused")

        response = client.post("/quizzes/quiz-js-basics/sessions")

        assert response.status_code == 502

    def test_initiation_service_timeout(self, client, quiz_service):
        quiz_service.start = httpx.ReadTimeout("slow")

        response = client.post("/quizzes/quiz-js-basics/sessions")

        assert response.status_code == 504


class TestSessionFlow:
    def test_answer_navigate_signal_submit(self, client, session_id, quiz_service):
        # Given: a started session with fullscreen granted
        started = client.post(f"/sessions/{session_id}/start", json={"locked_mode_granted": True})
        assert started.status_code == 200
        assert started.json()["state"] == "in_progress"
        assert started.json()["locked_mode"] is True

        # When: the student answers, navigates and switches tabs
        r = client.put(f"/sessions/{session_id}/answers/q1", json={"value": "push()"})
        assert r.json() == {"question_id": "q1", "value": "push()", "answered_count": 1}
        client.put(f"/sessions/{session_id}/answers/q2", json={"value": "true"})

        r = client.post(f"/sessions/{session_id}/navigate", json={"index": 7})
        assert r.json()["current_question_index"] == 2

        r = client.post(f"/sessions/{session_id}/signals", json={"type": "visibilitychange", "hidden": True})
        assert r.json() == {"prevent_default": False, "recorded": "tab-hidden", "integrity_incidents": 1}
        r = client.post(f"/sessions/{session_id}/signals", json={"type": "contextmenu"})
        assert r.json()["prevent_default"] is True

        # Then: submission falls back to local scoring (service answers 501)
        r = client.post(f"/sessions/{session_id}/submit")
        assert r.status_code == 200
        body = r.json()
        assert body["triggered"] is True
        assert body["session"]["state"] == "completed"
        assert body["session"]["locked_mode"] is False
        assert body["result"]["provenance"] == "local-fallback"
        assert body["result"]["points_earned"] == 2
        assert body["result"]["total_points"] == 6
        assert body["result"]["integrity_incidents"] == 2
        assert body["result"]["ungraded_question_ids"] == ["q3"]
        assert len(quiz_service.submissions()) == 1

        # And: submitting again is a no-op returning the same result
        again = client.post(f"/sessions/{session_id}/submit")
        assert again.json()["triggered"] is False
        assert again.json()["result"] == body["result"]
        assert len(quiz_service.submissions()) == 1

        log = client.get(f"/sessions/{session_id}/integrity").json()
        assert [e["kind"] for e in log] == ["tab-hidden", "context-menu-blocked"]

        r = client.get(f"/sessions/{session_id}/result")
        assert r.status_code == 200
        assert r.json()["percentage"] == pytest.approx(33.33)

    def test_start_without_body_records_advisory(self, client, session_id):
        r = client.post(f"/sessions/{session_id}/start")

        assert r.status_code == 200
        assert r.json()["locked_mode"] is False
        assert r.json()["advisories"][0].startswith("locked-mode-denied")

    def test_read_state(self, client, session_id):
        r = client.get(f"/sessions/{session_id}")
        assert r.status_code == 200
        assert r.json()["remaining_display"] == "01:00"


class TestMisuse:
    def test_unknown_session(self, client):
        assert client.get("/sessions/does-not-exist").status_code == 404

    def test_answer_before_start(self, client, session_id):
        r = client.put(f"/sessions/{session_id}/answers/q1", json={"value": "push()"})
        assert r.status_code == 409

    def test_double_start(self, client, session_id):
        client.post(f"/sessions/{session_id}/start")
        assert client.post(f"/sessions/{session_id}/start").status_code == 409

    def test_unknown_question(self, client, session_id):
        client.post(f"/sessions/{session_id}/start")
        r = client.put(f"/sessions/{session_id}/answers/q99", json={"value": "x"})
        assert r.status_code == 404

    def test_answer_after_completion(self, client, session_id):
        client.post(f"/sessions/{session_id}/start")
        client.post(f"/sessions/{session_id}/submit")
        r = client.put(f"/sessions/{session_id}/answers/q1", json={"value": "pop()"})
        assert r.status_code == 409

    def test_result_before_completion(self, client, session_id):
        assert client.get(f"/sessions/{session_id}/result").status_code == 409


class TestRelease:
    def test_only_completed_sessions_can_be_released(self, client, session_id, registry):
        assert client.delete(f"/sessions/{session_id}").status_code == 409

        client.post(f"/sessions/{session_id}/start")
        client.post(f"/sessions/{session_id}/submit")

        assert client.delete(f"/sessions/{session_id}").status_code == 204
        assert session_id not in registry
        assert client.get(f"/sessions/{session_id}").status_code == 404

    def test_reading_the_result_releases_the_session(self, client, session_id, registry):
        client.post(f"/sessions/{session_id}/start")
        client.post(f"/sessions/{session_id}/submit")

        assert client.get(f"/sessions/{session_id}/result").status_code == 200
        assert session_id not in registry
        assert client.get(f"/sessions/{session_id}/result").status_code == 404


class TestResume:
    def test_saved_answers_return_after_restart(self, client, session_id, registry, test_engine):
        # Given: an answer saved before the process goes away
        client.post(f"/sessions/{session_id}/start")
        client.put(f"/sessions/{session_id}/answers/q1", json={"value": "push()"})
        registry.flush()

        # When: a fresh registry serves the same attempt
        restarted = SessionRegistry(Settings(), engine=test_engine, clock_factory=ManualClock)
        app.dependency_overrides[get_registry] = lambda: restarted
        try:
            new_id = client.post("/quizzes/quiz-js-basics/sessions").json()["session"]["session_id"]
            assert new_id != session_id
            client.post(f"/sessions/{new_id}/start")

            # Then: the answer is back and counts towards the score
            r = client.put(f"/sessions/{new_id}/answers/q2", json={"value": "false"})
            assert r.json()["answered_count"] == 2
            result = client.post(f"/sessions/{new_id}/submit").json()["result"]
            assert result["points_earned"] == 3
        finally:
            restarted.close()
