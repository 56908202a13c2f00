import asyncio
import sys
from pathlib import Path

import httpx
import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine


def _ensure_app_on_path():
    repo_root = Path(__file__).resolve().parent.parent
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))
    return repo_root


_ensure_app_on_path()

from quiz_engine import store  # noqa: E402,F401  (registers tables)
from quiz_engine.clock import ManualClock  # noqa: E402
from quiz_engine.grading import OfflineGrader  # noqa: E402
from quiz_engine.models import (  # noqa: E402
    Provenance,
    Question,
    QuestionKind,
    QuestionOutcome,
    QuizMetadata,
    SubmissionResult,
)
from quiz_engine.session import SessionStateMachine  # noqa: E402
from quiz_engine.submission import SubmissionCoordinator  # noqa: E402
from quiz_engine.utils import elapsed_seconds  # noqa: E402

# ============================================================================
# STUB COLLABORATORS
# ============================================================================


class FakeGrader:
    """Stand-in for the remote grading service.

    Returns ``result`` (or a full-marks server result built from the payload),
    raises ``error`` if given, and sleeps ``delay`` seconds first.
    """

    def __init__(self, result=None, error=None, delay=0.0):
        self.result = result
        self.error = error
        self.delay = delay
        self.calls = []

    async def grade(self, payload):
        self.calls.append(payload)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.result is not None:
            return self.result
        return SubmissionResult(
            points_earned=6,
            total_points=6,
            outcomes=[
                QuestionOutcome(question_id=a.question_id, points_possible=0, correct=True)
                for a in payload.answers
            ],
            integrity_incidents=len(payload.integrity_events),
            elapsed_seconds=elapsed_seconds(payload.started_at, payload.submitted_at),
            provenance=Provenance.SERVER_GRADED,
            expired=payload.expired,
        )


class FakeDrafts:
    """In-memory draft sink."""

    def __init__(self, initial=None):
        self.data = {}
        if initial:
            self.data.update(initial)
        self.cleared = []

    def load(self, session_id):
        return dict(self.data.get(session_id, {}))

    def save(self, session_id, question_id, value):
        self.data.setdefault(session_id, {})[question_id] = value

    def clear(self, session_id):
        self.data.pop(session_id, None)
        self.cleared.append(session_id)


# ============================================================================
# QUIZZES
# ============================================================================


@pytest.fixture
def scenario_quiz() -> QuizMetadata:
    """3 questions: single-choice (2 pts), true/false (1 pt), short-text (3 pts); 60 seconds."""
    return QuizMetadata(
        quiz_id="quiz-js-basics",
        title="JavaScript Basics",
        total_seconds=60,
        questions=[
            Question(
                id="q1",
                kind=QuestionKind.SINGLE_CHOICE,
                text="Which method adds an element to the end of an array?",
                options=["push()", "pop()", "shift()", "unshift()"],
                points=2,
                position=0,
                correct_answer="push()",
            ),
            Question(
                id="q2",
                kind=QuestionKind.TRUE_FALSE,
                text="JavaScript is a statically typed language.",
                points=1,
                position=1,
                correct_answer="false",
            ),
            Question(
                id="q3",
                kind=QuestionKind.SHORT_TEXT,
                text="What does DOM stand for?",
                points=3,
                position=2,
                correct_answer="Document Object Model",
            ),
        ],
    )


@pytest.fixture
def mixed_quiz() -> QuizMetadata:
    """One of every question kind, including an essay."""
    return QuizMetadata(
        quiz_id="quiz-mixed",
        title="Mixed",
        total_seconds=300,
        questions=[
            Question(id="mc", kind="single_choice", text="2 + 2?", options=["3", "4"], points=1, position=0, correct_answer="4"),
            Question(id="tf", kind="true_false", text="Sky is blue.", points=1, position=1, correct_answer="true"),
            Question(id="st", kind="short_text", text="Capital of France?", points=2, position=2, correct_answer="Paris"),
            Question(
                id="cf",
                kind="code_fill",
                text="function add(a, b) { return ____; }",
                points=3,
                position=3,
                correct_answer="a + b",
            ),
            Question(id="es", kind="essay", text="Explain closures.", points=5, position=4),
        ],
    )


# ============================================================================
# STATE MACHINES
# ============================================================================


@pytest.fixture
def make_machine(scenario_quiz):
    """Factory for a ManualClock-driven state machine with a fake remote grader."""

    def factory(quiz=None, *, remote=None, fallback=None, timeout=5.0, clock=None, **kwargs):
        quiz = quiz or scenario_quiz
        coordinator = SubmissionCoordinator(
            remote if remote is not None else FakeGrader(),
            fallback if fallback is not None else OfflineGrader(quiz.questions),
            timeout=timeout,
        )
        return SessionStateMachine(quiz, coordinator, clock=clock or ManualClock(), **kwargs)

    return factory


# ============================================================================
# IN-MEMORY DATABASE FOR TESTING
# ============================================================================


@pytest.fixture
def test_engine():
    """Fresh in-memory SQLite engine shared across threads."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,  # all connections share the same in-memory database
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


# ============================================================================
# REMOTE QUIZ SERVICE (httpx MockTransport)
# ============================================================================

SCENARIO_QUIZ_JSON = {
    "success": True,
    "data": {
        "quizId": "quiz-js-basics",
        "title": "JavaScript Basics",
        "description": "Variables, arrays and the DOM.",
        "timeLimit": 1,
        "attemptNumber": 2,
        "questions": [
            {"_id": "q3", "type": "short_answer", "question": "What does DOM stand for?", "points": 3, "order": 3, "correctAnswer": "Document Object Model"},
            {"_id": "q1", "type": "mcq", "question": "Which method adds to the end?", "options": ["push()", "pop()"], "points": 2, "order": 1, "correctAnswer": "push()"},
            {"_id": "q2", "type": "true-false", "question": "JavaScript is statically typed.", "points": 1, "order": 2, "correctAnswer": "false"},
        ],
    },
}


class QuizServiceStub:
    """Routes requests for the mocked quiz service and remembers them."""

    def __init__(self, start=None, submit=None):
        self.start = start if start is not None else (lambda request: httpx.Response(200, json=SCENARIO_QUIZ_JSON))
        self.submit = submit if submit is not None else (lambda request: httpx.Response(501, json={"message": "Not implemented"}))
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        reply = self.start if path.endswith("/start") else self.submit if path.endswith("/submit") else None
        if reply is None:
            return httpx.Response(404)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(request)
        return reply

    def submissions(self):
        return [r for r in self.requests if r.url.path.endswith("/submit")]


@pytest.fixture
def quiz_service():
    return QuizServiceStub()


@pytest.fixture
def quiz_client(quiz_service):
    from quiz_engine.services.quiz_service import QuizServiceClient

    client = httpx.AsyncClient(base_url="http://quiz.test/api/v1", transport=httpx.MockTransport(quiz_service))
    return QuizServiceClient(client, initiation_timeout=2.0, submission_timeout=2.0)
