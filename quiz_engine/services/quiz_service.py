"""HTTP client for the remote quiz services (session initiation + grading).

Both services answer with the envelope ``{"success": true, "data": {...}}``.
Transport failures, timeouts and error statuses are converted into
``ServiceError`` subclasses so callers never see raw httpx exceptions.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from quiz_engine.exceptions import (
    ServiceNotImplemented,
    ServiceResponseError,
    ServiceTimeout,
    ServiceUnavailable,
)
from quiz_engine.models import (
    Provenance,
    Question,
    QuestionKind,
    QuestionOutcome,
    QuizMetadata,
    SubmissionPayload,
    SubmissionResult,
)
from quiz_engine.utils import elapsed_seconds

logger = logging.getLogger(__name__)

DEFAULT_TIME_LIMIT_MINUTES = 30
NOT_IMPLEMENTED_STATUSES = {404, 405, 501}

# Question type spellings used by the quiz service
KIND_ALIASES = {
    "mcq": QuestionKind.SINGLE_CHOICE,
    "multiple-choice": QuestionKind.SINGLE_CHOICE,
    "multiple_choice": QuestionKind.SINGLE_CHOICE,
    "single_choice": QuestionKind.SINGLE_CHOICE,
    "true-false": QuestionKind.TRUE_FALSE,
    "true_false": QuestionKind.TRUE_FALSE,
    "short-answer": QuestionKind.SHORT_TEXT,
    "short_answer": QuestionKind.SHORT_TEXT,
    "short_text": QuestionKind.SHORT_TEXT,
    "fill-in-the-blank": QuestionKind.SHORT_TEXT,
    "code_completion": QuestionKind.CODE_FILL,
    "code-completion": QuestionKind.CODE_FILL,
    "code_fill": QuestionKind.CODE_FILL,
    "essay": QuestionKind.ESSAY,
}


def _unwrap(response: httpx.Response) -> Dict[str, Any]:
    """Return the ``data`` object of a service response or raise."""
    if response.status_code in NOT_IMPLEMENTED_STATUSES:
        raise ServiceNotImplemented(
            f"{response.request.method} {response.request.url.path} is not available "
            f"(HTTP {response.status_code})"
        )
    if response.status_code >= 400:
        raise ServiceResponseError(
            f"Service returned HTTP {response.status_code}", status_code=response.status_code
        )
    try:
        body = response.json()
    except ValueError as exc:
        raise ServiceResponseError("Service returned a non-JSON body") from exc

    if isinstance(body, dict) and "data" in body:
        if body.get("success") is False:
            raise ServiceResponseError(body.get("message") or "Service reported failure")
        body = body["data"]
    if not isinstance(body, dict):
        raise ServiceResponseError("Service returned an unexpected body")
    return body


def parse_question(raw: Dict[str, Any], index: int) -> Question:
    kind_name = str(raw.get("type", "")).strip().lower()
    kind = KIND_ALIASES.get(kind_name)
    if kind is None:
        raise ServiceResponseError(f"Unsupported question type '{raw.get('type')}'")
    correct = raw.get("correctAnswer")
    return Question(
        id=str(raw.get("_id") or raw.get("id")),
        kind=kind,
        text=raw.get("question") or raw.get("text") or "",
        options=raw.get("options") or None,
        points=raw.get("points") or 1,
        position=raw.get("order", index),
        correct_answer=None if correct is None else str(correct),
    )


def parse_quiz(data: Dict[str, Any], quiz_id: str) -> QuizMetadata:
    raw_questions = data.get("questions") or []
    try:
        questions = [parse_question(q, i) for i, q in enumerate(raw_questions)]
        questions.sort(key=lambda q: q.position)
        minutes = data.get("timeLimit") or DEFAULT_TIME_LIMIT_MINUTES
        return QuizMetadata(
            quiz_id=str(data.get("quizId") or quiz_id),
            title=data.get("title") or "",
            description=data.get("description") or "",
            total_seconds=int(round(float(minutes) * 60)),
            questions=questions,
            attempt_number=data.get("attemptNumber") or 1,
        )
    except (ValidationError, TypeError, ValueError) as exc:
        raise ServiceResponseError(f"Invalid quiz definition: {exc}") from exc


def submission_body(payload: SubmissionPayload) -> Dict[str, Any]:
    return {
        "attemptId": payload.session_id,
        "attemptNumber": payload.attempt_number,
        "answers": [
            {"questionId": a.question_id, "answer": a.answer} for a in payload.answers
        ],
        "startedAt": payload.started_at.isoformat(),
        "submittedAt": payload.submitted_at.isoformat(),
        "timeSpent": elapsed_seconds(payload.started_at, payload.submitted_at),
        "autoSubmitted": payload.expired,
        "cheatingIncidents": [
            {
                "type": e.kind.value,
                "timestamp": e.timestamp.isoformat(),
                "detail": e.detail,
            }
            for e in payload.integrity_events
        ],
    }


def _parse_outcomes(data: Dict[str, Any]) -> List[QuestionOutcome]:
    outcomes = []
    for raw in data.get("answers") or data.get("questions") or []:
        if not isinstance(raw, dict) or not (raw.get("questionId") or raw.get("_id")):
            continue
        correct = raw.get("isCorrect")
        outcomes.append(
            QuestionOutcome(
                question_id=str(raw.get("questionId") or raw.get("_id")),
                points_possible=raw.get("points", raw.get("pointsPossible", 0)) or 0,
                points_awarded=raw.get("pointsEarned", 0) or 0,
                correct=correct if isinstance(correct, bool) else None,
                graded=raw.get("graded", True) is not False,
            )
        )
    return outcomes


def parse_result(data: Dict[str, Any], payload: SubmissionPayload) -> SubmissionResult:
    earned = data.get("earnedPoints", data.get("score"))
    total = data.get("totalPoints")
    if earned is None or total is None:
        raise ServiceResponseError("Graded result is missing earned/total points")
    try:
        return SubmissionResult(
            points_earned=earned,
            total_points=total,
            outcomes=_parse_outcomes(data),
            integrity_incidents=len(payload.integrity_events),
            elapsed_seconds=elapsed_seconds(payload.started_at, payload.submitted_at),
            provenance=Provenance.SERVER_GRADED,
            expired=payload.expired,
        )
    except (ValidationError, TypeError, AttributeError, ValueError) as exc:
        raise ServiceResponseError(f"Invalid graded result: {exc}") from exc


class QuizServiceClient:
    """Async client for quiz initiation and submission."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        initiation_timeout: float = 10.0,
        submission_timeout: float = 15.0,
    ):
        self._client = client
        self.initiation_timeout = initiation_timeout
        self.submission_timeout = submission_timeout

    @classmethod
    def from_settings(cls, settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "QuizServiceClient":
        client = httpx.AsyncClient(base_url=settings.API_BASE_URL, transport=transport)
        return cls(
            client,
            initiation_timeout=settings.INITIATION_TIMEOUT_SECONDS,
            submission_timeout=settings.SUBMISSION_TIMEOUT_SECONDS,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self, method: str, url: str, *, timeout: float, json: Optional[dict] = None
    ) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, url, json=json, timeout=timeout)
        except httpx.TimeoutException as exc:
            raise ServiceTimeout(f"{method} {url} timed out after {timeout}s") from exc
        except httpx.HTTPError as exc:
            raise ServiceUnavailable(f"{method} {url} failed: {exc}") from exc
        return _unwrap(response)

    async def start_quiz(self, quiz_id: str) -> QuizMetadata:
        """Ask the initiation service for a new attempt at ``quiz_id``."""
        data = await self._request("POST", f"/quizzes/{quiz_id}/start", timeout=self.initiation_timeout)
        quiz = parse_quiz(data, quiz_id)
        logger.info(
            "Loaded quiz %s (attempt %d, %d questions, %ds)",
            quiz.quiz_id,
            quiz.attempt_number,
            len(quiz.questions),
            quiz.total_seconds,
        )
        return quiz

    async def submit_quiz(self, payload: SubmissionPayload) -> SubmissionResult:
        """Send answers for server-side grading. Exactly one call per session."""
        data = await self._request(
            "POST",
            f"/quizzes/{payload.quiz_id}/submit",
            timeout=self.submission_timeout,
            json=submission_body(payload),
        )
        return parse_result(data, payload)


class RemoteGrader:
    """Grader backed by the remote submission service."""

    def __init__(self, client: QuizServiceClient):
        self.client = client

    async def grade(self, payload: SubmissionPayload) -> SubmissionResult:
        return await self.client.submit_quiz(payload)
