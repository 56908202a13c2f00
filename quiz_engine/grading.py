"""Grading interface and the offline (local fallback) grader."""

import logging
from typing import Iterable, Optional, Protocol

from pydantic import BaseModel, ConfigDict

from quiz_engine.models import (
    CHOICE_KINDS,
    Provenance,
    Question,
    QuestionKind,
    QuestionOutcome,
    SubmissionPayload,
    SubmissionResult,
)
from quiz_engine.utils import elapsed_seconds

logger = logging.getLogger(__name__)

TRUE_WORDS = {"true", "t", "yes", "1"}
FALSE_WORDS = {"false", "f", "no", "0"}


class ComparisonPolicy(BaseModel):
    """How free-text answers are compared against the known correct value."""

    model_config = ConfigDict(frozen=True)

    case_sensitive: bool = False
    normalize_whitespace: bool = True

    @classmethod
    def from_settings(cls, settings) -> "ComparisonPolicy":
        return cls(
            case_sensitive=settings.ANSWER_CASE_SENSITIVE,
            normalize_whitespace=settings.ANSWER_NORMALIZE_WHITESPACE,
        )

    def normalize(self, text: str) -> str:
        text = text.strip()
        if self.normalize_whitespace:
            text = " ".join(text.split())
        if not self.case_sensitive:
            text = text.casefold()
        return text

    def matches(self, answer: Optional[str], expected: Optional[str]) -> bool:
        if answer is None or expected is None:
            return False
        return self.normalize(answer) == self.normalize(expected)


class Grader(Protocol):
    """Anything that can turn a submission payload into a result."""

    async def grade(self, payload: SubmissionPayload) -> SubmissionResult:
        ...


def _as_bool(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    word = value.strip().lower()
    if word in TRUE_WORDS:
        return True
    if word in FALSE_WORDS:
        return False
    return None


class OfflineGrader:
    """Deterministic local scoring used when the grading service is unreachable.

    Choice questions (single choice, true/false) are always gradable when the
    correct value is known. Short-text and code-fill answers are credited on a
    match under the comparison policy; anything else is left ungraded for a
    human to review, as are essays and questions whose correct value was never
    revealed. Ungraded questions earn zero points.
    """

    def __init__(self, questions: Iterable[Question], policy: Optional[ComparisonPolicy] = None):
        self.questions = sorted(questions, key=lambda q: q.position)
        self.policy = policy or ComparisonPolicy()

    def grade_question(self, question: Question, answer: Optional[str]) -> QuestionOutcome:
        outcome = QuestionOutcome(question_id=question.id, points_possible=question.points)
        expected = question.correct_answer

        if question.kind is QuestionKind.ESSAY or expected is None:
            outcome.graded = False
            return outcome

        if question.kind in CHOICE_KINDS:
            if question.kind is QuestionKind.TRUE_FALSE:
                given = _as_bool(answer)
                correct = given is not None and given == _as_bool(expected)
            else:
                correct = self.policy.matches(answer, expected)
            outcome.correct = correct
            outcome.points_awarded = question.points if correct else 0
            return outcome

        # Free-text kinds: only an exact match (under the policy) is decidable
        if self.policy.matches(answer, expected):
            outcome.correct = True
            outcome.points_awarded = question.points
        else:
            outcome.graded = False
        return outcome

    def score(self, payload: SubmissionPayload) -> SubmissionResult:
        outcomes = [self.grade_question(q, payload.answer_for(q.id)) for q in self.questions]
        result = SubmissionResult(
            points_earned=sum(o.points_awarded for o in outcomes),
            total_points=sum(q.points for q in self.questions),
            outcomes=outcomes,
            integrity_incidents=len(payload.integrity_events),
            elapsed_seconds=elapsed_seconds(payload.started_at, payload.submitted_at),
            provenance=Provenance.LOCAL_FALLBACK,
            expired=payload.expired,
        )
        logger.info(
            "Locally graded session %s: %s/%s (%d ungraded)",
            payload.session_id,
            result.points_earned,
            result.total_points,
            len(result.ungraded_question_ids),
        )
        return result

    async def grade(self, payload: SubmissionPayload) -> SubmissionResult:
        return self.score(payload)
