"""Domain models for the proctored quiz session engine."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class QuestionKind(str, Enum):
    SINGLE_CHOICE = "single_choice"
    TRUE_FALSE = "true_false"
    SHORT_TEXT = "short_text"
    CODE_FILL = "code_fill"
    # Free-text essay; never gradable locally
    ESSAY = "essay"


CHOICE_KINDS = frozenset({QuestionKind.SINGLE_CHOICE, QuestionKind.TRUE_FALSE})
TRUE_FALSE_OPTIONS = ["true", "false"]


class Question(BaseModel):
    """A question as loaded for one session. Immutable once loaded."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: QuestionKind
    text: str
    options: Optional[List[str]] = None
    points: float = Field(default=1, ge=0)
    position: int = 0
    # Known correct value, when the initiation service reveals it
    correct_answer: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _options_only_for_choice_kinds(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        kind = QuestionKind(data.get("kind"))
        if kind is QuestionKind.TRUE_FALSE and not data.get("options"):
            data["options"] = list(TRUE_FALSE_OPTIONS)
        elif kind not in CHOICE_KINDS:
            data["options"] = None
        return data

    def public_view(self) -> dict:
        """Question fields safe to hand to the learner (no correct answer)."""
        return self.model_dump(exclude={"correct_answer"}, mode="json")


class QuizMetadata(BaseModel):
    """What the session-initiation service hands back for a quiz."""

    quiz_id: str
    title: str
    description: str = ""
    total_seconds: int = Field(gt=0)
    questions: List[Question] = Field(min_length=1)
    attempt_number: int = 1

    @property
    def total_points(self) -> float:
        return sum(q.points for q in self.questions)


class IntegrityEventKind(str, Enum):
    TAB_HIDDEN = "tab-hidden"
    WINDOW_BLUR = "window-blur"
    FULLSCREEN_EXIT = "fullscreen-exit"
    RESTRICTED_KEY = "restricted-key"
    CONTEXT_MENU_BLOCKED = "context-menu-blocked"


class IntegrityEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: IntegrityEventKind
    timestamp: datetime
    detail: str = ""


class SessionState(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    COMPLETED = "completed"


class Provenance(str, Enum):
    SERVER_GRADED = "server-graded"
    LOCAL_FALLBACK = "local-fallback"


class AnswerEntry(BaseModel):
    question_id: str
    # None means unanswered
    answer: Optional[str] = None


class SubmissionPayload(BaseModel):
    """Everything the submission service needs to grade one session."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    quiz_id: str
    attempt_number: int = 1
    answers: List[AnswerEntry]
    started_at: datetime
    submitted_at: datetime
    expired: bool = False
    integrity_events: List[IntegrityEvent] = Field(default_factory=list)

    def answer_for(self, question_id: str) -> Optional[str]:
        for entry in self.answers:
            if entry.question_id == question_id:
                return entry.answer
        return None


class QuestionOutcome(BaseModel):
    question_id: str
    points_possible: float
    points_awarded: float = 0
    # None when correctness is not determinable (or not revealed)
    correct: Optional[bool] = None
    graded: bool = True


class SubmissionResult(BaseModel):
    points_earned: float
    total_points: float
    outcomes: List[QuestionOutcome] = Field(default_factory=list)
    integrity_incidents: int = 0
    elapsed_seconds: int = 0
    provenance: Provenance
    expired: bool = False

    @computed_field
    @property
    def percentage(self) -> float:
        if self.total_points <= 0:
            return 0.0
        return round((self.points_earned / self.total_points) * 100, 2)

    @computed_field
    @property
    def correct_count(self) -> int:
        return sum(1 for o in self.outcomes if o.correct)

    @computed_field
    @property
    def ungraded_question_ids(self) -> List[str]:
        return [o.question_id for o in self.outcomes if not o.graded]

    @property
    def score(self) -> float:
        """Fraction of points earned, 0.0 - 1.0."""
        if self.total_points <= 0:
            return 0.0
        return self.points_earned / self.total_points


class SessionSnapshot(BaseModel):
    """Read-only view of a session for the hosting UI."""

    session_id: str
    quiz_id: str
    state: SessionState
    expired: bool
    remaining_seconds: int
    remaining_display: str
    current_question_index: int
    question_count: int
    answered_count: int
    progress_percent: float
    integrity_incidents: int
    tab_switches: int
    fullscreen_exits: int
    locked_mode: bool
    advisories: List[str] = Field(default_factory=list)
