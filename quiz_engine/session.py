"""
Session lifecycle for one timed, proctored quiz attempt.

The state machine consumes discrete messages from a single ordered mailbox:
commands from the hosting UI, clock ticks and the completion of the
submission call all go through it, so a manual ``submit()`` and the countdown
reaching zero can never both trigger a submission. Whichever is delivered
first wins; the other finds the session already past ``IN_PROGRESS``.

Everything acquired on entering ``IN_PROGRESS`` (the integrity monitor's
subscription, the ticking clock, the locked presentation mode) is held on one
``ExitStack`` and released exactly once when the submission resolves.
"""

import asyncio
import logging
from collections import deque
from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional, Protocol, Tuple
from uuid import uuid4

from quiz_engine.answers import AnswerStore
from quiz_engine.clock import Clock
from quiz_engine.exceptions import InvalidTransitionError, LockedModeDenied
from quiz_engine.integrity import (
    DEFAULT_RESTRICTED_KEYS,
    EnvironmentEvents,
    EnvironmentSignal,
    IntegrityLog,
    IntegrityMonitor,
    KeyCombo,
    SignalOutcome,
)
from quiz_engine.models import (
    IntegrityEvent,
    IntegrityEventKind,
    Question,
    QuizMetadata,
    SessionSnapshot,
    SessionState,
    SubmissionResult,
)
from quiz_engine.session_log import (
    log_advisory,
    log_session_end,
    log_session_start,
    log_transition,
)
from quiz_engine.submission import SubmissionCoordinator, build_payload
from quiz_engine.utils import format_time

logger = logging.getLogger(__name__)


# --- Locked / fullscreen presentation mode ---


class Presentation(Protocol):
    def acquire(self) -> None:
        """Enter locked mode; raise LockedModeDenied if the environment refuses."""

    def release(self) -> None:
        ...


class NoLockedMode:
    """An environment without any locked presentation mode."""

    def acquire(self) -> None:
        raise LockedModeDenied("locked presentation mode is not supported here")

    def release(self) -> None:
        pass


class ReportedLockedMode:
    """Locked mode negotiated by the client, which reports whether it was granted."""

    def __init__(self, granted: bool, reason: str = ""):
        self.granted = granted
        self.reason = reason
        self.held = False

    def acquire(self) -> None:
        if not self.granted:
            raise LockedModeDenied(self.reason or "fullscreen request was refused")
        self.held = True

    def release(self) -> None:
        self.held = False


class DraftSink(Protocol):
    def load(self, key: str) -> Dict[str, str]:
        ...

    def save(self, key: str, question_id: str, value: str) -> None:
        ...

    def clear(self, key: str) -> None:
        ...


# --- Session data ---


@dataclass
class Session:
    quiz: QuizMetadata
    id: str = field(default_factory=lambda: uuid4().hex)
    state: SessionState = SessionState.NOT_STARTED
    remaining_seconds: int = 0
    current_index: int = 0
    expired: bool = False
    started_at: Optional[datetime] = None
    integrity_log: IntegrityLog = field(default_factory=IntegrityLog)
    result: Optional[SubmissionResult] = None
    answers: AnswerStore = field(init=False)

    def __post_init__(self):
        self.answers = AnswerStore(q.id for q in self.quiz.questions)
        self.remaining_seconds = self.quiz.total_seconds

    @property
    def questions(self) -> List[Question]:
        return self.quiz.questions

    @property
    def question_count(self) -> int:
        return len(self.quiz.questions)

    @property
    def current_question(self) -> Question:
        return self.quiz.questions[self.current_index]


# --- Mailbox messages ---


@dataclass(frozen=True)
class _Start:
    presentation: Optional[Presentation] = None


@dataclass(frozen=True)
class _Navigate:
    index: int


@dataclass(frozen=True)
class _SetAnswer:
    question_id: str
    value: str


@dataclass(frozen=True)
class _SubmitRequested:
    pass


@dataclass(frozen=True)
class _Tick:
    pass


@dataclass(frozen=True)
class _SubmissionResolved:
    result: Optional[SubmissionResult] = None
    error: Optional[BaseException] = None


class SessionStateMachine:
    """NOT_STARTED -> IN_PROGRESS -> SUBMITTING -> COMPLETED, never backwards.

    Must be driven from inside a running event loop: the clock ticks and the
    submission call are scheduled on it.
    """

    def __init__(
        self,
        quiz: QuizMetadata,
        coordinator: SubmissionCoordinator,
        *,
        session_id: Optional[str] = None,
        clock: Optional[Clock] = None,
        environment: Optional[EnvironmentEvents] = None,
        presentation: Optional[Presentation] = None,
        drafts: Optional[DraftSink] = None,
        draft_key: Optional[str] = None,
        on_complete: Optional[Callable[["SessionStateMachine"], Any]] = None,
        restricted_keys: Tuple[KeyCombo, ...] = DEFAULT_RESTRICTED_KEYS,
    ):
        self.session = Session(quiz=quiz, id=session_id or uuid4().hex)
        self.coordinator = coordinator
        self.clock = clock or Clock()
        self.environment = environment or EnvironmentEvents()
        self.presentation = presentation or NoLockedMode()
        self.drafts = drafts
        # Drafts outlive the in-memory session, so they may be keyed by the attempt
        self.draft_key = draft_key or self.session.id
        self.monitor = IntegrityMonitor(
            self.session.integrity_log,
            self.clock.now,
            session_id=self.session.id,
            restricted_keys=restricted_keys,
        )
        self.advisories: List[str] = []

        self._on_complete = on_complete
        self._mailbox: Deque[Any] = deque()
        self._draining = False
        self._resources: Optional[ExitStack] = None
        self._locked = False
        self._submission_task: Optional[asyncio.Task] = None
        self._completed = asyncio.Event()
        self._error: Optional[BaseException] = None

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def id(self) -> str:
        return self.session.id

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def result(self) -> Optional[SubmissionResult]:
        """The SubmissionResult, once COMPLETED."""
        return self.session.result

    @property
    def locked_mode(self) -> bool:
        return self._locked

    @property
    def integrity_events(self) -> Tuple[IntegrityEvent, ...]:
        return self.session.integrity_log.entries

    def get_answer(self, question_id: str):
        return self.session.answers.get(question_id)

    @property
    def current_state(self) -> SessionSnapshot:
        s = self.session
        log = s.integrity_log
        return SessionSnapshot(
            session_id=s.id,
            quiz_id=s.quiz.quiz_id,
            state=s.state,
            expired=s.expired,
            remaining_seconds=s.remaining_seconds,
            remaining_display=format_time(s.remaining_seconds),
            current_question_index=s.current_index,
            question_count=s.question_count,
            answered_count=s.answers.answered_count,
            progress_percent=round((s.current_index + 1) / s.question_count * 100, 2),
            integrity_incidents=len(log),
            tab_switches=log.count(IntegrityEventKind.TAB_HIDDEN),
            fullscreen_exits=log.count(IntegrityEventKind.FULLSCREEN_EXIT),
            locked_mode=self._locked,
            advisories=list(self.advisories),
        )

    # ------------------------------------------------------------------
    # Commands from the hosting UI
    # ------------------------------------------------------------------

    def _require(self, state: SessionState, action: str) -> None:
        if self.session.state is not state:
            raise InvalidTransitionError(
                f"cannot {action} while session is {self.session.state.value}"
            )

    def start(self, presentation: Optional[Presentation] = None) -> None:
        self._require(SessionState.NOT_STARTED, "start")
        self._post(_Start(presentation))

    def go_to_question(self, index: int) -> int:
        """Move to ``index`` (clamped to the question range); returns the new index."""
        self._require(SessionState.IN_PROGRESS, "navigate")
        self._post(_Navigate(int(index)))
        return self.session.current_index

    def next_question(self) -> int:
        return self.go_to_question(self.session.current_index + 1)

    def previous_question(self) -> int:
        return self.go_to_question(self.session.current_index - 1)

    def set_answer(self, question_id: str, value: str) -> None:
        self._require(SessionState.IN_PROGRESS, "change answers")
        self._post(_SetAnswer(question_id, value))

    def submit(self) -> bool:
        """Request submission. Returns False when a submission is already under way."""
        if self.session.state is SessionState.NOT_STARTED:
            raise InvalidTransitionError("cannot submit a session that has not started")
        before = self.session.state
        self._post(_SubmitRequested())
        return before is SessionState.IN_PROGRESS and self.session.state is not SessionState.IN_PROGRESS

    def report_signal(self, signal: EnvironmentSignal) -> SignalOutcome:
        """Forward a raw environment signal to whoever is listening."""
        return self.environment.publish(signal)

    async def wait_completed(self) -> SubmissionResult:
        await self._completed.wait()
        if self._error is not None:
            raise self._error
        return self.session.result

    # ------------------------------------------------------------------
    # Mailbox
    # ------------------------------------------------------------------

    def _post(self, message) -> None:
        self._mailbox.append(message)
        if self._draining:
            return
        self._draining = True
        try:
            while self._mailbox:
                self._dispatch(self._mailbox.popleft())
        finally:
            self._draining = False

    def _dispatch(self, message) -> None:
        if isinstance(message, _Tick):
            self._handle_tick()
        elif isinstance(message, _SetAnswer):
            self._handle_set_answer(message)
        elif isinstance(message, _Navigate):
            self._handle_navigate(message)
        elif isinstance(message, _SubmitRequested):
            self._handle_submit_requested()
        elif isinstance(message, _Start):
            self._handle_start(message)
        elif isinstance(message, _SubmissionResolved):
            self._handle_submission_resolved(message)
        else:
            raise TypeError(f"unexpected message {message!r}")

    def _on_clock_tick(self) -> None:
        self._post(_Tick())

    def _set_state(self, new: SessionState, **details) -> None:
        old = self.session.state
        self.session.state = new
        log_transition(self.session.id, old.value, new.value, **details)

    def _advise(self, advisory: str) -> None:
        self.advisories.append(advisory)
        log_advisory(self.session.id, advisory)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _handle_start(self, message: _Start) -> None:
        s = self.session
        if s.state is not SessionState.NOT_STARTED:
            return
        s.started_at = self.clock.now()
        s.remaining_seconds = s.quiz.total_seconds
        self._restore_drafts()

        resources = ExitStack()
        presentation = message.presentation or self.presentation
        try:
            presentation.acquire()
        except LockedModeDenied as exc:
            self._advise(f"locked-mode-denied: {exc}")
        else:
            self._locked = True
            resources.callback(self._release_presentation, presentation)

        resources.enter_context(self.monitor.attached(self.environment))
        resources.callback(self.clock.stop)
        try:
            self.clock.start(self._on_clock_tick)
        except BaseException:
            resources.close()
            raise
        self._resources = resources
        self._set_state(SessionState.IN_PROGRESS, locked_mode=self._locked)
        log_session_start(s.id, s.quiz.quiz_id, s.quiz.total_seconds, s.question_count)

    def _handle_tick(self) -> None:
        s = self.session
        if s.state is not SessionState.IN_PROGRESS:
            logger.debug("Ignoring tick for session %s in state %s", s.id, s.state.value)
            return
        s.remaining_seconds = max(0, s.remaining_seconds - 1)
        if s.remaining_seconds == 0:
            s.expired = True
            self._begin_submission()

    def _handle_navigate(self, message: _Navigate) -> None:
        s = self.session
        if s.state is not SessionState.IN_PROGRESS:
            return
        index = max(0, min(message.index, s.question_count - 1))
        if index != message.index:
            logger.debug("Clamped navigation to %d -> %d for session %s", message.index, index, s.id)
        s.current_index = index

    def _handle_set_answer(self, message: _SetAnswer) -> None:
        s = self.session
        self._require(SessionState.IN_PROGRESS, "change answers")
        s.answers.set(message.question_id, message.value)
        if self.drafts is not None:
            self.drafts.save(self.draft_key, message.question_id, s.answers.get(message.question_id))

    def _handle_submit_requested(self) -> None:
        s = self.session
        if s.state is not SessionState.IN_PROGRESS:
            logger.debug("Submission already triggered for session %s; ignoring", s.id)
            return
        self._begin_submission()

    def _begin_submission(self) -> None:
        s = self.session
        loop = asyncio.get_running_loop()
        self.clock.stop()
        s.answers.seal()
        s.integrity_log.seal()
        self._set_state(SessionState.SUBMITTING, expired=s.expired)

        payload = build_payload(s, self.clock.now())
        self._submission_task = loop.create_task(self.coordinator.submit(payload))
        self._submission_task.add_done_callback(self._on_submission_done)

    def _on_submission_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            self._post(_SubmissionResolved(error=asyncio.CancelledError()))
        elif task.exception() is not None:
            self._post(_SubmissionResolved(error=task.exception()))
        else:
            self._post(_SubmissionResolved(result=task.result()))

    def _handle_submission_resolved(self, message: _SubmissionResolved) -> None:
        s = self.session
        try:
            if message.error is None:
                s.result = message.result
                self._set_state(SessionState.COMPLETED, provenance=message.result.provenance.value)
                log_session_end(
                    s.id,
                    message.result.provenance.value,
                    message.result.points_earned,
                    message.result.total_points,
                    message.result.integrity_incidents,
                )
            else:
                self._error = message.error
                logger.error(
                    "Submission for session %s failed without a result",
                    s.id,
                    exc_info=message.error,
                )
        finally:
            self._teardown()
            self._completed.set()

        if message.error is None and self._on_complete is not None:
            try:
                self._on_complete(self)
            except Exception:
                logger.exception("Completion hook failed for session %s", s.id)

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    def _release_presentation(self, presentation: Presentation) -> None:
        presentation.release()
        self._locked = False
        logger.debug("Released locked mode for session %s", self.session.id)

    def _teardown(self) -> None:
        if self._resources is not None:
            resources, self._resources = self._resources, None
            resources.close()
        if self.drafts is not None:
            self.drafts.clear(self.draft_key)

    def _restore_drafts(self) -> None:
        if self.drafts is None:
            return
        s = self.session
        restored = 0
        for question_id, value in self.drafts.load(self.draft_key).items():
            if question_id in {q.id for q in s.questions}:
                s.answers.set(question_id, value)
                restored += 1
        if restored:
            logger.info("Restored %d draft answers for session %s", restored, s.id)
