"""Live sessions held by the hosting API process."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from quiz_engine.clock import Clock
from quiz_engine.exceptions import UnknownSessionError
from quiz_engine.grading import ComparisonPolicy, OfflineGrader
from quiz_engine.models import QuizMetadata, SessionState
from quiz_engine.services.quiz_service import QuizServiceClient, RemoteGrader
from quiz_engine.session import SessionStateMachine
from quiz_engine.store import DraftStore, attempt_key, record_attempt
from quiz_engine.submission import SubmissionCoordinator

logger = logging.getLogger(__name__)

# States in which a session holds no live resources and can simply be forgotten
EVICTABLE_STATES = {SessionState.NOT_STARTED, SessionState.COMPLETED}


class SessionRegistry:
    """Creates, wires and looks up session state machines by id.

    Database work (draft saves, attempt records) runs on one background writer
    thread so that SQLite commits never stall the event loop that drives every
    session's clock.
    """

    def __init__(
        self,
        settings,
        *,
        engine=None,
        clock_factory: Optional[Callable[[], Clock]] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.engine = engine
        self.clock_factory = clock_factory or (lambda: Clock(settings.TICK_INTERVAL_SECONDS))
        self.policy = ComparisonPolicy.from_settings(settings)
        self.ttl = settings.SESSION_TTL_SECONDS
        self._monotonic = monotonic
        self._sessions: Dict[str, SessionStateMachine] = {}
        self._created: Dict[str, float] = {}
        self._writer: Optional[ThreadPoolExecutor] = None
        if engine is not None:
            self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="quiz-db")
        self.drafts: Optional[DraftStore] = None
        if engine is not None and settings.PERSIST_DRAFTS:
            self.drafts = DraftStore(engine, writer=self._writer)

    def create(self, quiz: QuizMetadata, client: QuizServiceClient) -> SessionStateMachine:
        self.evict_stale()
        coordinator = SubmissionCoordinator(
            RemoteGrader(client),
            OfflineGrader(quiz.questions, self.policy),
            timeout=self.settings.SUBMISSION_TIMEOUT_SECONDS,
        )
        on_complete = None
        if self.engine is not None and self.settings.RECORD_ATTEMPTS:
            on_complete = self._record

        machine = SessionStateMachine(
            quiz,
            coordinator,
            clock=self.clock_factory(),
            drafts=self.drafts,
            draft_key=attempt_key(quiz.quiz_id, quiz.attempt_number),
            on_complete=on_complete,
        )
        self._sessions[machine.id] = machine
        self._created[machine.id] = self._monotonic()
        logger.info("Created session %s for quiz %s", machine.id, quiz.quiz_id)
        return machine

    def get(self, session_id: str) -> SessionStateMachine:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise UnknownSessionError(f"Session '{session_id}' not found") from None

    def discard(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._created.pop(session_id, None)

    def evict_stale(self) -> int:
        """Forget sessions older than the TTL that were never started or are finished.

        Sessions in progress or submitting are kept: they always run to completion.
        """
        cutoff = self._monotonic() - self.ttl
        stale = [
            sid
            for sid, machine in self._sessions.items()
            if machine.state in EVICTABLE_STATES and self._created[sid] <= cutoff
        ]
        for sid in stale:
            self.discard(sid)
        if stale:
            logger.info("Evicted %d stale sessions", len(stale))
        return len(stale)

    def flush(self) -> None:
        """Block until every queued database write has been applied."""
        if self._writer is not None:
            self._writer.submit(lambda: None).result()

    def close(self) -> None:
        if self._writer is not None:
            self._writer.shutdown(wait=True)
            self._writer = None

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def _record(self, machine: SessionStateMachine) -> None:
        s = machine.session
        self._writer.submit(
            self._write_record,
            session_id=s.id,
            quiz_id=s.quiz.quiz_id,
            attempt_number=s.quiz.attempt_number,
            started_at=s.started_at,
            result=s.result,
            events=list(s.integrity_log.entries),
        )

    def _write_record(self, **fields) -> None:
        try:
            with Session(self.engine) as db:
                record_attempt(db, **fields)
        except SQLAlchemyError:
            logger.exception("Could not record attempt for session %s", fields["session_id"])
