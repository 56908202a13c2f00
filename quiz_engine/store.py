"""SQLModel tables and helpers for draft answers and completed attempts."""

import logging
from concurrent.futures import Executor
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import UniqueConstraint
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Field, Session, SQLModel, select

from quiz_engine.integrity import SEVERITY
from quiz_engine.models import IntegrityEvent, SubmissionResult

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DraftAnswer(SQLModel, table=True):
    """Latest in-progress answer to one question, kept so a reload can resume.

    Keyed by attempt (quiz id and attempt number), which survives a restart of
    the hosting process; session ids do not.
    """

    __table_args__ = (
        UniqueConstraint("attempt_key", "question_id", name="uq_draft_attempt_question"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    attempt_key: str = Field(index=True)
    question_id: str
    value: str = ""
    saved_at: datetime = Field(default_factory=_utcnow)


class AttemptRecord(SQLModel, table=True):
    """Outcome of one completed session."""

    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: str = Field(index=True, unique=True)
    quiz_id: str = Field(index=True)
    attempt_number: int = 1
    started_at: Optional[datetime] = None
    submitted_at: datetime = Field(default_factory=_utcnow)
    status: str = Field(default="submitted")  # submitted | timed_out
    points_earned: float = 0
    total_points: float = 0
    percentage: float = 0
    provenance: str  # server-graded | local-fallback
    integrity_incidents: int = 0
    elapsed_seconds: int = 0


class IntegrityLogEntry(SQLModel, table=True):
    """One integrity incident from a completed session."""

    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: str = Field(index=True)
    quiz_id: str
    kind: str  # tab-hidden, window-blur, fullscreen-exit, restricted-key, context-menu-blocked
    timestamp: datetime
    detail: Optional[str] = None
    severity: str = Field(default="low")  # low, medium, high


# --- Draft answers ---


def attempt_key(quiz_id: str, attempt_number: int) -> str:
    return f"{quiz_id}#{attempt_number}"


def save_draft(session: Session, key: str, question_id: str, value: str) -> DraftAnswer:
    stmt = select(DraftAnswer).where(
        (DraftAnswer.attempt_key == key) & (DraftAnswer.question_id == question_id)
    )
    draft = session.exec(stmt).first()
    if draft:
        draft.value = value
        draft.saved_at = _utcnow()
    else:
        draft = DraftAnswer(attempt_key=key, question_id=question_id, value=value)
    session.add(draft)
    session.commit()
    session.refresh(draft)
    return draft


def load_drafts(session: Session, key: str) -> Dict[str, str]:
    stmt = select(DraftAnswer).where(DraftAnswer.attempt_key == key)
    return {d.question_id: d.value for d in session.exec(stmt).all()}


def clear_drafts(session: Session, key: str) -> int:
    drafts = session.exec(select(DraftAnswer).where(DraftAnswer.attempt_key == key)).all()
    for d in drafts:
        session.delete(d)
    session.commit()
    return len(drafts)


class DraftStore:
    """Draft persistence for a session state machine, one DB session per call.

    With a ``writer`` executor, saves and clears are queued on it instead of
    blocking the caller; a single-worker executor keeps them in call order.
    ``load`` always waits for the queued writes first. Drafts are a
    convenience: storage errors are logged and never reach the session.
    """

    def __init__(self, engine, writer: Optional[Executor] = None):
        self.engine = engine
        self.writer = writer

    def _submit(self, fn, *args) -> None:
        if self.writer is None:
            fn(*args)
        else:
            self.writer.submit(fn, *args)

    def load(self, key: str) -> Dict[str, str]:
        if self.writer is not None:
            return self.writer.submit(self._load, key).result()
        return self._load(key)

    def save(self, key: str, question_id: str, value: str) -> None:
        self._submit(self._save, key, question_id, value)

    def clear(self, key: str) -> None:
        self._submit(self._clear, key)

    def _load(self, key: str) -> Dict[str, str]:
        try:
            with Session(self.engine) as db:
                return load_drafts(db, key)
        except SQLAlchemyError:
            logger.exception("Could not load drafts for attempt %s", key)
            return {}

    def _save(self, key: str, question_id: str, value: str) -> None:
        try:
            with Session(self.engine) as db:
                save_draft(db, key, question_id, value)
        except SQLAlchemyError:
            logger.exception("Could not save draft for attempt %s question %s", key, question_id)

    def _clear(self, key: str) -> None:
        try:
            with Session(self.engine) as db:
                clear_drafts(db, key)
        except SQLAlchemyError:
            logger.exception("Could not clear drafts for attempt %s", key)


# --- Completed attempts ---


def record_attempt(
    session: Session,
    *,
    session_id: str,
    quiz_id: str,
    attempt_number: int,
    started_at: Optional[datetime],
    result: SubmissionResult,
    events: List[IntegrityEvent],
) -> AttemptRecord:
    """Store the outcome of a completed session together with its incident log."""
    record = AttemptRecord(
        session_id=session_id,
        quiz_id=quiz_id,
        attempt_number=attempt_number,
        started_at=started_at,
        status="timed_out" if result.expired else "submitted",
        points_earned=result.points_earned,
        total_points=result.total_points,
        percentage=result.percentage,
        provenance=result.provenance.value,
        integrity_incidents=result.integrity_incidents,
        elapsed_seconds=result.elapsed_seconds,
    )
    session.add(record)
    for event in events:
        session.add(
            IntegrityLogEntry(
                session_id=session_id,
                quiz_id=quiz_id,
                kind=event.kind.value,
                timestamp=event.timestamp,
                detail=event.detail or None,
                severity=SEVERITY.get(event.kind, "low"),
            )
        )
    session.commit()
    session.refresh(record)
    return record


def list_attempts(session: Session, quiz_id: str) -> List[AttemptRecord]:
    stmt = select(AttemptRecord).where(AttemptRecord.quiz_id == quiz_id)
    return session.exec(stmt).all()


def list_incidents(session: Session, session_id: str) -> List[IntegrityLogEntry]:
    stmt = select(IntegrityLogEntry).where(IntegrityLogEntry.session_id == session_id)
    return session.exec(stmt).all()
