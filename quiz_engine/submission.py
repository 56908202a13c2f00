"""Submission of a finished session: payload building and the one-shot coordinator."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING

from quiz_engine.exceptions import ServiceError, SubmissionAlreadyIssuedError
from quiz_engine.grading import Grader
from quiz_engine.models import SubmissionPayload, SubmissionResult
from quiz_engine.session_log import log_session_event, log_submission_fallback

if TYPE_CHECKING:
    from quiz_engine.session import Session

logger = logging.getLogger(__name__)


def build_payload(session: Session, submitted_at: datetime) -> SubmissionPayload:
    """Snapshot every answer (answered or not) and the full incident log."""
    return SubmissionPayload(
        session_id=session.id,
        quiz_id=session.quiz.quiz_id,
        attempt_number=session.quiz.attempt_number,
        answers=session.answers.as_entries(),
        started_at=session.started_at,
        submitted_at=submitted_at,
        expired=session.expired,
        integrity_events=list(session.integrity_log.entries),
    )


class SubmissionCoordinator:
    """Makes exactly one grading attempt against the remote grader.

    There is no retry: a failure or timeout of that single call is answered by
    the fallback grader, so ``submit`` always produces a result.
    """

    def __init__(self, remote: Grader, fallback: Grader, *, timeout: float = 15.0):
        self.remote = remote
        self.fallback = fallback
        self.timeout = timeout
        self._issued = False

    @property
    def issued(self) -> bool:
        return self._issued

    async def submit(self, payload: SubmissionPayload) -> SubmissionResult:
        if self._issued:
            raise SubmissionAlreadyIssuedError(
                f"session {payload.session_id} has already been submitted"
            )
        self._issued = True
        log_session_event(payload.session_id, "submission_sent", {"timeout": self.timeout})

        try:
            return await asyncio.wait_for(self.remote.grade(payload), timeout=self.timeout)
        except asyncio.TimeoutError:
            reason = f"no response within {self.timeout}s"
        except ServiceError as exc:
            reason = f"{type(exc).__name__}: {exc}"
        except Exception as exc:
            # Anything else from the remote path still ends in local grading;
            # only a failing fallback grader may propagate.
            logger.exception("Unexpected error from remote grader for session %s", payload.session_id)
            reason = f"unexpected {type(exc).__name__}: {exc}"

        log_submission_fallback(payload.session_id, reason)
        return await self.fallback.grade(payload)
