"""
Session Logger - Logs session lifecycle events and integrity incidents
"""

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def log_session_event(
    session_id: str,
    event_type: str,
    details: Optional[Dict[str, Any]] = None,
    level: str = "info",
):
    """
    Log a session event.

    Args:
        session_id: Quiz session ID
        event_type: Type of event (start, transition, incident, fallback, etc.)
        details: Optional event details
        level: Log level (debug, info, warning, error)
    """
    message = f"[SESSION] session={session_id} event={event_type}"

    if details:
        detail_str = " ".join(f"{k}={v}" for k, v in details.items())
        message += f" {detail_str}"

    if level == "debug":
        logger.debug(message)
    elif level == "warning":
        logger.warning(message)
    elif level == "error":
        logger.error(message)
    else:
        logger.info(message)


def log_session_start(session_id: str, quiz_id: str, total_seconds: int, questions: int):
    """Log session start event"""
    log_session_event(
        session_id=session_id,
        event_type="session_start",
        details={
            "quiz_id": quiz_id,
            "total_seconds": total_seconds,
            "questions": questions,
        },
    )


def log_transition(session_id: str, old: str, new: str, **details: Any):
    """Log a lifecycle state change"""
    log_session_event(
        session_id=session_id,
        event_type="transition",
        details={"from": old, "to": new, **details},
    )


def log_session_end(session_id: str, provenance: str, earned: float, total: int, incidents: int):
    """Log session end event"""
    log_session_event(
        session_id=session_id,
        event_type="session_end",
        details={
            "provenance": provenance,
            "score": f"{earned}/{total}",
            "incidents": incidents,
        },
    )


def log_incident(session_id: str, kind: str, detail: str = ""):
    """Log an integrity incident"""
    details = {"kind": kind}
    if detail:
        details["detail"] = detail
    log_session_event(session_id, "integrity_incident", details, level="warning")


def log_advisory(session_id: str, advisory: str):
    """Log a non-fatal environment advisory"""
    log_session_event(session_id, "advisory", {"reason": advisory}, level="warning")


def log_submission_fallback(session_id: str, reason: str):
    """Log that the submission service failed and local grading took over"""
    log_session_event(
        session_id,
        "submission_fallback",
        {"reason": reason},
        level="warning",
    )
