"""Routes the hosting UI uses to drive a proctored quiz session.

All handlers are coroutines: they run on the same event loop as the session
clocks and submission calls, which keeps every session on a single timeline.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from quiz_engine.deps import get_quiz_client, get_registry
from quiz_engine.integrity import EnvironmentSignal
from quiz_engine.models import SessionState
from quiz_engine.registry import SessionRegistry
from quiz_engine.services.quiz_service import QuizServiceClient
from quiz_engine.session import ReportedLockedMode

router = APIRouter()

ANSWER_MAX_LENGTH = 50000


# --- Request schemas ---


class StartIn(BaseModel):
    locked_mode_granted: bool = False
    reason: Optional[str] = Field(default=None, max_length=500)


class NavigateIn(BaseModel):
    index: int


class AnswerIn(BaseModel):
    value: str = Field(default="", max_length=ANSWER_MAX_LENGTH)


# 1) INITIATE
@router.post("/quizzes/{quiz_id}/sessions", status_code=status.HTTP_201_CREATED)
async def create_session(
    quiz_id: str,
    registry: SessionRegistry = Depends(get_registry),
    client: QuizServiceClient = Depends(get_quiz_client),
):
    """Load the quiz from the initiation service and open a new session for it."""
    quiz = await client.start_quiz(quiz_id)
    machine = registry.create(quiz, client)
    return {
        "session": machine.current_state,
        "title": quiz.title,
        "description": quiz.description,
        "attempt_number": quiz.attempt_number,
        "total_points": quiz.total_points,
        "questions": [q.public_view() for q in quiz.questions],
    }


# 2) START
@router.post("/sessions/{session_id}/start")
async def start_session(
    session_id: str,
    payload: Optional[StartIn] = None,
    registry: SessionRegistry = Depends(get_registry),
):
    """Start the countdown. The client reports whether fullscreen was granted."""
    payload = payload or StartIn()
    machine = registry.get(session_id)
    machine.start(ReportedLockedMode(payload.locked_mode_granted, payload.reason or ""))
    return machine.current_state


# 3) NAVIGATE
@router.post("/sessions/{session_id}/navigate")
async def navigate(
    session_id: str,
    payload: NavigateIn,
    registry: SessionRegistry = Depends(get_registry),
):
    machine = registry.get(session_id)
    machine.go_to_question(payload.index)
    return machine.current_state


# 4) ANSWER
@router.put("/sessions/{session_id}/answers/{question_id}")
async def set_answer(
    session_id: str,
    question_id: str,
    payload: AnswerIn,
    registry: SessionRegistry = Depends(get_registry),
):
    machine = registry.get(session_id)
    machine.set_answer(question_id, payload.value)
    return {
        "question_id": question_id,
        "value": machine.get_answer(question_id),
        "answered_count": machine.session.answers.answered_count,
    }


# 5) ENVIRONMENT SIGNALS (tab switch, blur, fullscreen exit, shortcuts, right click)
@router.post("/sessions/{session_id}/signals")
async def report_signal(
    session_id: str,
    signal: EnvironmentSignal,
    registry: SessionRegistry = Depends(get_registry),
):
    """Record an environment signal; tells the client whether to block its default action."""
    machine = registry.get(session_id)
    outcome = machine.report_signal(signal)
    return {
        "prevent_default": outcome.prevent_default,
        "recorded": outcome.recorded.kind.value if outcome.recorded else None,
        "integrity_incidents": len(machine.integrity_events),
    }


# 6) SUBMIT
@router.post("/sessions/{session_id}/submit")
async def submit_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
):
    """Submit (idempotent) and wait for the graded or locally computed result."""
    machine = registry.get(session_id)
    triggered = machine.submit()
    result = await machine.wait_completed()
    return {
        "triggered": triggered,
        "session": machine.current_state,
        "result": result,
    }


# 7) READ STATE
@router.get("/sessions/{session_id}")
async def get_session_state(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
):
    return registry.get(session_id).current_state


@router.get("/sessions/{session_id}/result")
async def get_result(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
):
    """Deliver the final result; the session is released once it has been read."""
    machine = registry.get(session_id)
    if machine.state is not SessionState.COMPLETED:
        raise HTTPException(status_code=409, detail="Session has not completed yet")
    registry.discard(session_id)
    return machine.result


@router.get("/sessions/{session_id}/integrity")
async def get_integrity_log(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
):
    machine = registry.get(session_id)
    return [e.model_dump(mode="json") for e in machine.integrity_events]


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def release_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
):
    """Drop a completed session once its result has been delivered."""
    machine = registry.get(session_id)
    if machine.state is not SessionState.COMPLETED:
        raise HTTPException(status_code=409, detail="Only completed sessions can be released")
    registry.discard(session_id)
