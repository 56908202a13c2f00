"""Shared FastAPI dependencies for the session registry and the quiz service client."""

from typing import Optional

from quiz_engine.config import settings
from quiz_engine.database import engine
from quiz_engine.registry import SessionRegistry
from quiz_engine.services.quiz_service import QuizServiceClient

_registry: Optional[SessionRegistry] = None
_client: Optional[QuizServiceClient] = None


def get_registry() -> SessionRegistry:
    """Return the process-wide session registry."""
    global _registry
    if _registry is None:
        _registry = SessionRegistry(settings, engine=engine)
    return _registry


def get_quiz_client() -> QuizServiceClient:
    """Return the shared client for the initiation/submission services."""
    global _client
    if _client is None:
        _client = QuizServiceClient.from_settings(settings)
    return _client


async def close_quiz_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


def close_registry() -> None:
    """Finish pending database writes and stop the writer thread."""
    global _registry
    if _registry is not None:
        _registry.close()
        _registry = None
