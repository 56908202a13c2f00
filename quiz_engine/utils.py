"""Utility functions for sanitization and time formatting."""

from datetime import datetime

import bleach

DETAIL_MAX_LENGTH = 500


def sanitize_detail(text: str | None) -> str:
    """Sanitize free-text incident detail coming from the browser.

    All HTML is stripped to plain text and the result is capped at
    DETAIL_MAX_LENGTH characters.
    """
    if not text:
        return ""
    sanitized = bleach.clean(str(text), tags=[], strip=True)
    return sanitized.strip()[:DETAIL_MAX_LENGTH]


def format_time(seconds: int) -> str:
    """Format a countdown value as MM:SS (minutes are not wrapped at 60)."""
    seconds = max(0, int(seconds))
    minutes, remaining = divmod(seconds, 60)
    return f"{minutes:02d}:{remaining:02d}"


def elapsed_seconds(started_at: datetime | None, ended_at: datetime) -> int:
    """Whole seconds between two instants, never negative."""
    if started_at is None:
        return 0
    return max(0, int((ended_at - started_at).total_seconds()))
