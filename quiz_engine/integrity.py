"""
Integrity monitoring for live quiz sessions.

The hosting environment (a browser page, usually) forwards raw signals such as
visibility changes, focus loss, fullscreen changes, key presses and
context-menu requests into an ``EnvironmentEvents`` hub. While a session is in
progress its ``IntegrityMonitor`` is subscribed to that hub and turns every
loss-of-context signal into one ``IntegrityEvent`` on an append-only log.
Regaining focus, visibility or fullscreen is not an incident.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterator, List, NamedTuple, Optional, Tuple

from pydantic import BaseModel

from quiz_engine.exceptions import LogSealedError, SessionMisuseError
from quiz_engine.models import IntegrityEvent, IntegrityEventKind
from quiz_engine.session_log import log_incident
from quiz_engine.utils import sanitize_detail

logger = logging.getLogger(__name__)


class SignalType(str, Enum):
    VISIBILITY_CHANGE = "visibilitychange"
    BLUR = "blur"
    FOCUS = "focus"
    FULLSCREEN_CHANGE = "fullscreenchange"
    KEYDOWN = "keydown"
    CONTEXT_MENU = "contextmenu"


class EnvironmentSignal(BaseModel):
    """A raw signal reported by the environment hosting the session."""

    type: SignalType
    # visibilitychange: whether the document is now hidden
    hidden: Optional[bool] = None
    # fullscreenchange: whether the page is still fullscreen after the change
    fullscreen: Optional[bool] = None
    # keydown; ``code`` is the physical key ("KeyI"), unaffected by Option on macOS
    key: Optional[str] = None
    code: Optional[str] = None
    ctrl: bool = False
    shift: bool = False
    alt: bool = False
    meta: bool = False
    detail: Optional[str] = None


class KeyCombo(NamedTuple):
    key: str
    # Ctrl on Windows/Linux, Cmd on macOS
    accel: bool = False
    shift: bool = False
    # Option on macOS
    alt: bool = False

    def key_matches(self, signal: EnvironmentSignal) -> bool:
        wanted = self.key.lower()
        if signal.key and signal.key.lower() == wanted:
            return True
        if signal.code:
            code = signal.code.lower()
            return code == wanted or code == f"key{wanted}"
        return False

    def matches(self, signal: EnvironmentSignal) -> bool:
        if not self.key_matches(signal):
            return False
        if self.accel and not (signal.ctrl or signal.meta):
            return False
        if self.shift and not signal.shift:
            return False
        if self.alt and not signal.alt:
            return False
        return True

    def label(self) -> str:
        parts = []
        if self.accel:
            parts.append("Ctrl")
        if self.alt:
            parts.append("Alt")
        if self.shift:
            parts.append("Shift")
        parts.append(self.key.upper() if len(self.key) == 1 else self.key)
        return "+".join(parts)


# Developer tools and view-source shortcuts
DEFAULT_RESTRICTED_KEYS: Tuple[KeyCombo, ...] = (
    KeyCombo("F12"),
    KeyCombo("I", accel=True, shift=True),
    KeyCombo("J", accel=True, shift=True),
    KeyCombo("C", accel=True, shift=True),
    KeyCombo("U", accel=True),
    # macOS: Cmd+Option+I/J/C
    KeyCombo("I", accel=True, alt=True),
    KeyCombo("J", accel=True, alt=True),
    KeyCombo("C", accel=True, alt=True),
)

SEVERITY: Dict[IntegrityEventKind, str] = {
    IntegrityEventKind.TAB_HIDDEN: "medium",
    IntegrityEventKind.WINDOW_BLUR: "low",
    IntegrityEventKind.FULLSCREEN_EXIT: "medium",
    IntegrityEventKind.RESTRICTED_KEY: "high",
    IntegrityEventKind.CONTEXT_MENU_BLOCKED: "low",
}


@dataclass(frozen=True)
class SignalOutcome:
    """What the environment should do with a signal it reported."""

    prevent_default: bool = False
    recorded: Optional[IntegrityEvent] = None

    def merge(self, other: "SignalOutcome") -> "SignalOutcome":
        return SignalOutcome(
            prevent_default=self.prevent_default or other.prevent_default,
            recorded=self.recorded or other.recorded,
        )


SignalHandler = Callable[[EnvironmentSignal], Optional[SignalOutcome]]


class EnvironmentEvents:
    """Subscription hub for environment signals."""

    def __init__(self):
        self._handlers: List[SignalHandler] = []

    def subscribe(self, handler: SignalHandler) -> Callable[[], None]:
        """Register a handler; returns the matching unsubscribe callable."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    def publish(self, signal: EnvironmentSignal) -> SignalOutcome:
        outcome = SignalOutcome()
        for handler in list(self._handlers):
            result = handler(signal)
            if result is not None:
                outcome = outcome.merge(result)
        return outcome


class IntegrityLog:
    """Append-only, insertion-ordered incident log."""

    def __init__(self):
        self._events: List[IntegrityEvent] = []
        self._sealed = False

    def append(self, event: IntegrityEvent) -> None:
        if self._sealed:
            raise LogSealedError("integrity log is sealed; no further incidents may be recorded")
        self._events.append(event)

    def seal(self) -> None:
        self._sealed = True

    @property
    def sealed(self) -> bool:
        return self._sealed

    @property
    def entries(self) -> Tuple[IntegrityEvent, ...]:
        return tuple(self._events)

    def count(self, kind: Optional[IntegrityEventKind] = None) -> int:
        if kind is None:
            return len(self._events)
        return sum(1 for e in self._events if e.kind is kind)

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[IntegrityEvent]:
        return iter(self.entries)


class IntegrityMonitor:
    """Turns environment signals into integrity incidents while attached."""

    def __init__(
        self,
        log: IntegrityLog,
        now: Callable[[], datetime],
        *,
        session_id: str = "-",
        restricted_keys: Tuple[KeyCombo, ...] = DEFAULT_RESTRICTED_KEYS,
    ):
        self._log = log
        self._now = now
        self.session_id = session_id
        self.restricted_keys = restricted_keys
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def listening(self) -> bool:
        return self._unsubscribe is not None

    @property
    def events(self) -> Tuple[IntegrityEvent, ...]:
        return self._log.entries

    @contextmanager
    def attached(self, source: EnvironmentEvents):
        """Subscribe to ``source`` for the duration of the block."""
        if self._unsubscribe is not None:
            raise SessionMisuseError("integrity monitor is already attached")
        self._unsubscribe = source.subscribe(self.handle)
        logger.debug("Integrity monitor attached for session %s", self.session_id)
        try:
            yield self
        finally:
            self._unsubscribe()
            self._unsubscribe = None
            logger.debug("Integrity monitor detached for session %s", self.session_id)

    def restricted_combo(self, signal: EnvironmentSignal) -> Optional[KeyCombo]:
        for combo in self.restricted_keys:
            if combo.matches(signal):
                return combo
        return None

    def _classify(self, signal: EnvironmentSignal) -> Tuple[Optional[IntegrityEventKind], str, bool]:
        """Map a signal to (incident kind, detail, suppress default action)."""
        t = signal.type
        if t is SignalType.VISIBILITY_CHANGE and signal.hidden:
            return IntegrityEventKind.TAB_HIDDEN, "document hidden", False
        if t is SignalType.BLUR:
            return IntegrityEventKind.WINDOW_BLUR, "window lost focus", False
        if t is SignalType.FULLSCREEN_CHANGE and signal.fullscreen is False:
            return IntegrityEventKind.FULLSCREEN_EXIT, "left fullscreen", False
        if t is SignalType.KEYDOWN:
            combo = self.restricted_combo(signal)
            if combo is not None:
                return IntegrityEventKind.RESTRICTED_KEY, combo.label(), True
            return None, "", False
        if t is SignalType.CONTEXT_MENU:
            return IntegrityEventKind.CONTEXT_MENU_BLOCKED, "context menu requested", True
        return None, "", False

    def handle(self, signal: EnvironmentSignal) -> SignalOutcome:
        if not self.listening:
            return SignalOutcome()
        kind, detail, suppress = self._classify(signal)
        if kind is None:
            return SignalOutcome()
        # Submission already under way: keep suppressing, stop recording
        if self._log.sealed:
            return SignalOutcome(prevent_default=suppress)

        extra = sanitize_detail(signal.detail)
        if extra:
            detail = f"{detail}; {extra}"
        event = IntegrityEvent(kind=kind, timestamp=self._now(), detail=detail)
        self._log.append(event)
        log_incident(self.session_id, kind.value, detail)
        return SignalOutcome(prevent_default=suppress, recorded=event)
