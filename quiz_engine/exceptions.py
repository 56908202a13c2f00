"""Error taxonomy for the proctored quiz session engine."""


class QuizEngineError(Exception):
    """Base class for all engine errors."""


# --- Programming misuse (contract violations by the hosting UI) ---


class SessionMisuseError(QuizEngineError, ValueError):
    """A call that the current session state does not permit."""


class InvalidTransitionError(SessionMisuseError):
    pass


class UnknownQuestionError(SessionMisuseError):
    pass


class LogSealedError(SessionMisuseError):
    pass


class SubmissionAlreadyIssuedError(SessionMisuseError):
    pass


# --- Environment denial (advisory, never fatal) ---


class LockedModeDenied(QuizEngineError):
    """The environment refused the locked/fullscreen presentation mode."""


# --- Remote service failures ---


class ServiceError(QuizEngineError):
    """The initiation or submission service could not produce a usable answer."""


class ServiceTimeout(ServiceError):
    pass


class ServiceUnavailable(ServiceError):
    pass


class ServiceNotImplemented(ServiceError):
    pass


class ServiceResponseError(ServiceError):
    """The service answered, but with an error status or an unreadable body."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class UnknownSessionError(QuizEngineError, LookupError):
    """No live session with the requested id."""
