"""
Engine configuration.

Values are read from the environment (or a local ``.env`` file) and fall back
to the defaults below.
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Configuration for the quiz session engine."""

    APP_NAME: str = "Proctored Quiz Session Engine"

    # Remote services (session initiation + grading)
    API_BASE_URL: str = "http://localhost:5000/api/v1"
    INITIATION_TIMEOUT_SECONDS: float = 10.0
    SUBMISSION_TIMEOUT_SECONDS: float = 15.0

    # Countdown
    TICK_INTERVAL_SECONDS: float = 1.0

    # Local fallback grading of free-text answers
    ANSWER_CASE_SENSITIVE: bool = False
    ANSWER_NORMALIZE_WHITESPACE: bool = True

    # Persistence
    DATABASE_URL: str = "sqlite:///./quiz_sessions.db"
    PERSIST_DRAFTS: bool = True
    RECORD_ATTEMPTS: bool = True

    # Unstarted or finished sessions older than this are dropped from memory
    SESSION_TTL_SECONDS: float = 3 * 60 * 60

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
