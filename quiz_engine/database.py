"""Database configuration for draft answers and attempt records."""

from sqlmodel import SQLModel, create_engine

from quiz_engine.config import settings

# echo=False to avoid noisy logs; toggle for debugging
engine = create_engine(
    settings.DATABASE_URL, echo=False, connect_args={"check_same_thread": False}
)


def create_db_and_tables(bind=None) -> None:
    """Create draft and attempt tables based on SQLModel metadata."""
    # Importing the store registers its tables on the metadata
    from quiz_engine import store  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)
