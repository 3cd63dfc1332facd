"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine from
`settings.DATABASE_URL` (a local SQLite file at the backend root by
default) and provides small helpers used by the application and tests.
"""

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine, Session
from .config import settings


def make_engine(url: str) -> Engine:
    """Create an engine; SQLite connections are shared with the worker threadpool."""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=False, connect_args=connect_args)


engine = make_engine(settings.DATABASE_URL)


def create_db_and_tables(bind: Engine = None):
    """Create database tables using SQLModel metadata.

    This function is intended for local development and lightweight
    scripts; production deployments should rely on a proper migration
    tool (alembic) instead.
    """
    bind = bind or engine
    # register table metadata before create_all
    from . import models  # noqa: F401
    SQLModel.metadata.create_all(bind)
    _ensure_user_stats_columns(bind)


def _ensure_user_stats_columns(bind: Engine):
    """Ensure the running-total columns exist on `users` for older DB files.

    This is a lightweight, idempotent ALTER to keep demo databases in sync
    when the stats columns were added after the table was created.
    """
    columns = (
        "total_questions_answered INTEGER NOT NULL DEFAULT 0",
        "total_correct_answers INTEGER NOT NULL DEFAULT 0",
        "study_time_minutes INTEGER NOT NULL DEFAULT 0",
        "average_score FLOAT NOT NULL DEFAULT 0",
        "updated_at DATETIME",
    )
    with bind.connect() as conn:
        for col in columns:
            try:
                conn.exec_driver_sql(f"ALTER TABLE users ADD COLUMN {col}")
                conn.commit()
            except Exception:
                # column already exists
                conn.rollback()


def get_session():
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes.
    """
    with Session(engine) as session:
        yield session
