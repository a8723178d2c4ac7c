"""
Engine and session handling for the batch worker.

The engine is built once at import from ``settings.database_url``. Every
processing run uses a single session on the main thread; document searches
issued from prepare workers open short-lived sessions of their own.
"""

from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from docsyphon.config import Settings, settings


def build_engine(database_url: str, config: Optional[Settings] = None) -> Engine:
    """SQLite gets a thread-tolerant connection; anything else a bounded pool."""
    config = config or settings
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            pool_pre_ping=True,
        )
    # Main thread plus up to max_conversation_workers concurrent searches
    return create_engine(
        database_url,
        pool_size=config.db_pool_size,
        max_overflow=config.db_pool_max_overflow,
        pool_timeout=config.db_pool_timeout,
        pool_recycle=config.db_pool_recycle,
        pool_pre_ping=True,
    )


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def db_session() -> Generator[Session, None, None]:
    """
    Session scope for CLI commands: commit on success, roll back on error.

    Example:
        >>> with db_session() as session:
        >>>     WatermarkRepository(session).reset("telegram-main", new_time)
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db() -> None:
    """Create missing tables from the ORM metadata (`alembic upgrade head` is preferred)."""
    from docsyphon.models.db import Base

    Base.metadata.create_all(bind=engine)
