"""SQLAlchemy engine, session factory and transaction scope."""

import logging
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from booking_engine.config import settings
from booking_engine.errors import StorageFailure

logger = logging.getLogger(__name__)

Base = declarative_base()


def create_db_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """Create an engine with pooling suited to the backend, plus slow query logging."""
    url = database_url or settings.storage.database_url
    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            echo=settings.storage.db_echo if echo is None else echo,
            connect_args={
                "check_same_thread": False,
                "timeout": settings.storage.repository_timeout_sec,
            },
        )
    else:
        engine = create_engine(
            url,
            echo=settings.storage.db_echo if echo is None else echo,
            pool_pre_ping=True,
            pool_recycle=300,
        )

    threshold = settings.storage.slow_query_threshold_sec

    @event.listens_for(engine, "before_cursor_execute")
    def before_cursor_execute(conn, _cursor, _statement, _parameters, _context, _executemany):
        conn.info.setdefault("query_start_time", []).append(time.time())

    @event.listens_for(engine, "after_cursor_execute")
    def after_cursor_execute(conn, _cursor, statement, _parameters, _context, _executemany):
        total = time.time() - conn.info["query_start_time"].pop(-1)
        if total > threshold:
            logger.warning("Slow query (%.2fs): %s...", total, statement[:200])

    logger.info("Database engine created (%s)", engine.dialect.name)
    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create all tables that don't exist yet."""
    from booking_engine.repositories import models  # noqa: F401  registers tables

    Base.metadata.create_all(bind=engine)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """One transaction: commit on success, roll back on any error.

    Driver and ORM errors surface as ``StorageFailure`` so callers can apply
    their own retry policy.
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Storage error, transaction rolled back: %s", exc)
        raise StorageFailure(f"Booking store unavailable: {exc.__class__.__name__}") from exc
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
