import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings
from app.core.errors import StoreUnavailable

logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> Engine:
    timeout_ms = settings.DB_STATEMENT_TIMEOUT_MS
    connect_args: dict = {}
    engine_kwargs: dict = {"pool_pre_ping": True}

    if database_url.startswith("sqlite"):
        # sqlite "timeout" bounds how long a writer waits on the database lock
        connect_args = {"check_same_thread": False, "timeout": timeout_ms / 1000}
    else:
        engine_kwargs.update(
            {
                "pool_size": settings.DB_POOL_SIZE,
                "max_overflow": settings.DB_MAX_OVERFLOW,
                "pool_timeout": settings.DB_POOL_TIMEOUT,
                "pool_recycle": settings.DB_POOL_RECYCLE,
            }
        )
        if database_url.startswith("postgresql"):
            connect_args = {"options": f"-c statement_timeout={timeout_ms}"}

    engine_kwargs["connect_args"] = connect_args
    return create_engine(database_url, **engine_kwargs)


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """Run the enclosed statements as one all-or-nothing transaction.

    Commits when the block exits cleanly. Any exception rolls the session
    back before it propagates; transport-level database failures (timeouts,
    lost connections) are logged and re-raised as ``StoreUnavailable``.
    Integrity errors propagate unchanged so callers can map them to domain
    conflicts.
    """
    try:
        yield db
        db.commit()
    except DBAPIError as exc:
        db.rollback()
        if isinstance(exc, IntegrityError):
            raise
        logger.exception("Store failure inside unit of work")
        raise StoreUnavailable() from exc
    except BaseException:
        db.rollback()
        raise
