"""
Database session and engine.

Components take a session factory in their constructor; the module-level
SessionLocal is the one the app and scheduled jobs wire in.
"""
from contextlib import contextmanager
from typing import Callable, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.config import settings
from app.db.base import Base


def make_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        # SQLite serializes writers on the file lock; wait instead of failing fast.
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    return create_engine(
        url,
        pool_size=8,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=300,
        pool_timeout=30,
    )


def make_session_factory(url_or_engine: str | Engine) -> sessionmaker:
    bind = make_engine(url_or_engine) if isinstance(url_or_engine, str) else url_or_engine
    # Components hand rows back after commit; keep their loaded state.
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = make_engine(settings.database_url)
SessionLocal = make_session_factory(engine)

SessionFactory = Callable[[], Session]


@contextmanager
def session_scope(factory: SessionFactory) -> Iterator[Session]:
    """One transaction: commit on success, rollback on error, always close."""
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_all(bind: Engine | None = None) -> None:
    """Create tables without Alembic (tests, local SQLite)."""
    import app.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
