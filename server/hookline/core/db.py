"""Database session/engine helpers."""
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import get_settings


def build_engine(database_url: str) -> Engine:
    """Create an engine for the given URL.

    SQLite URLs (local development and tests) share one connection across
    threads so that API requests, workers and the scheduler see the same
    in-memory database.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(database_url, future=True, pool_pre_ping=True)


def build_sessionmaker(bind: Engine) -> sessionmaker[Session]:
    """Session factory shared by the API, the Celery tasks and the tests."""
    return sessionmaker(bind=bind, autoflush=False, autocommit=False, expire_on_commit=False, class_=Session)


_settings = get_settings()

engine = build_engine(_settings.database_url)

SessionLocal = build_sessionmaker(engine)


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a database session."""

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Provide a transactional scope for background tasks and scripts."""

    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
