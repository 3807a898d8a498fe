# core/database.py
from collections.abc import Callable, Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from job_relay.core.config import settings

engine = create_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)

SessionFactory = Callable[[], Session]


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a request-scoped DB session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> SessionFactory:
    """FastAPI dependency for work that outlives the request session.

    Background tasks run after the response is sent, when the request
    session is already closed, so they open their own sessions from this
    factory.
    """
    return SessionLocal
