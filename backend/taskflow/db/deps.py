"""FastAPI dependencies for database access."""
from __future__ import annotations

from typing import Callable, Iterator

from sqlalchemy.orm import Session

from taskflow.db.session import SessionLocal


def get_db() -> Iterator[Session]:
    """Yield a request-scoped session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> Callable[[], Session]:
    """Return the factory background workflow runs use to open their own sessions."""
    return SessionLocal
