# backend/caseflow/db.py
from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from .config import settings


class Base(DeclarativeBase):
    pass


def _connect_args(url: str) -> dict:
    # sqlite: request handlers run in a threadpool, and concurrent writers
    # should wait on the file lock instead of failing immediately.
    if url.startswith("sqlite"):
        return {"check_same_thread": False, "timeout": 15}
    return {}


engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
    future=True,
    connect_args=_connect_args(settings.database_url),
)

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
    future=True,
)


def init_db() -> None:
    """Create all tables known to the metadata (idempotent)."""
    from . import models  # noqa: F401  (registers mappers)

    Base.metadata.create_all(bind=engine)


def get_db():
    """Request-scoped session; anything left uncommitted by a failed handler is rolled back."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
