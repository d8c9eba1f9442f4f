from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from interlink.core.config import settings


def _create_engine(url: str) -> Engine:
    # check_same_thread=False is needed for SQLite + FastAPI threadpool
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True)


engine = _create_engine(settings.DATABASE_URL)

# SessionLocal class
SessionLocal = sessionmaker(autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp. All stored datetimes are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def bind_engine(url: str) -> Engine:
    """Point SessionLocal at a different database (tests, CLI overrides)."""
    global engine
    engine.dispose()
    engine = _create_engine(url)
    SessionLocal.configure(bind=engine)
    return engine


def init_db() -> None:
    """Schema creation - runs on startup"""
    # Import models so they register on Base.metadata
    from interlink.db import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


# Dependency to get DB session
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope():
    """Session for Celery tasks and scripts (outside FastAPI dependency injection)."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
