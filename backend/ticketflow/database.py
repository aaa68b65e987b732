"""Database engine, session factory and declarative base."""

from collections.abc import Iterator
from datetime import datetime, timezone
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from ticketflow.config import settings


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@lru_cache
def get_engine() -> Engine:
    return create_engine(settings.database_url, pool_size=5, max_overflow=2, pool_pre_ping=True)


@lru_cache
def get_session_factory() -> sessionmaker:
    return sessionmaker(bind=get_engine(), expire_on_commit=False)


def get_sync_session() -> Session:
    return get_session_factory()()


def get_db() -> Iterator[Session]:
    """FastAPI dependency yielding a session per request."""
    session = get_sync_session()
    try:
        yield session
    finally:
        session.close()
