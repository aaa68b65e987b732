"""Shared plumbing for the batch components and RQ jobs."""

import asyncio
from contextlib import contextmanager
from typing import Iterator

import redis as redis_lib
import structlog
from rq import Queue
from sqlalchemy.orm import Session

from ticketflow.api.health import ERRORS
from ticketflow.config import settings

logger = structlog.get_logger()

MAIL_QUEUE = "mail"

_redis: redis_lib.Redis | None = None


def get_redis() -> redis_lib.Redis:
    global _redis
    if _redis is None:
        _redis = redis_lib.from_url(settings.redis_url)
    return _redis


def get_queue(name: str = MAIL_QUEUE) -> Queue:
    return Queue(name, connection=get_redis())


def run_async(coro):
    """Run an async coroutine from sync worker context."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class RowFailed(Exception):
    """Raised out of ``row_scope`` only to signal the caller; never escapes a scan."""


@contextmanager
def row_scope(session: Session, component: str, **context) -> Iterator[None]:
    """Commit one row's writes together, or roll them back and carry on.

    Any exception is logged and counted, the session is rolled back, and
    ``RowFailed`` is raised so the caller can bump its ``failed`` counter.
    """
    try:
        yield
        session.commit()
    except Exception as e:
        session.rollback()
        ERRORS.labels(type=component).inc()
        logger.error(f"{component}_row_failed", error=f"{type(e).__name__}: {e}", **context)
        raise RowFailed(str(e)) from e
