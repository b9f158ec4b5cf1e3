"""
ceremony.database.engine — Database Connection & Async Helper
==============================================================

The API runs on an ``asyncio`` event loop while SQLAlchemy + psycopg2 is
synchronous.  Calling the DB directly from a coroutine would stall every
in-flight trigger until the query returns, so all DB work is shipped to
a worker thread with :func:`run_db`:

    1. A request arrives in a FastAPI coroutine.
    2. The coroutine calls ``await run_db(some_function, arg1, arg2)``.
    3. ``run_db`` hands the sync function to ``asyncio.to_thread()``.
    4. The event loop keeps serving other scans while the query runs.

Usage::

    from ceremony.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    member = await run_db(find_member_by_card, engine, card_id)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.orm import Session

from ceremony.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine() -> Engine:
    """Build a SQLAlchemy :class:`Engine` from the ``DATABASE_URL`` env var.

    The pool is sized for bursts of scans at a chapter meeting:
    * ``pool_size=20`` — twenty persistent connections.
    * ``max_overflow=10`` — up to 10 extra connections under load.
    * ``pool_timeout=5`` — fail fast rather than queue behind a stuck pool.
    * ``pool_recycle=3600`` — recycle connections after 1 hour.

    Raises
    ------
    RuntimeError
        If ``DATABASE_URL`` is not set.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    engine = create_engine(
        url,
        echo=False,
        pool_size=20,
        max_overflow=10,
        pool_pre_ping=True,
        pool_timeout=5,
        pool_recycle=3600,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`ceremony.database.models`.

    Safe on every startup (``CREATE TABLE IF NOT EXISTS``).

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is kept for dev/test environments.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session` that auto-commits on success and rolls back
    on exception.

    Usage::

        with get_session(engine) as session:
            session.add(TriggerEvent(...))
            # commit happens automatically on block exit
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ping(engine: Engine) -> None:
    """Minimal round-trip used by the health probe.  Raises on failure."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Every DB call made from a coroutine goes through this wrapper::

        result = await run_db(my_sync_db_function, engine, card_id)

    Under the hood it calls :func:`asyncio.to_thread`, which schedules
    *func* on the default ``ThreadPoolExecutor`` so the event loop is
    never blocked.
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def run_db_with_timeout(
    timeout: float, func: Callable[P, T], *args: P.args, **kwargs: P.kwargs,
) -> T:
    """Like :func:`run_db`, but give up waiting after *timeout* seconds.

    Raises :class:`TimeoutError` when the budget is exceeded.  The worker
    thread itself cannot be interrupted; it finishes in the background and
    its result is discarded.
    """
    return await asyncio.wait_for(asyncio.to_thread(func, *args, **kwargs), timeout)
