"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import json
import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of ceremony.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite renders JSONB as TEXT; BigInteger as INTEGER so autoincrement works.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402

from ceremony.config import CeremonyConfig  # noqa: E402
from ceremony.database.engine import get_session, init_db  # noqa: E402
from ceremony.database.models import (  # noqa: E402
    CeremonyVideo,
    Member,
    PlayRule,
)

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent)."""
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all ceremony tables.

    Uses StaticPool so every thread (``asyncio.to_thread`` and the
    telemetry pool) shares the same in-memory database.
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    return engine


# ---------------------------------------------------------------------------
# Seeding helper
# ---------------------------------------------------------------------------
class Seeder:
    """Insert videos, rules and members; every method returns the new id."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def video(
        self,
        title: str,
        *,
        is_default: bool = False,
        is_active: bool = True,
        duration: int | None = 60,
        file_size: int | None = None,
    ) -> int:
        with get_session(self.engine) as session:
            row = CeremonyVideo(
                title=title,
                file_url=f"https://cdn.example.com/{title.lower().replace(' ', '-')}.mp4",
                duration=duration,
                thumbnail_url=None,
                file_size=file_size,
                is_default=is_default,
                is_active=is_active,
            )
            session.add(row)
            session.flush()
            return row.id

    def rule(
        self,
        video_id: int,
        rule_type: str,
        conditions: dict | str | None = None,
        *,
        priority: int = 0,
        name: str | None = None,
        is_active: bool = True,
        rule_id: int | None = None,
    ) -> int:
        raw = json.dumps(conditions) if isinstance(conditions, dict) else conditions
        with get_session(self.engine) as session:
            row = PlayRule(
                rule_name=name,
                rule_type=rule_type,
                conditions=raw,
                priority=priority,
                video_id=video_id,
                is_active=is_active,
            )
            if rule_id is not None:
                row.id = rule_id
            session.add(row)
            session.flush()
            return row.id

    def member(
        self,
        name: str,
        card: str,
        *,
        member_type: str | None = None,
        industry: str | None = None,
        is_active: bool = True,
    ) -> int:
        with get_session(self.engine) as session:
            row = Member(
                name=name,
                nfc_card_id=card,
                member_type=member_type,
                industry=industry,
                is_active=is_active,
            )
            session.add(row)
            session.flush()
            return row.id


@pytest.fixture
def seed(db_engine: Engine) -> Seeder:
    return Seeder(db_engine)


@pytest.fixture
def test_config() -> CeremonyConfig:
    """UTC zone, a single telemetry worker, generous lookup budget."""
    return CeremonyConfig(
        timezone="UTC",
        telemetry_workers=1,
        member_lookup_timeout_ms=2000,
    )


def drain(telemetry) -> None:
    """Block until every task queued so far on a 1-worker telemetry pool ran."""
    future = telemetry.submit(lambda: None)
    if future is not None:
        future.result(timeout=5)


@pytest.fixture
def admin_token():
    """Generate a valid admin JWT for use in API integration tests."""
    return make_admin_token()


def make_admin_token(sub: str = "99999", username: str = "FixtureAdmin", is_admin: bool = True) -> str:
    """Create a JWT.  Usable as both a fixture and a factory function."""
    import jwt

    from ceremony.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": sub, "username": username, "is_admin": is_admin},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )
