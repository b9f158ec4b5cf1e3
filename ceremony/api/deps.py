"""
ceremony.api.deps — FastAPI dependency injection
=================================================
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Header, HTTPException, Request, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from ceremony.config import CeremonyConfig, load_config
from ceremony.database.engine import create_db_engine
from ceremony.engine.cache import CacheManager
from ceremony.engine.rules import RuleEngine
from ceremony.services.performance_monitor import PerformanceMonitor
from ceremony.services.telemetry import AsyncTelemetry
from ceremony.services.trigger_service import TriggerHandler

_WEAK_SECRETS = frozenset({
    "ceremony-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> CeremonyConfig:
    return load_config()


# ---------------------------------------------------------------------------
# Runtime — the long-lived service objects held on app.state
# ---------------------------------------------------------------------------
@dataclass
class Runtime:
    engine: Engine
    config: CeremonyConfig
    cache: CacheManager
    telemetry: AsyncTelemetry
    monitor: PerformanceMonitor
    handler: TriggerHandler


def build_runtime(engine: Engine, cfg: CeremonyConfig, *, rules: RuleEngine | None = None) -> Runtime:
    """Wire cache, rule engine, telemetry, monitor and handler together."""
    zone = cfg.zone
    cache = CacheManager(
        engine,
        member_ttl_seconds=cfg.member_cache_ttl_seconds,
        refresh_interval_seconds=cfg.refresh_interval_seconds,
    )
    telemetry = AsyncTelemetry(engine, zone=zone, max_workers=cfg.telemetry_workers)
    monitor = PerformanceMonitor(
        engine,
        sla_threshold_ms=cfg.sla_threshold_ms,
        target_score=cfg.target_score,
        zone=zone,
        window_days=cfg.performance_window_days,
    )
    handler = TriggerHandler(
        engine,
        cache,
        rules or RuleEngine(cache, zone=zone),
        telemetry,
        monitor,
        member_lookup_timeout_ms=cfg.member_lookup_timeout_ms,
        sla_threshold_ms=cfg.sla_threshold_ms,
    )
    return Runtime(
        engine=engine,
        config=cfg,
        cache=cache,
        telemetry=telemetry,
        monitor=monitor,
        handler=handler,
    )


def get_runtime(request: Request) -> Runtime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "Service is starting up")
    return runtime


def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate JWT and return admin user payload. Raises 401 if invalid."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    if not payload.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return payload
