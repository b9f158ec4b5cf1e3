"""
ceremony.config — YAML Configuration Loader
============================================

Reads ``config.yaml`` for the tuning knobs of the trigger path (SLA
threshold, cache TTLs, lookup timeouts, the server time zone used by
time-window rules).  Secrets and the database URL stay in the
environment (``.env``).

Every key is optional; a missing file yields the defaults so local
development and tests need no YAML at all.

Usage::

    from ceremony.config import load_config

    cfg = load_config()                 # reads ./config.yaml by default
    print(cfg.sla_threshold_ms)         # 500
    print(cfg.zone)                     # ZoneInfo('Asia/Taipei')
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from ceremony.constants import (
    DEFAULT_HEALTH_TIMEOUT_MS,
    DEFAULT_MEMBER_LOOKUP_TIMEOUT_MS,
    DEFAULT_MEMBER_TTL_SECONDS,
    DEFAULT_PERFORMANCE_WINDOW_DAYS,
    DEFAULT_REFRESH_INTERVAL_SECONDS,
    DEFAULT_SLA_THRESHOLD_MS,
    DEFAULT_TARGET_SCORE,
    DEFAULT_TELEMETRY_WORKERS,
    DEFAULT_TIMEZONE,
)

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "CEREMONY_CONFIG"


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class CeremonyConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Latency contract
    sla_threshold_ms: int = DEFAULT_SLA_THRESHOLD_MS
    target_score: int = DEFAULT_TARGET_SCORE

    # Caching
    member_cache_ttl_seconds: int = DEFAULT_MEMBER_TTL_SECONDS
    refresh_interval_seconds: int = DEFAULT_REFRESH_INTERVAL_SECONDS

    # Datastore budgets
    member_lookup_timeout_ms: int = DEFAULT_MEMBER_LOOKUP_TIMEOUT_MS
    health_timeout_ms: int = DEFAULT_HEALTH_TIMEOUT_MS

    # Time-window rules evaluate the hour in this zone
    timezone: str = DEFAULT_TIMEZONE

    # Background persistence
    telemetry_workers: int = DEFAULT_TELEMETRY_WORKERS

    # /performance default range
    performance_window_days: int = DEFAULT_PERFORMANCE_WINDOW_DAYS

    def __post_init__(self) -> None:
        for f in fields(self):
            if f.name == "timezone":
                continue
            value = getattr(self, f.name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ValueError(f"{f.name} must be a positive integer, got {value!r}")
        if not 0 < self.target_score <= 100:
            raise ValueError(f"target_score must be within 1..100, got {self.target_score}")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {self.timezone!r}") from exc

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path | None = None) -> CeremonyConfig:
    """Read *path* and return a :class:`CeremonyConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.  Defaults to
        ``$CEREMONY_CONFIG`` or ``config.yaml`` in the working directory.
        A missing file is not an error; defaults apply.

    Raises
    ------
    ValueError
        If the file is not a mapping or a value fails validation.
    """
    config_path = Path(path or os.getenv(CONFIG_ENV_VAR, "config.yaml"))
    if not config_path.exists():
        logger.info("No config file at %s — using defaults", config_path.resolve())
        return CeremonyConfig()

    with open(config_path, encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"{config_path} must contain a YAML mapping")

    known = {f.name for f in fields(CeremonyConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))

    values = {}
    for key in known & set(raw):
        value = raw[key]
        values[key] = str(value) if key == "timezone" else _as_int(key, value)
    return CeremonyConfig(**values)


def _as_int(key: str, value: object) -> int:
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{key} must be an integer, got {value!r}") from exc
