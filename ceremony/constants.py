"""
ceremony.constants — Shared Constants
======================================

Single source of truth for the latency contract and cache defaults.
Import from here instead of repeating literals in services and routes.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Latency contract
# ---------------------------------------------------------------------------
DEFAULT_SLA_THRESHOLD_MS = 500
DEFAULT_TARGET_SCORE = 95  # % of triggers that must land inside the SLA

# ---------------------------------------------------------------------------
# Cache lifetimes
# ---------------------------------------------------------------------------
DEFAULT_MEMBER_TTL_SECONDS = 300
DEFAULT_REFRESH_INTERVAL_SECONDS = 300

# ---------------------------------------------------------------------------
# Datastore budgets
# ---------------------------------------------------------------------------
DEFAULT_MEMBER_LOOKUP_TIMEOUT_MS = 100
DEFAULT_HEALTH_TIMEOUT_MS = 1000

# ---------------------------------------------------------------------------
# Misc
# ---------------------------------------------------------------------------
DEFAULT_TIMEZONE = "Asia/Taipei"
DEFAULT_TELEMETRY_WORKERS = 4
DEFAULT_PERFORMANCE_WINDOW_DAYS = 7

# ``rule_applied`` for the fallback video and for unnamed rules
DEFAULT_RULE_LABEL = "default"
