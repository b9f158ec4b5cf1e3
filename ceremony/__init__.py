"""
Ceremony — NFC-Triggered Welcome Video Service
================================================
Resolves which ceremony video to play when a member taps their NFC card
at a chapter meeting, answering inside a 500 ms budget from in-memory
caches and a priority-ordered rule matcher.  Trigger analytics are
persisted in the background so the response path never waits on writes.

Package layout::

    ceremony/
    ├── __main__.py        # python -m ceremony → uvicorn
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # SLA and cache defaults
    ├── errors.py          # Error taxonomy surfaced by the API
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # Videos, rules, members, triggers, daily stats
    ├── engine/
    │   ├── conditions.py  # Typed rule conditions, parsed at load time
    │   ├── records.py     # Detached snapshots of videos, rules, members
    │   ├── rules.py       # Pure rule evaluation → Resolution
    │   └── cache.py       # CacheManager: snapshots + member TTL cache
    ├── services/
    │   ├── trigger_service.py     # TriggerHandler (critical path)
    │   ├── telemetry.py           # Fire-and-forget persistence
    │   └── performance_monitor.py # SLA counters + range reports
    └── api/
        ├── main.py        # FastAPI app + lifespan wiring
        ├── deps.py        # Dependency providers, admin JWT guard
        └── routes/
            └── trigger.py # /trigger, /preload, /complete, /performance …
"""

__version__ = "0.1.0"
