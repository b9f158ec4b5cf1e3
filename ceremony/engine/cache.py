"""
ceremony.engine.cache — In-Memory Trigger Cache
================================================

Holds everything the trigger path reads so a scan normally costs zero
database round-trips:

* the active default video,
* every active rule joined with its active video (conditions pre-parsed),
* per-card member lookups with a 300 s TTL.

Videos and rules are bulk-reloaded into a fresh :class:`RuleSnapshot` and
swapped in as one reference, so readers see either the old set or the new
set, never a mix.  Member entries expire lazily: the insertion time is
compared against the injected clock on read.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from ceremony.constants import DEFAULT_MEMBER_TTL_SECONDS, DEFAULT_REFRESH_INTERVAL_SECONDS
from ceremony.database.models import CeremonyVideo, PlayRule
from ceremony.engine.conditions import parse_conditions
from ceremony.engine.records import CachedRule, CachedVideo, MemberInfo, RuleSnapshot
from ceremony.errors import MalformedConditions

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _MemberEntry:
    member: MemberInfo
    inserted_at: float


class CacheManager:
    """Thread-safe cache for the default video, play rules and members.

    Usage:
        cache = CacheManager(engine)
        cache.initialize()
        cache.start_refresh_loop()          # inside a running event loop

        snapshot = cache.snapshot()
        member = cache.get_member(card_id)  # None on miss or expiry
        cache.put_member(card_id, member)

        cache.stop_refresh_loop()           # on shutdown
    """

    def __init__(
        self,
        engine: Engine,
        *,
        member_ttl_seconds: float = DEFAULT_MEMBER_TTL_SECONDS,
        refresh_interval_seconds: float = DEFAULT_REFRESH_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._engine = engine
        self._member_ttl = member_ttl_seconds
        self._refresh_interval = refresh_interval_seconds
        self._clock = clock

        self._lock = threading.Lock()
        # Held for the duration of a reload; refresh() skips when busy
        self._reload_guard = threading.Lock()

        self._snapshot = RuleSnapshot()
        # nfc_card_id → member + insertion time
        self._members: dict[str, _MemberEntry] = {}

        self._refresh_task: asyncio.Task | None = None
        self._last_refresh: float | None = None

    # -------------------------------------------------------------------
    # Bulk loading (synchronous — called via run_db or a worker thread)
    # -------------------------------------------------------------------
    def initialize(self) -> None:
        """Load the default video and active rules, then swap them in.

        Waits for an in-flight refresh to finish first.  Database errors
        propagate; the previous snapshot stays in place.
        """
        with self._reload_guard:
            self._reload()

    def refresh(self) -> bool:
        """Reload unless another reload is already running.

        Returns True if a reload happened, False if it was skipped.
        """
        if not self._reload_guard.acquire(blocking=False):
            logger.info("Cache refresh already in flight — skipping")
            return False
        try:
            self._reload()
        finally:
            self._reload_guard.release()
        return True

    def _reload(self) -> None:
        with Session(self._engine) as session:
            default_video = self._load_default_video(session)
            rules = self._load_rules(session)

        snapshot = RuleSnapshot.build(default_video, rules)
        with self._lock:
            self._snapshot = snapshot
            self._last_refresh = self._clock()

        logger.info(
            "Trigger cache loaded: default video %s, %d play rules",
            default_video.id if default_video else "none",
            len(snapshot.rules),
        )

    def _load_default_video(self, session: Session) -> CachedVideo | None:
        row = session.scalars(
            select(CeremonyVideo)
            .where(CeremonyVideo.is_default.is_(True), CeremonyVideo.is_active.is_(True))
            .order_by(CeremonyVideo.id)
            .limit(1)
        ).first()
        return CachedVideo.from_row(row) if row is not None else None

    def _load_rules(self, session: Session) -> list[CachedRule]:
        rows = session.execute(
            select(PlayRule, CeremonyVideo)
            .join(CeremonyVideo, PlayRule.video_id == CeremonyVideo.id)
            .where(PlayRule.is_active.is_(True), CeremonyVideo.is_active.is_(True))
        ).all()

        rules: list[CachedRule] = []
        for rule, video in rows:
            try:
                condition = parse_conditions(rule.rule_type, rule.conditions)
            except MalformedConditions as exc:
                logger.error("Skipping play rule %d: %s", rule.id, exc)
                continue
            rules.append(CachedRule(
                id=rule.id,
                rule_type=rule.rule_type,
                condition=condition,
                priority=rule.priority,
                video=CachedVideo.from_row(video),
                name=rule.rule_name,
            ))
        return rules

    # -------------------------------------------------------------------
    # Reads (thread-safe)
    # -------------------------------------------------------------------
    def snapshot(self) -> RuleSnapshot:
        with self._lock:
            return self._snapshot

    def get_member(self, card_id: str) -> MemberInfo | None:
        """Return the cached member for *card_id*, or None if absent/expired."""
        now = self._clock()
        with self._lock:
            entry = self._members.get(card_id)
            if entry is None:
                return None
            if now - entry.inserted_at >= self._member_ttl:
                del self._members[card_id]
                return None
            return entry.member

    def put_member(self, card_id: str, member: MemberInfo) -> None:
        """Insert or overwrite (last write wins) a member entry."""
        entry = _MemberEntry(member=member, inserted_at=self._clock())
        with self._lock:
            self._members[card_id] = entry

    def sizes(self) -> dict[str, int]:
        now = self._clock()
        with self._lock:
            live_members = sum(
                1 for e in self._members.values()
                if now - e.inserted_at < self._member_ttl
            )
            return {
                "video_cache": 1 if self._snapshot.default_video is not None else 0,
                "member_cache": live_members,
                "rule_cache": len(self._snapshot.rules),
            }

    @property
    def last_refresh(self) -> float | None:
        """Clock reading of the last successful reload (None before the first)."""
        return self._last_refresh

    # -------------------------------------------------------------------
    # Administrative
    # -------------------------------------------------------------------
    def clear(self) -> None:
        """Drop every cached member.

        The rule snapshot stays in place until :meth:`initialize` swaps in a
        fresh one.
        """
        with self._lock:
            self._members = {}
        logger.info("Member cache cleared")

    # -------------------------------------------------------------------
    # Background refresh ticker
    # -------------------------------------------------------------------
    @property
    def refresh_running(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    def start_refresh_loop(self, *, run_immediately: bool = True) -> None:
        """Start the periodic refresh task on the running event loop.

        The first reload happens right away unless *run_immediately* is
        False (e.g. the caller already awaited :meth:`initialize`).
        """
        if self._refresh_task is not None:
            return

        async def _refresh_loop() -> None:
            if not run_immediately:
                await asyncio.sleep(self._refresh_interval)
            while True:
                try:
                    await asyncio.to_thread(self.refresh)
                except Exception:
                    logger.exception("Trigger cache refresh failed; keeping previous snapshot")
                await asyncio.sleep(self._refresh_interval)

        self._refresh_task = asyncio.get_running_loop().create_task(
            _refresh_loop(), name="trigger-cache-refresh"
        )
        logger.info("Trigger cache refresh loop started (every %ss)", self._refresh_interval)

    def stop_refresh_loop(self) -> None:
        """Cancel the refresh task."""
        if self._refresh_task:
            self._refresh_task.cancel()
            self._refresh_task = None
            logger.info("Trigger cache refresh loop stopped")
