"""
ceremony.services.trigger_service — NFC Trigger Handling
=========================================================

The latency-critical path: card id in, video out, within the SLA.

Pipeline for one scan:
  1. Validate the card id.
  2. Member from the cache; on a miss, one bounded datastore read.
     Timeouts and errors degrade to "member unknown".
  3. Rule selection against the cached snapshot (no I/O).
  4. Measure elapsed time and build the result.
  5. Hand the journal write and latency observation to the telemetry
     pool.  Neither is awaited.

Sync DB helpers used by the routes (:func:`find_member_by_card`,
:func:`load_preload_videos`) live here too and are called via ``run_db``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from ceremony.constants import DEFAULT_MEMBER_LOOKUP_TIMEOUT_MS, DEFAULT_SLA_THRESHOLD_MS
from ceremony.database.engine import run_db_with_timeout
from ceremony.database.models import CeremonyVideo, Member
from ceremony.engine.cache import CacheManager
from ceremony.engine.records import CachedVideo, MemberInfo
from ceremony.engine.rules import Resolution, RuleEngine
from ceremony.errors import InvalidRequest, NoVideoResolvable
from ceremony.services.performance_monitor import PerformanceMonitor
from ceremony.services.telemetry import AsyncTelemetry, TriggerRecord

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Sync DB helpers (call via run_db)
# ---------------------------------------------------------------------------
def find_member_by_card(engine: Engine, card_id: str) -> MemberInfo | None:
    """Active member bound to *card_id*, or None."""
    with Session(engine) as session:
        row = session.scalars(
            select(Member).where(Member.nfc_card_id == card_id, Member.is_active.is_(True))
        ).first()
        return MemberInfo.from_row(row) if row is not None else None


def load_preload_videos(engine: Engine, video_ids: Iterable[int]) -> dict[str, Any]:
    """Descriptors for the requested active videos plus their combined size."""
    ids = sorted(set(video_ids))
    with Session(engine) as session:
        rows = session.scalars(
            select(CeremonyVideo)
            .where(CeremonyVideo.id.in_(ids), CeremonyVideo.is_active.is_(True))
            .order_by(CeremonyVideo.id)
        ).all()
        videos = [CachedVideo.from_row(r) for r in rows]

    return {
        "preload_videos": [{**v.to_dict(), "file_size": v.file_size} for v in videos],
        "total_size": sum(v.file_size or 0 for v in videos),
    }


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class TriggerResult:
    video: CachedVideo
    member: MemberInfo | None
    rule_applied: str
    response_time_ms: int
    cache_hit: bool

    def to_dict(self) -> dict:
        return {
            "video": self.video.to_dict(),
            "member": self.member.to_dict() if self.member else None,
            "rule_applied": self.rule_applied,
            "response_time_ms": self.response_time_ms,
            "cache_hit": self.cache_hit,
        }


# ---------------------------------------------------------------------------
# TriggerHandler
# ---------------------------------------------------------------------------
class TriggerHandler:
    """Resolves one NFC scan to a video.

    Usage::

        handler = TriggerHandler(engine, cache, rules, telemetry, monitor)
        result = await handler.handle("04:A2:19:7F", {"reader": "door-1"})
    """

    def __init__(
        self,
        engine: Engine,
        cache: CacheManager,
        rules: RuleEngine,
        telemetry: AsyncTelemetry,
        monitor: PerformanceMonitor,
        *,
        member_lookup_timeout_ms: int = DEFAULT_MEMBER_LOOKUP_TIMEOUT_MS,
        sla_threshold_ms: int = DEFAULT_SLA_THRESHOLD_MS,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.engine = engine
        self.cache = cache
        self.rules = rules
        self.telemetry = telemetry
        self.monitor = monitor
        self.member_lookup_timeout_ms = member_lookup_timeout_ms
        self.sla_threshold_ms = sla_threshold_ms
        self._timer = timer

    async def handle(self, nfc_card_id: str | None, device_info: dict | None = None) -> TriggerResult:
        """Resolve *nfc_card_id* to a video.

        Raises
        ------
        InvalidRequest
            Blank or missing card id.
        NoVideoResolvable
            Nothing matched and no default video is cached.
        """
        started = self._timer()
        trigger_time = datetime.now(UTC)

        card_id = (nfc_card_id or "").strip()
        if not card_id:
            raise InvalidRequest("nfc_card_id is required")

        try:
            member, cache_hit = await self._resolve_member(card_id)
            resolution = self.rules.select(member, card_id)
        except NoVideoResolvable:
            raise
        except Exception:
            logger.exception("Selection failed for card %s; retrying without member", card_id)
            member, cache_hit = None, False
            resolution = self.rules.select(None, card_id)

        elapsed_ms = int(round((self._timer() - started) * 1000))
        if elapsed_ms > self.sla_threshold_ms:
            logger.warning(
                "Trigger for card %s took %dms (SLA %dms)",
                card_id, elapsed_ms, self.sla_threshold_ms,
            )

        self._schedule_telemetry(card_id, member, resolution, elapsed_ms, device_info, trigger_time)

        return TriggerResult(
            video=resolution.video,
            member=member,
            rule_applied=resolution.rule_applied,
            response_time_ms=elapsed_ms,
            cache_hit=cache_hit,
        )

    async def _resolve_member(self, card_id: str) -> tuple[MemberInfo | None, bool]:
        """(member or None, whether it came from the cache)."""
        cached = self.cache.get_member(card_id)
        if cached is not None:
            return cached, True

        try:
            member = await run_db_with_timeout(
                self.member_lookup_timeout_ms / 1000, find_member_by_card, self.engine, card_id,
            )
        except TimeoutError:
            logger.warning(
                "Member lookup for card %s exceeded %dms; treating as unknown",
                card_id, self.member_lookup_timeout_ms,
            )
            return None, False
        except Exception as exc:
            logger.warning("Member lookup for card %s failed (%s); treating as unknown", card_id, exc)
            return None, False

        if member is not None:
            self.cache.put_member(card_id, member)
        return member, False

    def _schedule_telemetry(
        self,
        card_id: str,
        member: MemberInfo | None,
        resolution: Resolution,
        elapsed_ms: int,
        device_info: dict | None,
        trigger_time: datetime,
    ) -> None:
        record = TriggerRecord(
            nfc_card_id=card_id,
            video_id=resolution.video.id,
            response_time_ms=elapsed_ms,
            member_id=member.id if member else None,
            rule_id=resolution.rule_id,
            device_info=device_info,
            trigger_time=trigger_time,
        )
        self.telemetry.submit(self.telemetry.record, record)
        self.telemetry.submit(self.monitor.observe, elapsed_ms)
