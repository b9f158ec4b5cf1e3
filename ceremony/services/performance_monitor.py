"""
ceremony.services.performance_monitor — Latency Counters & Reports
===================================================================

Two views of trigger latency:

* **Live** — :meth:`PerformanceMonitor.observe` is called (off the
  critical path) for every handled scan and keeps in-process counters
  since startup.
* **Persisted** — :meth:`PerformanceMonitor.report` aggregates the
  ``nfc_video_triggers`` journal over a date range, with a per-day
  breakdown in the server time zone.

A trigger is *fast* when ``response_time_ms <= sla_threshold_ms``.  The
performance score is the fast share as a whole percentage; the target
is met at ``score >= target_score``.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import asdict, dataclass, field
from datetime import UTC, date, datetime, time, timedelta, tzinfo

from sqlalchemy import Engine, case, func, select
from sqlalchemy.orm import Session

from ceremony.constants import (
    DEFAULT_PERFORMANCE_WINDOW_DAYS,
    DEFAULT_SLA_THRESHOLD_MS,
    DEFAULT_TARGET_SCORE,
)
from ceremony.database.models import DailyPlayStat, TriggerEvent
from ceremony.services.telemetry import local_day

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class PerformanceSummary:
    total_triggers: int = 0
    avg_response_time_ms: float = 0.0
    min_response_time_ms: int | None = None
    max_response_time_ms: int | None = None
    fast_responses: int = 0
    slow_responses: int = 0
    performance_score: int = 0
    target_met: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class DailyBreakdown:
    date: date
    trigger_count: int
    avg_response_time_ms: float
    completed_plays: int

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "trigger_count": self.trigger_count,
            "avg_response_time_ms": self.avg_response_time_ms,
            "completed_plays": self.completed_plays,
        }


@dataclass(frozen=True, slots=True)
class PerformanceReport:
    start_date: date
    end_date: date
    summary: PerformanceSummary
    daily: list[DailyBreakdown] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "period": {
                "start_date": self.start_date.isoformat(),
                "end_date": self.end_date.isoformat(),
            },
            "performance_summary": self.summary.to_dict(),
            "daily_statistics": [d.to_dict() for d in self.daily],
        }


def performance_score(fast: int, total: int) -> int:
    """Fast share as a whole percentage, rounded half up; 0 with no triggers."""
    if total <= 0:
        return 0
    return math.floor(fast * 100 / total + 0.5)


def utc_bounds(start: date, end: date, zone: tzinfo) -> tuple[datetime, datetime]:
    """``[start 00:00, end+1 00:00)`` in *zone*, expressed in UTC."""
    lo = datetime.combine(start, time.min, tzinfo=zone).astimezone(UTC)
    hi = datetime.combine(end + timedelta(days=1), time.min, tzinfo=zone).astimezone(UTC)
    return lo, hi


# ---------------------------------------------------------------------------
# PerformanceMonitor
# ---------------------------------------------------------------------------
class PerformanceMonitor:
    """Live latency counters plus persisted performance reports.

    ``observe`` may be called from any thread.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        sla_threshold_ms: int = DEFAULT_SLA_THRESHOLD_MS,
        target_score: int = DEFAULT_TARGET_SCORE,
        zone: tzinfo = UTC,
        window_days: int = DEFAULT_PERFORMANCE_WINDOW_DAYS,
    ) -> None:
        self.engine = engine
        self.sla_threshold_ms = sla_threshold_ms
        self.target_score = target_score
        self.zone = zone
        self.window_days = window_days

        self._lock = threading.Lock()
        self._count = 0
        self._total_ms = 0
        self._min_ms: int | None = None
        self._max_ms: int | None = None
        self._slow = 0

    # -------------------------------------------------------------------
    # Live counters
    # -------------------------------------------------------------------
    def observe(self, response_time_ms: int) -> None:
        with self._lock:
            self._count += 1
            self._total_ms += response_time_ms
            if self._min_ms is None or response_time_ms < self._min_ms:
                self._min_ms = response_time_ms
            if self._max_ms is None or response_time_ms > self._max_ms:
                self._max_ms = response_time_ms
            if response_time_ms > self.sla_threshold_ms:
                self._slow += 1

    def snapshot(self) -> PerformanceSummary:
        with self._lock:
            count, total_ms, slow = self._count, self._total_ms, self._slow
            min_ms, max_ms = self._min_ms, self._max_ms
        return self._summary(
            total=count,
            avg=(total_ms / count) if count else 0.0,
            min_ms=min_ms,
            max_ms=max_ms,
            fast=count - slow,
        )

    def _summary(
        self, *, total: int, avg: float, min_ms: int | None, max_ms: int | None, fast: int,
    ) -> PerformanceSummary:
        score = performance_score(fast, total)
        return PerformanceSummary(
            total_triggers=total,
            avg_response_time_ms=round(avg, 2),
            min_response_time_ms=min_ms,
            max_response_time_ms=max_ms,
            fast_responses=fast,
            slow_responses=total - fast,
            performance_score=score,
            target_met=total > 0 and score >= self.target_score,
        )

    # -------------------------------------------------------------------
    # Persisted report (synchronous — call via run_db)
    # -------------------------------------------------------------------
    def default_range(self, today: date | None = None) -> tuple[date, date]:
        """The trailing window ending *today* (local), inclusive."""
        end = today or datetime.now(self.zone).date()
        return end - timedelta(days=self.window_days - 1), end

    def report(self, start_date: date | None = None, end_date: date | None = None) -> PerformanceReport:
        """Aggregate the trigger journal between two local dates, inclusive."""
        default_start, default_end = self.default_range()
        start = start_date or (
            end_date - timedelta(days=self.window_days - 1) if end_date else default_start
        )
        end = end_date or default_end
        if start > end:
            start, end = end, start

        lo, hi = utc_bounds(start, end, self.zone)
        in_range = (TriggerEvent.trigger_time >= lo, TriggerEvent.trigger_time < hi)

        with Session(self.engine) as session:
            total, avg, min_ms, max_ms, fast = session.execute(
                select(
                    func.count(TriggerEvent.id),
                    func.avg(TriggerEvent.response_time_ms),
                    func.min(TriggerEvent.response_time_ms),
                    func.max(TriggerEvent.response_time_ms),
                    func.sum(case(
                        (TriggerEvent.response_time_ms <= self.sla_threshold_ms, 1),
                        else_=0,
                    )),
                ).where(*in_range)
            ).one()

            rows = session.execute(
                select(
                    TriggerEvent.trigger_time,
                    TriggerEvent.response_time_ms,
                    TriggerEvent.is_completed,
                ).where(*in_range)
            ).all()

        summary = self._summary(
            total=total or 0,
            avg=float(avg or 0.0),
            min_ms=min_ms,
            max_ms=max_ms,
            fast=int(fast or 0),
        )
        return PerformanceReport(
            start_date=start,
            end_date=end,
            summary=summary,
            daily=self._daily_breakdown(rows),
        )

    def _daily_breakdown(self, rows) -> list[DailyBreakdown]:
        # Grouped here rather than in SQL so the day boundary follows the
        # configured zone on every backend.
        buckets: dict[date, list[int]] = {}   # day → [count, total_ms, completed]
        for trigger_time, response_time_ms, is_completed in rows:
            bucket = buckets.setdefault(local_day(trigger_time, self.zone), [0, 0, 0])
            bucket[0] += 1
            bucket[1] += response_time_ms or 0
            bucket[2] += 1 if is_completed else 0

        return [
            DailyBreakdown(
                date=day,
                trigger_count=count,
                avg_response_time_ms=round(total_ms / count, 2),
                completed_plays=completed,
            )
            for day, (count, total_ms, completed) in sorted(buckets.items(), reverse=True)
        ]


# ---------------------------------------------------------------------------
# Per-video statistics
# ---------------------------------------------------------------------------
def load_video_statistics(
    engine: Engine, video_id: int, start_date: date | None = None, end_date: date | None = None,
) -> list[dict]:
    """Daily play statistics rows for one video, newest first."""
    stmt = select(DailyPlayStat).where(DailyPlayStat.video_id == video_id)
    if start_date is not None:
        stmt = stmt.where(DailyPlayStat.stat_date >= start_date)
    if end_date is not None:
        stmt = stmt.where(DailyPlayStat.stat_date <= end_date)
    stmt = stmt.order_by(DailyPlayStat.stat_date.desc())

    with Session(engine) as session:
        return [
            {
                "date": row.stat_date.isoformat(),
                "play_count": row.play_count,
                "completion_rate": round(row.completion_rate, 2),
                "total_duration": row.total_duration,
            }
            for row in session.scalars(stmt)
        ]
