"""
ceremony.services.telemetry — Trigger Journal & Play Statistics Writer
=======================================================================

Central write path for trigger telemetry.

Responsibilities:
1. Insert one ``nfc_video_triggers`` row per resolved scan.
2. Upsert the ``video_play_statistics`` row for (video, local day) with
   ``play_count += 1`` in the same transaction.
3. Apply completion signals from the playback surface (duration,
   completion flag, rolling completion rate).

**Hot-path safety:** the trigger path never waits on any of this.  Writes
are handed to a dedicated thread pool through :meth:`AsyncTelemetry.submit`,
whose error boundary logs and drops failures.  Nothing is retried.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, tzinfo
from typing import Any

from sqlalchemy import Date, Engine, Integer, bindparam, select, text

from ceremony.constants import DEFAULT_TELEMETRY_WORKERS
from ceremony.database.engine import get_session
from ceremony.database.models import DailyPlayStat, TriggerEvent
from ceremony.errors import TriggerNotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TriggerRecord:
    """Everything persisted about one resolved scan."""

    nfc_card_id: str
    video_id: int
    response_time_ms: int
    member_id: int | None = None
    rule_id: int | None = None
    device_info: dict[str, Any] | None = None
    trigger_time: datetime = field(default_factory=lambda: datetime.now(UTC))


def local_day(moment: datetime, zone: tzinfo) -> date:
    """Calendar day of *moment* in *zone*.  Naive values are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(zone).date()


def rolled_completion_rate(old_rate: float, play_count: int) -> float:
    """Fold one completed play into the stored rate.

    ``((old_rate * (play_count - 1)) + 100) / play_count``, where
    *play_count* already includes the play being completed.
    """
    return ((old_rate * (play_count - 1)) + 100) / play_count


# UPSERT (ON CONFLICT … DO UPDATE) keeps concurrent scans of one video atomic
_UPSERT_DAILY_STAT = text("""
    INSERT INTO video_play_statistics
        (video_id, date, play_count, completion_rate, total_duration)
    VALUES (:video_id, :day, 1, 0, 0)
    ON CONFLICT (video_id, date)
    DO UPDATE SET play_count = video_play_statistics.play_count + 1
""").bindparams(bindparam("video_id", type_=Integer), bindparam("day", type_=Date))


# ---------------------------------------------------------------------------
# AsyncTelemetry — background writer
# ---------------------------------------------------------------------------
class AsyncTelemetry:
    """Fire-and-forget persistence for trigger events.

    :meth:`record` and :meth:`complete` are synchronous.  The trigger
    handler schedules :meth:`record` through :meth:`submit`; the completion
    route awaits :meth:`complete` via ``run_db`` because its caller wants
    the outcome.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        zone: tzinfo = UTC,
        max_workers: int = DEFAULT_TELEMETRY_WORKERS,
    ) -> None:
        self.engine = engine
        self.zone = zone
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="telemetry")

    # -------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------
    def submit(self, fn: Callable[..., Any], *args: Any) -> Future | None:
        """Run ``fn(*args)`` on the telemetry pool inside an error boundary.

        Returns the future (tests may wait on it) or None if the pool has
        already been shut down.
        """
        try:
            return self._pool.submit(self._guarded, fn, *args)
        except RuntimeError:
            logger.warning("Telemetry pool is shut down; dropping %s", getattr(fn, "__name__", fn))
            return None

    @staticmethod
    def _guarded(fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return fn(*args)
        except Exception:
            logger.exception("Telemetry task %s failed", getattr(fn, "__name__", fn))
            return None

    def shutdown(self, wait: bool = True) -> None:
        """Drain queued writes and stop the pool."""
        self._pool.shutdown(wait=wait)
        logger.info("Telemetry pool shut down")

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------
    def record(self, event: TriggerRecord) -> int:
        """Journal one scan and bump its daily play counter.

        Returns the new trigger id.
        """
        day = local_day(event.trigger_time, self.zone)
        with get_session(self.engine) as session:
            row = TriggerEvent(
                nfc_card_id=event.nfc_card_id,
                member_id=event.member_id,
                video_id=event.video_id,
                rule_id=event.rule_id,
                response_time_ms=event.response_time_ms,
                device_info=event.device_info,
                trigger_time=event.trigger_time,
            )
            session.add(row)
            session.flush()
            session.execute(_UPSERT_DAILY_STAT, {"video_id": event.video_id, "day": day})
            trigger_id = row.id

        logger.debug(
            "Recorded trigger %d (card=%s video=%d rule=%s %dms)",
            trigger_id, event.nfc_card_id, event.video_id, event.rule_id,
            event.response_time_ms,
        )
        return trigger_id

    def complete(self, trigger_id: int, actual_duration_ms: int, completed: bool) -> None:
        """Apply a playback completion signal.

        The trigger row always gets the duration and flag.  The first
        completed signal for a trigger also rolls the completion rate and
        adds the duration on the stat row for its video and local day;
        repeats leave the stat row alone.  The stat row is read with a row
        lock so concurrent completions of the same (video, day) serialise.

        Raises
        ------
        TriggerNotFound
            If *trigger_id* does not exist.
        """
        with get_session(self.engine) as session:
            trigger = session.get(TriggerEvent, trigger_id)
            if trigger is None:
                raise TriggerNotFound(trigger_id)

            already_completed = trigger.is_completed
            trigger.play_duration = actual_duration_ms
            trigger.is_completed = completed or already_completed

            if not completed:
                return
            if already_completed:
                logger.info("Trigger %d already completed; statistics unchanged", trigger_id)
                return

            day = local_day(trigger.trigger_time, self.zone)
            stat = session.scalars(
                select(DailyPlayStat)
                .where(
                    DailyPlayStat.video_id == trigger.video_id,
                    DailyPlayStat.stat_date == day,
                )
                .with_for_update()
            ).first()

            if stat is None or stat.play_count < 1:
                logger.warning(
                    "No play statistics for video %d on %s; trigger %d updated only",
                    trigger.video_id, day, trigger_id,
                )
                return

            stat.completion_rate = rolled_completion_rate(stat.completion_rate, stat.play_count)
            stat.total_duration = (stat.total_duration or 0) + actual_duration_ms

        logger.info(
            "Trigger %d completed (%dms) — video %d rate now %.2f",
            trigger_id, actual_duration_ms, trigger.video_id, stat.completion_rate,
        )
