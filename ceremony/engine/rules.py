"""
ceremony.engine.rules — Rule Evaluation Pipeline
=================================================

Pure decision function: (rule snapshot, member, card id, clock, rng) →
:class:`Resolution`.  No database I/O, no HTTP I/O.

Algorithm:
  1. Walk the snapshot's rules in priority-descending, id-ascending order.
  2. The first rule whose predicate holds wins; its video is returned.
  3. No match → the default video, with ``rule_id=None``.
  4. No default either → :class:`~ceremony.errors.NoVideoResolvable`.

Every predicate except ``random`` is a pure function of its inputs.
``random`` draws from the injected RNG on every call, so repeated scans of
one card may legitimately pick different rules.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, tzinfo
from typing import TYPE_CHECKING

from ceremony.constants import DEFAULT_RULE_LABEL
from ceremony.engine.conditions import (
    DefaultCondition,
    IndustryCondition,
    MemberTypeCondition,
    RandomCondition,
    TimeWindowCondition,
)
from ceremony.engine.records import CachedRule, CachedVideo, MemberInfo, RuleSnapshot
from ceremony.errors import NoVideoResolvable

if TYPE_CHECKING:
    from ceremony.engine.cache import CacheManager

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Resolution — output of the pipeline
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class Resolution:
    video: CachedVideo
    rule_id: int | None = None
    rule_name: str | None = None

    @property
    def rule_applied(self) -> str:
        """Label for the response: the matched rule's name, else ``default``."""
        return self.rule_name or DEFAULT_RULE_LABEL


# ---------------------------------------------------------------------------
# Evaluation context
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class EvalContext:
    """Inputs shared by every predicate during one selection."""

    member: MemberInfo | None
    card_id: str
    hour: int
    rng: random.Random


# ---------------------------------------------------------------------------
# Predicates — pure functions (condition, ctx) → bool
# ---------------------------------------------------------------------------
def _match_default(condition: DefaultCondition, ctx: EvalContext) -> bool:
    return True


def _match_member_type(condition: MemberTypeCondition, ctx: EvalContext) -> bool:
    if ctx.member is None or ctx.member.member_type is None:
        return False
    return ctx.member.member_type in condition.member_types


def _match_industry(condition: IndustryCondition, ctx: EvalContext) -> bool:
    if ctx.member is None or ctx.member.industry is None:
        return False
    return ctx.member.industry in condition.industries


def _match_time_window(condition: TimeWindowCondition, ctx: EvalContext) -> bool:
    return condition.start_hour <= ctx.hour <= condition.end_hour


def _match_random(condition: RandomCondition, ctx: EvalContext) -> bool:
    return ctx.rng.random() < condition.probability


PREDICATES: dict[type, Callable[..., bool]] = {
    DefaultCondition: _match_default,
    MemberTypeCondition: _match_member_type,
    IndustryCondition: _match_industry,
    TimeWindowCondition: _match_time_window,
    RandomCondition: _match_random,
}


def rule_matches(rule: CachedRule, ctx: EvalContext) -> bool:
    predicate = PREDICATES.get(type(rule.condition))
    if predicate is None:
        return False
    return predicate(rule.condition, ctx)


# ---------------------------------------------------------------------------
# Main selection function
# ---------------------------------------------------------------------------
def select_video(
    snapshot: RuleSnapshot,
    member: MemberInfo | None,
    card_id: str,
    *,
    now: datetime,
    zone: tzinfo,
    rng: random.Random,
) -> Resolution:
    """Resolve the video for one scan.

    Parameters
    ----------
    snapshot : Rules (already in evaluation order) plus the default video.
    member : The scanning member, or None when unknown.
    card_id : The scanned card (for diagnostics only).
    now : Current instant; time-window rules use its hour in *zone*.
    zone : Server time zone.
    rng : Randomness source for ``random`` rules.

    Raises
    ------
    NoVideoResolvable
        No rule matched and no default video is cached.
    """
    ctx = EvalContext(
        member=member,
        card_id=card_id,
        hour=now.astimezone(zone).hour,
        rng=rng,
    )

    for rule in snapshot.rules:
        if rule_matches(rule, ctx):
            logger.debug("Card %s matched rule %d (%s)", card_id, rule.id, rule.rule_type)
            return Resolution(video=rule.video, rule_id=rule.id, rule_name=rule.name)

    if snapshot.default_video is not None:
        return Resolution(video=snapshot.default_video)

    raise NoVideoResolvable()


class RuleEngine:
    """Binds :func:`select_video` to a cache, a zone, a clock and an RNG.

    Usage::

        engine = RuleEngine(cache, zone=cfg.zone)
        resolution = engine.select(member, "04:A2:19:7F")

    Tests inject ``clock`` and ``rng`` for reproducible results.
    """

    def __init__(
        self,
        cache: CacheManager,
        *,
        zone: tzinfo = UTC,
        clock: Clock = utc_now,
        rng: random.Random | None = None,
    ) -> None:
        self._cache = cache
        self._zone = zone
        self._clock = clock
        self._rng = rng or random.Random()

    def select(self, member: MemberInfo | None, card_id: str) -> Resolution:
        return select_video(
            self._cache.snapshot(),
            member,
            card_id,
            now=self._clock(),
            zone=self._zone,
            rng=self._rng,
        )
