"""
ceremony.engine.conditions — Typed Rule Conditions
===================================================

Each play rule stores its conditions as a JSON document whose shape
depends on ``rule_type``::

    default      → {} (ignored)
    member_type  → {"member_types": ["Core", "Gold"]}
    industry     → {"industries": ["Finance", "Law"]}
    time_based   → {"start_hour": 8, "end_hour": 11}
    random       → {"probability": 0.3}

:func:`parse_conditions` turns that document into one of the frozen
dataclasses below.  Parsing happens once, when the cache loads, so a
malformed rule fails loudly at refresh time instead of silently never
matching on the trigger path.

This module is pure — no database I/O.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Union

from ceremony.database.models import RuleType
from ceremony.errors import MalformedConditions

__all__ = [
    "Condition",
    "DefaultCondition",
    "IndustryCondition",
    "MemberTypeCondition",
    "RandomCondition",
    "TimeWindowCondition",
    "parse_conditions",
]

DEFAULT_RANDOM_PROBABILITY = 0.5


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class DefaultCondition:
    """Always matches."""


@dataclass(frozen=True, slots=True)
class MemberTypeCondition:
    member_types: frozenset[str]


@dataclass(frozen=True, slots=True)
class IndustryCondition:
    industries: frozenset[str]


@dataclass(frozen=True, slots=True)
class TimeWindowCondition:
    """Inclusive hour window ``[start_hour, end_hour]`` in the server zone."""

    start_hour: int
    end_hour: int


@dataclass(frozen=True, slots=True)
class RandomCondition:
    probability: float


Condition = Union[
    DefaultCondition,
    MemberTypeCondition,
    IndustryCondition,
    TimeWindowCondition,
    RandomCondition,
]


# ---------------------------------------------------------------------------
# Per-type parsers — (rule_type, payload dict) → Condition
# ---------------------------------------------------------------------------
def _string_set(rule_type: str, payload: dict, key: str) -> frozenset[str]:
    values = payload.get(key)
    if not isinstance(values, list) or not values:
        raise MalformedConditions(rule_type, f"'{key}' must be a non-empty list")
    if not all(isinstance(v, str) for v in values):
        raise MalformedConditions(rule_type, f"'{key}' must only contain strings")
    return frozenset(values)


def _hour(rule_type: str, payload: dict, key: str) -> int:
    value = payload.get(key)
    if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= 23:
        raise MalformedConditions(rule_type, f"'{key}' must be an hour between 0 and 23")
    return value


def _parse_default(payload: dict) -> Condition:
    return DefaultCondition()


def _parse_member_type(payload: dict) -> Condition:
    return MemberTypeCondition(_string_set(RuleType.MEMBER_TYPE, payload, "member_types"))


def _parse_industry(payload: dict) -> Condition:
    return IndustryCondition(_string_set(RuleType.INDUSTRY, payload, "industries"))


def _parse_time_window(payload: dict) -> Condition:
    start = _hour(RuleType.TIME_BASED, payload, "start_hour")
    end = _hour(RuleType.TIME_BASED, payload, "end_hour")
    if start > end:
        raise MalformedConditions(RuleType.TIME_BASED, "start_hour is after end_hour")
    return TimeWindowCondition(start_hour=start, end_hour=end)


def _parse_random(payload: dict) -> Condition:
    value = payload.get("probability", DEFAULT_RANDOM_PROBABILITY)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedConditions(RuleType.RANDOM, "'probability' must be a number")
    if not 0.0 <= value <= 1.0:
        raise MalformedConditions(RuleType.RANDOM, "'probability' must be within [0, 1]")
    return RandomCondition(probability=float(value))


CONDITION_PARSERS: dict[str, Callable[[dict], Condition]] = {
    RuleType.DEFAULT: _parse_default,
    RuleType.MEMBER_TYPE: _parse_member_type,
    RuleType.INDUSTRY: _parse_industry,
    RuleType.TIME_BASED: _parse_time_window,
    RuleType.RANDOM: _parse_random,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def parse_conditions(rule_type: str, raw: str | dict | None) -> Condition:
    """Parse a stored conditions document for *rule_type*.

    *raw* may be the JSON text as stored, an already-decoded dict, or
    ``None`` (treated as an empty document).  A random rule with no
    document never fires; the default probability only fills in a
    missing key.

    Raises
    ------
    MalformedConditions
        Unknown rule type, invalid JSON, or a payload that does not fit
        the rule type.
    """
    parser = CONDITION_PARSERS.get(rule_type)
    if parser is None:
        raise MalformedConditions(str(rule_type), "unknown rule type")

    payload: Any
    if raw is None or raw == "":
        payload = None
    elif isinstance(raw, str):
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise MalformedConditions(rule_type, f"invalid JSON ({exc.msg})") from exc
    else:
        payload = raw

    if payload is None:
        if rule_type == RuleType.RANDOM:
            return RandomCondition(probability=0.0)
        payload = {}
    if not isinstance(payload, dict):
        raise MalformedConditions(rule_type, "conditions must be a JSON object")
    return parser(payload)
