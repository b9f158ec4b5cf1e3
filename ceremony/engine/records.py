"""
ceremony.engine.records — Cached Snapshots
===========================================

Immutable, detached copies of the rows the trigger path needs.  The cache
builds these once per refresh; the rule engine and routes only ever see
these objects, never live ORM instances, so a refresh can swap the whole
set without readers holding stale sessions.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ceremony.database.models import CeremonyVideo, Member
from ceremony.engine.conditions import Condition


@dataclass(frozen=True, slots=True)
class CachedVideo:
    id: int
    title: str
    file_url: str | None = None
    duration: int | None = None
    thumbnail_url: str | None = None
    file_size: int | None = None

    @classmethod
    def from_row(cls, row: CeremonyVideo) -> CachedVideo:
        return cls(
            id=row.id,
            title=row.title,
            file_url=row.file_url,
            duration=row.duration,
            thumbnail_url=row.thumbnail_url,
            file_size=row.file_size,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "file_url": self.file_url,
            "duration": self.duration,
            "thumbnail_url": self.thumbnail_url,
        }


@dataclass(frozen=True, slots=True)
class CachedRule:
    """A rule joined with its (active) video and parsed condition."""

    id: int
    rule_type: str
    condition: Condition
    priority: int
    video: CachedVideo
    name: str | None = None


@dataclass(frozen=True, slots=True)
class MemberInfo:
    id: int
    name: str
    industry: str | None = None
    member_type: str | None = None

    @classmethod
    def from_row(cls, row: Member) -> MemberInfo:
        return cls(
            id=row.id,
            name=row.name,
            industry=row.industry,
            member_type=row.member_type,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "industry": self.industry,
            "member_type": self.member_type,
        }


def rule_order(rule: CachedRule) -> tuple[int, int]:
    """Sort key: priority descending, then rule id ascending."""
    return (-rule.priority, rule.id)


@dataclass(frozen=True, slots=True)
class RuleSnapshot:
    """Everything rule evaluation reads, swapped in as a single reference.

    ``rules`` is always stored in evaluation order (see :func:`rule_order`).
    """

    default_video: CachedVideo | None = None
    rules: tuple[CachedRule, ...] = field(default_factory=tuple)

    @classmethod
    def build(
        cls, default_video: CachedVideo | None, rules: list[CachedRule] | tuple[CachedRule, ...],
    ) -> RuleSnapshot:
        return cls(default_video=default_video, rules=tuple(sorted(rules, key=rule_order)))

    @property
    def rule_ids(self) -> list[int]:
        return [r.id for r in self.rules]
