"""
ceremony.database.models — SQLAlchemy 2.0 Data Models
======================================================

ORM mappings for the tables the trigger service touches.  Videos, rules
and members are authored by the administrative surface and are read-only
here; trigger events and daily play statistics are written only by this
service.

Tables:
- ceremony_videos        — Playable ceremony videos (one may be the default)
- video_play_rules       — Prioritised, typed predicates bound to a video
- members                — Chapter members, keyed by their NFC card id
- nfc_video_triggers     — One row per NFC scan that resolved a video
- video_play_statistics  — Rolling per-(video, day) play counters
"""

from __future__ import annotations

import enum
from datetime import date, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class RuleType(enum.StrEnum):
    """Predicate families a play rule can use."""
    DEFAULT = "default"
    MEMBER_TYPE = "member_type"
    INDUSTRY = "industry"
    TIME_BASED = "time_based"
    RANDOM = "random"


# ---------------------------------------------------------------------------
# CeremonyVideo — playable ceremony videos
# ---------------------------------------------------------------------------
class CeremonyVideo(Base):
    __tablename__ = "ceremony_videos"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    file_url: Mapped[str | None] = mapped_column(String(500), default=None)
    duration: Mapped[int | None] = mapped_column(Integer, default=None)  # seconds
    thumbnail_url: Mapped[str | None] = mapped_column(String(500), default=None)
    file_size: Mapped[int | None] = mapped_column(BigInteger, default=None)  # bytes
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    rules: Mapped[list[PlayRule]] = relationship(back_populates="video")

    def __repr__(self) -> str:
        return f"<CeremonyVideo id={self.id} title={self.title!r} default={self.is_default}>"


# ---------------------------------------------------------------------------
# PlayRule — prioritised predicate bound to one video
# ---------------------------------------------------------------------------
class PlayRule(Base):
    """Admin-authored rule.

    ``conditions`` holds a JSON document whose shape depends on
    ``rule_type``; it is parsed into a typed condition when the cache
    loads (see :mod:`ceremony.engine.conditions`).
    """
    __tablename__ = "video_play_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rule_name: Mapped[str | None] = mapped_column(String(100), default=None)
    rule_type: Mapped[str] = mapped_column(String(20), nullable=False)
    conditions: Mapped[str | None] = mapped_column(Text, default=None)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    video_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("ceremony_videos.id", ondelete="CASCADE"), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    video: Mapped[CeremonyVideo] = relationship(back_populates="rules")

    __table_args__ = (
        Index("ix_play_rules_active_priority", "is_active", "priority"),
    )

    def __repr__(self) -> str:
        return (
            f"<PlayRule id={self.id} type={self.rule_type!r} "
            f"priority={self.priority} video={self.video_id}>"
        )


# ---------------------------------------------------------------------------
# Member — chapter member identified by NFC card
# ---------------------------------------------------------------------------
class Member(Base):
    __tablename__ = "members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    industry: Mapped[str | None] = mapped_column(String(100), default=None)
    member_type: Mapped[str | None] = mapped_column(String(50), default=None)
    nfc_card_id: Mapped[str | None] = mapped_column(String(100), unique=True, default=None)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        return f"<Member id={self.id} name={self.name!r} card={self.nfc_card_id!r}>"


# ---------------------------------------------------------------------------
# TriggerEvent — append-only scan journal
# ---------------------------------------------------------------------------
class TriggerEvent(Base):
    """One resolved NFC scan.

    ``rule_id`` is NULL when the default video was used as a fallback.
    ``play_duration`` / ``is_completed`` are filled in later by the
    playback surface via the completion endpoint.
    """
    __tablename__ = "nfc_video_triggers"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    nfc_card_id: Mapped[str] = mapped_column(String(100), nullable=False)
    member_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    video_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("ceremony_videos.id", ondelete="CASCADE"), nullable=False
    )
    rule_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_time_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    device_info: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    trigger_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    play_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)  # ms
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (
        Index("ix_nfc_triggers_time", "trigger_time"),
        Index("ix_nfc_triggers_card_time", "nfc_card_id", "trigger_time"),
    )

    def __repr__(self) -> str:
        return (
            f"<TriggerEvent id={self.id} card={self.nfc_card_id!r} "
            f"video={self.video_id} rule={self.rule_id}>"
        )


# ---------------------------------------------------------------------------
# DailyPlayStat — per-(video, day) rolling counters
# ---------------------------------------------------------------------------
class DailyPlayStat(Base):
    __tablename__ = "video_play_statistics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    video_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("ceremony_videos.id", ondelete="CASCADE"), nullable=False
    )
    stat_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    play_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completion_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_duration: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)  # ms

    __table_args__ = (
        UniqueConstraint("video_id", "date", name="uq_play_stats_video_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<DailyPlayStat video={self.video_id} date={self.stat_date} "
            f"plays={self.play_count} rate={self.completion_rate:.2f}>"
        )
