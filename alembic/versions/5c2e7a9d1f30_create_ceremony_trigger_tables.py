"""Create ceremony video, rule, member, trigger and statistics tables

Revision ID: 5c2e7a9d1f30
Revises:
Create Date: 2026-10-19 09:12:41.518203

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '5c2e7a9d1f30'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create the five tables the trigger service reads and writes."""

    # --- ceremony_videos ---
    op.create_table(
        "ceremony_videos",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("file_url", sa.String(500), nullable=True),
        sa.Column("duration", sa.Integer, nullable=True),
        sa.Column("thumbnail_url", sa.String(500), nullable=True),
        sa.Column("file_size", sa.BigInteger, nullable=True),
        sa.Column("is_default", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    # --- video_play_rules ---
    op.create_table(
        "video_play_rules",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("rule_name", sa.String(100), nullable=True),
        sa.Column("rule_type", sa.String(20), nullable=False),
        sa.Column("conditions", sa.Text, nullable=True),
        sa.Column("priority", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "video_id",
            sa.Integer,
            sa.ForeignKey("ceremony_videos.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
    )
    op.create_index(
        "ix_play_rules_active_priority", "video_play_rules", ["is_active", "priority"],
    )

    # --- members ---
    op.create_table(
        "members",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("industry", sa.String(100), nullable=True),
        sa.Column("member_type", sa.String(50), nullable=True),
        sa.Column("nfc_card_id", sa.String(100), nullable=True, unique=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
    )

    # --- nfc_video_triggers ---
    op.create_table(
        "nfc_video_triggers",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("nfc_card_id", sa.String(100), nullable=False),
        sa.Column("member_id", sa.Integer, nullable=True),
        sa.Column(
            "video_id",
            sa.Integer,
            sa.ForeignKey("ceremony_videos.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("rule_id", sa.Integer, nullable=True),
        sa.Column("response_time_ms", sa.Integer, nullable=False, server_default="0"),
        sa.Column("device_info", postgresql.JSONB, nullable=True),
        sa.Column(
            "trigger_time",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("play_duration", sa.Integer, nullable=True),
        sa.Column("is_completed", sa.Boolean, nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_nfc_triggers_time", "nfc_video_triggers", ["trigger_time"])
    op.create_index(
        "ix_nfc_triggers_card_time", "nfc_video_triggers", ["nfc_card_id", "trigger_time"],
    )

    # --- video_play_statistics ---
    op.create_table(
        "video_play_statistics",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "video_id",
            sa.Integer,
            sa.ForeignKey("ceremony_videos.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("date", sa.Date, nullable=False),
        sa.Column("play_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("completion_rate", sa.Float, nullable=False, server_default="0"),
        sa.Column("total_duration", sa.BigInteger, nullable=False, server_default="0"),
        sa.UniqueConstraint("video_id", "date", name="uq_play_stats_video_date"),
    )


def downgrade() -> None:
    """Drop the trigger service tables."""
    op.drop_table("video_play_statistics")
    op.drop_index("ix_nfc_triggers_card_time", table_name="nfc_video_triggers")
    op.drop_index("ix_nfc_triggers_time", table_name="nfc_video_triggers")
    op.drop_table("nfc_video_triggers")
    op.drop_table("members")
    op.drop_index("ix_play_rules_active_priority", table_name="video_play_rules")
    op.drop_table("video_play_rules")
    op.drop_table("ceremony_videos")
