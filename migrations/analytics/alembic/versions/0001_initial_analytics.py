"""Create video engagement tables.

Revision ID: 0001_initial_analytics
Revises:
Create Date: 2026-10-16 09:00:00.000000

Changes:
  1. video_sessions: one row per client session token (unique session_id),
     furthest position, completion flag/timestamp, engagement counters and
     request context captured at session start.
  2. video_heatmap: per-video fixed-width segments, unique on
     (video_id, segment_start, segment_end).
  3. video_watch_progress: resume checkpoint, unique on (user_id, video_id).
  4. video_analytics_summary: projection rebuilt by the refresh job,
     keyed by (video_id, course_id).
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

revision: str = "0001_initial_analytics"
down_revision: str | None = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "video_sessions",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("session_id", sa.String(255), nullable=False),
        sa.Column("video_id", UUID(as_uuid=True), nullable=False),
        sa.Column("course_id", UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", UUID(as_uuid=True), nullable=True),
        sa.Column("lesson_id", sa.String(255), nullable=True),
        sa.Column("is_preview", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("video_duration_seconds", sa.Integer(), nullable=True),
        sa.Column("watch_time_seconds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "last_watch_time_delta_seconds", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("current_position_seconds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_position_seconds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completion_percentage", sa.Float(), nullable=False, server_default="0"),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("completed_at", TIMESTAMP(timezone=True), nullable=True),
        sa.Column("play_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("pause_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("seek_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("average_playback_speed", sa.Float(), nullable=False, server_default="1"),
        sa.Column("quality_changes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("device_type", sa.String(20), nullable=True),
        sa.Column("browser", sa.String(50), nullable=True),
        sa.Column("os", sa.String(50), nullable=True),
        sa.Column("referrer", sa.Text(), nullable=True),
        sa.Column(
            "started_at", TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")
        ),
        sa.Column(
            "last_updated_at",
            TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_video_sessions"),
        sa.UniqueConstraint("session_id", name="uq_video_sessions_session_id"),
        sa.CheckConstraint(
            "watch_time_seconds >= 0", name="ck_video_sessions_watch_time_non_negative"
        ),
        sa.CheckConstraint(
            "max_position_seconds >= 0", name="ck_video_sessions_max_position_non_negative"
        ),
        sa.CheckConstraint(
            "completion_percentage >= 0 AND completion_percentage <= 100",
            name="ck_video_sessions_completion_percentage_range",
        ),
    )
    op.create_index("ix_video_sessions_video_id", "video_sessions", ["video_id"])
    op.create_index("ix_video_sessions_course_id", "video_sessions", ["course_id"])
    op.create_index("ix_video_sessions_user_video", "video_sessions", ["user_id", "video_id"])
    op.create_index(
        "ix_video_sessions_video_started", "video_sessions", ["video_id", "started_at"]
    )

    op.create_table(
        "video_heatmap",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("video_id", UUID(as_uuid=True), nullable=False),
        sa.Column("segment_start", sa.Integer(), nullable=False),
        sa.Column("segment_end", sa.Integer(), nullable=False),
        sa.Column("view_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_watch_time_seconds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "last_aggregated_at",
            TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_video_heatmap"),
        sa.UniqueConstraint(
            "video_id",
            "segment_start",
            "segment_end",
            name="uq_video_heatmap_video_id_segment_start_segment_end",
        ),
        sa.CheckConstraint(
            "segment_start >= 0", name="ck_video_heatmap_segment_start_non_negative"
        ),
        sa.CheckConstraint(
            "segment_end > segment_start", name="ck_video_heatmap_segment_non_empty"
        ),
    )

    op.create_table(
        "video_watch_progress",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column("video_id", UUID(as_uuid=True), nullable=False),
        sa.Column("course_id", UUID(as_uuid=True), nullable=False),
        sa.Column("lesson_id", sa.String(255), nullable=True),
        sa.Column("current_position_seconds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("video_duration_seconds", sa.Integer(), nullable=True),
        sa.Column("progress_percentage", sa.Float(), nullable=False, server_default="0"),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("completed_at", TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "first_watched_at",
            TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "last_watched_at",
            TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_video_watch_progress"),
        sa.UniqueConstraint(
            "user_id", "video_id", name="uq_video_watch_progress_user_id_video_id"
        ),
    )
    op.create_index(
        "ix_video_watch_progress_user_course",
        "video_watch_progress",
        ["user_id", "course_id"],
    )

    op.create_table(
        "video_analytics_summary",
        sa.Column("video_id", UUID(as_uuid=True), nullable=False),
        sa.Column("course_id", UUID(as_uuid=True), nullable=False),
        sa.Column("is_preview", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("total_views", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unique_viewers", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unique_completers", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("avg_watch_time_seconds", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_watch_time_seconds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_watch_time_seconds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("avg_completion_percentage", sa.Float(), nullable=False, server_default="0"),
        sa.Column("completed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completion_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("drop_off_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("play_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("avg_play_count", sa.Float(), nullable=False, server_default="0"),
        sa.Column("avg_pause_count", sa.Float(), nullable=False, server_default="0"),
        sa.Column("avg_seek_count", sa.Float(), nullable=False, server_default="0"),
        sa.Column("avg_playback_speed", sa.Float(), nullable=False, server_default="1"),
        sa.Column("first_view_at", TIMESTAMP(timezone=True), nullable=True),
        sa.Column("last_view_at", TIMESTAMP(timezone=True), nullable=True),
        sa.Column("video_duration_seconds", sa.Integer(), nullable=True),
        sa.Column("refreshed_at", TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("video_id", "course_id", name="pk_video_analytics_summary"),
    )
    op.create_index(
        "ix_video_analytics_summary_course_id", "video_analytics_summary", ["course_id"]
    )
    op.create_index(
        "ix_video_analytics_summary_total_views", "video_analytics_summary", ["total_views"]
    )
    op.create_index(
        "ix_video_analytics_summary_completion_rate",
        "video_analytics_summary",
        ["completion_rate"],
    )


def downgrade() -> None:
    op.drop_index(
        "ix_video_analytics_summary_completion_rate", table_name="video_analytics_summary"
    )
    op.drop_index("ix_video_analytics_summary_total_views", table_name="video_analytics_summary")
    op.drop_index("ix_video_analytics_summary_course_id", table_name="video_analytics_summary")
    op.drop_table("video_analytics_summary")
    op.drop_index("ix_video_watch_progress_user_course", table_name="video_watch_progress")
    op.drop_table("video_watch_progress")
    op.drop_table("video_heatmap")
    op.drop_index("ix_video_sessions_video_started", table_name="video_sessions")
    op.drop_index("ix_video_sessions_user_video", table_name="video_sessions")
    op.drop_index("ix_video_sessions_course_id", table_name="video_sessions")
    op.drop_index("ix_video_sessions_video_id", table_name="video_sessions")
    op.drop_table("video_sessions")
