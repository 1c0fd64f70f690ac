"""Initial schema: users, sessions, schedules, achievements, friendships.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

TS = sa.DateTime(timezone=True)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(20), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("password_hash", sa.String(256), nullable=False),
        sa.Column("avatar_url", sa.Text(), nullable=True),
        sa.Column("friend_invite_code", sa.String(8), nullable=False),
        sa.Column("total_study_time", sa.BigInteger(), server_default="0", nullable=False),
        sa.Column("weekly_study_time", sa.BigInteger(), server_default="0", nullable=False),
        sa.Column("monthly_study_time", sa.BigInteger(), server_default="0", nullable=False),
        sa.Column("stats_week_start", sa.Date(), nullable=True),
        sa.Column("stats_month_start", sa.Date(), nullable=True),
        sa.Column("daily_goal", sa.BigInteger(), server_default="7200000", nullable=False),
        sa.Column("current_streak", sa.Integer(), server_default="0", nullable=False),
        sa.Column("longest_streak", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_study_date", sa.Date(), nullable=True),
        sa.Column("is_email_verified", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("email_verification_otp", sa.String(64), nullable=True),
        sa.Column("otp_expires_at", TS, nullable=True),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("updated_at", TS, nullable=True),
        sa.Column("last_login", TS, nullable=True),
        sa.Column("version_id", sa.Integer(), server_default="1", nullable=False),
        sa.UniqueConstraint("username", name="users_username_key"),
        sa.UniqueConstraint("email", name="users_email_key"),
        sa.UniqueConstraint("friend_invite_code", name="users_friend_invite_code_key"),
    )

    op.create_table(
        "study_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("start_time", TS, nullable=False),
        sa.Column("end_time", TS, nullable=False),
        sa.Column("duration", sa.BigInteger(), nullable=False),
        sa.Column("subject", sa.String(100), nullable=False),
        sa.Column("notes", sa.Text(), nullable=False),
        sa.Column("created_at", TS, nullable=False),
        sa.CheckConstraint("duration >= 0", name="ck_study_sessions_duration_non_negative"),
    )
    op.create_index("ix_study_sessions_user_start", "study_sessions", ["user_id", "start_time"])

    op.create_table(
        "study_schedules",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("subject", sa.String(100), nullable=False),
        sa.Column("start_time", TS, nullable=False),
        sa.Column("end_time", TS, nullable=True),
        sa.Column("recurring", sa.String(8), server_default="none", nullable=False),
        sa.Column("completed", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("completed_at", TS, nullable=True),
        sa.Column("last_reminder_for", TS, nullable=True),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("updated_at", TS, nullable=True),
        sa.CheckConstraint(
            "recurring IN ('none', 'daily', 'weekly', 'monthly')",
            name="ck_study_schedules_recurring",
        ),
    )
    op.create_index("ix_study_schedules_user_id", "study_schedules", ["user_id"])

    op.create_table(
        "schedule_completions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "schedule_id", sa.Integer(), sa.ForeignKey("study_schedules.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("date", TS, nullable=False),
        sa.Column("duration", sa.BigInteger(), nullable=False),
        sa.Column("actual_start_time", TS, nullable=False),
        sa.Column("actual_end_time", TS, nullable=False),
    )
    op.create_index("ix_schedule_completions_schedule_id", "schedule_completions", ["schedule_id"])

    op.create_table(
        "achievements",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("unlocked_at", TS, nullable=False),
        sa.UniqueConstraint("user_id", "type", name="achievements_user_id_key"),
    )

    op.create_table(
        "friendships",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("friend_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", TS, nullable=False),
        sa.UniqueConstraint("user_id", "friend_id", name="friendships_user_id_key"),
        sa.CheckConstraint("user_id <> friend_id", name="ck_friendships_not_self"),
    )
    op.create_index("ix_friendships_friend_id", "friendships", ["friend_id"])


def downgrade() -> None:
    op.drop_table("friendships")
    op.drop_table("achievements")
    op.drop_table("schedule_completions")
    op.drop_table("study_schedules")
    op.drop_table("study_sessions")
    op.drop_table("users")
