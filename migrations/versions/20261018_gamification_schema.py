"""Create profiles, missions, push and cron run tables."""

from alembic import op
import sqlalchemy as sa

revision = "20261018_gamification_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=True, unique=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("current_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("longest_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_workout_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("timezone", sa.String(length=64), nullable=True, server_default="UTC"),
        *_timestamps(),
        sa.CheckConstraint("current_streak >= 0", name="ck_profiles_current_streak_non_negative"),
        sa.CheckConstraint(
            "longest_streak >= current_streak",
            name="ck_profiles_longest_streak_covers_current",
        ),
        sa.CheckConstraint("status IN ('active', 'inactive')", name="ck_profiles_status_valid"),
    )
    op.create_index("ix_profiles_status", "profiles", ["status"])

    op.create_table(
        "missions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("target_value", sa.Integer(), nullable=False),
        sa.Column("xp_reward", sa.Integer(), nullable=False),
        sa.Column("criteria_json", sa.JSON(), nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("target_value > 0", name="ck_missions_target_positive"),
        sa.CheckConstraint("xp_reward > 0", name="ck_missions_xp_positive"),
    )
    op.create_index("ix_missions_type", "missions", ["type"])
    op.create_index("ix_missions_end_date", "missions", ["end_date"])

    op.create_table(
        "user_missions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("mission_id", sa.String(length=36), nullable=False),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column(
            "assigned_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["mission_id"], ["missions.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "mission_id", name="uq_user_missions_user_mission"),
        sa.CheckConstraint("progress >= 0", name="ck_user_missions_progress_non_negative"),
        sa.CheckConstraint(
            "status IN ('active', 'completed', 'expired')",
            name="ck_user_missions_status_valid",
        ),
    )
    op.create_index("ix_user_missions_user_id", "user_missions", ["user_id"])
    op.create_index("ix_user_missions_mission_id", "user_missions", ["mission_id"])
    op.create_index("ix_user_missions_status", "user_missions", ["status"])

    op.create_table(
        "user_devices",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("fcm_token", sa.Text(), nullable=False, unique=True),
        sa.Column("device_type", sa.String(length=16), nullable=True),
        sa.Column("device_name", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_user_devices_user_id", "user_devices", ["user_id"])
    op.create_index("ix_user_devices_active", "user_devices", ["is_active"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "sent_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_is_read", "notifications", ["is_read"])
    op.create_index("ix_notifications_type", "notifications", ["type"])

    op.create_table(
        "cron_runs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("job_type", sa.String(length=32), nullable=False),
        sa.Column("ok", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("status", sa.String(length=16), nullable=True),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Float(), nullable=True),
        sa.Column("missions_generated", sa.Integer(), nullable=True),
        sa.Column("assignments_created", sa.Integer(), nullable=True),
        sa.Column("missions_expired", sa.Integer(), nullable=True),
        sa.Column("users_processed", sa.Integer(), nullable=True),
        sa.Column("streaks_broken", sa.Integer(), nullable=True),
        sa.Column("notifications_sent", sa.Integer(), nullable=True),
        sa.Column("error_type", sa.String(length=120), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("traceback", sa.Text(), nullable=True),
        sa.Column("request_id", sa.String(length=128), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
    )
    op.create_index("ix_cron_runs_job_type", "cron_runs", ["job_type"])
    op.create_index("ix_cron_runs_job_type_started_at", "cron_runs", ["job_type", "started_at"])


def downgrade() -> None:
    op.drop_index("ix_cron_runs_job_type_started_at", table_name="cron_runs")
    op.drop_index("ix_cron_runs_job_type", table_name="cron_runs")
    op.drop_table("cron_runs")
    op.drop_index("ix_notifications_type", table_name="notifications")
    op.drop_index("ix_notifications_is_read", table_name="notifications")
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_user_devices_active", table_name="user_devices")
    op.drop_index("ix_user_devices_user_id", table_name="user_devices")
    op.drop_table("user_devices")
    op.drop_index("ix_user_missions_status", table_name="user_missions")
    op.drop_index("ix_user_missions_mission_id", table_name="user_missions")
    op.drop_index("ix_user_missions_user_id", table_name="user_missions")
    op.drop_table("user_missions")
    op.drop_index("ix_missions_end_date", table_name="missions")
    op.drop_index("ix_missions_type", table_name="missions")
    op.drop_table("missions")
    op.drop_index("ix_profiles_status", table_name="profiles")
    op.drop_table("profiles")
