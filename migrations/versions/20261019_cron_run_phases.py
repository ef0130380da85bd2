"""Record run day and completed phases on cron runs."""

from alembic import op
import sqlalchemy as sa

revision = "20261019_cron_run_phases"
down_revision = "20261018_gamification_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("cron_runs", sa.Column("run_date", sa.Date(), nullable=True))
    op.add_column(
        "cron_runs",
        sa.Column("missions_ok", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )
    op.add_column(
        "cron_runs",
        sa.Column("streaks_ok", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )
    op.execute(
        "UPDATE cron_runs SET run_date = CAST(started_at AS DATE) WHERE run_date IS NULL"
    )
    op.create_index("ix_cron_runs_run_date", "cron_runs", ["run_date"])


def downgrade() -> None:
    op.drop_index("ix_cron_runs_run_date", table_name="cron_runs")
    op.drop_column("cron_runs", "streaks_ok")
    op.drop_column("cron_runs", "missions_ok")
    op.drop_column("cron_runs", "run_date")
