"""add backup engine tables

Revision ID: 9e4c2a7b1d05
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

from alembic import op

revision = "9e4c2a7b1d05"
down_revision = None
branch_labels = None
depends_on = None


backup_type_enum = sa.Enum("full", "incremental", "differential", name="backuptype", create_type=True)
backup_status_enum = sa.Enum("pending", "in_progress", "completed", "failed", name="backupstatus", create_type=True)
schedule_backup_type_enum = sa.Enum("full", "incremental", name="schedulebackuptype", create_type=True)
schedule_frequency_enum = sa.Enum("daily", "weekly", "monthly", name="schedulefrequency", create_type=True)
dr_priority_enum = sa.Enum("critical", "high", "medium", "low", name="drpriority", create_type=True)
alert_kind_enum = sa.Enum("success", "warning", "error", name="alertkind", create_type=True)

_ENUMS = (
    backup_type_enum,
    backup_status_enum,
    schedule_backup_type_enum,
    schedule_frequency_enum,
    dr_priority_enum,
    alert_kind_enum,
)


def upgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"
    if is_postgres:
        for enum in _ENUMS:
            enum.create(bind, checkfirst=True)

    op.create_table(
        "backups",
        sa.Column("backup_id", UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("backup_type", backup_type_enum, nullable=False),
        sa.Column("status", backup_status_enum, nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("location", sa.String(length=512), nullable=True),
        sa.Column("checksum", sa.String(length=128), nullable=True),
        sa.Column("encrypted", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("retention_days", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=120), nullable=False, server_default="system"),
        sa.Column("base_backup_id", UUID(as_uuid=True), nullable=True),
        sa.Column("schedule_id", UUID(as_uuid=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["base_backup_id"], ["backups.backup_id"]),
        sa.PrimaryKeyConstraint("backup_id"),
    )
    op.create_index("ix_backups_backup_type", "backups", ["backup_type"])
    op.create_index("ix_backups_status", "backups", ["status"])
    op.create_index("ix_backups_expires_at", "backups", ["expires_at"])
    op.create_index("ix_backups_base_backup_id", "backups", ["base_backup_id"])
    op.create_index("ix_backups_schedule_id", "backups", ["schedule_id"])
    op.create_index("ix_backups_created_at", "backups", ["created_at"])

    op.create_table(
        "restore_points",
        sa.Column("restore_point_id", UUID(as_uuid=True), nullable=False),
        sa.Column("backup_id", UUID(as_uuid=True), nullable=False),
        sa.Column("restored_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version", sa.String(length=40), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("target_location", sa.String(length=512), nullable=True),
        sa.Column("data_integrity", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("dependencies", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("restore_point_id"),
    )
    op.create_index("ix_restore_points_backup_id", "restore_points", ["backup_id"])
    op.create_index("ix_restore_points_restored_at", "restore_points", ["restored_at"])

    op.create_table(
        "backup_schedules",
        sa.Column("schedule_id", UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("backup_type", schedule_backup_type_enum, nullable=False),
        sa.Column("frequency", schedule_frequency_enum, nullable=False),
        sa.Column("time_of_day", sa.String(length=5), nullable=False),
        sa.Column("weekday", sa.Integer(), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("retention_days", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("notify", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_backup_id", UUID(as_uuid=True), nullable=True),
        sa.Column("last_full_backup_id", UUID(as_uuid=True), nullable=True),
        sa.PrimaryKeyConstraint("schedule_id"),
    )
    op.create_index("ix_backup_schedules_enabled", "backup_schedules", ["enabled"])
    op.create_index("ix_backup_schedules_next_run_at", "backup_schedules", ["next_run_at"])

    op.create_table(
        "disaster_recovery_plans",
        sa.Column("dr_plan_id", UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("priority", dr_priority_enum, nullable=False),
        sa.Column("rto_minutes", sa.Integer(), nullable=False),
        sa.Column("rpo_minutes", sa.Integer(), nullable=False),
        sa.Column("contacts", sa.JSON(), nullable=True),
        sa.Column("last_tested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("dr_plan_id"),
    )

    op.create_table(
        "recovery_steps",
        sa.Column("step_id", UUID(as_uuid=True), nullable=False),
        sa.Column("dr_plan_id", UUID(as_uuid=True), nullable=False),
        sa.Column("step_key", sa.String(length=80), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("estimated_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("dependencies", sa.JSON(), nullable=True),
        sa.Column("automated", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("script", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["dr_plan_id"], ["disaster_recovery_plans.dr_plan_id"]),
        sa.PrimaryKeyConstraint("step_id"),
    )
    op.create_index("ix_recovery_steps_dr_plan_id", "recovery_steps", ["dr_plan_id"])

    op.create_table(
        "dr_test_results",
        sa.Column("test_result_id", UUID(as_uuid=True), nullable=False),
        sa.Column("dr_plan_id", UUID(as_uuid=True), nullable=False),
        sa.Column("tested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("duration_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("issues", sa.JSON(), nullable=True),
        sa.Column("recommendations", sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(["dr_plan_id"], ["disaster_recovery_plans.dr_plan_id"]),
        sa.PrimaryKeyConstraint("test_result_id"),
    )
    op.create_index("ix_dr_test_results_dr_plan_id", "dr_test_results", ["dr_plan_id"])

    op.create_table(
        "backup_alerts",
        sa.Column("alert_id", UUID(as_uuid=True), nullable=False),
        sa.Column("kind", alert_kind_enum, nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("acknowledged", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("alert_id"),
    )
    op.create_index("ix_backup_alerts_created_at", "backup_alerts", ["created_at"])
    op.create_index("ix_backup_alerts_acknowledged", "backup_alerts", ["acknowledged"])


def downgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"

    op.drop_index("ix_backup_alerts_acknowledged", table_name="backup_alerts")
    op.drop_index("ix_backup_alerts_created_at", table_name="backup_alerts")
    op.drop_table("backup_alerts")
    op.drop_index("ix_dr_test_results_dr_plan_id", table_name="dr_test_results")
    op.drop_table("dr_test_results")
    op.drop_index("ix_recovery_steps_dr_plan_id", table_name="recovery_steps")
    op.drop_table("recovery_steps")
    op.drop_table("disaster_recovery_plans")
    op.drop_index("ix_backup_schedules_next_run_at", table_name="backup_schedules")
    op.drop_index("ix_backup_schedules_enabled", table_name="backup_schedules")
    op.drop_table("backup_schedules")
    op.drop_index("ix_restore_points_restored_at", table_name="restore_points")
    op.drop_index("ix_restore_points_backup_id", table_name="restore_points")
    op.drop_table("restore_points")
    for name in (
        "ix_backups_created_at",
        "ix_backups_schedule_id",
        "ix_backups_base_backup_id",
        "ix_backups_expires_at",
        "ix_backups_status",
        "ix_backups_backup_type",
    ):
        op.drop_index(name, table_name="backups")
    op.drop_table("backups")

    if is_postgres:
        for enum in reversed(_ENUMS):
            enum.drop(bind, checkfirst=True)
