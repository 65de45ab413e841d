"""workflow_engine_tables

Create the workflow catalog, run, completion ledger, tracker and alert
tables, plus the notification / audit / scheduled-job support tables.

Host tables (projects, users, role_assignments) are created only when the
surrounding application has not already created them.

Revision ID: 7c1e2a9d4b10
Revises:
Create Date: 2026-10-12 09:30:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "7c1e2a9d4b10"
down_revision = None
branch_labels = None
depends_on = None


def _create_host_tables(existing_tables):
    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("project_number", sa.String(length=50), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="PENDING"),
            sa.Column("archived", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("project_manager_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["project_manager_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_number"),
        )

    if "role_assignments" not in existing_tables:
        op.create_table(
            "role_assignments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("role_type", sa.String(length=30), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("assigned_by", sa.Integer(), nullable=True),
            sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_role_assignments_user_id", "role_assignments", ["user_id"])
        op.create_index("ix_role_assignment_type_active", "role_assignments", ["role_type", "is_active"])


def _create_catalog_tables(existing_tables):
    if "workflow_phases" not in existing_tables:
        op.create_table(
            "workflow_phases",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("workflow_kind", sa.String(length=40), nullable=False, server_default="ROOFING"),
            sa.Column("phase_type", sa.String(length=30), nullable=False),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.Column("display_order", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("workflow_kind", "display_order", name="uq_phase_kind_order"),
            sa.UniqueConstraint("workflow_kind", "phase_type", name="uq_phase_kind_type"),
        )
        op.create_index("ix_workflow_phases_workflow_kind", "workflow_phases", ["workflow_kind"])

    if "workflow_sections" not in existing_tables:
        op.create_table(
            "workflow_sections",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("phase_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("display_order", sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(["phase_id"], ["workflow_phases.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("phase_id", "display_order", name="uq_section_phase_order"),
        )
        op.create_index("ix_workflow_sections_phase_id", "workflow_sections", ["phase_id"])

    if "workflow_line_items" not in existing_tables:
        op.create_table(
            "workflow_line_items",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("section_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=300), nullable=False),
            sa.Column("display_order", sa.Integer(), nullable=False),
            sa.Column("responsible_role", sa.String(length=30), nullable=False, server_default="OFFICE"),
            sa.Column("alert_lead_days", sa.Integer(), nullable=False, server_default="1"),
            sa.ForeignKeyConstraint(["section_id"], ["workflow_sections.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("section_id", "display_order", name="uq_line_item_section_order"),
        )
        op.create_index("ix_workflow_line_items_section_id", "workflow_line_items", ["section_id"])


def _create_state_tables(existing_tables):
    if "workflow_runs" not in existing_tables:
        op.create_table(
            "workflow_runs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("workflow_kind", sa.String(length=40), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_id", "workflow_kind", name="uq_run_project_kind"),
        )
        op.create_index("ix_workflow_runs_project_id", "workflow_runs", ["project_id"])

    if "workflow_completions" not in existing_tables:
        op.create_table(
            "workflow_completions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("run_id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("line_item_id", sa.Integer(), nullable=False),
            sa.Column("completed_by", sa.Integer(), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(["run_id"], ["workflow_runs.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["line_item_id"], ["workflow_line_items.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["completed_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("run_id", "line_item_id", name="uq_completion_run_item"),
        )
        op.create_index("ix_workflow_completions_run_id", "workflow_completions", ["run_id"])
        op.create_index("ix_completion_project", "workflow_completions", ["project_id"])

    if "project_workflow_trackers" not in existing_tables:
        op.create_table(
            "project_workflow_trackers",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("run_id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("current_phase_id", sa.Integer(), nullable=True),
            sa.Column("current_section_id", sa.Integer(), nullable=True),
            sa.Column("current_line_item_id", sa.Integer(), nullable=True),
            sa.Column("last_completed_item_id", sa.Integer(), nullable=True),
            sa.Column("is_complete", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["run_id"], ["workflow_runs.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["current_phase_id"], ["workflow_phases.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["current_section_id"], ["workflow_sections.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["current_line_item_id"], ["workflow_line_items.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["last_completed_item_id"], ["workflow_line_items.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("run_id"),
        )
        op.create_index("ix_project_workflow_trackers_project_id", "project_workflow_trackers", ["project_id"])

    if "workflow_alerts" not in existing_tables:
        op.create_table(
            "workflow_alerts",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("run_id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("line_item_id", sa.Integer(), nullable=False),
            sa.Column("responsible_role", sa.String(length=30), nullable=False),
            sa.Column("assigned_to", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="ACTIVE"),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("priority", sa.String(length=10), nullable=False, server_default="MEDIUM"),
            sa.Column("overdue_marks", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("context", sa.JSON(), nullable=True),
            sa.Column("due_date", sa.DateTime(timezone=True), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["run_id"], ["workflow_runs.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["line_item_id"], ["workflow_line_items.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["assigned_to"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_workflow_alerts_run_id", "workflow_alerts", ["run_id"])
        op.create_index("ix_workflow_alert_assignee_status", "workflow_alerts", ["assigned_to", "status"])
        op.create_index("ix_workflow_alert_project_status", "workflow_alerts", ["project_id", "status"])
        op.create_index(
            "uq_workflow_alert_active_item",
            "workflow_alerts",
            ["project_id", "line_item_id"],
            unique=True,
            postgresql_where=sa.text("status = 'ACTIVE'"),
            sqlite_where=sa.text("status = 'ACTIVE'"),
        )


def _create_support_tables(existing_tables):
    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("recipient_id", sa.Integer(), nullable=True),
            sa.Column("event_type", sa.String(length=40), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=30), nullable=True),
            sa.Column("severity", sa.String(length=20), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=True),
            sa.Column("entity_id", sa.Integer(), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=True),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_project_id", "notifications", ["project_id"])
        op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])

    if "audit_logs" not in existing_tables:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("diff_json", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_project", "audit_logs", ["project_id"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])

    if "scheduled_jobs" not in existing_tables:
        op.create_table(
            "scheduled_jobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("job_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("schedule_type", sa.String(length=30), nullable=True),
            sa.Column("schedule_config", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("is_enabled", sa.Boolean(), nullable=True),
            sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_run_status", sa.String(length=20), nullable=True),
            sa.Column("last_run_duration_ms", sa.Integer(), nullable=True),
            sa.Column("last_run_result", sa.JSON(), nullable=True),
            sa.Column("run_count", sa.Integer(), nullable=True),
            sa.Column("error_count", sa.Integer(), nullable=True),
            sa.Column("last_error", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("job_name"),
        )


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    _create_host_tables(existing_tables)
    _create_catalog_tables(existing_tables)
    _create_state_tables(existing_tables)
    _create_support_tables(existing_tables)


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    # Host tables are left in place.
    for table in (
        "scheduled_jobs",
        "audit_logs",
        "notifications",
        "workflow_alerts",
        "project_workflow_trackers",
        "workflow_completions",
        "workflow_runs",
        "workflow_line_items",
        "workflow_sections",
        "workflow_phases",
    ):
        if table in existing_tables:
            op.drop_table(table)
