"""epm_workflow_engine

Create the EPM workflow tables: users, projects, stages, checklist
templates, checklists and items, append-only approvals, stage effects,
downstream operations records, audit log and notifications.

Revision ID: 7c1e2a9d4b10
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "7c1e2a9d4b10"
down_revision = None
branch_labels = None
depends_on = None


def _uuid(name, **kw):
    return sa.Column(name, sa.String(length=36), **kw)


def _ts(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            _uuid("id", nullable=False),
            sa.Column("username", sa.String(length=100), nullable=False),
            sa.Column("first_name", sa.String(length=100), nullable=False),
            sa.Column("last_name", sa.String(length=100), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="tech"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _ts("created_at"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("username", name="uq_users_username"),
        )

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            _uuid("id", nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("location", sa.String(length=200), nullable=False, server_default=""),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="pending"),
            _uuid("supervisor_id", nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["supervisor_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )

    if "checklist_templates" not in existing_tables:
        op.create_table(
            "checklist_templates",
            _uuid("id", nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("type", sa.String(length=50), nullable=False, server_default="project_stage"),
            sa.Column("items", sa.JSON(), nullable=False),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _ts("created_at"),
            sa.PrimaryKeyConstraint("id"),
        )

    if "project_stages" not in existing_tables:
        op.create_table(
            "project_stages",
            _uuid("id", nullable=False),
            _uuid("project_id", nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("required_approver_role", sa.String(length=20), nullable=True),
            sa.Column("gate_rules", sa.JSON(), nullable=False),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_project_stages_project_id", "project_stages", ["project_id"])
        op.create_index("ix_project_stages_project_order", "project_stages", ["project_id", "order"])

    if "project_checklists" not in existing_tables:
        op.create_table(
            "project_checklists",
            _uuid("id", nullable=False),
            _uuid("project_id", nullable=False),
            _uuid("stage_id", nullable=True),
            _uuid("template_id", nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="not_started"),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["stage_id"], ["project_stages.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["template_id"], ["checklist_templates.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_project_checklists_project_id", "project_checklists", ["project_id"])
        op.create_index("ix_project_checklists_stage_id", "project_checklists", ["stage_id"])
        op.create_index("ix_project_checklists_project_stage", "project_checklists", ["project_id", "stage_id"])

    if "checklist_items" not in existing_tables:
        op.create_table(
            "checklist_items",
            _uuid("id", nullable=False),
            _uuid("project_checklist_id", nullable=False),
            sa.Column("template_item_id", sa.String(length=64), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("value", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            _uuid("assignee_id", nullable=True),
            _ts("due_at", nullable=True),
            _ts("completed_at", nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["project_checklist_id"], ["project_checklists.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["assignee_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_checklist_items_project_checklist_id", "checklist_items", ["project_checklist_id"])

    if "stage_approvals" not in existing_tables:
        op.create_table(
            "stage_approvals",
            sa.Column("id", sa.Integer(), nullable=False),
            _uuid("project_id", nullable=False),
            _uuid("stage_id", nullable=False),
            _uuid("approver_id", nullable=True),
            sa.Column("approver_role", sa.String(length=20), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("note", sa.Text(), nullable=True),
            sa.Column("is_override", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("supersedes_id", sa.Integer(), nullable=True),
            _ts("decided_at"),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["stage_id"], ["project_stages.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["approver_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["supersedes_id"], ["stage_approvals.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_stage_approvals_stage", "stage_approvals", ["project_id", "stage_id"])

    if "stage_effects" not in existing_tables:
        op.create_table(
            "stage_effects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("approval_id", sa.Integer(), nullable=False),
            _uuid("project_id", nullable=False),
            _uuid("stage_id", nullable=False),
            sa.Column("kind", sa.String(length=40), nullable=False),
            sa.Column("target", sa.String(length=200), nullable=True),
            sa.Column("dedupe_key", sa.String(length=300), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_error", sa.Text(), nullable=True),
            sa.Column("result_ref", sa.String(length=200), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["approval_id"], ["stage_approvals.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_stage_effects_approval_id", "stage_effects", ["approval_id"])
        op.create_index("ix_stage_effects_stage_key", "stage_effects", ["stage_id", "dedupe_key"])

    for table, extra in (
        ("safety_forms", [
            sa.Column("type", sa.String(length=100), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
            sa.Column("form_data", sa.JSON(), nullable=False),
            _uuid("created_by", nullable=True),
        ]),
        ("inventory_reservations", [
            sa.Column("item_ref", sa.String(length=200), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="reserved"),
        ]),
        ("commissioning_jobs", [
            sa.Column("equipment_ref", sa.String(length=200), nullable=True),
            _ts("scheduled_for"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="scheduled"),
        ]),
    ):
        if table in existing_tables:
            continue
        op.create_table(
            table,
            _uuid("id", nullable=False),
            _uuid("project_id", nullable=False),
            _uuid("stage_id", nullable=True),
            *extra,
            _ts("created_at"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["stage_id"], ["project_stages.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )

    if "audit_logs" not in existing_tables:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            _uuid("project_id", nullable=True),
            sa.Column("entity", sa.String(length=40), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=30), nullable=False),
            _uuid("actor_id", nullable=True),
            sa.Column("before_json", sa.JSON(), nullable=True),
            sa.Column("after_json", sa.JSON(), nullable=True),
            _ts("at"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity", "entity_id"])
        op.create_index("idx_audit_project", "audit_logs", ["project_id"])
        op.create_index("idx_audit_at", "audit_logs", ["at"])

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("recipient_id", sa.String(length=36), nullable=False),
            sa.Column("type", sa.String(length=40), nullable=False, server_default="system"),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("related_type", sa.String(length=40), nullable=True),
            sa.Column("related_id", sa.String(length=36), nullable=True),
            sa.Column("priority", sa.String(length=20), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("action_url", sa.String(length=500), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column("dedupe_key", sa.String(length=300), nullable=False),
            _ts("created_at", nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("dedupe_key", name="uq_notifications_dedupe_key"),
        )
        op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])


def downgrade():
    for table in (
        "notifications", "audit_logs", "commissioning_jobs", "inventory_reservations",
        "safety_forms", "stage_effects", "stage_approvals", "checklist_items",
        "project_checklists", "project_stages", "checklist_templates", "projects", "users",
    ):
        op.drop_table(table)
