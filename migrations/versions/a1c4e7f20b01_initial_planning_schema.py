"""initial_planning_schema

Personnel reference tables, template store, plans/stages/tasks and the
stage/task status logs.

Revision ID: a1c4e7f20b01
Revises:
Create Date: 2026-10-12 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "a1c4e7f20b01"
down_revision = None
branch_labels = None
depends_on = None

WORK_STATUS_CHECK = "status IN ('waiting','in_progress','paused','completed','problem','cancelled')"


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _work_item_columns():
    return [
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="waiting"),
        sa.Column("assigned_workplace_ref", sa.String(length=64), nullable=True),
        sa.Column("required_position_ref", sa.String(length=64), nullable=True),
        sa.Column("assignee_ref", sa.String(length=64), nullable=True),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
    ]


def _log_columns():
    return [
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(length=30), nullable=False, server_default="status_change"),
        sa.Column("before_status", sa.String(length=20), nullable=True),
        sa.Column("after_status", sa.String(length=20), nullable=False),
        sa.Column("actor_ref", sa.String(length=150), nullable=False, server_default="system"),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    # ── Personnel reference ──────────────────────────────────────────────
    if "positions" not in existing_tables:
        op.create_table(
            "positions",
            sa.Column("id", sa.String(length=64), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )

    if "employees" not in existing_tables:
        op.create_table(
            "employees",
            sa.Column("id", sa.String(length=64), nullable=False),
            sa.Column("last_name", sa.String(length=100), nullable=False),
            sa.Column("first_name", sa.String(length=100), nullable=False),
            sa.Column("patronymic", sa.String(length=100), nullable=True),
            sa.Column("is_fired", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("comments", sa.Text(), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )

    if "workplaces" not in existing_tables:
        op.create_table(
            "workplaces",
            sa.Column("id", sa.String(length=64), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("has_machine", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("max_concurrent_workers", sa.Integer(), nullable=False, server_default="1"),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )

    if "employee_positions" not in existing_tables:
        op.create_table(
            "employee_positions",
            sa.Column("employee_id", sa.String(length=64), nullable=False),
            sa.Column("position_id", sa.String(length=64), nullable=False),
            sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["position_id"], ["positions.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("employee_id", "position_id"),
        )

    if "workplace_positions" not in existing_tables:
        op.create_table(
            "workplace_positions",
            sa.Column("workplace_id", sa.String(length=64), nullable=False),
            sa.Column("position_id", sa.String(length=64), nullable=False),
            sa.ForeignKeyConstraint(["workplace_id"], ["workplaces.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["position_id"], ["positions.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("workplace_id", "position_id"),
        )

    # ── Template store ───────────────────────────────────────────────────
    if "stage_templates" not in existing_tables:
        op.create_table(
            "stage_templates",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )

    if "stage_template_steps" not in existing_tables:
        op.create_table(
            "stage_template_steps",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("template_id", sa.Integer(), nullable=False),
            sa.Column("step_no", sa.Integer(), nullable=False, comment="1-based, contiguous per template"),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("expected_duration_min", sa.Integer(), nullable=True),
            sa.Column("default_workplace_ref", sa.String(length=64), nullable=True),
            sa.Column("required_position_ref", sa.String(length=64), nullable=True),
            sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
            sa.CheckConstraint("step_no >= 1", name="ck_template_step_no_positive"),
            sa.ForeignKeyConstraint(["template_id"], ["stage_templates.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_stage_template_steps_template_id", "stage_template_steps", ["template_id"])

    # ── Plans, stages, tasks ─────────────────────────────────────────────
    if "plans" not in existing_tables:
        op.create_table(
            "plans",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("order_ref", sa.String(length=100), nullable=True,
                      comment="External order reference from order intake"),
            sa.Column("template_id", sa.Integer(), nullable=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("priority", sa.String(length=10), nullable=False, server_default="normal"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
            sa.Column("planned_start", sa.DateTime(timezone=True), nullable=True),
            sa.Column("due_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("queue_revision", sa.Integer(), nullable=False, server_default="0",
                      comment="Incremented on every queue reorder"),
            sa.Column("created_by", sa.String(length=150), nullable=True),
            *_timestamps(),
            sa.CheckConstraint("status IN ('draft','active','done','cancelled')", name="ck_plan_status"),
            sa.CheckConstraint("priority IN ('low','normal','high','urgent')", name="ck_plan_priority"),
            sa.ForeignKeyConstraint(["template_id"], ["stage_templates.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_plans_order_ref", "plans", ["order_ref"])
        op.create_index("ix_plans_template_id", "plans", ["template_id"])

    if "stages" not in existing_tables:
        op.create_table(
            "stages",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("plan_id", sa.Integer(), nullable=False),
            sa.Column("template_step_id", sa.Integer(), nullable=True),
            sa.Column("step_no", sa.Integer(), nullable=True),
            sa.Column("order_in_queue", sa.Integer(), nullable=False),
            sa.Column("expected_duration_min", sa.Integer(), nullable=True),
            sa.Column("actual_duration_sec", sa.Integer(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            *_work_item_columns(),
            sa.CheckConstraint(WORK_STATUS_CHECK, name="ck_stage_status"),
            sa.ForeignKeyConstraint(["plan_id"], ["plans.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["template_step_id"], ["stage_template_steps.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_stages_plan_id", "stages", ["plan_id"])
        op.create_index("idx_stage_plan_queue", "stages", ["plan_id", "order_in_queue"])

    if "tasks" not in existing_tables:
        op.create_table(
            "tasks",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("stage_id", sa.Integer(), nullable=False),
            sa.Column("quantity", sa.Numeric(12, 3), nullable=True),
            sa.Column("unit", sa.String(length=20), nullable=True),
            *_work_item_columns(),
            sa.CheckConstraint(WORK_STATUS_CHECK, name="ck_task_status"),
            sa.ForeignKeyConstraint(["stage_id"], ["stages.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_tasks_stage_id", "tasks", ["stage_id"])

    # ── Status logs ──────────────────────────────────────────────────────
    if "stage_status_logs" not in existing_tables:
        op.create_table(
            "stage_status_logs",
            *_log_columns(),
            sa.Column("stage_id", sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(["stage_id"], ["stages.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_stage_status_logs_stage_id", "stage_status_logs", ["stage_id"])
        op.create_index("idx_stage_log_subject_ts", "stage_status_logs", ["stage_id", "created_at"])

    if "task_status_logs" not in existing_tables:
        op.create_table(
            "task_status_logs",
            *_log_columns(),
            sa.Column("task_id", sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_task_status_logs_task_id", "task_status_logs", ["task_id"])
        op.create_index("idx_task_log_subject_ts", "task_status_logs", ["task_id", "created_at"])


def downgrade():
    for table in (
        "task_status_logs",
        "stage_status_logs",
        "tasks",
        "stages",
        "plans",
        "stage_template_steps",
        "stage_templates",
        "workplace_positions",
        "employee_positions",
        "workplaces",
        "employees",
        "positions",
    ):
        op.drop_table(table)
