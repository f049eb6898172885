"""
Shop-floor Production Planning Engine
Plan / Stage / Task domain models.

Models:
    - Plan:   one concrete production schedule for one order
    - Stage:  one execution step of a plan, with a live queue position
    - Task:   optional finer subdivision of a stage

Architecture:
    Plan ──1:N──▶ Stage ──1:N──▶ Task          (cascade delete)
    Stage ──1:N──▶ StageStatusLog               (cascade delete)
    Task  ──1:N──▶ TaskStatusLog                (cascade delete)
    Stage ──N:1──▶ StageTemplateStep            (weak, SET NULL)

Lifecycle states (Stage and Task):
    waiting → in_progress → completed
    in_progress ⇄ paused
    waiting | in_progress | paused → problem
    waiting | in_progress | paused | problem → cancelled
    completed, cancelled are terminal

Plan status:
    draft → active | cancelled,  active → done | cancelled

Queue invariant:
    Within one plan, Stage.order_in_queue is a dense permutation of 1..N.
    Renumbering passes through transient states inside a transaction, so
    no unique constraint is declared on (plan_id, order_in_queue).
"""

from datetime import datetime, timezone

from prodplan.models import db
from prodplan.models.audit import StageStatusLog, TaskStatusLog


# ── Constants ────────────────────────────────────────────────────────────────

PLAN_PRIORITIES = {"low", "normal", "high", "urgent"}

PLAN_STATUSES = {"draft", "active", "done", "cancelled"}

WORK_STATUSES = {
    "waiting", "in_progress", "paused",
    "completed", "problem", "cancelled",
}

TERMINAL_STATUSES = {"completed", "cancelled"}


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

LIFECYCLE_ACTIONS = {
    "start":        {"from": ["waiting", "paused"], "to": "in_progress"},
    "pause":        {"from": ["in_progress"], "to": "paused"},
    "complete":     {"from": ["in_progress", "paused"], "to": "completed"},
    "flag_problem": {"from": ["waiting", "in_progress", "paused"], "to": "problem"},
    "cancel":       {"from": ["waiting", "in_progress", "paused", "problem"], "to": "cancelled"},
}

PLAN_TRANSITIONS = {
    "draft":     ["active", "cancelled"],
    "active":    ["done", "cancelled"],
    "done":      [],
    "cancelled": [],
}


def validate_lifecycle_action(current_status, action):
    """Check whether *action* is allowed from *current_status*.

    Returns {"valid", "from", "to", "reason"}.
    """
    rule = LIFECYCLE_ACTIONS.get(action)
    if not rule:
        return {"valid": False, "from": current_status, "to": None,
                "reason": f"Unknown action: {action}"}
    if current_status not in rule["from"]:
        return {"valid": False, "from": current_status, "to": rule["to"],
                "reason": f"Cannot '{action}' from status '{current_status}'"}
    return {"valid": True, "from": current_status, "to": rule["to"], "reason": None}


def validate_plan_transition(old_status, new_status):
    """Return True if Plan status transition is valid."""
    return new_status in PLAN_TRANSITIONS.get(old_status, [])


def _iso(value):
    return value.isoformat() if value else None


# ═════════════════════════════════════════════════════════════════════════════
# 1. Plan
# ═════════════════════════════════════════════════════════════════════════════


class Plan(db.Model):
    """
    Concrete production schedule for one order.
    Stages are materialized from a template at creation time; the template
    link is kept for traceability and is not re-consulted afterwards.
    """

    __tablename__ = "plans"

    id = db.Column(db.Integer, primary_key=True)
    order_ref = db.Column(
        db.String(100), nullable=True, index=True,
        comment="External order reference from order intake",
    )
    template_id = db.Column(
        db.Integer, db.ForeignKey("stage_templates.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    notes = db.Column(db.Text, default="")
    priority = db.Column(db.String(10), nullable=False, default="normal")
    status = db.Column(db.String(20), nullable=False, default="draft")
    planned_start = db.Column(db.DateTime(timezone=True), nullable=True)
    due_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_archived = db.Column(db.Boolean, nullable=False, default=False)
    queue_revision = db.Column(
        db.Integer, nullable=False, default=0,
        comment="Incremented on every queue reorder",
    )
    created_by = db.Column(db.String(150), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('draft','active','done','cancelled')",
            name="ck_plan_status",
        ),
        db.CheckConstraint(
            "priority IN ('low','normal','high','urgent')",
            name="ck_plan_priority",
        ),
    )

    stages = db.relationship(
        "Stage", backref="plan", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="Stage.order_in_queue",
    )
    template = db.relationship("StageTemplate", foreign_keys=[template_id])

    def to_dict(self, include_children=False):
        result = {
            "id": self.id,
            "order_ref": self.order_ref,
            "template_id": self.template_id,
            "title": self.title,
            "notes": self.notes,
            "priority": self.priority,
            "status": self.status,
            "planned_start": _iso(self.planned_start),
            "due_at": _iso(self.due_at),
            "is_archived": self.is_archived,
            "queue_revision": self.queue_revision,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "stage_count": self.stages.count(),
        }
        if include_children:
            result["stages"] = [s.to_dict(include_children=True) for s in self.stages]
        return result

    def __repr__(self):
        return f"<Plan {self.id}: {self.title} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. Stage
# ═════════════════════════════════════════════════════════════════════════════


class _WorkItemMixin:
    """Assignment and lifecycle columns shared by Stage and Task."""

    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    status = db.Column(db.String(20), nullable=False, default="waiting")
    assigned_workplace_ref = db.Column(db.String(64), nullable=True)
    required_position_ref = db.Column(db.String(64), nullable=True)
    assignee_ref = db.Column(db.String(64), nullable=True)
    is_required = db.Column(db.Boolean, nullable=False, default=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    finished_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class Stage(_WorkItemMixin, db.Model):
    """
    One execution step of a plan.
    ``step_no`` mirrors the originating template step (informational);
    ``order_in_queue`` is the live, reorderable execution position.
    """

    __tablename__ = "stages"

    kind = "stage"
    log_model = StageStatusLog
    log_fk = "stage_id"

    id = db.Column(db.Integer, primary_key=True)
    plan_id = db.Column(
        db.Integer, db.ForeignKey("plans.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    template_step_id = db.Column(
        db.Integer, db.ForeignKey("stage_template_steps.id", ondelete="SET NULL"),
        nullable=True,
    )
    step_no = db.Column(db.Integer, nullable=True)
    order_in_queue = db.Column(db.Integer, nullable=False)
    expected_duration_min = db.Column(db.Integer, nullable=True)
    actual_duration_sec = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, default="")

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('waiting','in_progress','paused','completed','problem','cancelled')",
            name="ck_stage_status",
        ),
        db.Index("idx_stage_plan_queue", "plan_id", "order_in_queue"),
    )
    version = db.Column(
        db.Integer, nullable=False, default=1,
        comment="Optimistic concurrency counter",
    )
    __mapper_args__ = {"version_id_col": version}

    tasks = db.relationship(
        "Task", backref="stage", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="Task.id",
    )
    status_logs = db.relationship(
        StageStatusLog, lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by=[StageStatusLog.created_at, StageStatusLog.id],
    )

    def to_dict(self, include_children=False):
        result = {
            "id": self.id,
            "plan_id": self.plan_id,
            "template_step_id": self.template_step_id,
            "step_no": self.step_no,
            "order_in_queue": self.order_in_queue,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "assigned_workplace_ref": self.assigned_workplace_ref,
            "required_position_ref": self.required_position_ref,
            "assignee_ref": self.assignee_ref,
            "is_required": self.is_required,
            "expected_duration_min": self.expected_duration_min,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "actual_duration_sec": self.actual_duration_sec,
            "notes": self.notes,
            "version": self.version,
            "task_count": self.tasks.count(),
        }
        if include_children:
            result["tasks"] = [t.to_dict() for t in self.tasks]
        return result

    def __repr__(self):
        return f"<Stage {self.id}: {self.name} #{self.order_in_queue} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. Task
# ═════════════════════════════════════════════════════════════════════════════


class Task(_WorkItemMixin, db.Model):
    """Optional finer subdivision of a stage. A stage with zero tasks is valid."""

    __tablename__ = "tasks"

    kind = "task"
    log_model = TaskStatusLog
    log_fk = "task_id"

    id = db.Column(db.Integer, primary_key=True)
    stage_id = db.Column(
        db.Integer, db.ForeignKey("stages.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    quantity = db.Column(db.Numeric(12, 3), nullable=True)
    unit = db.Column(db.String(20), nullable=True)

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('waiting','in_progress','paused','completed','problem','cancelled')",
            name="ck_task_status",
        ),
    )
    version = db.Column(
        db.Integer, nullable=False, default=1,
        comment="Optimistic concurrency counter",
    )
    __mapper_args__ = {"version_id_col": version}

    status_logs = db.relationship(
        TaskStatusLog, lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by=[TaskStatusLog.created_at, TaskStatusLog.id],
    )

    def to_dict(self):
        return {
            "id": self.id,
            "stage_id": self.stage_id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "quantity": float(self.quantity) if self.quantity is not None else None,
            "unit": self.unit,
            "assigned_workplace_ref": self.assigned_workplace_ref,
            "required_position_ref": self.required_position_ref,
            "assignee_ref": self.assignee_ref,
            "is_required": self.is_required,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "version": self.version,
        }

    def __repr__(self):
        return f"<Task {self.id}: {self.name} [{self.status}]>"
