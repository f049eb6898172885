"""
Plan, Stage and Task CRUD — Service Layer.

Blueprint → Service (here) → Model/DB.  Status changes of stages and
tasks go through ``lifecycle_service``; queue positions through
``queue_service``.  This module only edits descriptive fields and the
plan-level status.
"""

import logging
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from prodplan.core.exceptions import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from prodplan.models import db
from prodplan.models.plan import (
    PLAN_PRIORITIES,
    PLAN_STATUSES,
    Plan,
    Stage,
    Task,
    validate_plan_transition,
)
from prodplan.services.assignment_service import check_assignment
from prodplan.services.queue_service import check_queue_density
from prodplan.utils.helpers import parse_dt, parse_duration, require_text

logger = logging.getLogger(__name__)

_PLAN_DT_FIELDS = {"planned_start", "due_at"}


def _commit(kind: str, subject_id: int) -> None:
    try:
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        raise ConcurrencyConflictError(kind, subject_id) from exc
    except Exception:
        db.session.rollback()
        raise


# ── Plan ─────────────────────────────────────────────────────────────────────


def get_plan(plan_id: int) -> Plan:
    plan = db.session.get(Plan, plan_id)
    if plan is None:
        raise NotFoundError("Plan", plan_id)
    return plan


def get_plan_detail(plan_id: int) -> dict:
    """Plan payload with stages in queue order and their tasks."""
    plan = get_plan(plan_id)
    result = plan.to_dict(include_children=True)
    result["queue_dense"] = check_queue_density(plan.id)
    return result


def list_plans(status: str | None = None, order_ref: str | None = None,
               include_archived: bool = False) -> list[Plan]:
    stmt = select(Plan)
    if status:
        stmt = stmt.where(Plan.status == status)
    if order_ref:
        stmt = stmt.where(Plan.order_ref == order_ref)
    if not include_archived:
        stmt = stmt.where(Plan.is_archived.is_(False))
    stmt = stmt.order_by(Plan.created_at.desc(), Plan.id.desc())
    return list(db.session.execute(stmt).scalars())


def update_plan(plan_id: int, data: dict) -> Plan:
    """Update descriptive plan fields (whitelisted to prevent mass-assignment)."""
    plan = get_plan(plan_id)
    if "priority" in data and data["priority"] not in PLAN_PRIORITIES:
        raise ValidationError(
            f"Invalid priority: {data['priority']}",
            details={"priority": sorted(PLAN_PRIORITIES)},
        )
    values = {}
    for f in ("title", "notes", "priority", "order_ref", "planned_start", "due_at"):
        if f in data:
            val = parse_dt(data[f]) if f in _PLAN_DT_FIELDS else data[f]
            if f == "title":
                val = require_text(val, "Plan title", "title")
            values[f] = val
    for f, val in values.items():
        setattr(plan, f, val)
    _commit("plan", plan.id)
    logger.info("Plan updated id=%s", plan.id, extra={"plan_id": plan.id})
    return plan


def set_plan_status(plan_id: int, new_status: str, actor: str | None = None) -> Plan:
    plan = get_plan(plan_id)
    if new_status not in PLAN_STATUSES:
        raise ValidationError(
            f"Invalid plan status: {new_status}",
            details={"status": sorted(PLAN_STATUSES)},
        )
    old = plan.status
    if not validate_plan_transition(old, new_status):
        raise InvalidTransitionError(
            "plan", plan.id, new_status, old,
            reason=f"Invalid transition: {old} → {new_status}",
        )
    plan.status = new_status
    _commit("plan", plan.id)
    logger.info(
        "Plan %s status %s → %s", plan.id, old, new_status,
        extra={"plan_id": plan.id, "actor": actor or "system"},
    )
    return plan


def archive_plan(plan_id: int) -> Plan:
    plan = get_plan(plan_id)
    plan.is_archived = True
    _commit("plan", plan.id)
    logger.info("Plan archived id=%s", plan.id, extra={"plan_id": plan.id})
    return plan


def unarchive_plan(plan_id: int) -> Plan:
    plan = get_plan(plan_id)
    plan.is_archived = False
    _commit("plan", plan.id)
    logger.info("Plan unarchived id=%s", plan.id, extra={"plan_id": plan.id})
    return plan


def delete_plan(plan_id: int) -> None:
    """Delete a plan; stages, tasks and status logs cascade in the database."""
    plan = get_plan(plan_id)
    db.session.delete(plan)
    _commit("plan", plan_id)
    logger.info("Plan deleted id=%s", plan_id, extra={"plan_id": plan_id})


# ── Stage ────────────────────────────────────────────────────────────────────


def get_stage(stage_id: int) -> Stage:
    stage = db.session.get(Stage, stage_id)
    if stage is None:
        raise NotFoundError("Stage", stage_id)
    return stage


def update_stage(stage_id: int, data: dict) -> Stage:
    """Edit stage metadata. Status, queue position and assignment have their own paths."""
    stage = get_stage(stage_id)
    values = {f: data[f] for f in ("description", "notes") if f in data}
    if "name" in data:
        values["name"] = require_text(data["name"], "Stage name")
    if "expected_duration_min" in data:
        values["expected_duration_min"] = parse_duration(data["expected_duration_min"])
    for f, val in values.items():
        setattr(stage, f, val)
    _commit("stage", stage.id)
    logger.info("Stage updated id=%s", stage.id, extra={"stage_id": stage.id})
    return stage


# ── Task ─────────────────────────────────────────────────────────────────────


def _parse_quantity(value):
    if value is None:
        return None
    try:
        quantity = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("quantity must be numeric", details={"quantity": value}) from None
    if not quantity.is_finite():
        raise ValidationError("quantity must be a finite number", details={"quantity": value})
    if quantity < 0:
        raise ValidationError("quantity must be >= 0", details={"quantity": value})
    return quantity


def get_task(task_id: int) -> Task:
    task = db.session.get(Task, task_id)
    if task is None:
        raise NotFoundError("Task", task_id)
    return task


def create_task(stage_id: int, data: dict) -> Task:
    """Create a waiting Task under a stage."""
    stage = get_stage(stage_id)
    name = require_text(data.get("name"), "Task name")
    quantity = _parse_quantity(data.get("quantity"))
    workplace = data.get("assigned_workplace_ref", stage.assigned_workplace_ref)
    position = data.get("required_position_ref", stage.required_position_ref)
    assignee = data.get("assignee_ref")
    # Values inherited from the stage were checked when the stage got them
    if any(k in data for k in ("assigned_workplace_ref", "required_position_ref", "assignee_ref")):
        check_assignment("task", None, workplace, position, assignee)

    task = Task(
        stage_id=stage.id,
        name=name,
        description=data.get("description", ""),
        quantity=quantity,
        unit=data.get("unit"),
        assigned_workplace_ref=workplace,
        required_position_ref=position,
        assignee_ref=assignee,
        is_required=bool(data.get("is_required", True)),
        status="waiting",
    )
    db.session.add(task)
    _commit("stage", stage.id)
    logger.info("Task created id=%s stage=%s", task.id, stage.id, extra={"task_id": task.id})
    return task


def update_task(task_id: int, data: dict) -> Task:
    task = get_task(task_id)
    name = require_text(data["name"], "Task name") if "name" in data else None
    quantity = _parse_quantity(data["quantity"]) if "quantity" in data else None
    for f in ("name", "description", "unit", "is_required"):
        if f in data:
            val = data[f]
            if f == "name":
                val = name
            elif f == "is_required":
                val = bool(val)
            setattr(task, f, val)
    if "quantity" in data:
        task.quantity = quantity
    _commit("task", task.id)
    logger.info("Task updated id=%s", task.id, extra={"task_id": task.id})
    return task


def delete_task(task_id: int) -> None:
    task = get_task(task_id)
    db.session.delete(task)
    _commit("task", task_id)
    logger.info("Task deleted id=%s", task_id, extra={"task_id": task_id})
