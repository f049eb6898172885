"""
Queue Manager — live execution order of stages within a plan.

Invariant: after every committed operation, the plan's stages carry
``order_in_queue`` values forming exactly 1..N.

Every reorder locks the owning plan row (SELECT … FOR UPDATE), shifts
the affected window with one bulk UPDATE, places the moved stage and
bumps ``Plan.queue_revision``, all in a single transaction.  Concurrent
reorders of the same plan therefore serialize on the plan row.
"""

import logging

from flask import current_app
from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError

from prodplan.core.exceptions import ConcurrencyConflictError, NotFoundError, ValidationError
from prodplan.models import db
from prodplan.models.plan import Plan, Stage
from prodplan.services.assignment_service import check_assignment
from prodplan.utils.helpers import parse_duration, parse_position, require_text

logger = logging.getLogger(__name__)


# ── Internals ────────────────────────────────────────────────────────────────


def _lock_plan(plan_id: int) -> Plan:
    plan = db.session.execute(
        select(Plan).where(Plan.id == plan_id).with_for_update()
    ).scalar_one_or_none()
    if plan is None:
        raise NotFoundError("Plan", plan_id)
    return plan


def _stage_count(plan_id: int) -> int:
    return db.session.execute(
        select(func.count(Stage.id)).where(Stage.plan_id == plan_id)
    ).scalar() or 0


def _reload_stage(stage_id: int) -> Stage:
    stage = db.session.execute(
        select(Stage).where(Stage.id == stage_id)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if stage is None:
        raise NotFoundError("Stage", stage_id)
    return stage


def _shift(plan_id: int, old: int, new: int) -> None:
    """Close the gap at *old* and open one at *new* (window shift)."""
    if new < old:
        stmt = (
            update(Stage)
            .where(
                Stage.plan_id == plan_id,
                Stage.order_in_queue >= new,
                Stage.order_in_queue < old,
            )
            .values(order_in_queue=Stage.order_in_queue + 1)
        )
    else:
        stmt = (
            update(Stage)
            .where(
                Stage.plan_id == plan_id,
                Stage.order_in_queue > old,
                Stage.order_in_queue <= new,
            )
            .values(order_in_queue=Stage.order_in_queue - 1)
        )
    db.session.execute(stmt)


def _place(stage_id: int, position: int) -> None:
    db.session.execute(
        update(Stage).where(Stage.id == stage_id).values(order_in_queue=position)
    )


def _resolve_target(position: int, count: int) -> int:
    if position <= count:
        return position
    if current_app.config.get("QUEUE_CLAMP_OUT_OF_RANGE", True):
        return count
    raise ValidationError(
        f"position must be between 1 and {count}",
        details={"position": position, "max": count},
    )


def _bump_revision(plan: Plan) -> None:
    plan.queue_revision = (plan.queue_revision or 0) + 1


# ── Public API ───────────────────────────────────────────────────────────────


def move_stage(stage_id: int, new_position, actor: str | None = None) -> Stage:
    """
    Move a stage to *new_position* within its plan, shifting the others.

    Moving up (new < old) pushes [new, old) down by one; moving down
    pulls (old, new] up by one.  A target past the end is clamped to the
    last position or rejected, depending on ``QUEUE_CLAMP_OUT_OF_RANGE``.
    Moving a stage onto its current position writes nothing.

    Raises:
        ValidationError: position < 1, non-integer, or out of range (reject mode).
        NotFoundError: stage does not exist.
        ConcurrencyConflictError: the plan row could not be locked.
    """
    position = parse_position(new_position)
    stage = db.session.get(Stage, stage_id)
    if stage is None:
        raise NotFoundError("Stage", stage_id)
    plan_id = stage.plan_id

    try:
        plan = _lock_plan(plan_id)
        stage = _reload_stage(stage_id)
        target = _resolve_target(position, _stage_count(plan.id))
        old = stage.order_in_queue

        if target == old:
            db.session.commit()
            return stage

        _shift(plan.id, old, target)
        _place(stage.id, target)
        _bump_revision(plan)
        db.session.commit()
    except OperationalError as exc:
        db.session.rollback()
        logger.warning("Queue lock failed for plan of stage %s: %s", stage_id, exc)
        raise ConcurrencyConflictError("plan", plan_id) from exc
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Stage moved id=%s %s → %s",
        stage.id, old, target,
        extra={"plan_id": plan_id, "stage_id": stage.id, "actor": actor or "system"},
    )
    return stage


def append_stage(plan_id: int, data: dict, position=None, actor: str | None = None) -> Stage:
    """
    Add an ad-hoc stage to a plan (not derived from a template).

    The stage is appended at N+1, then moved to *position* if given.

    Raises:
        ValidationError: blank name, bad duration or position.
        AssignmentRejectedError: the directory refused the given workplace or assignee.
        NotFoundError: plan does not exist.
    """
    name = require_text(data.get("name"), "Stage name")
    duration = parse_duration(data.get("expected_duration_min"))
    target = parse_position(position) if position is not None else None
    workplace = data.get("assigned_workplace_ref")
    position_ref = data.get("required_position_ref")
    assignee = data.get("assignee_ref")
    check_assignment("stage", None, workplace, position_ref, assignee, actor)

    try:
        plan = _lock_plan(plan_id)
        count = _stage_count(plan.id)
        stage = Stage(
            plan_id=plan.id,
            order_in_queue=count + 1,
            name=name,
            description=data.get("description", ""),
            expected_duration_min=duration,
            assigned_workplace_ref=workplace,
            required_position_ref=position_ref,
            assignee_ref=assignee,
            is_required=bool(data.get("is_required", True)),
            notes=data.get("notes", ""),
            status="waiting",
        )
        db.session.add(stage)
        db.session.flush()

        if target is not None:
            target = _resolve_target(target, count + 1)
            if target != count + 1:
                _shift(plan.id, count + 1, target)
                _place(stage.id, target)
        _bump_revision(plan)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Stage appended id=%s plan=%s position=%s",
        stage.id, plan_id, stage.order_in_queue,
        extra={"plan_id": plan_id, "stage_id": stage.id, "actor": actor or "system"},
    )
    return stage


def remove_stage(stage_id: int, actor: str | None = None) -> None:
    """Delete a stage (with its tasks and history) and close the queue gap."""
    stage = db.session.get(Stage, stage_id)
    if stage is None:
        raise NotFoundError("Stage", stage_id)
    plan_id = stage.plan_id

    try:
        plan = _lock_plan(plan_id)
        stage = _reload_stage(stage_id)
        old = stage.order_in_queue
        db.session.delete(stage)
        db.session.flush()
        db.session.execute(
            update(Stage)
            .where(Stage.plan_id == plan_id, Stage.order_in_queue > old)
            .values(order_in_queue=Stage.order_in_queue - 1)
        )
        _bump_revision(plan)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Stage removed id=%s plan=%s position=%s",
        stage_id, plan_id, old,
        extra={"plan_id": plan_id, "stage_id": stage_id, "actor": actor or "system"},
    )


def list_queue(plan_id: int) -> list[Stage]:
    """Stages of a plan in execution order."""
    if db.session.get(Plan, plan_id) is None:
        raise NotFoundError("Plan", plan_id)
    return list(db.session.execute(
        select(Stage).where(Stage.plan_id == plan_id)
        .order_by(Stage.order_in_queue, Stage.id)
    ).scalars())


def check_queue_density(plan_id: int) -> bool:
    """True when the plan's queue positions are exactly 1..N."""
    positions = sorted(db.session.execute(
        select(Stage.order_in_queue).where(Stage.plan_id == plan_id)
    ).scalars())
    return positions == list(range(1, len(positions) + 1))
