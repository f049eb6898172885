"""
Plan Factory — materializes plans from templates.

    create_plan_from_template:  new plan, one stage per template step
    copy_template_to_plan:      destructive resync of an order's plan

Both operations validate the template's step numbering before touching
any stage, and run in a single transaction: either every stage exists
with a dense queue, or nothing was written.
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from prodplan.core.exceptions import ConcurrencyConflictError, NotFoundError, ValidationError
from prodplan.models import db
from prodplan.models.plan import PLAN_PRIORITIES, Plan, Stage
from prodplan.models.template import StageTemplate
from prodplan.services.template_service import validate_step_sequence
from prodplan.utils.helpers import parse_dt, require_text

logger = logging.getLogger(__name__)


def _load_template_steps(template_id: int):
    template = db.session.get(StageTemplate, template_id)
    if template is None:
        raise NotFoundError("StageTemplate", template_id)
    steps = template.steps.all()
    validate_step_sequence(steps, template.id)
    return template, steps


def _lock_current_plan(order_ref: str) -> Plan | None:
    """Newest non-archived plan of the order, row-locked until commit."""
    return db.session.execute(
        select(Plan)
        .where(Plan.order_ref == order_ref, Plan.is_archived.is_(False))
        .order_by(Plan.created_at.desc(), Plan.id.desc())
        .limit(1)
        .with_for_update()
    ).scalar_one_or_none()


def _materialize_stages(plan: Plan, steps) -> list[Stage]:
    """Add one waiting Stage per step; queue order follows step order."""
    stages = []
    for position, step in enumerate(steps, start=1):
        stage = Stage(
            plan_id=plan.id,
            template_step_id=step.id,
            step_no=step.step_no,
            order_in_queue=position,
            name=step.name,
            description=step.description or "",
            expected_duration_min=step.expected_duration_min,
            assigned_workplace_ref=step.default_workplace_ref,
            required_position_ref=step.required_position_ref,
            is_required=step.is_required,
            status="waiting",
        )
        db.session.add(stage)
        stages.append(stage)
    return stages


def create_plan_from_template(
    template_id: int,
    title: str,
    order_ref: str | None = None,
    priority: str = "normal",
    planned_start=None,
    *,
    due_at=None,
    notes: str = "",
    actor: str | None = None,
) -> Plan:
    """
    Create a new Plan whose stages mirror the template's steps.

    The plan starts ``active``; stage i gets ``order_in_queue = i`` and
    ``status = waiting``.  Assignment fields are copied from the step
    defaults and are overridable afterwards.

    Raises:
        NotFoundError: template does not exist.
        InvalidTemplateError: step numbering is not contiguous 1..N.
        ValidationError: bad title/priority/date.
    """
    title = require_text(title, "Plan title", "title")
    if priority not in PLAN_PRIORITIES:
        raise ValidationError(
            f"Invalid priority: {priority}",
            details={"priority": sorted(PLAN_PRIORITIES)},
        )

    template, steps = _load_template_steps(template_id)

    try:
        plan = Plan(
            order_ref=order_ref,
            template_id=template.id,
            title=title,
            notes=notes or "",
            priority=priority,
            status="active",
            planned_start=parse_dt(planned_start),
            due_at=parse_dt(due_at),
            created_by=actor,
        )
        db.session.add(plan)
        db.session.flush()
        _materialize_stages(plan, steps)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Plan created id=%s from template=%s stages=%d order_ref=%s",
        plan.id, template.id, len(steps), order_ref,
        extra={"plan_id": plan.id, "actor": actor or "system"},
    )
    return plan


def copy_template_to_plan(order_ref: str, template_id: int, actor: str | None = None) -> Plan:
    """
    Replace all stages of the order's current plan with fresh stages
    from the template.

    DESTRUCTIVE: existing stages, their tasks and their status history
    are deleted.  Prior progress is lost.  When the order has no
    non-archived plan yet, one is created.

    Raises:
        NotFoundError: template does not exist.
        InvalidTemplateError: step numbering is broken (nothing deleted).
        ConcurrencyConflictError: the plan row could not be locked, or a stage
            changed underneath the resync.
    """
    if not order_ref:
        raise ValidationError("order_ref is required", details={"order_ref": "required"})

    template, steps = _load_template_steps(template_id)

    plan_id = None
    dropped = 0
    try:
        plan = _lock_current_plan(order_ref)
        if plan is None:
            plan = Plan(
                order_ref=order_ref,
                template_id=template.id,
                title=f"Order {order_ref}",
                status="active",
                created_by=actor,
            )
            db.session.add(plan)
            db.session.flush()
        else:
            plan_id = plan.id
            for stage in plan.stages.all():
                db.session.delete(stage)
                dropped += 1
            db.session.flush()
            plan.template_id = template.id
            plan.status = "active"
            plan.queue_revision = (plan.queue_revision or 0) + 1
        _materialize_stages(plan, steps)
        db.session.commit()
    except OperationalError as exc:
        db.session.rollback()
        logger.warning("Plan lock failed for order_ref=%s: %s", order_ref, exc)
        raise ConcurrencyConflictError("plan", plan_id) from exc
    except StaleDataError as exc:
        db.session.rollback()
        raise ConcurrencyConflictError("plan", plan_id) from exc
    except Exception:
        db.session.rollback()
        raise

    logger.warning(
        "Plan resynced id=%s order_ref=%s template=%s dropped=%d created=%d",
        plan.id, order_ref, template.id, dropped, len(steps),
        extra={"plan_id": plan.id, "actor": actor or "system"},
    )
    return plan
