"""
Template Store — Service Layer.

Business logic for:
    - Template CRUD:        create/read/update/delete StageTemplate
    - Step editing:         add/update/remove steps with automatic renumbering
    - Sequence validation:  step numbers must form a contiguous 1..N run

Templates are blueprints only.  Editing a template never touches plans
that were already materialized from it.
"""

import logging
from collections import Counter

from sqlalchemy import func, select, update

from prodplan.core.exceptions import InvalidTemplateError, NotFoundError, ValidationError
from prodplan.models import db
from prodplan.models.template import StageTemplate, StageTemplateStep
from prodplan.utils.helpers import parse_duration, require_text

logger = logging.getLogger(__name__)

_STEP_FIELDS = (
    "name", "description", "expected_duration_min",
    "default_workplace_ref", "required_position_ref", "is_required",
)


# ── Sequence validation ──────────────────────────────────────────────────────


def validate_step_sequence(steps, template_id=None) -> None:
    """
    Raise InvalidTemplateError unless step numbers are exactly 1..N.

    Accepts model instances or plain dicts carrying ``step_no``.
    """
    numbers = sorted(
        s["step_no"] if isinstance(s, dict) else s.step_no for s in steps
    )
    expected = list(range(1, len(numbers) + 1))
    if numbers == expected:
        return

    duplicates = sorted(n for n, c in Counter(numbers).items() if c > 1)
    missing = sorted(set(expected) - set(numbers))
    parts = []
    if duplicates:
        parts.append(f"duplicate step_no {duplicates}")
    if missing:
        parts.append(f"missing step_no {missing}")
    if not parts:
        parts.append(f"step_no out of range {numbers}")
    raise InvalidTemplateError(template_id, "; ".join(parts))


def _step_count(template_id: int) -> int:
    return db.session.execute(
        select(func.count(StageTemplateStep.id))
        .where(StageTemplateStep.template_id == template_id)
    ).scalar() or 0


def _coerce_step(data: dict) -> dict:
    name = require_text(data.get("name"), "Step name")
    duration = parse_duration(data.get("expected_duration_min"))
    return {
        "name": name,
        "description": data.get("description", ""),
        "expected_duration_min": duration,
        "default_workplace_ref": data.get("default_workplace_ref"),
        "required_position_ref": data.get("required_position_ref"),
        "is_required": bool(data.get("is_required", True)),
    }


# ── StageTemplate CRUD ───────────────────────────────────────────────────────


def get_template(template_id: int) -> StageTemplate:
    template = db.session.get(StageTemplate, template_id)
    if template is None:
        raise NotFoundError("StageTemplate", template_id)
    return template


def list_templates(active_only: bool = False) -> list[StageTemplate]:
    stmt = select(StageTemplate).order_by(StageTemplate.name)
    if active_only:
        stmt = stmt.where(StageTemplate.is_active.is_(True))
    return list(db.session.execute(stmt).scalars())


def create_template(data: dict) -> StageTemplate:
    """Create a StageTemplate, optionally with its steps in one go.

    Steps may carry explicit ``step_no`` values (which must then form a
    contiguous 1..N run) or omit them, in which case list order is used.

    Args:
        data: ``name`` (required, unique), ``description``, ``is_active``,
              ``steps`` (list of step dicts).

    Returns:
        The persisted StageTemplate.
    """
    name = require_text(data.get("name"), "Template name")
    existing = db.session.execute(
        select(StageTemplate.id).where(StageTemplate.name == name)
    ).scalar()
    if existing is not None:
        raise ValidationError(f"Template '{name}' already exists", details={"name": "duplicate"})

    raw_steps = data.get("steps") or []
    if not isinstance(raw_steps, list) or not all(isinstance(s, dict) for s in raw_steps):
        raise ValidationError("steps must be a list of objects", details={"steps": "invalid"})
    numbered = []
    for idx, raw in enumerate(raw_steps, start=1):
        step = _coerce_step(raw)
        step_no = raw.get("step_no", idx)
        if isinstance(step_no, bool) or not isinstance(step_no, int):
            raise ValidationError(
                "step_no must be an integer",
                details={"step_no": step_no, "step": idx},
            )
        step["step_no"] = step_no
        numbered.append(step)
    try:
        validate_step_sequence(numbered)
    except InvalidTemplateError as exc:
        raise ValidationError(f"Invalid step numbering: {exc.reason}") from exc

    template = StageTemplate(
        name=name,
        description=data.get("description", ""),
        is_active=bool(data.get("is_active", True)),
    )
    db.session.add(template)
    db.session.flush()
    for step in sorted(numbered, key=lambda s: s["step_no"]):
        db.session.add(StageTemplateStep(template_id=template.id, **step))
    db.session.commit()
    logger.info("StageTemplate created id=%s name=%s steps=%d", template.id, name, len(numbered))
    return template


def update_template(template_id: int, data: dict) -> StageTemplate:
    template = get_template(template_id)
    if "name" in data:
        name = require_text(data["name"], "Template name")
        clash = db.session.execute(
            select(StageTemplate.id).where(
                StageTemplate.name == name, StageTemplate.id != template.id,
            )
        ).scalar()
        if clash is not None:
            raise ValidationError(f"Template '{name}' already exists", details={"name": "duplicate"})
        template.name = name
    if "description" in data:
        template.description = data["description"] or ""
    if "is_active" in data:
        template.is_active = bool(data["is_active"])
    db.session.commit()
    logger.info("StageTemplate updated id=%s", template.id)
    return template


def delete_template(template_id: int) -> None:
    """Delete a template and its steps.

    Plans keep their stages; their template links are nulled by the
    database (ON DELETE SET NULL).
    """
    template = get_template(template_id)
    db.session.delete(template)
    db.session.commit()
    logger.info("StageTemplate deleted id=%s", template_id)


# ── Step editing ─────────────────────────────────────────────────────────────


def get_step(step_id: int) -> StageTemplateStep:
    step = db.session.get(StageTemplateStep, step_id)
    if step is None:
        raise NotFoundError("StageTemplateStep", step_id)
    return step


def add_step(template_id: int, data: dict) -> StageTemplateStep:
    """
    Insert a step.  Without ``step_no`` the step is appended; with one,
    steps at or after that number shift down by one.
    """
    template = get_template(template_id)
    fields = _coerce_step(data)
    count = _step_count(template.id)

    step_no = data.get("step_no")
    if step_no is None:
        step_no = count + 1
    elif isinstance(step_no, bool) or not isinstance(step_no, int) or not 1 <= step_no <= count + 1:
        raise ValidationError(
            f"step_no must be between 1 and {count + 1}",
            details={"step_no": step_no},
        )

    try:
        if step_no <= count:
            db.session.execute(
                update(StageTemplateStep)
                .where(
                    StageTemplateStep.template_id == template.id,
                    StageTemplateStep.step_no >= step_no,
                )
                .values(step_no=StageTemplateStep.step_no + 1)
            )
        step = StageTemplateStep(template_id=template.id, step_no=step_no, **fields)
        db.session.add(step)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("Step added template=%s step_no=%s name=%s", template.id, step_no, step.name)
    return step


def update_step(step_id: int, data: dict) -> StageTemplateStep:
    """Update descriptive fields of a step.  Numbering is not editable here."""
    step = get_step(step_id)
    if "name" in data or "expected_duration_min" in data:
        merged = {f: getattr(step, f) for f in _STEP_FIELDS}
        merged.update({k: v for k, v in data.items() if k in _STEP_FIELDS})
        _coerce_step(merged)
    for f in _STEP_FIELDS:
        if f in data:
            value = data[f]
            if f == "name":
                value = value.strip()
            elif f == "is_required":
                value = bool(value)
            setattr(step, f, value)
    db.session.commit()
    logger.info("Step updated id=%s", step.id)
    return step


def remove_step(step_id: int) -> None:
    """Delete a step and close the numbering gap it leaves."""
    step = get_step(step_id)
    template_id, step_no = step.template_id, step.step_no
    try:
        db.session.delete(step)
        db.session.flush()
        db.session.execute(
            update(StageTemplateStep)
            .where(
                StageTemplateStep.template_id == template_id,
                StageTemplateStep.step_no > step_no,
            )
            .values(step_no=StageTemplateStep.step_no - 1)
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("Step removed id=%s template=%s step_no=%s", step_id, template_id, step_no)
