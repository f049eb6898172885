"""
Stage/Task State Machine — Service Layer.

Lifecycle actions (identical table for Stage and Task):
    start        waiting | paused                     → in_progress
    pause        in_progress                          → paused
    complete     in_progress | paused                 → completed
    flag_problem waiting | in_progress | paused       → problem
    cancel       waiting | in_progress | paused | problem → cancelled

Each transition reads the current status, validates the action, applies
timestamps, writes the new status and appends one status log row, all
in one transaction.  Stage and Task rows carry a version counter; a
concurrent writer makes the flush raise StaleDataError and the whole
transition is retried from a fresh read, up to TRANSITION_MAX_RETRIES.
"""

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy.orm.exc import StaleDataError

from prodplan.core.exceptions import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
)
from prodplan.models import db
from prodplan.models.audit import record_transition
from prodplan.models.plan import TERMINAL_STATUSES, Stage, Task, validate_lifecycle_action
from prodplan.utils.helpers import as_utc

logger = logging.getLogger(__name__)


def _apply_timestamps(subject, before: str, after: str, now: datetime) -> None:
    if after == "in_progress" and before == "waiting" and not subject.started_at:
        subject.started_at = now
    if after == "completed":
        subject.finished_at = now
        if isinstance(subject, Stage) and subject.started_at:
            delta = now - as_utc(subject.started_at)
            subject.actual_duration_sec = max(0, int(delta.total_seconds()))


def _check_completion_policy(stage: Stage) -> None:
    """Optionally refuse to complete a stage with unfinished required tasks."""
    if not current_app.config.get("STAGE_COMPLETION_REQUIRES_TASKS", False):
        return
    pending = stage.tasks.filter(
        Task.is_required.is_(True),
        Task.status.notin_(TERMINAL_STATUSES),
    ).count()
    if pending:
        raise InvalidTransitionError(
            "stage", stage.id, "complete", stage.status,
            reason=f"{pending} required task(s) not finished",
        )


def _transition(model, subject_id: int, action: str, actor: str | None = None,
                note: str | None = None):
    retries = max(1, int(current_app.config.get("TRANSITION_MAX_RETRIES", 3)))
    log_extra = {f"{model.kind}_id": subject_id, "action": action, "actor": actor or "system"}

    for attempt in range(1, retries + 1):
        subject = db.session.get(model, subject_id, populate_existing=True)
        if subject is None:
            raise NotFoundError(model.__name__, subject_id)

        before = subject.status
        check = validate_lifecycle_action(before, action)
        if not check["valid"]:
            logger.info("Transition refused: %s", check["reason"], extra=log_extra)
            raise InvalidTransitionError(model.kind, subject_id, action, before, check["reason"])
        if model is Stage and action == "complete":
            _check_completion_policy(subject)

        _apply_timestamps(subject, before, check["to"], datetime.now(timezone.utc))
        subject.status = check["to"]
        try:
            record_transition(subject, before, subject.status, actor, note)
            db.session.commit()
        except StaleDataError:
            db.session.rollback()
            logger.warning(
                "Concurrent update on %s %s (attempt %d/%d)",
                model.kind, subject_id, attempt, retries, extra=log_extra,
            )
            continue
        except Exception:
            db.session.rollback()
            raise

        logger.info(
            "%s %s: %s → %s", model.__name__, subject_id, before, subject.status,
            extra=log_extra,
        )
        return subject

    raise ConcurrencyConflictError(model.kind, subject_id, attempts=retries)


def transition_stage(stage_id: int, action: str, actor: str | None = None,
                     note: str | None = None) -> Stage:
    return _transition(Stage, stage_id, action, actor, note)


def transition_task(task_id: int, action: str, actor: str | None = None,
                    note: str | None = None) -> Task:
    return _transition(Task, task_id, action, actor, note)


# ── Stage actions ────────────────────────────────────────────────────────────


def start_stage(stage_id, actor=None):
    return transition_stage(stage_id, "start", actor)


def pause_stage(stage_id, actor=None):
    return transition_stage(stage_id, "pause", actor)


def complete_stage(stage_id, actor=None):
    return transition_stage(stage_id, "complete", actor)


def flag_stage_problem(stage_id, note=None, actor=None):
    return transition_stage(stage_id, "flag_problem", actor, note)


def cancel_stage(stage_id, note=None, actor=None):
    return transition_stage(stage_id, "cancel", actor, note)


# ── Task actions ─────────────────────────────────────────────────────────────


def start_task(task_id, actor=None):
    return transition_task(task_id, "start", actor)


def pause_task(task_id, actor=None):
    return transition_task(task_id, "pause", actor)


def complete_task(task_id, actor=None):
    return transition_task(task_id, "complete", actor)


def flag_task_problem(task_id, note=None, actor=None):
    return transition_task(task_id, "flag_problem", actor, note)


def cancel_task(task_id, note=None, actor=None):
    return transition_task(task_id, "cancel", actor, note)
