"""
Assignment Resolver — binds workplace / position / assignee to a stage or task.

Only the fields passed in are changed.  The effective combination (new
values merged over the current ones) is validated against the personnel
directory before anything is written; a rejection leaves the subject
untouched.  Assignment does not change status and writes no status log.
"""

import logging

from sqlalchemy.orm.exc import StaleDataError

from prodplan.core.exceptions import (
    AssignmentRejectedError,
    ConcurrencyConflictError,
    NotFoundError,
    ValidationError,
)
from prodplan.models import db
from prodplan.models.plan import Stage, Task
from prodplan.services.personnel_directory import get_personnel_directory

logger = logging.getLogger(__name__)


def check_assignment(kind: str, subject_id: int | None, workplace_ref: str | None,
                     position_ref: str | None, assignee_ref: str | None = None,
                     actor: str | None = None) -> None:
    """
    Ask the personnel directory whether an effective combination is
    acceptable.  Also used when a stage or task is created with
    assignment fields already filled in.

    Raises:
        AssignmentRejectedError: with the directory's reason, on first refusal.
    """
    directory = get_personnel_directory()
    checks = []
    if assignee_ref:
        checks.append(directory.check_assignee(assignee_ref, position_ref))
    if workplace_ref:
        checks.append(directory.check_workplace(workplace_ref, position_ref))
    for ok, reason in checks:
        if not ok:
            logger.warning(
                "Assignment rejected for %s %s: %s", kind, subject_id, reason,
                extra={f"{kind}_id": subject_id, "actor": actor or "system"},
            )
            raise AssignmentRejectedError(kind, subject_id, reason)


def assign(model, subject_id: int, workplace_ref: str | None = None,
           position_ref: str | None = None, assignee_ref: str | None = None,
           actor: str | None = None):
    """
    Set assignment fields on a Stage or Task.

    Raises:
        ValidationError: nothing to assign.
        NotFoundError: subject does not exist.
        AssignmentRejectedError: the directory refused the combination.
        ConcurrencyConflictError: subject changed concurrently.
    """
    if workplace_ref is None and position_ref is None and assignee_ref is None:
        raise ValidationError(
            "At least one of workplace_ref, position_ref, assignee_ref is required",
        )
    subject = db.session.get(model, subject_id)
    if subject is None:
        raise NotFoundError(model.__name__, subject_id)

    position = position_ref or subject.required_position_ref
    workplace = workplace_ref or subject.assigned_workplace_ref
    assignee = assignee_ref or subject.assignee_ref

    check_assignment(model.kind, subject_id, workplace, position, assignee, actor)

    if workplace_ref is not None:
        subject.assigned_workplace_ref = workplace_ref
    if position_ref is not None:
        subject.required_position_ref = position_ref
    if assignee_ref is not None:
        subject.assignee_ref = assignee_ref
    try:
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        raise ConcurrencyConflictError(model.kind, subject_id) from exc
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "%s %s assigned workplace=%s position=%s assignee=%s",
        model.__name__, subject_id, subject.assigned_workplace_ref,
        subject.required_position_ref, subject.assignee_ref,
        extra={f"{model.kind}_id": subject_id, "actor": actor or "system"},
    )
    return subject


def assign_stage(stage_id, workplace_ref=None, position_ref=None, assignee_ref=None, actor=None):
    return assign(Stage, stage_id, workplace_ref, position_ref, assignee_ref, actor)


def assign_task(task_id, workplace_ref=None, position_ref=None, assignee_ref=None, actor=None):
    return assign(Task, task_id, workplace_ref, position_ref, assignee_ref, actor)
