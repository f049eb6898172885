"""
Audit Log — read side.

History is returned oldest first (created_at, then id for rows written
within the same clock tick).  Replaying ``after_status`` over the rows
reproduces the subject's current status.
"""

from sqlalchemy import select

from prodplan.core.exceptions import NotFoundError
from prodplan.models import db
from prodplan.models.plan import Stage, Task


def get_status_history(model, subject_id: int) -> list:
    """Return the status log rows of a Stage or Task, in write order."""
    if db.session.get(model, subject_id) is None:
        raise NotFoundError(model.__name__, subject_id)
    log_model = model.log_model
    fk = getattr(log_model, model.log_fk)
    return list(db.session.execute(
        select(log_model).where(fk == subject_id)
        .order_by(log_model.created_at, log_model.id)
    ).scalars())


def get_stage_history(stage_id: int) -> list:
    return get_status_history(Stage, stage_id)


def get_task_history(task_id: int) -> list:
    return get_status_history(Task, task_id)


def replay_status(entries, initial: str = "waiting") -> str:
    """Fold a history into the status it leads to."""
    status = initial
    for entry in entries:
        status = entry.after_status
    return status
