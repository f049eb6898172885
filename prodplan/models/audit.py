"""
Shop-floor Production Planning Engine
Status audit trail models.

Models:
    - StageStatusLog: one immutable row per stage status change
    - TaskStatusLog:  one immutable row per task status change

Rows are written only by ``record_transition`` from inside the same
transaction as the status write, so a failed log insert fails the whole
transition.  Deleting the subject cascades its log (ON DELETE CASCADE).
"""

from datetime import datetime, timezone

from sqlalchemy import event

from prodplan.models import db


class _StatusLogMixin:
    """Columns shared by every status log table."""

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(30), nullable=False, default="status_change")
    before_status = db.Column(db.String(20), nullable=True)
    after_status = db.Column(db.String(20), nullable=False)
    actor_ref = db.Column(db.String(150), nullable=False, default="system")
    note = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "event_type": self.event_type,
            "before_status": self.before_status,
            "after_status": self.after_status,
            "actor_ref": self.actor_ref,
            "note": self.note,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class StageStatusLog(_StatusLogMixin, db.Model):
    __tablename__ = "stage_status_logs"
    __table_args__ = (
        db.Index("idx_stage_log_subject_ts", "stage_id", "created_at"),
    )

    stage_id = db.Column(
        db.Integer, db.ForeignKey("stages.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )

    @property
    def subject_id(self):
        return self.stage_id

    def __repr__(self):
        return f"<StageStatusLog {self.id}: stage {self.stage_id} {self.before_status}→{self.after_status}>"


class TaskStatusLog(_StatusLogMixin, db.Model):
    __tablename__ = "task_status_logs"
    __table_args__ = (
        db.Index("idx_task_log_subject_ts", "task_id", "created_at"),
    )

    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )

    @property
    def subject_id(self):
        return self.task_id

    def __repr__(self):
        return f"<TaskStatusLog {self.id}: task {self.task_id} {self.before_status}→{self.after_status}>"


@event.listens_for(StageStatusLog, "before_update")
@event.listens_for(TaskStatusLog, "before_update")
def _reject_log_update(mapper, connection, target):
    raise RuntimeError(f"{type(target).__name__} rows are append-only")


# ── Writer ───────────────────────────────────────────────────────────────────

def record_transition(
    subject,
    before: str | None,
    after: str,
    actor: str | None = None,
    note: str | None = None,
    *,
    event_type: str = "status_change",
):
    """
    Append one status log row for *subject* (a Stage or Task).

    The subject class names its log model via ``log_model``.  Uses
    ``flush`` so callers keep transaction control; storage errors
    propagate to the caller and must abort the enclosing transition.

    Returns the flushed log instance.
    """
    log_model = type(subject).log_model
    entry = log_model(
        event_type=event_type,
        before_status=before,
        after_status=after,
        actor_ref=actor or "system",
        note=note,
    )
    setattr(entry, type(subject).log_fk, subject.id)
    db.session.add(entry)
    db.session.flush()
    return entry
