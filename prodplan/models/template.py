"""
Shop-floor Production Planning Engine
Template Store domain models.

Models:
    - StageTemplate:      reusable blueprint for a plan (e.g. "Box-3step")
    - StageTemplateStep:  one ordered step of a template (Cut, Glue, Pack …)

Architecture:
    StageTemplate ──1:N──▶ StageTemplateStep   (cascade delete)
    StageTemplateStep ◀── Stage.template_step_id  (weak, SET NULL)

Invariant:
    step_no is unique within a template and forms a contiguous 1..N run.
    The service layer renumbers on every insert/remove so gaps never persist.
"""

from datetime import datetime, timezone

from prodplan.models import db


class StageTemplate(db.Model):
    """Reusable stage blueprint. Editing it never touches existing plans."""

    __tablename__ = "stage_templates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, unique=True)
    description = db.Column(db.Text, default="")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    steps = db.relationship(
        "StageTemplateStep", backref="template", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="StageTemplateStep.step_no",
    )

    def to_dict(self, include_steps=False):
        result = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "step_count": self.steps.count(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_steps:
            result["steps"] = [s.to_dict() for s in self.steps]
        return result

    def __repr__(self):
        return f"<StageTemplate {self.id}: {self.name}>"


class StageTemplateStep(db.Model):
    """One ordered step of a StageTemplate."""

    __tablename__ = "stage_template_steps"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer, db.ForeignKey("stage_templates.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    step_no = db.Column(db.Integer, nullable=False, comment="1-based, contiguous per template")
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    expected_duration_min = db.Column(db.Integer, nullable=True)
    default_workplace_ref = db.Column(db.String(64), nullable=True)
    required_position_ref = db.Column(db.String(64), nullable=True)
    is_required = db.Column(db.Boolean, nullable=False, default=True)

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
        db.CheckConstraint("step_no >= 1", name="ck_template_step_no_positive"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "template_id": self.template_id,
            "step_no": self.step_no,
            "name": self.name,
            "description": self.description,
            "expected_duration_min": self.expected_duration_min,
            "default_workplace_ref": self.default_workplace_ref,
            "required_position_ref": self.required_position_ref,
            "is_required": self.is_required,
        }

    def __repr__(self):
        return f"<StageTemplateStep {self.template_id}#{self.step_no}: {self.name}>"
