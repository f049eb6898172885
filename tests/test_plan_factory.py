"""
Plan Factory tests.

Covers: materializing a plan from the Box-3step template, zero-step
templates, broken step numbering, and the destructive order resync.
"""

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from prodplan.core.exceptions import (
    ConcurrencyConflictError,
    InvalidTemplateError,
    NotFoundError,
    ValidationError,
)
from prodplan.models import db
from prodplan.models.audit import StageStatusLog, TaskStatusLog
from prodplan.models.plan import Plan, Stage, Task
from prodplan.models.template import StageTemplateStep
from prodplan.services import lifecycle_service as lifecycle
from prodplan.services import plan_factory, plan_service
from prodplan.services.plan_factory import copy_template_to_plan, create_plan_from_template
from prodplan.services.queue_service import check_queue_density, move_stage
from prodplan.services.template_service import create_template


def _queue(plan_id):
    return [
        (s.name, s.order_in_queue)
        for s in Stage.query.filter_by(plan_id=plan_id).order_by(Stage.order_in_queue)
    ]


class TestCreatePlanFromTemplate:
    def test_box_three_step_plan(self, box_template):
        plan = create_plan_from_template(box_template.id, "Order 1001", order_ref="ORD-1001")

        assert plan.status == "active"
        assert plan.template_id == box_template.id
        assert plan.order_ref == "ORD-1001"
        assert _queue(plan.id) == [("Cut", 1), ("Glue", 2), ("Pack", 3)]
        stages = plan.stages.all()
        assert all(s.status == "waiting" for s in stages)
        assert [s.step_no for s in stages] == [1, 2, 3]

    def test_step_defaults_are_copied(self, box_template):
        plan = create_plan_from_template(box_template.id, "Order 1002")
        cut = plan.stages.first()
        assert cut.assigned_workplace_ref == "w_cutting"
        assert cut.required_position_ref == "cutter"
        assert cut.expected_duration_min == 30
        assert cut.assignee_ref is None

    def test_creation_writes_no_status_logs(self, box_template):
        create_plan_from_template(box_template.id, "Order 1003")
        assert StageStatusLog.query.count() == 0

    def test_zero_step_template_gives_empty_plan(self):
        tpl = create_template({"name": "Empty"})
        plan = create_plan_from_template(tpl.id, "Nothing to do")
        assert plan.stages.count() == 0
        assert check_queue_density(plan.id)

    def test_missing_template(self):
        with pytest.raises(NotFoundError):
            create_plan_from_template(404, "Ghost")

    def test_broken_numbering_rejected(self, box_template):
        db.session.execute(
            update(StageTemplateStep)
            .where(StageTemplateStep.template_id == box_template.id, StageTemplateStep.step_no == 3)
            .values(step_no=5)
        )
        db.session.commit()
        with pytest.raises(InvalidTemplateError):
            create_plan_from_template(box_template.id, "Broken")
        assert Plan.query.count() == 0

    @pytest.mark.parametrize("kwargs", [
        {"title": ""},
        {"title": 42},
        {"title": "Ok", "priority": "whenever"},
        {"title": "Ok", "planned_start": "not-a-date"},
    ])
    def test_invalid_input(self, box_template, kwargs):
        with pytest.raises(ValidationError):
            create_plan_from_template(box_template.id, **kwargs)
        assert Plan.query.count() == 0

    def test_planned_start_parsed(self, box_template):
        plan = create_plan_from_template(
            box_template.id, "Dated", planned_start="2026-03-01T08:00:00", actor="planner-1",
        )
        assert plan.planned_start.year == 2026
        assert plan.created_by == "planner-1"


class TestCopyTemplateToPlan:
    def test_creates_plan_when_order_has_none(self, box_template):
        plan = copy_template_to_plan("ORD-7", box_template.id)
        assert plan.order_ref == "ORD-7"
        assert _queue(plan.id) == [("Cut", 1), ("Glue", 2), ("Pack", 3)]

    def test_resync_is_destructive(self, box_template):
        plan = create_plan_from_template(box_template.id, "Order 8", order_ref="ORD-8")
        cut = plan.stages.first()
        plan_service.create_task(cut.id, {"name": "Cut sheets", "quantity": 100})
        lifecycle.start_stage(cut.id, actor="op-1")
        lifecycle.complete_stage(cut.id, actor="op-1")
        task_id = Task.query.one().id

        other = create_template({
            "name": "Bag-2step",
            "steps": [{"name": "Print"}, {"name": "Assemble"}],
        })
        resynced = copy_template_to_plan("ORD-8", other.id, actor="planner")

        assert resynced.id == plan.id
        assert resynced.template_id == other.id
        assert resynced.status == "active"
        assert _queue(plan.id) == [("Print", 1), ("Assemble", 2)]
        assert all(s.status == "waiting" for s in resynced.stages)
        assert db.session.get(Task, task_id) is None
        assert StageStatusLog.query.count() == 0
        assert TaskStatusLog.query.count() == 0

    def test_resync_discards_reordering(self, box_template):
        plan = create_plan_from_template(box_template.id, "Order 9", order_ref="ORD-9")
        pack = plan.stages.all()[2]
        move_stage(pack.id, 1)
        copy_template_to_plan("ORD-9", box_template.id)
        assert _queue(plan.id) == [("Cut", 1), ("Glue", 2), ("Pack", 3)]

    def test_resync_skips_archived_plans(self, box_template):
        old = create_plan_from_template(box_template.id, "Old", order_ref="ORD-10")
        plan_service.archive_plan(old.id)
        fresh = copy_template_to_plan("ORD-10", box_template.id)
        assert fresh.id != old.id
        assert old.stages.count() == 3

    def test_resync_with_broken_template_keeps_old_stages(self, box_template):
        plan = create_plan_from_template(box_template.id, "Order 11", order_ref="ORD-11")
        broken = create_template({"name": "Broken", "steps": [{"name": "A"}, {"name": "B"}]})
        db.session.execute(
            update(StageTemplateStep)
            .where(StageTemplateStep.template_id == broken.id, StageTemplateStep.step_no == 2)
            .values(step_no=1)
        )
        db.session.commit()

        with pytest.raises(InvalidTemplateError):
            copy_template_to_plan("ORD-11", broken.id)
        assert _queue(plan.id) == [("Cut", 1), ("Glue", 2), ("Pack", 3)]
        assert db.session.get(Plan, plan.id).template_id == box_template.id

    def test_resync_lock_failure_is_conflict(self, box_template, monkeypatch):
        plan = create_plan_from_template(box_template.id, "Order 12", order_ref="ORD-12")

        def lock_timeout(order_ref):
            raise OperationalError("SELECT ... FOR UPDATE", {}, Exception("lock timeout"))

        monkeypatch.setattr(plan_factory, "_lock_current_plan", lock_timeout)
        with pytest.raises(ConcurrencyConflictError) as exc:
            copy_template_to_plan("ORD-12", box_template.id)
        assert exc.value.retryable is True
        assert _queue(plan.id) == [("Cut", 1), ("Glue", 2), ("Pack", 3)]
