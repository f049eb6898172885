"""
Assignment Resolver tests.

Covers the default SQL-backed personnel directory (seeded positions and
workplaces, fired employees) and a swapped-in fake directory, plus the
rule that a rejected assignment changes nothing.
"""

import pytest

from prodplan.core.exceptions import AssignmentRejectedError, NotFoundError, ValidationError
from prodplan.models import db
from prodplan.models.audit import StageStatusLog
from prodplan.models.personnel import (
    DEFAULT_POSITIONS,
    DEFAULT_WORKPLACES,
    Employee,
    Position,
    Workplace,
    seed_reference_data,
)
from prodplan.models.plan import Plan, Stage, Task
from prodplan.services import assignment_service as assignment
from prodplan.services import plan_service
from prodplan.services import queue_service as queue
from prodplan.services.personnel_directory import PersonnelDirectory
from prodplan.services.plan_factory import create_plan_from_template


def _employee(emp_id, *positions, fired=False):
    emp = Employee(id=emp_id, last_name=emp_id.title(), first_name="Test", is_fired=fired)
    emp.positions = [db.session.get(Position, p) for p in positions]
    db.session.add(emp)
    db.session.commit()
    return emp


def _stages(box_template):
    plan = create_plan_from_template(box_template.id, "Assignment order")
    return {s.name: s for s in plan.stages}


class FakeDirectory(PersonnelDirectory):
    """Accepts everything except the names listed in *refuse*."""

    def __init__(self, refuse=()):
        self.refuse = set(refuse)
        self.calls = []

    def check_assignee(self, employee_ref, position_ref):
        self.calls.append(("assignee", employee_ref, position_ref))
        if employee_ref in self.refuse:
            return False, f"{employee_ref} is on leave"
        return True, ""

    def check_workplace(self, workplace_ref, position_ref):
        self.calls.append(("workplace", workplace_ref, position_ref))
        if workplace_ref in self.refuse:
            return False, f"{workplace_ref} is under maintenance"
        return True, ""


class TestReferenceData:
    def test_seed_is_idempotent(self, reference_data):
        assert reference_data == len(DEFAULT_POSITIONS) + len(DEFAULT_WORKPLACES)
        assert seed_reference_data() == 0
        assert Workplace.query.count() == len(DEFAULT_WORKPLACES)

    def test_workplace_positions(self, reference_data):
        wp = db.session.get(Workplace, "w_cutting")
        assert wp.position_ids == ["cutter"]


class TestSqlDirectory:
    def test_assign_qualified_employee(self, box_template, reference_data):
        _employee("ivanov", "cutter")
        cut = _stages(box_template)["Cut"]
        result = assignment.assign_stage(cut.id, assignee_ref="ivanov")
        assert result.assignee_ref == "ivanov"
        assert result.required_position_ref == "cutter"
        assert result.status == "waiting"

    def test_assignment_writes_no_status_log(self, box_template, reference_data):
        _employee("ivanov", "cutter")
        cut = _stages(box_template)["Cut"]
        assignment.assign_stage(cut.id, assignee_ref="ivanov")
        assert StageStatusLog.query.count() == 0

    def test_employee_without_position_rejected(self, box_template, reference_data):
        _employee("petrov", "print")
        cut = _stages(box_template)["Cut"]
        with pytest.raises(AssignmentRejectedError, match="does not hold position"):
            assignment.assign_stage(cut.id, assignee_ref="petrov")
        assert db.session.get(Stage, cut.id).assignee_ref is None

    def test_fired_employee_rejected(self, box_template, reference_data):
        _employee("sidorov", "cutter", fired=True)
        cut = _stages(box_template)["Cut"]
        with pytest.raises(AssignmentRejectedError, match="no longer employed"):
            assignment.assign_stage(cut.id, assignee_ref="sidorov")

    def test_unknown_employee_rejected(self, box_template, reference_data):
        cut = _stages(box_template)["Cut"]
        with pytest.raises(AssignmentRejectedError, match="not found"):
            assignment.assign_stage(cut.id, assignee_ref="nobody")

    def test_workplace_must_accept_position(self, box_template, reference_data):
        cut = _stages(box_template)["Cut"]
        with pytest.raises(AssignmentRejectedError, match="does not accept"):
            assignment.assign_stage(cut.id, workplace_ref="w_flexoprint")
        assert db.session.get(Stage, cut.id).assigned_workplace_ref == "w_cutting"

    def test_change_position_and_workplace_together(self, box_template, reference_data):
        cut = _stages(box_template)["Cut"]
        result = assignment.assign_stage(cut.id, workplace_ref="w_flexoprint", position_ref="print")
        assert result.assigned_workplace_ref == "w_flexoprint"
        assert result.required_position_ref == "print"

    def test_rejection_is_atomic(self, box_template, reference_data):
        _employee("ivanov", "cutter")
        cut = _stages(box_template)["Cut"]
        with pytest.raises(AssignmentRejectedError):
            assignment.assign_stage(cut.id, workplace_ref="w_unknown", assignee_ref="ivanov")
        stage = db.session.get(Stage, cut.id)
        assert stage.assignee_ref is None
        assert stage.assigned_workplace_ref == "w_cutting"

    def test_task_assignment(self, box_template, reference_data):
        _employee("ivanov", "cutter")
        cut = _stages(box_template)["Cut"]
        task = plan_service.create_task(cut.id, {"name": "Cut lids"})
        assert task.required_position_ref == "cutter"
        result = assignment.assign_task(task.id, assignee_ref="ivanov")
        assert result.assignee_ref == "ivanov"


class TestPluggableDirectory:
    def test_fake_directory_is_consulted(self, app, box_template):
        fake = FakeDirectory()
        app.extensions["personnel_directory"] = fake
        pack = _stages(box_template)["Pack"]

        assignment.assign_stage(pack.id, workplace_ref="bench-3", assignee_ref="anna")

        assert ("assignee", "anna", "assembler") in fake.calls
        assert ("workplace", "bench-3", "assembler") in fake.calls
        stage = db.session.get(Stage, pack.id)
        assert (stage.assigned_workplace_ref, stage.assignee_ref) == ("bench-3", "anna")

    def test_fake_rejection_reason_is_passed_through(self, app, box_template):
        app.extensions["personnel_directory"] = FakeDirectory(refuse={"anna"})
        pack = _stages(box_template)["Pack"]
        with pytest.raises(AssignmentRejectedError) as exc:
            assignment.assign_stage(pack.id, assignee_ref="anna")
        assert exc.value.reason == "anna is on leave"


class TestCreateWithAssignment:
    def test_task_with_unknown_workplace_rejected(self, box_template, reference_data):
        cut = _stages(box_template)["Cut"]
        with pytest.raises(AssignmentRejectedError, match="not found"):
            plan_service.create_task(cut.id, {"name": "Cut lids", "assigned_workplace_ref": "w_ghost"})
        assert Task.query.count() == 0

    def test_task_workplace_checked_against_inherited_position(self, box_template, reference_data):
        cut = _stages(box_template)["Cut"]
        with pytest.raises(AssignmentRejectedError, match="does not accept"):
            plan_service.create_task(cut.id, {"name": "Cut lids", "assigned_workplace_ref": "w_flexoprint"})
        assert Task.query.count() == 0

    def test_task_with_unqualified_assignee_rejected(self, box_template, reference_data):
        _employee("petrov", "print")
        cut = _stages(box_template)["Cut"]
        with pytest.raises(AssignmentRejectedError, match="does not hold position"):
            plan_service.create_task(cut.id, {"name": "Cut lids", "assignee_ref": "petrov"})
        assert Task.query.count() == 0

    def test_task_with_valid_workplace_created(self, box_template, reference_data):
        _employee("ivanov", "cutter")
        cut = _stages(box_template)["Cut"]
        task = plan_service.create_task(cut.id, {
            "name": "Cut lids", "assigned_workplace_ref": "w_press", "assignee_ref": "ivanov",
        })
        assert (task.assigned_workplace_ref, task.required_position_ref) == ("w_press", "cutter")
        assert task.assignee_ref == "ivanov"

    def test_task_inheriting_stage_values_skips_directory(self, app, box_template):
        fake = FakeDirectory()
        app.extensions["personnel_directory"] = fake
        cut = _stages(box_template)["Cut"]
        task = plan_service.create_task(cut.id, {"name": "Cut lids"})
        assert task.assigned_workplace_ref == "w_cutting"
        assert fake.calls == []

    def test_appended_stage_with_unknown_workplace_rejected(self, box_template, reference_data):
        plan = create_plan_from_template(box_template.id, "Append order")
        with pytest.raises(AssignmentRejectedError, match="not found"):
            queue.append_stage(plan.id, {"name": "Rework", "assigned_workplace_ref": "w_ghost"})
        assert [s.name for s in queue.list_queue(plan.id)] == ["Cut", "Glue", "Pack"]
        assert db.session.get(Plan, plan.id).queue_revision == 0

    def test_appended_stage_with_fired_assignee_rejected(self, box_template, reference_data):
        _employee("sidorov", "assembler", fired=True)
        plan = create_plan_from_template(box_template.id, "Append order")
        with pytest.raises(AssignmentRejectedError, match="no longer employed"):
            queue.append_stage(plan.id, {
                "name": "Rework", "required_position_ref": "assembler", "assignee_ref": "sidorov",
            })
        assert Stage.query.filter_by(plan_id=plan.id).count() == 3

    def test_appended_stage_with_valid_assignment(self, box_template, reference_data):
        _employee("anna", "assembler")
        plan = create_plan_from_template(box_template.id, "Append order")
        stage = queue.append_stage(plan.id, {
            "name": "Rework",
            "assigned_workplace_ref": "w_tape_glue",
            "required_position_ref": "assembler",
            "assignee_ref": "anna",
        })
        assert stage.order_in_queue == 4
        assert (stage.assigned_workplace_ref, stage.assignee_ref) == ("w_tape_glue", "anna")


class TestInputValidation:
    def test_nothing_to_assign(self, box_template):
        cut = _stages(box_template)["Cut"]
        with pytest.raises(ValidationError):
            assignment.assign_stage(cut.id)

    def test_missing_stage(self):
        with pytest.raises(NotFoundError):
            assignment.assign_stage(777, assignee_ref="x")
