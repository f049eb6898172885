"""
Exhaustive state-machine transition tests for stages and tasks.

Lifecycle (LIFECYCLE_ACTIONS in ``prodplan/models/plan.py``):
    start        waiting | paused                          → in_progress
    pause        in_progress                               → paused
    complete     in_progress | paused                      → completed
    flag_problem waiting | in_progress | paused            → problem
    cancel       waiting | in_progress | paused | problem  → cancelled

For every (status, action) pair:
    - allowed pairs move to the target status and write one log row
    - every other pair raises InvalidTransitionError, status unchanged,
      no log row written
Side-effects (started_at, finished_at, actual_duration_sec), the optional
completion policy and optimistic-concurrency retries are verified too.
"""

import pytest
from sqlalchemy import text
from sqlalchemy.orm.exc import StaleDataError

from prodplan.core.exceptions import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
)
from prodplan.models import db
from prodplan.models.audit import StageStatusLog, TaskStatusLog
from prodplan.models.plan import (
    LIFECYCLE_ACTIONS,
    WORK_STATUSES,
    Plan,
    Stage,
    Task,
    validate_lifecycle_action,
)
from prodplan.services import lifecycle_service as lifecycle


# ═════════════════════════════════════════════════════════════════════════════
# ORM Helper Factories (DB-level, bypass services to set arbitrary states)
# ═════════════════════════════════════════════════════════════════════════════


def _plan() -> Plan:
    plan = Plan(title="SM Test Plan", status="active")
    db.session.add(plan)
    db.session.flush()
    return plan


def _stage(status: str = "waiting", plan: Plan | None = None) -> Stage:
    plan = plan or _plan()
    position = plan.stages.count() + 1
    stage = Stage(plan_id=plan.id, name=f"Stage {position}", order_in_queue=position, status=status)
    db.session.add(stage)
    db.session.commit()
    return stage


def _task(status: str = "waiting", stage: Stage | None = None, **kw) -> Task:
    stage = stage or _stage()
    task = Task(stage_id=stage.id, name="Task", status=status, **kw)
    db.session.add(task)
    db.session.commit()
    return task


ALL_PAIRS = [(s, a) for s in sorted(WORK_STATUSES) for a in sorted(LIFECYCLE_ACTIONS)]
VALID_PAIRS = [(s, a) for s, a in ALL_PAIRS if s in LIFECYCLE_ACTIONS[a]["from"]]
INVALID_PAIRS = [(s, a) for s, a in ALL_PAIRS if s not in LIFECYCLE_ACTIONS[a]["from"]]


# ═════════════════════════════════════════════════════════════════════════════
# 1. Transition table
# ═════════════════════════════════════════════════════════════════════════════


class TestTransitionTable:
    def test_pairs_partition(self):
        assert len(VALID_PAIRS) + len(INVALID_PAIRS) == len(WORK_STATUSES) * len(LIFECYCLE_ACTIONS)
        assert len(VALID_PAIRS) == 12

    @pytest.mark.parametrize("status", ["completed", "cancelled"])
    def test_terminal_states_accept_nothing(self, status):
        for action in LIFECYCLE_ACTIONS:
            assert validate_lifecycle_action(status, action)["valid"] is False

    def test_problem_only_exits_via_cancel(self):
        allowed = [a for a in LIFECYCLE_ACTIONS if validate_lifecycle_action("problem", a)["valid"]]
        assert allowed == ["cancel"]

    def test_unknown_action(self):
        result = validate_lifecycle_action("waiting", "explode")
        assert result["valid"] is False
        assert "Unknown action" in result["reason"]


# ═════════════════════════════════════════════════════════════════════════════
# 2. Stage transitions
# ═════════════════════════════════════════════════════════════════════════════


class TestStageTransitions:
    @pytest.mark.parametrize("status,action", VALID_PAIRS)
    def test_valid_transition(self, status, action):
        stage = _stage(status)
        result = lifecycle.transition_stage(stage.id, action, actor="op-7")

        assert result.status == LIFECYCLE_ACTIONS[action]["to"]
        logs = StageStatusLog.query.filter_by(stage_id=stage.id).all()
        assert len(logs) == 1
        assert logs[0].before_status == status
        assert logs[0].after_status == result.status
        assert logs[0].actor_ref == "op-7"

    @pytest.mark.parametrize("status,action", INVALID_PAIRS)
    def test_invalid_transition(self, status, action):
        stage = _stage(status)
        with pytest.raises(InvalidTransitionError) as exc:
            lifecycle.transition_stage(stage.id, action)

        assert exc.value.current_status == status
        assert exc.value.action == action
        assert db.session.get(Stage, stage.id).status == status
        assert StageStatusLog.query.count() == 0

    def test_unknown_stage(self):
        with pytest.raises(NotFoundError):
            lifecycle.start_stage(9999)

    def test_unknown_action_rejected(self):
        stage = _stage()
        with pytest.raises(InvalidTransitionError):
            lifecycle.transition_stage(stage.id, "teleport")

    def test_start_stamps_started_at_once(self):
        stage = _stage()
        lifecycle.start_stage(stage.id)
        first = db.session.get(Stage, stage.id).started_at
        assert first is not None

        lifecycle.pause_stage(stage.id)
        lifecycle.start_stage(stage.id)
        assert db.session.get(Stage, stage.id).started_at == first

    def test_complete_stamps_finish_and_duration(self):
        stage = _stage()
        lifecycle.start_stage(stage.id)
        done = lifecycle.complete_stage(stage.id)

        assert done.finished_at is not None
        assert done.actual_duration_sec is not None
        assert done.actual_duration_sec >= 0
        assert done.finished_at >= done.started_at

    def test_complete_from_paused(self):
        stage = _stage()
        lifecycle.start_stage(stage.id)
        lifecycle.pause_stage(stage.id)
        assert lifecycle.complete_stage(stage.id).status == "completed"

    def test_note_recorded_on_problem_and_cancel(self):
        stage = _stage()
        lifecycle.flag_stage_problem(stage.id, note="glue jammed", actor="op-1")
        lifecycle.cancel_stage(stage.id, note="order withdrawn", actor="planner")

        notes = [log.note for log in stage.status_logs]
        assert notes == ["glue jammed", "order withdrawn"]

    def test_version_increments_on_transition(self):
        stage = _stage()
        v0 = stage.version
        lifecycle.start_stage(stage.id)
        assert db.session.get(Stage, stage.id).version == v0 + 1


class TestCompletionPolicy:
    def test_unchecked_by_default(self):
        stage = _stage("in_progress")
        _task(stage=stage)
        assert lifecycle.complete_stage(stage.id).status == "completed"

    def test_blocks_with_unfinished_required_tasks(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "STAGE_COMPLETION_REQUIRES_TASKS", True)
        stage = _stage("in_progress")
        _task(stage=stage)
        with pytest.raises(InvalidTransitionError, match="required task"):
            lifecycle.complete_stage(stage.id)
        assert db.session.get(Stage, stage.id).status == "in_progress"

    def test_optional_and_finished_tasks_do_not_block(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "STAGE_COMPLETION_REQUIRES_TASKS", True)
        stage = _stage("in_progress")
        _task(stage=stage, is_required=False)
        _task("completed", stage=stage)
        _task("cancelled", stage=stage)
        assert lifecycle.complete_stage(stage.id).status == "completed"


# ═════════════════════════════════════════════════════════════════════════════
# 3. Task transitions
# ═════════════════════════════════════════════════════════════════════════════


class TestTaskTransitions:
    @pytest.mark.parametrize("status,action", VALID_PAIRS)
    def test_valid_transition(self, status, action):
        task = _task(status)
        result = lifecycle.transition_task(task.id, action)
        assert result.status == LIFECYCLE_ACTIONS[action]["to"]
        assert TaskStatusLog.query.filter_by(task_id=task.id).count() == 1

    @pytest.mark.parametrize("status,action", INVALID_PAIRS)
    def test_invalid_transition(self, status, action):
        task = _task(status)
        with pytest.raises(InvalidTransitionError):
            lifecycle.transition_task(task.id, action)
        assert db.session.get(Task, task.id).status == status
        assert TaskStatusLog.query.count() == 0

    def test_task_complete_has_no_duration_column(self):
        task = _task()
        lifecycle.start_task(task.id)
        done = lifecycle.complete_task(task.id)
        assert done.finished_at is not None
        assert not hasattr(done, "actual_duration_sec")

    def test_task_and_stage_logs_are_separate(self):
        task = _task()
        lifecycle.start_task(task.id)
        assert TaskStatusLog.query.count() == 1
        assert StageStatusLog.query.count() == 0


# ═════════════════════════════════════════════════════════════════════════════
# 4. Optimistic concurrency
# ═════════════════════════════════════════════════════════════════════════════


def _bump_version_before_write(monkeypatch, times):
    """Simulate a concurrent writer: bump the row version right before flush."""
    real = lifecycle.record_transition
    calls = {"n": 0}

    def racing_record(subject, *args, **kwargs):
        calls["n"] += 1
        if calls["n"] <= times:
            table = type(subject).__tablename__
            db.session.connection().execute(
                text(f"UPDATE {table} SET version = version + 1 WHERE id = :id"),
                {"id": subject.id},
            )
        return real(subject, *args, **kwargs)

    monkeypatch.setattr(lifecycle, "record_transition", racing_record)
    return calls


class TestConcurrency:
    def test_version_mismatch_raises_stale_data(self):
        stage = _stage()
        assert stage.version == 1
        db.session.connection().execute(
            text("UPDATE stages SET version = version + 1 WHERE id = :id"), {"id": stage.id},
        )
        stage.status = "in_progress"
        with pytest.raises(StaleDataError):
            db.session.flush()
        db.session.rollback()

    def test_retry_succeeds_after_conflict(self, monkeypatch):
        stage = _stage()
        calls = _bump_version_before_write(monkeypatch, times=1)

        result = lifecycle.start_stage(stage.id, actor="op-2")

        assert calls["n"] == 2
        assert result.status == "in_progress"
        assert StageStatusLog.query.filter_by(stage_id=stage.id).count() == 1

    def test_gives_up_after_max_retries(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "TRANSITION_MAX_RETRIES", 3)
        stage = _stage()
        calls = _bump_version_before_write(monkeypatch, times=99)

        with pytest.raises(ConcurrencyConflictError) as exc:
            lifecycle.start_stage(stage.id)

        assert calls["n"] == 3
        assert exc.value.retryable is True
        assert exc.value.attempts == 3
        assert db.session.get(Stage, stage.id).status == "waiting"
        assert StageStatusLog.query.count() == 0

    def test_task_retry(self, monkeypatch):
        task = _task()
        _bump_version_before_write(monkeypatch, times=2)
        assert lifecycle.start_task(task.id).status == "in_progress"
