"""
Planning blueprint — plans, stage queue, lifecycle, assignment, tasks.

Endpoint groups:
  Plans        POST /api/v1/plans/from-template
               POST /api/v1/orders/<order_ref>/plan          (destructive resync)
               GET  /api/v1/plans          GET/PUT/DELETE /api/v1/plans/<id>
               POST /api/v1/plans/<id>/status | archive | unarchive
  Queue        POST /api/v1/plans/<id>/stages                (append ad-hoc stage)
               POST /api/v1/stages/<id>/move                 {position}
               PUT/DELETE /api/v1/stages/<id>
  Lifecycle    POST /api/v1/stages/<id>/<action>  POST /api/v1/tasks/<id>/<action>
               action ∈ start | pause | complete | flag-problem | cancel
  Assignment   POST /api/v1/stages/<id>/assign   POST /api/v1/tasks/<id>/assign
  History      GET  /api/v1/stages/<id>/history  GET  /api/v1/tasks/<id>/history
  Tasks        POST /api/v1/stages/<id>/tasks    PUT/DELETE /api/v1/tasks/<id>

Actor identity comes from the JSON ``actor`` field or the X-Actor-Id
header (default "system").  It is recorded, never authenticated.
Service layer owns all business logic and commits.
"""

import logging

from flask import Blueprint, g, jsonify, request

import prodplan.services.assignment_service as assignment
import prodplan.services.audit_service as audit
import prodplan.services.lifecycle_service as lifecycle
import prodplan.services.plan_factory as factory
import prodplan.services.plan_service as plans
import prodplan.services.queue_service as queue
from prodplan.blueprints import paginate
from prodplan.utils.errors import E, api_error, register_api_error_handlers

logger = logging.getLogger(__name__)

plan_bp = Blueprint("plans", __name__, url_prefix="/api/v1")
register_api_error_handlers(plan_bp)

# URL action slug → lifecycle action
_ACTIONS = {
    "start": "start",
    "pause": "pause",
    "complete": "complete",
    "flag-problem": "flag_problem",
    "cancel": "cancel",
}


def _actor(data: dict) -> str:
    actor = data.get("actor") or getattr(g, "actor", None) or "system"
    g.actor = actor
    return actor


# ═════════════════════════════════════════════════════════════════════════
# Plans
# ═════════════════════════════════════════════════════════════════════════


@plan_bp.route("/plans/from-template", methods=["POST"])
def create_plan_from_template():
    """Body: {template_id, title, order_ref?, priority?, planned_start?, due_at?, notes?}"""
    data = request.get_json(silent=True) or {}
    template_id = data.get("template_id")
    if not isinstance(template_id, int) or isinstance(template_id, bool):
        return api_error(E.VALIDATION_REQUIRED, "template_id is required")
    plan = factory.create_plan_from_template(
        template_id,
        data.get("title") or "",
        order_ref=data.get("order_ref"),
        priority=data.get("priority", "normal"),
        planned_start=data.get("planned_start"),
        due_at=data.get("due_at"),
        notes=data.get("notes", ""),
        actor=_actor(data),
    )
    return jsonify(plans.get_plan_detail(plan.id)), 201


@plan_bp.route("/orders/<order_ref>/plan", methods=["POST"])
def resync_order_plan(order_ref):
    """Replace the order's stages with a fresh copy of the template.

    Body: {template_id}.  Existing stages, tasks and history are deleted.
    """
    data = request.get_json(silent=True) or {}
    template_id = data.get("template_id")
    if not isinstance(template_id, int) or isinstance(template_id, bool):
        return api_error(E.VALIDATION_REQUIRED, "template_id is required")
    plan = factory.copy_template_to_plan(order_ref, template_id, actor=_actor(data))
    return jsonify(plans.get_plan_detail(plan.id)), 200


@plan_bp.route("/plans", methods=["GET"])
def list_plans():
    include_archived = request.args.get("include_archived", "").lower() in ("1", "true", "yes")
    result = plans.list_plans(
        status=request.args.get("status"),
        order_ref=request.args.get("order_ref"),
        include_archived=include_archived,
    )
    page, total = paginate(result)
    return jsonify({"items": [p.to_dict() for p in page], "total": total}), 200


@plan_bp.route("/plans/<int:plan_id>", methods=["GET"])
def get_plan(plan_id):
    return jsonify(plans.get_plan_detail(plan_id)), 200


@plan_bp.route("/plans/<int:plan_id>", methods=["PUT"])
def update_plan(plan_id):
    data = request.get_json(silent=True) or {}
    plan = plans.update_plan(plan_id, data)
    return jsonify(plan.to_dict()), 200


@plan_bp.route("/plans/<int:plan_id>", methods=["DELETE"])
def delete_plan(plan_id):
    plans.delete_plan(plan_id)
    return jsonify({"message": "Plan deleted"}), 200


@plan_bp.route("/plans/<int:plan_id>/status", methods=["POST"])
def set_plan_status(plan_id):
    data = request.get_json(silent=True) or {}
    new_status = data.get("status")
    if not new_status:
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    plan = plans.set_plan_status(plan_id, new_status, actor=_actor(data))
    return jsonify(plan.to_dict()), 200


@plan_bp.route("/plans/<int:plan_id>/archive", methods=["POST"])
def archive_plan(plan_id):
    return jsonify(plans.archive_plan(plan_id).to_dict()), 200


@plan_bp.route("/plans/<int:plan_id>/unarchive", methods=["POST"])
def unarchive_plan(plan_id):
    return jsonify(plans.unarchive_plan(plan_id).to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Stages & queue
# ═════════════════════════════════════════════════════════════════════════


@plan_bp.route("/plans/<int:plan_id>/stages", methods=["POST"])
def append_stage(plan_id):
    """Body: {name, position?, description?, assigned_workplace_ref?, ...}"""
    data = request.get_json(silent=True) or {}
    stage = queue.append_stage(plan_id, data, position=data.get("position"), actor=_actor(data))
    return jsonify(stage.to_dict()), 201


@plan_bp.route("/stages/<int:stage_id>", methods=["PUT"])
def update_stage(stage_id):
    data = request.get_json(silent=True) or {}
    stage = plans.update_stage(stage_id, data)
    return jsonify(stage.to_dict()), 200


@plan_bp.route("/stages/<int:stage_id>", methods=["DELETE"])
def remove_stage(stage_id):
    data = request.get_json(silent=True) or {}
    queue.remove_stage(stage_id, actor=_actor(data))
    return jsonify({"message": "Stage removed"}), 200


@plan_bp.route("/stages/<int:stage_id>/move", methods=["POST"])
def move_stage(stage_id):
    data = request.get_json(silent=True) or {}
    if "position" not in data:
        return api_error(E.VALIDATION_REQUIRED, "position is required")
    stage = queue.move_stage(stage_id, data["position"], actor=_actor(data))
    return jsonify(stage.to_dict()), 200


@plan_bp.route("/stages/<int:stage_id>/<action>", methods=["POST"])
def transition_stage(stage_id, action):
    """Body: {note?, actor?}"""
    if action not in _ACTIONS:
        return api_error(E.NOT_FOUND, f"Unknown action: {action}")
    data = request.get_json(silent=True) or {}
    stage = lifecycle.transition_stage(
        stage_id, _ACTIONS[action], actor=_actor(data), note=data.get("note"),
    )
    return jsonify(stage.to_dict()), 200


@plan_bp.route("/stages/<int:stage_id>/assign", methods=["POST"])
def assign_stage(stage_id):
    """Body: {workplace_ref?, position_ref?, assignee_ref?}"""
    data = request.get_json(silent=True) or {}
    stage = assignment.assign_stage(
        stage_id,
        workplace_ref=data.get("workplace_ref"),
        position_ref=data.get("position_ref"),
        assignee_ref=data.get("assignee_ref"),
        actor=_actor(data),
    )
    return jsonify(stage.to_dict()), 200


@plan_bp.route("/stages/<int:stage_id>/history", methods=["GET"])
def stage_history(stage_id):
    entries = audit.get_stage_history(stage_id)
    return jsonify([e.to_dict() for e in entries]), 200


# ═════════════════════════════════════════════════════════════════════════
# Tasks
# ═════════════════════════════════════════════════════════════════════════


@plan_bp.route("/stages/<int:stage_id>/tasks", methods=["POST"])
def create_task(stage_id):
    """Body: {name, quantity?, unit?, description?, is_required?}"""
    data = request.get_json(silent=True) or {}
    task = plans.create_task(stage_id, data)
    return jsonify(task.to_dict()), 201


@plan_bp.route("/tasks/<int:task_id>", methods=["PUT"])
def update_task(task_id):
    data = request.get_json(silent=True) or {}
    task = plans.update_task(task_id, data)
    return jsonify(task.to_dict()), 200


@plan_bp.route("/tasks/<int:task_id>", methods=["DELETE"])
def delete_task(task_id):
    plans.delete_task(task_id)
    return jsonify({"message": "Task deleted"}), 200


@plan_bp.route("/tasks/<int:task_id>/<action>", methods=["POST"])
def transition_task(task_id, action):
    if action not in _ACTIONS:
        return api_error(E.NOT_FOUND, f"Unknown action: {action}")
    data = request.get_json(silent=True) or {}
    task = lifecycle.transition_task(
        task_id, _ACTIONS[action], actor=_actor(data), note=data.get("note"),
    )
    return jsonify(task.to_dict()), 200


@plan_bp.route("/tasks/<int:task_id>/assign", methods=["POST"])
def assign_task(task_id):
    data = request.get_json(silent=True) or {}
    task = assignment.assign_task(
        task_id,
        workplace_ref=data.get("workplace_ref"),
        position_ref=data.get("position_ref"),
        assignee_ref=data.get("assignee_ref"),
        actor=_actor(data),
    )
    return jsonify(task.to_dict()), 200


@plan_bp.route("/tasks/<int:task_id>/history", methods=["GET"])
def task_history(task_id):
    entries = audit.get_task_history(task_id)
    return jsonify([e.to_dict() for e in entries]), 200
