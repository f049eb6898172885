"""
Template Store blueprint.

Endpoints:
    GET    /api/v1/templates                  list (?active_only=true)
    POST   /api/v1/templates                  create (optionally with steps)
    GET    /api/v1/templates/<id>             detail with steps
    PUT    /api/v1/templates/<id>             update name/description/is_active
    DELETE /api/v1/templates/<id>             delete (plans keep their stages)
    POST   /api/v1/templates/<id>/steps       add step (append or insert at step_no)
    PUT    /api/v1/template-steps/<id>        update step fields
    DELETE /api/v1/template-steps/<id>        remove step, renumber the rest
"""

import logging

from flask import Blueprint, jsonify, request

import prodplan.services.template_service as ts
from prodplan.utils.errors import register_api_error_handlers

logger = logging.getLogger(__name__)

template_bp = Blueprint("templates", __name__, url_prefix="/api/v1")
register_api_error_handlers(template_bp)


@template_bp.route("/templates", methods=["GET"])
def list_templates():
    active_only = request.args.get("active_only", "").lower() in ("1", "true", "yes")
    templates = ts.list_templates(active_only=active_only)
    return jsonify([t.to_dict() for t in templates]), 200


@template_bp.route("/templates", methods=["POST"])
def create_template():
    """Body: {name, description?, is_active?, steps?: [{name, step_no?, ...}]}"""
    data = request.get_json(silent=True) or {}
    template = ts.create_template(data)
    return jsonify(template.to_dict(include_steps=True)), 201


@template_bp.route("/templates/<int:template_id>", methods=["GET"])
def get_template(template_id):
    template = ts.get_template(template_id)
    return jsonify(template.to_dict(include_steps=True)), 200


@template_bp.route("/templates/<int:template_id>", methods=["PUT"])
def update_template(template_id):
    data = request.get_json(silent=True) or {}
    template = ts.update_template(template_id, data)
    return jsonify(template.to_dict(include_steps=True)), 200


@template_bp.route("/templates/<int:template_id>", methods=["DELETE"])
def delete_template(template_id):
    ts.delete_template(template_id)
    return jsonify({"message": "Template deleted"}), 200


@template_bp.route("/templates/<int:template_id>/steps", methods=["POST"])
def add_step(template_id):
    data = request.get_json(silent=True) or {}
    step = ts.add_step(template_id, data)
    return jsonify(step.to_dict()), 201


@template_bp.route("/template-steps/<int:step_id>", methods=["PUT"])
def update_step(step_id):
    data = request.get_json(silent=True) or {}
    step = ts.update_step(step_id, data)
    return jsonify(step.to_dict()), 200


@template_bp.route("/template-steps/<int:step_id>", methods=["DELETE"])
def remove_step(step_id):
    ts.remove_step(step_id)
    return jsonify({"message": "Step removed"}), 200
