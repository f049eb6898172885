"""Standardised API error responses.

Usage
-----
    from prodplan.utils.errors import api_error, E, register_api_error_handlers

    return api_error(E.VALIDATION_REQUIRED, "order_ref is required")
    register_api_error_handlers(plan_bp)
"""

from __future__ import annotations

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from prodplan.core.exceptions import (
    AssignmentRejectedError,
    ConcurrencyConflictError,
    InvalidTemplateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    INVALID_TEMPLATE = "ERR_INVALID_TEMPLATE"
    ASSIGNMENT_REJECTED = "ERR_ASSIGNMENT_REJECTED"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    CONFLICT_CONCURRENT = "ERR_CONFLICT_CONCURRENT"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 422,
    E.VALIDATION_INVALID: 422,
    E.INVALID_TEMPLATE: 422,
    E.ASSIGNMENT_REJECTED: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.CONFLICT_CONCURRENT: 409,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
    **extra,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``422``.
    details : dict, optional
        Extra structured payload (field errors, current status, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """
    http_status = status or _DEFAULT_STATUS.get(code, 422)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details
    body.update(extra)

    return jsonify(body), http_status


# ── Blueprint error handlers ──────────────────────────────────────────


def register_api_error_handlers(bp) -> None:
    """Map the engine's exception hierarchy to HTTP responses on *bp*."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(InvalidTemplateError)
    def _handle_invalid_template(error: InvalidTemplateError):
        return api_error(
            E.INVALID_TEMPLATE, str(error),
            details={"template_id": error.template_id, "reason": error.reason},
        )

    @bp.errorhandler(InvalidTransitionError)
    def _handle_invalid_transition(error: InvalidTransitionError):
        return api_error(
            E.CONFLICT_STATE, str(error),
            details={"action": error.action, "current_status": error.current_status},
        )

    @bp.errorhandler(AssignmentRejectedError)
    def _handle_assignment_rejected(error: AssignmentRejectedError):
        return api_error(E.ASSIGNMENT_REJECTED, str(error), details={"reason": error.reason})

    @bp.errorhandler(ConcurrencyConflictError)
    def _handle_conflict(error: ConcurrencyConflictError):
        return api_error(E.CONFLICT_CONCURRENT, str(error), retryable=error.retryable)

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
