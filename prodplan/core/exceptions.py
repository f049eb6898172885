"""
Engine-wide exception hierarchy.

Every service raises one of these types; blueprints register handlers
against them once and map them to consistent HTTP status codes.

Usage:
    from prodplan.core.exceptions import NotFoundError, InvalidTransitionError

    raise NotFoundError(resource="Stage", resource_id=42)
    raise InvalidTransitionError("stage", 42, "start", current="completed")

Retry semantics:
    NotFoundError, ValidationError, InvalidTemplateError,
    InvalidTransitionError, AssignmentRejectedError  — never retried.
    ConcurrencyConflictError                          — transient; the
    service already retried internally, callers may retry the whole call.
"""


class NotFoundError(Exception):
    """Raised when a referenced template/plan/stage/task does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Plan", "StageTemplate").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidTemplateError(Exception):
    """Raised when a template's step numbering is not a contiguous 1..N run.

    This indicates upstream data corruption; the template store keeps
    numbering contiguous on every write.
    """

    def __init__(self, template_id: int | None, reason: str) -> None:
        self.template_id = template_id
        self.reason = reason
        super().__init__(f"Template {template_id} is invalid: {reason}")


class InvalidTransitionError(Exception):
    """Raised when a lifecycle action is not allowed from the current status.

    Callers must re-fetch the subject and decide; the engine never retries.
    """

    def __init__(
        self,
        kind: str,
        subject_id: int | None,
        action: str,
        current: str | None,
        reason: str | None = None,
    ) -> None:
        self.kind = kind
        self.subject_id = subject_id
        self.action = action
        self.current_status = current
        msg = f"Cannot '{action}' {kind} {subject_id} (status={current})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class AssignmentRejectedError(Exception):
    """Raised when the personnel collaborator refuses an assignment.

    ``reason`` carries the collaborator's explanation verbatim.
    """

    def __init__(self, kind: str, subject_id: int | None, reason: str) -> None:
        self.kind = kind
        self.subject_id = subject_id
        self.reason = reason
        super().__init__(f"Assignment rejected for {kind} {subject_id}: {reason}")


class ConcurrencyConflictError(Exception):
    """Raised when a write keeps losing to concurrent writers.

    Surfaced after the bounded internal retry budget is exhausted.
    """

    retryable = True

    def __init__(self, kind: str, subject_id: int | None, attempts: int | None = None) -> None:
        self.kind = kind
        self.subject_id = subject_id
        self.attempts = attempts
        msg = f"Concurrent modification of {kind} {subject_id}"
        if attempts:
            msg += f" (gave up after {attempts} attempts)"
        super().__init__(msg)
