"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from admissions.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="MilestoneProgress", resource_id=progress_id)
    raise ValidationError("order_index must be >= 1", details={"order_index": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "MilestoneDefinition").
        resource_id: The PK that was looked up.
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
    """Raised when input fails business-rule validation in the service layer.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would violate a unique constraint.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class InvalidTransitionError(Exception):
    """Raised when a review decision cannot be applied to a progress row.

    Covers both a decision value outside the closed set (current_status is
    None) and a decision that the row's current state does not allow.

    Maps to HTTP 409 (400 when the decision value itself is unknown).
    """

    def __init__(self, action: str, current_status: str | None = None, reason: str | None = None) -> None:
        self.action = action
        self.current_status = current_status
        self.reason = reason
        msg = f"Cannot apply '{action}'"
        if current_status is not None:
            msg += f" (status={current_status})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ConcurrencyConflictError(Exception):
    """Raised when a row was modified by a concurrent transaction.

    Maps to HTTP 409. The caller may re-read and retry.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} id={resource_id} was modified concurrently")
