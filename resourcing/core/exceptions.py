"""
Platform-wide exception hierarchy.

Services raise these; the app-level error handlers in
``resourcing.blueprints.errors`` translate them to HTTP responses once,
so every endpoint reports the same status for the same failure class:

    ValidationError        -> 400  bad input, nothing written
    PermissionDeniedError  -> 403  actor may not perform the transition
    NotFoundError          -> 404  unknown id
    ConflictError          -> 409  row is not in the expected source state

Usage:
    from resourcing.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="PhaseAllocation", resource_id=42)
    raise ValidationError("reason is required", details={"reason": "required"})
"""


class ResourcingError(Exception):
    """Base class for every domain error raised by the service layer."""


class NotFoundError(ResourcingError):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "PhaseAllocation").
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


class ValidationError(ResourcingError):
    """Raised when input fails validation before any write happens.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
                 Keys are field names; values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(ResourcingError):
    """Raised when a row is not in the state an operation requires.

    Kept distinct from ValidationError so callers can tell "bad input"
    from "stale state" and refresh before retrying.

    Args:
        resource: Model name.
        message: What was expected.
        current_status: The status actually found, if relevant.
    """

    def __init__(self, resource: str, message: str, current_status: str | None = None) -> None:
        self.resource = resource
        self.current_status = current_status
        super().__init__(f"{resource}: {message}")


class PermissionDeniedError(ResourcingError):
    """Raised when the acting user lacks the role or ownership required."""

    def __init__(self, message: str = "Insufficient permissions") -> None:
        super().__init__(message)
