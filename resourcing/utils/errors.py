"""Standard JSON error envelope.

Every failure leaves the API as::

    {"error": "<message>", "code": "ERR_...", "details": {...}}

``details`` is omitted when empty.  ``error_for`` maps the service-layer
exceptions onto this envelope; views that need to fail directly (auth
decorators) call ``api_error`` with an ``E`` code.

Usage
-----
    from resourcing.utils.errors import api_error, E

    return api_error(E.UNAUTHORIZED, "Unknown user")
"""

from __future__ import annotations

from flask import jsonify

from resourcing.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ResourcingError,
    ValidationError,
)


class E:
    """Machine-readable error codes."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"  # 400, a required field is missing
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"    # 400
    UNAUTHORIZED = "ERR_UNAUTHORIZED"                # 401, no or unknown acting user
    FORBIDDEN = "ERR_FORBIDDEN"                      # 403
    NOT_FOUND = "ERR_NOT_FOUND"                      # 404
    CONFLICT_STATE = "ERR_CONFLICT_STATE"            # 409, row not in the expected status
    INTERNAL = "ERR_INTERNAL"                        # 500


_STATUS = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Build ``(response, status)`` for ``code``; status defaults from the code."""
    body = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _STATUS.get(code, 400)


def _validation_code(error: ValidationError) -> str:
    values = set(error.details.values()) if error.details else set()
    return E.VALIDATION_REQUIRED if values == {"required"} else E.VALIDATION_INVALID


def error_for(error: ResourcingError):
    """Envelope for a service-layer exception."""
    if isinstance(error, ValidationError):
        return api_error(_validation_code(error), str(error), details=error.details)
    if isinstance(error, PermissionDeniedError):
        return api_error(E.FORBIDDEN, str(error))
    if isinstance(error, NotFoundError):
        details = {"resource": error.resource}
        if error.resource_id is not None:
            details["id"] = error.resource_id
        return api_error(E.NOT_FOUND, str(error), details=details)
    if isinstance(error, ConflictError):
        details = {"resource": error.resource}
        if error.current_status:
            details["current_status"] = error.current_status
        return api_error(E.CONFLICT_STATE, str(error), details=details)
    return api_error(E.INTERNAL, str(error))
