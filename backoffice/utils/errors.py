"""JSON error bodies for the HTTP layer.

Every failure leaves the API as::

    {"success": false, "error": "<message>", "code": "ERR_...", "details": {...}}

``details`` only appears when there is something to put in it.

    return api_error(E.VALIDATION_REQUIRED, "Field 'name' is required.")
    return result_response(workflow_service.toggle_approval_workflow_status(...))
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes shared by services (result dicts) and views (api_error)."""

    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"      # field missing from the body
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"        # field has the wrong shape
    VALIDATION_CONSTRAINT = "ERR_VALIDATION_CONSTRAINT"  # business rule refused the input

    NOT_FOUND = "ERR_NOT_FOUND"
    FORBIDDEN = "ERR_FORBIDDEN"

    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


_STATUS_BY_CODE: dict[str, int] = {
    E.UNAUTHENTICATED: 401,
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_CONSTRAINT: 422,
    E.NOT_FOUND: 404,
    E.FORBIDDEN: 403,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def status_for_code(code: str | None) -> int:
    return _STATUS_BY_CODE.get(code, 400)


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Build ``(response, status)`` for a failure raised in the view itself.

    The status defaults to the one registered for ``code``.
    """
    body: dict = {"success": False, "error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or status_for_code(code)


def result_response(result: dict, success_status: int = 200):
    """Send a service result dict as-is with the status its ``code`` implies."""
    if result.get("success"):
        return jsonify(result), success_status
    return jsonify(result), status_for_code(result.get("code"))
