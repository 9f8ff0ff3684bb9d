"""
Approval Request Blueprint — request engine endpoints.

All routes are scoped under /api/v1/business-units/<bu_id>/approval-requests.

Endpoints:
    GET    /approval-requests                    list (search, status, workflow_id,
                                                 property_id, requested_by_id, entity_type,
                                                 date_from, date_to, sort_by, sort_order,
                                                 page, limit)
    POST   /approval-requests                    open a request
           Body: { "workflow_id": 1, "entity_type": "RPT_PAYMENT",
                   "entity_id": "42", "property_id": 7 }
    GET    /approval-requests/stats              counts by status and workflow
    GET    /approval-requests/pending            requests waiting on the caller's role
    GET    /approval-requests/active-workflows   workflows a request can be opened on
    GET    /approval-requests/<id>               detail with steps and responses
    POST   /approval-requests/<id>/responses     approve / reject / override current step
           Body: { "step_id": 3, "status": "APPROVED|REJECTED",
                   "comments": "...", "is_override": false }
    POST   /approval-requests/<id>/cancel        requester withdraws the request
"""

from flask import Blueprint, request

from backoffice.blueprints import authenticated, json_body, list_args
from backoffice.services import approval_service
from backoffice.utils.errors import E, api_error, result_response
from backoffice.utils.helpers import parse_bool

approval_bp = Blueprint("approval_requests", __name__, url_prefix="/api/v1")

_BASE = "/business-units/<int:bu_id>/approval-requests"


@approval_bp.route(_BASE, methods=["GET"])
@authenticated
def list_requests(ctx, bu_id):
    args = list_args("status", "entity_type", "sort_by", "sort_order")
    for name in ("workflow_id", "property_id", "requested_by_id"):
        value = request.args.get(name, type=int)
        if value:
            args[name] = value
    return result_response(approval_service.get_approval_requests(ctx, bu_id, **args))


@approval_bp.route(_BASE, methods=["POST"])
@authenticated
def create_request(ctx, bu_id):
    data = json_body()
    missing = [f for f in ("workflow_id", "entity_type", "entity_id") if not data.get(f)]
    if missing:
        return api_error(
            E.VALIDATION_REQUIRED,
            f"Missing required field(s): {', '.join(missing)}",
            details={f: "required" for f in missing},
        )
    result = approval_service.create_approval_request(
        ctx, bu_id,
        workflow_id=data["workflow_id"],
        entity_type=data["entity_type"],
        entity_id=data["entity_id"],
        property_id=data.get("property_id"),
    )
    return result_response(result, success_status=201)


@approval_bp.route(f"{_BASE}/stats", methods=["GET"])
@authenticated
def request_stats(ctx, bu_id):
    return result_response(approval_service.get_approval_stats(ctx, bu_id))


@approval_bp.route(f"{_BASE}/pending", methods=["GET"])
@authenticated
def pending_for_me(ctx, bu_id):
    return result_response(approval_service.get_pending_for_me(ctx, bu_id))


@approval_bp.route(f"{_BASE}/active-workflows", methods=["GET"])
@authenticated
def active_workflows(ctx, bu_id):
    return result_response(approval_service.get_active_workflows(ctx, bu_id))


@approval_bp.route(f"{_BASE}/<int:request_id>", methods=["GET"])
@authenticated
def get_request(ctx, bu_id, request_id):
    return result_response(approval_service.get_approval_request_by_id(ctx, bu_id, request_id))


@approval_bp.route(f"{_BASE}/<int:request_id>/responses", methods=["POST"])
@authenticated
def respond(ctx, bu_id, request_id):
    data = json_body()
    if not data.get("step_id"):
        return api_error(E.VALIDATION_REQUIRED, "Field 'step_id' is required.")
    try:
        step_id = int(data["step_id"])
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_INVALID, "Field 'step_id' must be an integer.")
    if not data.get("status"):
        return api_error(E.VALIDATION_REQUIRED, "Field 'status' is required.")
    result = approval_service.process_approval_response(
        ctx, bu_id, request_id,
        step_id=step_id,
        status=data["status"],
        comments=data.get("comments"),
        is_override=bool(parse_bool(data.get("is_override"))),
    )
    return result_response(result)


@approval_bp.route(f"{_BASE}/<int:request_id>/cancel", methods=["POST"])
@authenticated
def cancel_request(ctx, bu_id, request_id):
    return result_response(approval_service.cancel_approval_request(ctx, bu_id, request_id))
