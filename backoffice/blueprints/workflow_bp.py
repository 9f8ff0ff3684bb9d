"""
Approval Workflow Blueprint — definition store endpoints.

All routes are scoped under /api/v1/business-units/<bu_id>/approval-workflows
so every call carries the business unit its access check runs against.

Endpoints:
    GET    /approval-workflows                  list (search, entity_type, is_active,
                                                has_steps, date_from, date_to,
                                                sort_by, sort_order, page, limit)
    POST   /approval-workflows                  create with steps
    GET    /approval-workflows/stats            aggregate counts
    GET    /approval-workflows/filter-options   entity types with labels
    GET    /approval-workflows/<id>             detail with ordered steps
    PUT    /approval-workflows/<id>             update name/description/entity_type/is_active
    PUT    /approval-workflows/<id>/steps       replace all steps
    POST   /approval-workflows/<id>/toggle      flip is_active
    POST   /approval-workflows/<id>/duplicate   copy under a new name (inactive)
    DELETE /approval-workflows/<id>             delete (only when never used)

Layer contract:
    - Blueprint: parse input, call service with the caller's context, map result.
    - NO db.session calls here — all writes owned by workflow_service.
"""

from flask import Blueprint

from backoffice.blueprints import authenticated, bool_arg, json_body, list_args
from backoffice.services import workflow_service
from backoffice.utils.errors import E, api_error, result_response

workflow_bp = Blueprint("approval_workflows", __name__, url_prefix="/api/v1")

_BASE = "/business-units/<int:bu_id>/approval-workflows"


@workflow_bp.route(_BASE, methods=["GET"])
@authenticated
def list_workflows(ctx, bu_id):
    args = list_args("entity_type", "sort_by", "sort_order")
    result = workflow_service.get_approval_workflows(
        ctx, bu_id,
        is_active=bool_arg("is_active"),
        has_steps=bool_arg("has_steps"),
        **args,
    )
    return result_response(result)


@workflow_bp.route(_BASE, methods=["POST"])
@authenticated
def create_workflow(ctx, bu_id):
    data = json_body()
    if not (data.get("name") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "Field 'name' is required.")
    if not data.get("entity_type"):
        return api_error(E.VALIDATION_REQUIRED, "Field 'entity_type' is required.")
    if not isinstance(data.get("steps", []), list):
        return api_error(E.VALIDATION_INVALID, "Field 'steps' must be a list.")

    result = workflow_service.create_approval_workflow(
        ctx, bu_id,
        name=data["name"],
        entity_type=data["entity_type"],
        steps=data.get("steps") or [],
        description=data.get("description"),
        is_active=bool(data.get("is_active", True)),
    )
    return result_response(result, success_status=201)


@workflow_bp.route(f"{_BASE}/stats", methods=["GET"])
@authenticated
def workflow_stats(ctx, bu_id):
    return result_response(workflow_service.get_approval_workflow_stats(ctx, bu_id))


@workflow_bp.route(f"{_BASE}/filter-options", methods=["GET"])
@authenticated
def workflow_filter_options(ctx, bu_id):
    return result_response(workflow_service.get_workflow_filter_options(ctx, bu_id))


@workflow_bp.route(f"{_BASE}/<int:workflow_id>", methods=["GET"])
@authenticated
def get_workflow(ctx, bu_id, workflow_id):
    return result_response(workflow_service.get_approval_workflow_by_id(ctx, bu_id, workflow_id))


@workflow_bp.route(f"{_BASE}/<int:workflow_id>", methods=["PUT"])
@authenticated
def update_workflow(ctx, bu_id, workflow_id):
    data = json_body()
    fields = {
        k: data[k] for k in ("name", "description", "entity_type", "is_active") if k in data
    }
    if not fields:
        return api_error(E.VALIDATION_REQUIRED, "No updatable fields supplied.")
    result = workflow_service.update_approval_workflow(ctx, bu_id, workflow_id, **fields)
    return result_response(result)


@workflow_bp.route(f"{_BASE}/<int:workflow_id>/steps", methods=["PUT"])
@authenticated
def update_workflow_steps(ctx, bu_id, workflow_id):
    steps = json_body().get("steps")
    if not isinstance(steps, list):
        return api_error(E.VALIDATION_INVALID, "Field 'steps' must be a list.")
    result = workflow_service.update_approval_workflow_steps(ctx, bu_id, workflow_id, steps)
    return result_response(result)


@workflow_bp.route(f"{_BASE}/<int:workflow_id>/toggle", methods=["POST"])
@authenticated
def toggle_workflow(ctx, bu_id, workflow_id):
    return result_response(
        workflow_service.toggle_approval_workflow_status(ctx, bu_id, workflow_id)
    )


@workflow_bp.route(f"{_BASE}/<int:workflow_id>/duplicate", methods=["POST"])
@authenticated
def duplicate_workflow(ctx, bu_id, workflow_id):
    new_name = (json_body().get("name") or "").strip()
    if not new_name:
        return api_error(E.VALIDATION_REQUIRED, "Field 'name' is required.")
    result = workflow_service.duplicate_approval_workflow(ctx, bu_id, workflow_id, new_name)
    return result_response(result, success_status=201)


@workflow_bp.route(f"{_BASE}/<int:workflow_id>", methods=["DELETE"])
@authenticated
def delete_workflow(ctx, bu_id, workflow_id):
    return result_response(workflow_service.delete_approval_workflow(ctx, bu_id, workflow_id))
