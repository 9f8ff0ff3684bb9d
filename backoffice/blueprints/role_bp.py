"""
Role Blueprint — roles and their per-module permissions.

Endpoints (under /api/v1/business-units/<bu_id>):
    GET    /roles                     list (search)
    POST   /roles                     create with permissions
           Body: { "name": "...", "level": 2, "description": "...",
                   "permissions": [{"module": "APPROVAL", "can_approve": true}, ...] }
    GET    /roles/available           roles selectable for workflow steps
    GET    /roles/stats               counts by level
    GET    /roles/<id>                detail with permissions and member count
    PUT    /roles/<id>                update name/description/level
    PUT    /roles/<id>/permissions    replace the permission set
    DELETE /roles/<id>                delete (only without members or workflow steps)
"""

from flask import Blueprint, request

from backoffice.blueprints import authenticated, json_body
from backoffice.services import role_service
from backoffice.utils.errors import E, api_error, result_response

role_bp = Blueprint("roles", __name__, url_prefix="/api/v1")

_BASE = "/business-units/<int:bu_id>/roles"


@role_bp.route(_BASE, methods=["GET"])
@authenticated
def list_roles(ctx, bu_id):
    return result_response(
        role_service.list_roles(ctx, bu_id, search=request.args.get("search") or None)
    )


@role_bp.route(_BASE, methods=["POST"])
@authenticated
def create_role(ctx, bu_id):
    data = json_body()
    if not (data.get("name") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "Field 'name' is required.")
    if not isinstance(data.get("permissions", []), list):
        return api_error(E.VALIDATION_INVALID, "Field 'permissions' must be a list.")
    result = role_service.create_role(
        ctx, bu_id,
        name=data["name"],
        permissions=data.get("permissions") or [],
        description=data.get("description"),
        level=data.get("level", 0),
    )
    return result_response(result, success_status=201)


@role_bp.route(f"{_BASE}/available", methods=["GET"])
@authenticated
def available_roles(ctx, bu_id):
    return result_response(role_service.get_available_roles(ctx, bu_id))


@role_bp.route(f"{_BASE}/stats", methods=["GET"])
@authenticated
def role_stats(ctx, bu_id):
    return result_response(role_service.get_role_stats(ctx, bu_id))


@role_bp.route(f"{_BASE}/<int:role_id>", methods=["GET"])
@authenticated
def get_role(ctx, bu_id, role_id):
    return result_response(role_service.get_role(ctx, bu_id, role_id))


@role_bp.route(f"{_BASE}/<int:role_id>", methods=["PUT"])
@authenticated
def update_role(ctx, bu_id, role_id):
    data = json_body()
    fields = {k: data[k] for k in ("name", "description", "level") if k in data}
    if not fields:
        return api_error(E.VALIDATION_REQUIRED, "No updatable fields supplied.")
    return result_response(role_service.update_role(ctx, bu_id, role_id, **fields))


@role_bp.route(f"{_BASE}/<int:role_id>/permissions", methods=["PUT"])
@authenticated
def update_role_permissions(ctx, bu_id, role_id):
    permissions = json_body().get("permissions")
    if not isinstance(permissions, list):
        return api_error(E.VALIDATION_INVALID, "Field 'permissions' must be a list.")
    return result_response(
        role_service.update_role_permissions(ctx, bu_id, role_id, permissions)
    )


@role_bp.route(f"{_BASE}/<int:role_id>", methods=["DELETE"])
@authenticated
def delete_role(ctx, bu_id, role_id):
    return result_response(role_service.delete_role(ctx, bu_id, role_id))
