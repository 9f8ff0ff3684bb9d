"""
Property Movement Blueprint — returns, releases and turnovers.

Routes are scoped under /api/v1/business-units/<bu_id>/<kind> where <kind>
is one of ``returns``, ``releases`` or ``turnovers``.

Endpoints:
    GET    /<kind>                   list (search, status, type, property_id,
                                     date_from, date_to, page, limit)
    POST   /<kind>                   request a movement (opens its approval request)
    GET    /<kind>/stats             counts by status and type
    GET    /<kind>/options           sub-types, destinations, business units and banks
    GET    /<kind>/<id>              detail with movement history
    PUT    /<kind>/<id>              edit detail fields of a PENDING movement
    POST   /<kind>/<id>/complete     finish an APPROVED movement
           Body: { "received_by_id": 5, "notes": "..." }
    POST   /<kind>/<id>/cancel       requester withdraws a PENDING/APPROVED movement
"""

from flask import Blueprint, request

from backoffice.blueprints import authenticated, json_body, list_args
from backoffice.services import movement_service
from backoffice.utils.errors import E, api_error, result_response

movement_bp = Blueprint("property_movements", __name__, url_prefix="/api/v1")

_KIND_SLUGS = {
    "returns": "RETURN",
    "releases": "RELEASE",
    "turnovers": "TURNOVER",
}

_BASE = "/business-units/<int:bu_id>/<any(returns, releases, turnovers):kind>"


def _create_return(ctx, bu_id, data):
    return movement_service.create_property_return(
        ctx, bu_id,
        property_id=data["property_id"],
        return_type=data.get("return_type"),
        returned_by_name=data.get("returned_by_name"),
        reason_for_return=data.get("reason_for_return"),
        condition=data.get("condition"),
        notes=data.get("notes"),
    )


def _create_release(ctx, bu_id, data):
    return movement_service.create_property_release(
        ctx, bu_id,
        property_id=data["property_id"],
        release_type=data.get("release_type"),
        target_business_unit_id=data.get("target_business_unit_id"),
        bank_name=data.get("bank_name"),
        purpose_of_release=data.get("purpose_of_release"),
        received_by_name=data.get("received_by_name"),
        transmittal_number=data.get("transmittal_number"),
        expected_return_date=data.get("expected_return_date"),
        notes=data.get("notes"),
    )


def _create_turnover(ctx, bu_id, data):
    return movement_service.create_property_turnover(
        ctx, bu_id,
        property_id=data["property_id"],
        turnover_type=data.get("turnover_type"),
        from_business_unit_id=data.get("from_business_unit_id"),
        to_business_unit_id=data.get("to_business_unit_id"),
        purpose=data.get("purpose"),
        notes=data.get("notes"),
    )


_CREATORS = {
    "RETURN": _create_return,
    "RELEASE": _create_release,
    "TURNOVER": _create_turnover,
}


@movement_bp.route(_BASE, methods=["GET"])
@authenticated
def list_movements(ctx, bu_id, kind):
    args = list_args("status")
    if request.args.get("type"):
        args["movement_type"] = request.args["type"]
    property_id = request.args.get("property_id", type=int)
    if property_id:
        args["property_id"] = property_id
    return result_response(
        movement_service.list_movements(ctx, bu_id, _KIND_SLUGS[kind], **args)
    )


@movement_bp.route(_BASE, methods=["POST"])
@authenticated
def create_movement(ctx, bu_id, kind):
    data = json_body()
    if not data.get("property_id"):
        return api_error(E.VALIDATION_REQUIRED, "Field 'property_id' is required.")
    kind_key = _KIND_SLUGS[kind]
    result = _CREATORS[kind_key](ctx, bu_id, data)
    return result_response(result, success_status=201)


@movement_bp.route(f"{_BASE}/stats", methods=["GET"])
@authenticated
def movement_stats(ctx, bu_id, kind):
    return result_response(movement_service.get_movement_stats(ctx, bu_id, _KIND_SLUGS[kind]))


@movement_bp.route(f"{_BASE}/<int:movement_id>", methods=["GET"])
@authenticated
def get_movement(ctx, bu_id, kind, movement_id):
    return result_response(
        movement_service.get_movement(ctx, bu_id, _KIND_SLUGS[kind], movement_id)
    )


@movement_bp.route(f"{_BASE}/<int:movement_id>/complete", methods=["POST"])
@authenticated
def complete_movement(ctx, bu_id, kind, movement_id):
    data = json_body()
    result = movement_service.complete_movement(
        ctx, bu_id, _KIND_SLUGS[kind], movement_id,
        received_by_id=data.get("received_by_id"),
        notes=data.get("notes"),
    )
    return result_response(result)


@movement_bp.route(f"{_BASE}/<int:movement_id>/cancel", methods=["POST"])
@authenticated
def cancel_movement(ctx, bu_id, kind, movement_id):
    return result_response(
        movement_service.cancel_movement(ctx, bu_id, _KIND_SLUGS[kind], movement_id)
    )


@movement_bp.route(f"{_BASE}/options", methods=["GET"])
@authenticated
def movement_options(ctx, bu_id, kind):
    return result_response(
        movement_service.get_movement_type_options(ctx, bu_id, _KIND_SLUGS[kind])
    )


@movement_bp.route(f"{_BASE}/<int:movement_id>", methods=["PUT"])
@authenticated
def update_movement(ctx, bu_id, kind, movement_id):
    data = json_body()
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "No updatable fields supplied.")
    return result_response(
        movement_service.update_movement(ctx, bu_id, _KIND_SLUGS[kind], movement_id, data)
    )
