"""
Property Movement Coordinators — returns, releases and turnovers.

Each movement request is bound to exactly one ApprovalRequest and drives the
property's status and location in step with that request:

    create      property → UNDER_REVIEW, movement PENDING, request PENDING
    approved    movement APPROVED (request APPROVED or OVERRIDDEN)
    rejected    movement CANCELLED, property back to its prior status/location
    cancelled   same as rejected
    complete    movement COMPLETED, property at its final status/location

The three kinds differ only in data, so they share one code path driven by
the MOVEMENT_KINDS table below.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass

from sqlalchemy import func, or_, select

from backoffice.core.exceptions import AuthorizationError, ConflictError, ValidationError
from backoffice.models import db, utcnow
from backoffice.models.approval import ApprovalRequest
from backoffice.models.audit import write_audit
from backoffice.models.auth import BusinessUnit
from backoffice.models.property import (
    MOVEMENT_OPEN_STATUSES,
    MOVEMENT_STATUSES,
    TURNOVER_TYPES,
    Property,
    PropertyMovement,
    PropertyRelease,
    PropertyReturn,
    PropertyTurnover,
)
from backoffice.services import approval_service
from backoffice.services.access_context import AccessContext, require_assignment
from backoffice.services.helpers.action_result import ok, service_action
from backoffice.services.helpers.scoped_queries import get_scoped
from backoffice.services.workflow_service import resolve_active_workflow
from backoffice.utils.helpers import day_end, day_start, paginate, parse_date

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Destination:
    """Where a movement of one sub-type takes the property."""

    movement_type: str
    final_status: str
    final_location: str


@dataclass(frozen=True)
class MovementKind:
    key: str
    noun: str
    plural: str
    model: type
    entity_type: str
    type_field: str
    eligible_statuses: tuple
    destinations: dict
    # Detail fields the requester may still change while the movement is PENDING
    editable_fields: tuple = ("notes",)


MOVEMENT_KINDS = {
    "RETURN": MovementKind(
        key="RETURN",
        noun="return",
        plural="returns",
        model=PropertyReturn,
        entity_type="PROPERTY_RETURN",
        type_field="return_type",
        eligible_statuses=("RELEASED", "BANK_CUSTODY"),
        destinations={
            "FROM_BANK": Destination("RETURN_FROM_BANK", "ACTIVE", "MAIN_OFFICE"),
            "FROM_SUBSIDIARY": Destination("RETURN_FROM_SUBSIDIARY", "ACTIVE", "MAIN_OFFICE"),
            "FROM_EXTERNAL": Destination("RETURN_FROM_EXTERNAL", "ACTIVE", "MAIN_OFFICE"),
        },
        editable_fields=("returned_by_name", "reason_for_return", "condition", "notes"),
    ),
    "RELEASE": MovementKind(
        key="RELEASE",
        noun="release",
        plural="releases",
        model=PropertyRelease,
        entity_type="PROPERTY_RELEASE",
        type_field="release_type",
        eligible_statuses=("ACTIVE", "PENDING"),
        destinations={
            "TO_BANK": Destination("RELEASE_TO_BANK", "BANK_CUSTODY", "BANK_CUSTODY"),
            "TO_SUBSIDIARY": Destination("RELEASE_TO_SUBSIDIARY", "RELEASED", "SUBSIDIARY_COMPANY"),
            "TO_EXTERNAL": Destination("RELEASE_TO_EXTERNAL", "RELEASED", "EXTERNAL_HOLDER"),
        },
        editable_fields=(
            "bank_name", "purpose_of_release", "received_by_name",
            "transmittal_number", "expected_return_date", "notes",
        ),
    ),
    "TURNOVER": MovementKind(
        key="TURNOVER",
        noun="turnover",
        plural="turnovers",
        model=PropertyTurnover,
        entity_type="PROPERTY_TURNOVER",
        type_field="turnover_type",
        eligible_statuses=("ACTIVE", "PENDING"),
        destinations={
            t: Destination("TURNOVER_INTERNAL", "ACTIVE", "SUBSIDIARY_COMPANY")
            for t in TURNOVER_TYPES
        },
        editable_fields=("purpose", "notes"),
    ),
}


_BY_ENTITY_TYPE = {k.entity_type: k for k in MOVEMENT_KINDS.values()}


# ── Private helpers ────────────────────────────────────────────────────────────


def _kind(key: str) -> MovementKind:
    kind = MOVEMENT_KINDS.get((key or "").upper())
    if kind is None:
        raise ValidationError(f"Unknown movement kind '{key}'", details={"kind": sorted(MOVEMENT_KINDS)})
    return kind


def _active_business_unit(business_unit_id: int, label: str) -> BusinessUnit:
    bu = db.session.get(BusinessUnit, business_unit_id)
    if bu is None or not bu.is_active:
        raise ValidationError(f"{label} not found or inactive", details={label: business_unit_id})
    return bu


def _validate_release(business_unit_id, release_type, fields):
    if release_type == "TO_SUBSIDIARY":
        target = fields.get("target_business_unit_id")
        if not target:
            raise ValidationError("Target business unit is required for subsidiary releases")
        _active_business_unit(target, "Target business unit")
    elif release_type == "TO_BANK":
        if not (fields.get("bank_name") or "").strip():
            raise ValidationError("Bank name is required for bank releases")


def _validate_turnover(business_unit_id, turnover_type, fields):
    fields.setdefault("from_business_unit_id", business_unit_id)
    if fields.get("from_business_unit_id"):
        _active_business_unit(fields["from_business_unit_id"], "Source business unit")
    if fields.get("to_business_unit_id"):
        _active_business_unit(fields["to_business_unit_id"], "Target business unit")
    if turnover_type == "BETWEEN_SUBSIDIARIES":
        if not fields.get("to_business_unit_id"):
            raise ValidationError("Target business unit is required for turnovers between subsidiaries")
        if fields["to_business_unit_id"] == fields["from_business_unit_id"]:
            raise ValidationError("Source and target business units must differ")


_KIND_VALIDATORS = {
    "RELEASE": _validate_release,
    "TURNOVER": _validate_turnover,
}


def _open_movement_exists(kind: MovementKind, property_id: int) -> bool:
    model = kind.model
    return db.session.execute(
        select(model.id).where(
            model.property_id == property_id,
            model.status.in_(MOVEMENT_OPEN_STATUSES),
        )
    ).first() is not None


def _record_history(kind, movement, prop, destination, from_location, to_location, actor_id, notes):
    db.session.add(PropertyMovement(
        property_id=prop.id,
        business_unit_id=movement.business_unit_id,
        movement_type=destination.movement_type,
        from_location=from_location,
        to_location=to_location,
        reference_type=kind.key,
        reference_id=movement.id,
        moved_by_id=actor_id,
        notes=notes,
    ))


def _revert_property(movement) -> None:
    prop = movement.property_record
    if movement.previous_property_status:
        prop.status = movement.previous_property_status
    if movement.previous_location:
        prop.current_location = movement.previous_location


def _get_movement(kind: MovementKind, business_unit_id: int, movement_id: int):
    return get_scoped(kind.model, movement_id, business_unit_id=business_unit_id,
                      message=f"Property {kind.noun} not found")


def _create_movement(
    ctx: AccessContext,
    business_unit_id: int,
    kind: MovementKind,
    property_id: int,
    movement_type: str,
    notes: str | None,
    fields: dict,
) -> dict:
    require_assignment(ctx, business_unit_id)

    destination = kind.destinations.get(movement_type)
    if destination is None:
        raise ValidationError(
            f"Invalid {kind.noun} type '{movement_type}'",
            details={kind.type_field: sorted(kind.destinations)},
        )

    unavailable = f"Property not found or not available for {kind.noun}"
    prop = get_scoped(Property, property_id, business_unit_id=business_unit_id, message=unavailable)
    if prop.status not in kind.eligible_statuses:
        raise ValidationError(unavailable, details={"status": prop.status})
    if _open_movement_exists(kind, prop.id):
        raise ConflictError(
            kind.model.__name__,
            message=f"Property is already in {kind.noun} process or has a pending {kind.noun}",
        )

    validator = _KIND_VALIDATORS.get(kind.key)
    if validator:
        validator(business_unit_id, movement_type, fields)

    workflow = resolve_active_workflow(kind.entity_type)
    if workflow is None:
        raise ValidationError(
            f"No approval workflow found for property {kind.plural}. "
            "Please contact your administrator."
        )
    if not workflow.steps:
        raise ValidationError(
            "Approval workflow has no steps configured. Please contact your administrator."
        )

    movement = kind.model(
        property_id=prop.id,
        business_unit_id=business_unit_id,
        requested_by_id=ctx.user_id,
        status="PENDING",
        previous_property_status=prop.status,
        previous_location=prop.current_location,
        notes=notes,
        **{kind.type_field: movement_type},
        **fields,
    )
    db.session.add(movement)
    db.session.flush()

    req = approval_service.open_request(
        ctx, business_unit_id, workflow, kind.entity_type, movement.id, property_id=prop.id
    )
    movement.approval_request_id = req.id

    from_location = prop.current_location
    prop.status = "UNDER_REVIEW"
    _record_history(
        kind, movement, prop, destination, from_location, destination.final_location,
        ctx.user_id, f"Property {kind.noun} request created - awaiting approval.",
    )
    db.session.flush()

    write_audit(
        action="CREATE",
        entity=kind.model.__name__,
        entity_id=movement.id,
        user_id=ctx.user_id,
        business_unit_id=business_unit_id,
        property_id=prop.id,
        new_values={
            kind.type_field: movement_type,
            "status": "PENDING_APPROVAL",
            "approval_request_id": req.id,
            **fields,
        },
    )
    db.session.commit()

    first_role = workflow.steps[0].role
    logger.info(
        "Property %s requested for property %s", kind.noun, prop.id,
        extra={
            "business_unit_id": business_unit_id,
            "movement_id": movement.id,
            "approval_request_id": req.id,
            "actor_id": ctx.user_id,
        },
    )
    return ok(
        data=movement.to_dict(),
        approval_request_id=req.id,
        workflow_steps=len(workflow.steps),
        next_approver=first_role.name if first_role else None,
        message=f"Property {kind.noun} request submitted for approval.",
    )


# ── Engine synchronisation ─────────────────────────────────────────────────────


def sync_with_request(req: ApprovalRequest, actor_id: int) -> None:
    """Mirror a request's terminal status onto the movement it governs. Does not commit.

    APPROVED / OVERRIDDEN → movement APPROVED
    REJECTED / CANCELLED  → movement CANCELLED, property reverted
    """
    kind = _BY_ENTITY_TYPE.get(req.entity_type)
    if kind is None or req.is_open:
        return
    movement = db.session.execute(
        select(kind.model).where(kind.model.approval_request_id == req.id)
    ).scalar_one_or_none()
    if movement is None or movement.status not in ("PENDING", "IN_PROGRESS"):
        return

    old_status = movement.status
    if req.status in ("APPROVED", "OVERRIDDEN"):
        movement.status = "APPROVED"
        movement.approved_by_id = actor_id
    else:
        movement.status = "CANCELLED"
        _revert_property(movement)
    db.session.flush()

    write_audit(
        action="UPDATE",
        entity=kind.model.__name__,
        entity_id=movement.id,
        user_id=actor_id,
        business_unit_id=movement.business_unit_id,
        property_id=movement.property_id,
        old_values={"status": old_status},
        new_values={"status": movement.status, "approval_status": req.status},
    )
    logger.info(
        "Property %s %s after approval %s", kind.noun, movement.status, req.status,
        extra={
            "business_unit_id": movement.business_unit_id,
            "movement_id": movement.id,
            "approval_request_id": req.id,
        },
    )


# ── Public API: create ─────────────────────────────────────────────────────────


@service_action("Failed to create property return request")
def create_property_return(
    ctx: AccessContext,
    business_unit_id: int,
    property_id: int,
    return_type: str,
    returned_by_name: str | None = None,
    reason_for_return: str | None = None,
    condition: str | None = None,
    notes: str | None = None,
) -> dict:
    return _create_movement(
        ctx, business_unit_id, MOVEMENT_KINDS["RETURN"], property_id, return_type, notes,
        {
            "returned_by_name": returned_by_name,
            "reason_for_return": reason_for_return,
            "condition": condition,
        },
    )


@service_action("Failed to create property release request")
def create_property_release(
    ctx: AccessContext,
    business_unit_id: int,
    property_id: int,
    release_type: str,
    target_business_unit_id: int | None = None,
    bank_name: str | None = None,
    purpose_of_release: str | None = None,
    received_by_name: str | None = None,
    transmittal_number: str | None = None,
    expected_return_date=None,
    notes: str | None = None,
) -> dict:
    return _create_movement(
        ctx, business_unit_id, MOVEMENT_KINDS["RELEASE"], property_id, release_type, notes,
        {
            "target_business_unit_id": target_business_unit_id,
            "bank_name": bank_name,
            "purpose_of_release": purpose_of_release,
            "received_by_name": received_by_name,
            "transmittal_number": transmittal_number,
            "expected_return_date": parse_date(expected_return_date),
        },
    )


@service_action("Failed to create property turnover request")
def create_property_turnover(
    ctx: AccessContext,
    business_unit_id: int,
    property_id: int,
    turnover_type: str,
    from_business_unit_id: int | None = None,
    to_business_unit_id: int | None = None,
    purpose: str | None = None,
    notes: str | None = None,
) -> dict:
    fields = {"to_business_unit_id": to_business_unit_id, "purpose": purpose}
    if from_business_unit_id is not None:
        fields["from_business_unit_id"] = from_business_unit_id
    return _create_movement(
        ctx, business_unit_id, MOVEMENT_KINDS["TURNOVER"], property_id, turnover_type, notes, fields,
    )


# ── Public API: lifecycle ──────────────────────────────────────────────────────


@service_action("Failed to complete property movement")
def complete_movement(
    ctx: AccessContext,
    business_unit_id: int,
    kind_key: str,
    movement_id: int,
    received_by_id: int | None = None,
    notes: str | None = None,
) -> dict:
    """Finish an approved movement and put the property at its destination."""
    require_assignment(ctx, business_unit_id)
    kind = _kind(kind_key)
    movement = _get_movement(kind, business_unit_id, movement_id)
    if movement.status != "APPROVED":
        raise ValidationError(
            f"Only approved {kind.plural} can be completed", details={"status": movement.status}
        )

    destination = kind.destinations[getattr(movement, kind.type_field)]
    prop = movement.property_record
    from_location = prop.current_location

    movement.status = "COMPLETED"
    movement.completed_at = utcnow()
    movement.received_by_id = received_by_id or ctx.user_id
    prop.status = destination.final_status
    prop.current_location = destination.final_location
    if kind.key == "TURNOVER" and movement.to_business_unit_id:
        prop.business_unit_id = movement.to_business_unit_id

    _record_history(
        kind, movement, prop, destination, from_location, destination.final_location,
        ctx.user_id, notes or f"Property {kind.noun} completed.",
    )
    db.session.flush()
    write_audit(
        action="COMPLETE",
        entity=kind.model.__name__,
        entity_id=movement.id,
        user_id=ctx.user_id,
        business_unit_id=business_unit_id,
        property_id=prop.id,
        old_values={"status": "APPROVED", "property_location": from_location},
        new_values={
            "status": movement.status,
            "property_status": prop.status,
            "property_location": prop.current_location,
        },
    )
    db.session.commit()

    logger.info(
        "Property %s completed", kind.noun,
        extra={"business_unit_id": business_unit_id, "movement_id": movement.id, "actor_id": ctx.user_id},
    )
    return ok(data=movement.to_dict(), message=f"Property {kind.noun} completed successfully")


@service_action("Failed to cancel property movement")
def cancel_movement(ctx: AccessContext, business_unit_id: int, kind_key: str, movement_id: int) -> dict:
    """Withdraw a PENDING or APPROVED movement; only its requester may."""
    require_assignment(ctx, business_unit_id)
    kind = _kind(kind_key)
    movement = _get_movement(kind, business_unit_id, movement_id)
    if movement.requested_by_id != ctx.user_id:
        raise AuthorizationError(f"Only the requester can cancel this {kind.noun}")
    if movement.status not in ("PENDING", "APPROVED"):
        raise ValidationError(
            f"Property {kind.noun} cannot be cancelled", details={"status": movement.status}
        )

    req = movement.approval_request
    if req is not None and req.is_open:
        approval_service.close_request(req, ctx.user_id, business_unit_id)

    old_status = movement.status
    movement.status = "CANCELLED"
    _revert_property(movement)
    db.session.flush()

    write_audit(
        action="CANCEL",
        entity=kind.model.__name__,
        entity_id=movement.id,
        user_id=ctx.user_id,
        business_unit_id=business_unit_id,
        property_id=movement.property_id,
        old_values={"status": old_status},
        new_values={
            "status": movement.status,
            "property_status": movement.property_record.status,
            "property_location": movement.property_record.current_location,
        },
    )
    db.session.commit()
    return ok(data=movement.to_dict(), message=f"Property {kind.noun} cancelled successfully")


@service_action("Failed to update property movement")
def update_movement(
    ctx: AccessContext,
    business_unit_id: int,
    kind_key: str,
    movement_id: int,
    changes: dict,
) -> dict:
    """Edit the detail fields of a PENDING movement.

    Allowed for the requester and for callers whose role may update
    PROPERTY records in the business unit. The movement type, property and
    target business units are fixed once the approval request is open.
    """
    changes = dict(changes or {})
    require_assignment(ctx, business_unit_id)
    kind = _kind(kind_key)
    movement = _get_movement(kind, business_unit_id, movement_id)
    if movement.requested_by_id != ctx.user_id and not ctx.can(business_unit_id, "PROPERTY", "update"):
        raise AuthorizationError(f"Only the requester can edit this {kind.noun}")
    if movement.status != "PENDING":
        raise ValidationError(
            f"Only pending {kind.plural} can be edited", details={"status": movement.status}
        )

    unknown = sorted(set(changes) - set(kind.editable_fields))
    if unknown:
        raise ValidationError(
            f"Fields cannot be edited on a {kind.noun}: {', '.join(unknown)}",
            details={"editable": list(kind.editable_fields)},
        )
    if "expected_return_date" in changes:
        changes["expected_return_date"] = parse_date(changes["expected_return_date"])
    if (
        kind.key == "RELEASE" and movement.release_type == "TO_BANK"
        and "bank_name" in changes and not (changes["bank_name"] or "").strip()
    ):
        raise ValidationError("Bank name is required for bank releases")

    old_values, new_values = {}, {}
    for field, value in changes.items():
        current = getattr(movement, field)
        if current != value:
            old_values[field] = current
            new_values[field] = value
            setattr(movement, field, value)
    if not new_values:
        return ok(data=movement.to_dict(), message="No changes")

    db.session.flush()
    write_audit(
        action="UPDATE",
        entity=kind.model.__name__,
        entity_id=movement.id,
        user_id=ctx.user_id,
        business_unit_id=business_unit_id,
        property_id=movement.property_id,
        old_values=old_values,
        new_values=new_values,
    )
    db.session.commit()

    logger.info(
        "Property %s updated (%s)", kind.noun, ", ".join(sorted(new_values)),
        extra={"business_unit_id": business_unit_id, "movement_id": movement.id, "actor_id": ctx.user_id},
    )
    return ok(data=movement.to_dict(), message=f"Property {kind.noun} updated successfully")


# ── Public API: reads ──────────────────────────────────────────────────────────


@service_action("Failed to fetch property movements")
def list_movements(
    ctx: AccessContext,
    business_unit_id: int,
    kind_key: str,
    search: str | None = None,
    status: str | None = None,
    movement_type: str | None = None,
    property_id: int | None = None,
    date_from=None,
    date_to=None,
    page: int = 1,
    limit: int = 10,
) -> dict:
    require_assignment(ctx, business_unit_id)
    kind = _kind(kind_key)
    model = kind.model

    stmt = (
        select(model)
        .join(Property, model.property_id == Property.id)
        .where(model.business_unit_id == business_unit_id)
    )
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(
            Property.title_number.ilike(pattern),
            Property.property_name.ilike(pattern),
            Property.location.ilike(pattern),
        ))
    if status:
        if status not in MOVEMENT_STATUSES:
            raise ValidationError(f"Invalid status '{status}'")
        stmt = stmt.where(model.status == status)
    if movement_type:
        stmt = stmt.where(getattr(model, kind.type_field) == movement_type)
    if property_id:
        stmt = stmt.where(model.property_id == property_id)
    if day_start(date_from):
        stmt = stmt.where(model.created_at >= day_start(date_from))
    if day_end(date_to):
        stmt = stmt.where(model.created_at <= day_end(date_to))
    stmt = stmt.order_by(model.created_at.desc(), model.id.desc())

    items, pagination = paginate(stmt, page, limit)
    return ok(data=[m.to_dict() for m in items], pagination=pagination)


@service_action("Failed to fetch property movement")
def get_movement(ctx: AccessContext, business_unit_id: int, kind_key: str, movement_id: int) -> dict:
    require_assignment(ctx, business_unit_id)
    kind = _kind(kind_key)
    movement = _get_movement(kind, business_unit_id, movement_id)
    history = db.session.execute(
        select(PropertyMovement)
        .where(
            PropertyMovement.reference_type == kind.key,
            PropertyMovement.reference_id == movement.id,
        )
        .order_by(PropertyMovement.movement_date, PropertyMovement.id)
    ).scalars().all()
    d = movement.to_dict()
    d["history"] = [h.to_dict() for h in history]
    return ok(data=d)


@service_action("Failed to fetch property movement statistics")
def get_movement_stats(ctx: AccessContext, business_unit_id: int, kind_key: str) -> dict:
    require_assignment(ctx, business_unit_id)
    kind = _kind(kind_key)
    model = kind.model
    type_column = getattr(model, kind.type_field)

    by_status = Counter(dict(db.session.execute(
        select(model.status, func.count(model.id))
        .where(model.business_unit_id == business_unit_id)
        .group_by(model.status)
    ).all()))
    by_type = dict(db.session.execute(
        select(type_column, func.count(model.id))
        .where(model.business_unit_id == business_unit_id)
        .group_by(type_column)
    ).all())

    return ok(data={
        "total": sum(by_status.values()),
        "pending": by_status["PENDING"],
        "approved": by_status["APPROVED"],
        "in_progress": by_status["IN_PROGRESS"],
        "completed": by_status["COMPLETED"],
        "cancelled": by_status["CANCELLED"],
        "by_type": by_type,
    })


@service_action("Failed to fetch property movement options")
def get_movement_type_options(ctx: AccessContext, business_unit_id: int, kind_key: str) -> dict:
    """Sub-types of a movement kind with their destinations, plus counterparties.

    ``business_units`` lists the other active units a property can go to or
    come back from; ``banks`` lists bank names already used on this unit's
    releases.
    """
    require_assignment(ctx, business_unit_id)
    kind = _kind(kind_key)

    types = [
        {
            "value": value,
            "label": value.replace("_", " ").title(),
            "movement_type": dest.movement_type,
            "final_status": dest.final_status,
            "final_location": dest.final_location,
        }
        for value, dest in sorted(kind.destinations.items())
    ]
    units = db.session.execute(
        select(BusinessUnit)
        .where(BusinessUnit.is_active.is_(True), BusinessUnit.id != business_unit_id)
        .order_by(BusinessUnit.name)
    ).scalars().all()

    data = {
        "kind": kind.key,
        "type_field": kind.type_field,
        "types": types,
        "business_units": [
            {"id": bu.id, "name": bu.name, "details": bu.description} for bu in units
        ],
        "editable_fields": list(kind.editable_fields),
    }
    if kind.key in ("RELEASE", "RETURN"):
        data["banks"] = db.session.execute(
            select(PropertyRelease.bank_name)
            .where(
                PropertyRelease.business_unit_id == business_unit_id,
                PropertyRelease.bank_name.is_not(None),
            )
            .distinct()
            .order_by(PropertyRelease.bank_name)
        ).scalars().all()
    return ok(data=data)
