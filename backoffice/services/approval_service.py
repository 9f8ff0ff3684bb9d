"""
Approval Request Engine.

Drives one ApprovalRequest through its workflow's ordered steps.

State machine:
    PENDING ──approve (not last)──▶ IN_PROGRESS ──approve (last)──▶ APPROVED
       │                               │
       ├──reject──────────────────────▶ REJECTED
       ├──override────────────────────▶ OVERRIDDEN
       └──cancel (requester)──────────▶ CANCELLED

Terminal requests (APPROVED, REJECTED, CANCELLED, OVERRIDDEN) are immutable:
respond and cancel both refuse them.

Design decisions:
    - Every structural check (scope, status, current step, responder role)
      runs before the first write; a refused response leaves no trace.
    - ApprovalStepResponse rows are APPEND-ONLY.
    - One open request per (entity_type, entity_id): checked here, and
      backed by the partial unique index uq_approval_requests_open_entity
      so two concurrent creates cannot both commit.
    - When a request governs a property movement, the movement is synced in
      the same transaction as the response or cancellation.
"""

from __future__ import annotations

import logging
from collections import Counter

from sqlalchemy import and_, func, or_, select

from backoffice.core.exceptions import (
    AuthorizationError,
    ConflictError,
    ValidationError,
)
from backoffice.models import db, utcnow
from backoffice.models.approval import (
    REQUEST_OPEN_STATUSES,
    REQUEST_STATUSES,
    RESPONSE_STATUSES,
    ApprovalRequest,
    ApprovalStep,
    ApprovalStepResponse,
    ApprovalWorkflow,
)
from backoffice.models.audit import write_audit
from backoffice.models.property import Property
from backoffice.services.access_context import AccessContext, RoleGrant, require_assignment
from backoffice.services.helpers.action_result import ok, service_action
from backoffice.services.helpers.scoped_queries import get_scoped
from backoffice.utils.helpers import day_end, day_start, paginate

logger = logging.getLogger(__name__)

DUPLICATE_OPEN_REQUEST = "There is already a pending approval request for this item"

_SORT_FIELDS = {
    "created_at": ApprovalRequest.created_at,
    "updated_at": ApprovalRequest.updated_at,
    "status": ApprovalRequest.status,
    "completed_at": ApprovalRequest.completed_at,
}


# ── Private helpers ────────────────────────────────────────────────────────────


def _role_dict(role) -> dict | None:
    if role is None:
        return None
    return {"id": role.id, "name": role.name, "level": role.level}


def _has_open_request(entity_type: str, entity_id) -> bool:
    return db.session.execute(
        select(ApprovalRequest.id).where(
            ApprovalRequest.entity_type == entity_type,
            ApprovalRequest.entity_id == str(entity_id),
            ApprovalRequest.status.in_(REQUEST_OPEN_STATUSES),
        )
    ).first() is not None


def can_respond(role: RoleGrant, step: ApprovalStep, is_override: bool) -> bool:
    """Whether ``role`` may answer ``step``.

    The step's own role always may. Anyone else needs an override on a step
    that allows one, at or above the step's minimum override level.
    """
    if role.id == step.role_id:
        return True
    return bool(
        is_override
        and step.can_override
        and role.level >= (step.override_min_level or 0)
    )


def _sync_movement(req: ApprovalRequest, actor_id: int) -> None:
    # Imported lazily: movement_service imports this module.
    from backoffice.services import movement_service

    movement_service.sync_with_request(req, actor_id)


def _request_detail(req: ApprovalRequest) -> dict:
    d = req.to_dict()
    wf = req.workflow
    d["workflow"] = wf.to_dict(include_steps=True)
    step = req.current_step if req.is_open else None
    d["current_step"] = step.to_dict() if step else None
    d["responses"] = [r.to_dict() for r in req.responses]
    d["property"] = req.property_record.to_dict() if req.property_record else None
    return d


def _request_summary(req: ApprovalRequest) -> dict:
    d = req.to_dict()
    step = req.current_step if req.is_open else None
    d["current_step"] = step.to_dict() if step else None
    d["total_steps"] = len(req.workflow.steps)
    d["response_count"] = len(req.responses)
    d["property"] = req.property_record.to_dict() if req.property_record else None
    return d


# ── Transaction building blocks (caller commits) ───────────────────────────────


def open_request(
    ctx: AccessContext,
    business_unit_id: int,
    workflow: ApprovalWorkflow,
    entity_type: str,
    entity_id,
    property_id: int | None = None,
) -> ApprovalRequest:
    """Validate and flush a new PENDING request at step 1. Does not commit.

    Raises:
        ValidationError: workflow inactive, stepless, or for another entity type.
        ConflictError:   an open request already exists for the entity.
    """
    if workflow is None or not workflow.is_active:
        raise ValidationError("Workflow not found or inactive")
    if not workflow.steps:
        raise ValidationError("Approval workflow has no steps configured")
    if workflow.entity_type != entity_type:
        raise ValidationError(
            "Workflow does not govern this entity type",
            details={"workflow_entity_type": workflow.entity_type, "entity_type": entity_type},
        )
    if property_id is not None:
        get_scoped(Property, property_id, business_unit_id=business_unit_id,
                   message="Property not found")
    if _has_open_request(entity_type, entity_id):
        raise ConflictError(
            "Approval request", "entity_id", str(entity_id), message=DUPLICATE_OPEN_REQUEST
        )

    req = ApprovalRequest(
        workflow_id=workflow.id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        property_id=property_id,
        business_unit_id=business_unit_id,
        requested_by_id=ctx.user_id,
        status="PENDING",
        current_step_order=1,
    )
    db.session.add(req)
    db.session.flush()

    write_audit(
        action="CREATE",
        entity="ApprovalRequest",
        entity_id=req.id,
        user_id=ctx.user_id,
        business_unit_id=business_unit_id,
        property_id=property_id,
        new_values={
            "workflow_id": workflow.id,
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "status": req.status,
        },
    )
    return req


def close_request(req: ApprovalRequest, actor_id: int, business_unit_id: int) -> None:
    """Cancel an open request. Does not commit; does not sync movements."""
    old_status = req.status
    req.status = "CANCELLED"
    req.completed_at = utcnow()
    db.session.flush()
    write_audit(
        action="CANCEL",
        entity="ApprovalRequest",
        entity_id=req.id,
        user_id=actor_id,
        business_unit_id=business_unit_id,
        property_id=req.property_id,
        old_values={"status": old_status},
        new_values={"status": req.status},
    )


# ── Public API: mutations ──────────────────────────────────────────────────────


@service_action("Failed to create approval request", integrity_message=DUPLICATE_OPEN_REQUEST)
def create_approval_request(
    ctx: AccessContext,
    business_unit_id: int,
    workflow_id: int,
    entity_type: str,
    entity_id,
    property_id: int | None = None,
) -> dict:
    """Open a request at step 1 of an active workflow.

    Returns:
        {"success": True, "data": <request>, "next_approver": <role of step 1>}
    """
    require_assignment(ctx, business_unit_id)
    workflow = db.session.get(ApprovalWorkflow, workflow_id)
    req = open_request(ctx, business_unit_id, workflow, entity_type, entity_id, property_id)
    db.session.commit()

    first_step = workflow.steps[0]
    logger.info(
        "Approval request opened for %s %s", entity_type, entity_id,
        extra={
            "business_unit_id": business_unit_id,
            "approval_request_id": req.id,
            "workflow_id": workflow.id,
            "actor_id": ctx.user_id,
            "status": req.status,
        },
    )
    return ok(data=req.to_dict(), next_approver=_role_dict(first_step.role))


@service_action("Failed to process approval response")
def process_approval_response(
    ctx: AccessContext,
    business_unit_id: int,
    request_id: int,
    step_id: int,
    status: str,
    comments: str | None = None,
    is_override: bool = False,
) -> dict:
    """Record one step decision and advance the request.

    Returns:
        {"success": True, "status": ..., "is_completed": bool,
         "next_step": {"step_order", "step_name", "role"} | None}
    """
    assignment = require_assignment(ctx, business_unit_id)
    if status not in RESPONSE_STATUSES:
        raise ValidationError(
            f"Invalid response status '{status}'", details={"status": list(RESPONSE_STATUSES)}
        )

    req = get_scoped(ApprovalRequest, request_id, business_unit_id=business_unit_id,
                     message="Approval request not found")
    if not req.is_open:
        raise ValidationError("Approval request is not pending")

    step = req.current_step
    if step is None or step.id != step_id:
        raise ValidationError("Invalid approval step")

    if not can_respond(assignment.role, step, is_override):
        raise AuthorizationError("Insufficient permissions to approve this step")

    now = utcnow()
    old_status = req.status
    db.session.add(ApprovalStepResponse(
        approval_request_id=req.id,
        step_id=step.id,
        step_order=step.step_order,
        step_name=step.step_name,
        role_id=step.role_id,
        responded_by_id=ctx.user_id,
        status=status,
        comments=comments,
        is_override=bool(is_override),
        responded_at=now,
    ))

    next_step = None
    if is_override:
        req.status = "OVERRIDDEN"
        req.is_overridden = True
        req.overridden_by_id = ctx.user_id
        req.overridden_at = now
        req.completed_at = now
        action = "OVERRIDE"
    elif status == "REJECTED":
        req.status = "REJECTED"
        req.completed_at = now
        action = "REJECT"
    else:
        later = [s for s in req.workflow.steps if s.step_order > step.step_order]
        if later:
            next_step = later[0]
            req.current_step_order = next_step.step_order
            req.status = "IN_PROGRESS"
        else:
            req.status = "APPROVED"
            req.completed_at = now
        action = "APPROVE"

    db.session.flush()
    if not req.is_open:
        _sync_movement(req, ctx.user_id)

    write_audit(
        action=action,
        entity="ApprovalRequest",
        entity_id=req.id,
        user_id=ctx.user_id,
        business_unit_id=business_unit_id,
        property_id=req.property_id,
        old_values={"status": old_status, "current_step_order": step.step_order},
        new_values={
            "status": req.status,
            "current_step_order": req.current_step_order,
            "response": status,
            "comments": comments,
            "is_override": bool(is_override),
        },
    )
    db.session.commit()

    logger.info(
        "Approval response %s at step %d → %s", status, step.step_order, req.status,
        extra={
            "business_unit_id": business_unit_id,
            "approval_request_id": req.id,
            "workflow_id": req.workflow_id,
            "actor_id": ctx.user_id,
            "status": req.status,
        },
    )
    return ok(
        status=req.status,
        is_completed=not req.is_open,
        next_step={
            "id": next_step.id,
            "step_order": next_step.step_order,
            "step_name": next_step.step_name,
            "role": _role_dict(next_step.role),
        } if next_step else None,
        data=req.to_dict(),
    )


@service_action("Failed to cancel approval request")
def cancel_approval_request(ctx: AccessContext, business_unit_id: int, request_id: int) -> dict:
    """Cancel an open request. Only the original requester may cancel."""
    require_assignment(ctx, business_unit_id)
    req = get_scoped(ApprovalRequest, request_id, business_unit_id=business_unit_id,
                     message="Approval request not found or cannot be cancelled")
    if req.requested_by_id != ctx.user_id:
        raise AuthorizationError("Only the requester can cancel this approval request")
    if not req.is_open:
        raise ValidationError("Approval request not found or cannot be cancelled")

    close_request(req, ctx.user_id, business_unit_id)
    _sync_movement(req, ctx.user_id)
    db.session.commit()

    logger.info(
        "Approval request cancelled",
        extra={"business_unit_id": business_unit_id, "approval_request_id": req.id,
               "actor_id": ctx.user_id, "status": req.status},
    )
    return ok(data=req.to_dict(), message="Approval request cancelled successfully")


# ── Public API: reads ──────────────────────────────────────────────────────────


@service_action("Failed to fetch approval request")
def get_approval_request_by_id(ctx: AccessContext, business_unit_id: int, request_id: int) -> dict:
    """Request with workflow, ordered steps, current step and chronological responses."""
    require_assignment(ctx, business_unit_id)
    req = get_scoped(ApprovalRequest, request_id, business_unit_id=business_unit_id,
                     message="Approval request not found")
    return ok(data=_request_detail(req))


@service_action("Failed to fetch approval requests")
def get_approval_requests(
    ctx: AccessContext,
    business_unit_id: int,
    search: str | None = None,
    status: str | None = None,
    workflow_id: int | None = None,
    property_id: int | None = None,
    requested_by_id: int | None = None,
    entity_type: str | None = None,
    date_from=None,
    date_to=None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = 1,
    limit: int = 10,
) -> dict:
    require_assignment(ctx, business_unit_id)

    stmt = (
        select(ApprovalRequest)
        .outerjoin(Property, ApprovalRequest.property_id == Property.id)
        .where(ApprovalRequest.business_unit_id == business_unit_id)
    )
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(
            Property.title_number.ilike(pattern),
            Property.property_name.ilike(pattern),
            Property.location.ilike(pattern),
        ))
    if status:
        if status not in REQUEST_STATUSES:
            raise ValidationError(f"Invalid status '{status}'")
        stmt = stmt.where(ApprovalRequest.status == status)
    if workflow_id:
        stmt = stmt.where(ApprovalRequest.workflow_id == workflow_id)
    if property_id:
        stmt = stmt.where(ApprovalRequest.property_id == property_id)
    if requested_by_id:
        stmt = stmt.where(ApprovalRequest.requested_by_id == requested_by_id)
    if entity_type:
        stmt = stmt.where(ApprovalRequest.entity_type == entity_type)
    if day_start(date_from):
        stmt = stmt.where(ApprovalRequest.created_at >= day_start(date_from))
    if day_end(date_to):
        stmt = stmt.where(ApprovalRequest.created_at <= day_end(date_to))

    column = _SORT_FIELDS.get(sort_by, ApprovalRequest.created_at)
    stmt = stmt.order_by(column.asc() if sort_order == "asc" else column.desc(), ApprovalRequest.id)

    items, pagination = paginate(stmt, page, limit)
    return ok(data=[_request_summary(r) for r in items], pagination=pagination)


@service_action("Failed to fetch pending approvals")
def get_pending_for_me(ctx: AccessContext, business_unit_id: int) -> dict:
    """Open requests whose current step belongs to the caller's role."""
    assignment = require_assignment(ctx, business_unit_id)
    stmt = (
        select(ApprovalRequest)
        .join(ApprovalStep, and_(
            ApprovalStep.workflow_id == ApprovalRequest.workflow_id,
            ApprovalStep.step_order == ApprovalRequest.current_step_order,
        ))
        .where(
            ApprovalRequest.business_unit_id == business_unit_id,
            ApprovalRequest.status.in_(REQUEST_OPEN_STATUSES),
            ApprovalStep.role_id == assignment.role.id,
        )
        .order_by(ApprovalRequest.created_at, ApprovalRequest.id)
    )
    items = db.session.execute(stmt).scalars().all()
    return ok(data=[_request_summary(r) for r in items])


@service_action("Failed to fetch active workflows")
def get_active_workflows(ctx: AccessContext, business_unit_id: int) -> dict:
    require_assignment(ctx, business_unit_id)
    workflows = db.session.execute(
        select(ApprovalWorkflow)
        .where(ApprovalWorkflow.is_active.is_(True), ApprovalWorkflow.steps.any())
        .order_by(ApprovalWorkflow.name)
    ).scalars().all()
    return ok(data=[wf.to_dict(include_steps=True) for wf in workflows])


@service_action("Failed to fetch approval statistics")
def get_approval_stats(ctx: AccessContext, business_unit_id: int) -> dict:
    require_assignment(ctx, business_unit_id)

    by_status = Counter(dict(db.session.execute(
        select(ApprovalRequest.status, func.count(ApprovalRequest.id))
        .where(ApprovalRequest.business_unit_id == business_unit_id)
        .group_by(ApprovalRequest.status)
    ).all()))
    by_workflow = dict(db.session.execute(
        select(ApprovalWorkflow.name, func.count(ApprovalRequest.id))
        .join(ApprovalWorkflow, ApprovalRequest.workflow_id == ApprovalWorkflow.id)
        .where(ApprovalRequest.business_unit_id == business_unit_id)
        .group_by(ApprovalWorkflow.name)
    ).all())

    durations = db.session.execute(
        select(ApprovalRequest.created_at, ApprovalRequest.completed_at).where(
            ApprovalRequest.business_unit_id == business_unit_id,
            ApprovalRequest.completed_at.is_not(None),
        )
    ).all()
    if durations:
        total_seconds = sum((done - created).total_seconds() for created, done in durations)
        avg_days = round(total_seconds / len(durations) / 86400, 2)
    else:
        avg_days = 0

    return ok(data={
        "total": sum(by_status.values()),
        "pending": by_status["PENDING"],
        "in_progress": by_status["IN_PROGRESS"],
        "approved": by_status["APPROVED"],
        "rejected": by_status["REJECTED"],
        "cancelled": by_status["CANCELLED"],
        "overridden": by_status["OVERRIDDEN"],
        "by_workflow": by_workflow,
        "avg_processing_days": avg_days,
    })
