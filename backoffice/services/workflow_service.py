"""
Approval Workflow Definition Store.

Owns ApprovalWorkflow and its ordered ApprovalStep rows.

Design decisions:
    - Steps are validated as a set before anything is written: non-empty,
      step_order exactly 1..N, every role present.
    - Step edits replace the whole list (delete-all then insert) in one
      transaction and are refused while any request on the workflow is
      still PENDING or IN_PROGRESS, so a live request never sees its
      steps shift underneath it.
    - A workflow referenced by any request is never deleted; callers
      deactivate it instead.
    - Every mutation writes its AuditLog row in the same transaction.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import func, or_, select

from backoffice.core.exceptions import ConflictError, NotFoundError, ValidationError
from backoffice.models import db, utcnow
from backoffice.models.approval import (
    ENTITY_TYPE_LABELS,
    ENTITY_TYPES,
    REQUEST_OPEN_STATUSES,
    ApprovalRequest,
    ApprovalStep,
    ApprovalWorkflow,
)
from backoffice.models.audit import write_audit
from backoffice.models.auth import ROLE_LEVELS, Role
from backoffice.services.access_context import AccessContext, require_assignment
from backoffice.services.helpers.action_result import ok, service_action
from backoffice.utils.helpers import day_end, day_start, paginate

logger = logging.getLogger(__name__)

_SORT_FIELDS = {
    "name": ApprovalWorkflow.name,
    "entity_type": ApprovalWorkflow.entity_type,
    "is_active": ApprovalWorkflow.is_active,
    "created_at": ApprovalWorkflow.created_at,
    "updated_at": ApprovalWorkflow.updated_at,
}

RECENT_DAYS = 30


# ── Private helpers ────────────────────────────────────────────────────────────


def _get_workflow(workflow_id: int) -> ApprovalWorkflow:
    wf = db.session.get(ApprovalWorkflow, workflow_id)
    if wf is None:
        raise NotFoundError("Approval workflow", workflow_id, message="Approval workflow not found")
    return wf


def _ensure_unique_name(name: str, exclude_id: int | None = None) -> None:
    stmt = select(ApprovalWorkflow.id).where(ApprovalWorkflow.name == name)
    if exclude_id is not None:
        stmt = stmt.where(ApprovalWorkflow.id != exclude_id)
    if db.session.execute(stmt).first():
        raise ConflictError(
            "Approval workflow", "name", name,
            message="A workflow with this name already exists",
        )


def _validate_entity_type(entity_type: str) -> None:
    if entity_type not in ENTITY_TYPES:
        raise ValidationError(
            f"Invalid entity type '{entity_type}'",
            details={"entity_type": sorted(ENTITY_TYPES)},
        )


def validate_steps(steps: list[dict]) -> None:
    """Reject a step list unless it is non-empty, ordered 1..N and names real roles."""
    if not steps:
        raise ValidationError("At least one approval step is required")

    try:
        orders = sorted(int(s["step_order"]) for s in steps)
    except (KeyError, TypeError, ValueError) as exc:
        raise ValidationError("Every approval step needs a numeric step_order") from exc
    if orders != list(range(1, len(steps) + 1)):
        raise ValidationError(
            "Step orders must be sequential starting from 1",
            details={"step_orders": orders},
        )

    for s in steps:
        if not (s.get("step_name") or "").strip():
            raise ValidationError(
                "Every approval step needs a name", details={"step_order": s["step_order"]}
            )
        min_level = s.get("override_min_level")
        if min_level is not None and min_level not in ROLE_LEVELS:
            raise ValidationError(
                "Override minimum level must be between 0 and 4",
                details={"step_order": s["step_order"]},
            )

    role_ids = {s.get("role_id") for s in steps}
    found = set(db.session.execute(select(Role.id).where(Role.id.in_(role_ids))).scalars())
    if found != role_ids:
        raise ValidationError("One or more selected roles do not exist")


def _build_steps(steps: list[dict]) -> list[ApprovalStep]:
    return [
        ApprovalStep(
            step_order=int(s["step_order"]),
            step_name=s["step_name"].strip(),
            role_id=s["role_id"],
            is_required=s.get("is_required", True),
            can_override=s.get("can_override", False),
            override_min_level=s.get("override_min_level"),
        )
        for s in sorted(steps, key=lambda s: int(s["step_order"]))
    ]


def _step_snapshot(wf: ApprovalWorkflow) -> list[dict]:
    return [
        {
            "step_order": s.step_order,
            "step_name": s.step_name,
            "role_id": s.role_id,
            "is_required": s.is_required,
            "can_override": s.can_override,
            "override_min_level": s.override_min_level,
        }
        for s in wf.steps
    ]


def _snapshot(wf: ApprovalWorkflow) -> dict:
    return {
        "name": wf.name,
        "description": wf.description,
        "entity_type": wf.entity_type,
        "is_active": wf.is_active,
    }


def _request_count(workflow_id: int, statuses=None) -> int:
    stmt = select(func.count(ApprovalRequest.id)).where(ApprovalRequest.workflow_id == workflow_id)
    if statuses:
        stmt = stmt.where(ApprovalRequest.status.in_(statuses))
    return db.session.execute(stmt).scalar_one()


def _with_counts(wf: ApprovalWorkflow, include_steps: bool = False) -> dict:
    d = wf.to_dict(include_steps=include_steps)
    d["step_count"] = len(wf.steps)
    d["request_count"] = _request_count(wf.id)
    return d


def resolve_active_workflow(entity_type: str) -> ApprovalWorkflow | None:
    """The active workflow configured for an entity type, oldest first when several are active."""
    return db.session.execute(
        select(ApprovalWorkflow)
        .where(
            ApprovalWorkflow.entity_type == entity_type,
            ApprovalWorkflow.is_active.is_(True),
        )
        .order_by(ApprovalWorkflow.id)
        .limit(1)
    ).scalar_one_or_none()


# ── Public API: mutations ──────────────────────────────────────────────────────


@service_action("Failed to create approval workflow")
def create_approval_workflow(
    ctx: AccessContext,
    business_unit_id: int,
    name: str,
    entity_type: str,
    steps: list[dict],
    description: str | None = None,
    is_active: bool = True,
) -> dict:
    """Create a workflow and its steps atomically.

    Returns:
        {"success": True, "data": <workflow dict with steps>}
    """
    require_assignment(ctx, business_unit_id)

    name = (name or "").strip()
    if not name:
        raise ValidationError("Workflow name is required", details={"name": "required"})
    _validate_entity_type(entity_type)
    _ensure_unique_name(name)
    validate_steps(steps)

    wf = ApprovalWorkflow(
        name=name,
        description=description,
        entity_type=entity_type,
        is_active=is_active,
    )
    wf.steps = _build_steps(steps)
    db.session.add(wf)
    db.session.flush()

    write_audit(
        action="CREATE",
        entity="ApprovalWorkflow",
        entity_id=wf.id,
        user_id=ctx.user_id,
        business_unit_id=business_unit_id,
        new_values={**_snapshot(wf), "steps_count": len(wf.steps)},
    )
    db.session.commit()

    logger.info(
        "Approval workflow created: %s (%d steps)", wf.name, len(wf.steps),
        extra={"business_unit_id": business_unit_id, "workflow_id": wf.id, "actor_id": ctx.user_id},
    )
    return ok(data=_with_counts(wf, include_steps=True))


@service_action("Failed to update approval workflow")
def update_approval_workflow(
    ctx: AccessContext, business_unit_id: int, workflow_id: int, **fields
) -> dict:
    """Update name, description, entity_type or is_active."""
    require_assignment(ctx, business_unit_id)
    wf = _get_workflow(workflow_id)
    old = _snapshot(wf)

    if fields.get("name") is not None:
        name = fields["name"].strip()
        if not name:
            raise ValidationError("Workflow name is required", details={"name": "required"})
        if name != wf.name:
            _ensure_unique_name(name, exclude_id=wf.id)
        wf.name = name
    if "description" in fields:
        wf.description = fields["description"]
    if fields.get("entity_type") is not None:
        _validate_entity_type(fields["entity_type"])
        wf.entity_type = fields["entity_type"]
    if fields.get("is_active") is not None:
        if fields["is_active"] and not wf.steps:
            raise ValidationError("Cannot activate a workflow without approval steps")
        wf.is_active = bool(fields["is_active"])

    db.session.flush()
    write_audit(
        action="UPDATE",
        entity="ApprovalWorkflow",
        entity_id=wf.id,
        user_id=ctx.user_id,
        business_unit_id=business_unit_id,
        old_values=old,
        new_values=_snapshot(wf),
    )
    db.session.commit()
    return ok(data=_with_counts(wf, include_steps=True))


@service_action("Failed to update approval workflow steps")
def update_approval_workflow_steps(
    ctx: AccessContext, business_unit_id: int, workflow_id: int, steps: list[dict]
) -> dict:
    """Replace every step of a workflow.

    Refused while any request on the workflow is PENDING or IN_PROGRESS.
    """
    require_assignment(ctx, business_unit_id)
    wf = _get_workflow(workflow_id)
    validate_steps(steps)

    if _request_count(wf.id, REQUEST_OPEN_STATUSES):
        raise ConflictError(
            "Approval workflow",
            message="Cannot modify steps while there are active approval requests using this workflow",
        )

    old_steps = _step_snapshot(wf)
    # Old rows must be gone before the new ones hit uq_approval_step_order.
    wf.steps = []
    db.session.flush()
    wf.steps = _build_steps(steps)
    wf.updated_at = utcnow()
    db.session.flush()

    write_audit(
        action="UPDATE",
        entity="ApprovalWorkflowSteps",
        entity_id=wf.id,
        user_id=ctx.user_id,
        business_unit_id=business_unit_id,
        old_values={"steps": old_steps},
        new_values={"steps": _step_snapshot(wf)},
    )
    db.session.commit()

    logger.info(
        "Approval workflow steps replaced (%d → %d)", len(old_steps), len(wf.steps),
        extra={"business_unit_id": business_unit_id, "workflow_id": wf.id, "actor_id": ctx.user_id},
    )
    return ok(data=_with_counts(wf, include_steps=True))


@service_action("Failed to toggle approval workflow status")
def toggle_approval_workflow_status(
    ctx: AccessContext, business_unit_id: int, workflow_id: int
) -> dict:
    require_assignment(ctx, business_unit_id)
    wf = _get_workflow(workflow_id)
    old_active = wf.is_active

    if not old_active and not wf.steps:
        raise ValidationError("Cannot activate a workflow without approval steps")
    wf.is_active = not old_active

    db.session.flush()
    write_audit(
        action="UPDATE",
        entity="ApprovalWorkflow",
        entity_id=wf.id,
        user_id=ctx.user_id,
        business_unit_id=business_unit_id,
        old_values={"is_active": old_active},
        new_values={"is_active": wf.is_active},
    )
    db.session.commit()
    return ok(
        data=_with_counts(wf),
        message=f"Workflow {'activated' if wf.is_active else 'deactivated'} successfully",
    )


@service_action("Failed to delete approval workflow")
def delete_approval_workflow(ctx: AccessContext, business_unit_id: int, workflow_id: int) -> dict:
    require_assignment(ctx, business_unit_id)
    wf = _get_workflow(workflow_id)

    if _request_count(wf.id):
        raise ConflictError(
            "Approval workflow",
            message="Cannot delete workflow with existing approval requests. Please deactivate instead.",
        )

    old = {**_snapshot(wf), "steps": _step_snapshot(wf)}
    db.session.delete(wf)
    db.session.flush()
    write_audit(
        action="DELETE",
        entity="ApprovalWorkflow",
        entity_id=workflow_id,
        user_id=ctx.user_id,
        business_unit_id=business_unit_id,
        old_values=old,
    )
    db.session.commit()

    logger.info(
        "Approval workflow deleted: %s", old["name"],
        extra={"business_unit_id": business_unit_id, "workflow_id": workflow_id, "actor_id": ctx.user_id},
    )
    return ok(message="Approval workflow deleted successfully")


@service_action("Failed to duplicate approval workflow")
def duplicate_approval_workflow(
    ctx: AccessContext, business_unit_id: int, workflow_id: int, new_name: str
) -> dict:
    """Copy a workflow and its steps under a new name, inactive."""
    require_assignment(ctx, business_unit_id)
    original = _get_workflow(workflow_id)

    new_name = (new_name or "").strip()
    if not new_name:
        raise ValidationError("Workflow name is required", details={"name": "required"})
    _ensure_unique_name(new_name)

    copy = ApprovalWorkflow(
        name=new_name,
        description=f"Copy of {original.name}",
        entity_type=original.entity_type,
        is_active=False,
    )
    copy.steps = _build_steps(_step_snapshot(original))
    db.session.add(copy)
    db.session.flush()

    write_audit(
        action="CREATE",
        entity="ApprovalWorkflow",
        entity_id=copy.id,
        user_id=ctx.user_id,
        business_unit_id=business_unit_id,
        new_values={
            "name": copy.name,
            "duplicated_from": original.id,
            "original_name": original.name,
            "steps_count": len(copy.steps),
        },
    )
    db.session.commit()
    return ok(data=_with_counts(copy, include_steps=True))


# ── Public API: reads ──────────────────────────────────────────────────────────


@service_action("Failed to fetch approval workflows")
def get_approval_workflows(
    ctx: AccessContext,
    business_unit_id: int,
    search: str | None = None,
    entity_type: str | None = None,
    is_active: bool | None = None,
    has_steps: bool | None = None,
    date_from=None,
    date_to=None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = 1,
    limit: int = 10,
) -> dict:
    require_assignment(ctx, business_unit_id)

    stmt = select(ApprovalWorkflow)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(
            ApprovalWorkflow.name.ilike(pattern),
            ApprovalWorkflow.description.ilike(pattern),
            ApprovalWorkflow.entity_type.ilike(pattern),
        ))
    if entity_type:
        stmt = stmt.where(ApprovalWorkflow.entity_type == entity_type)
    if is_active is not None:
        stmt = stmt.where(ApprovalWorkflow.is_active.is_(bool(is_active)))
    if has_steps is True:
        stmt = stmt.where(ApprovalWorkflow.steps.any())
    elif has_steps is False:
        stmt = stmt.where(~ApprovalWorkflow.steps.any())
    if day_start(date_from):
        stmt = stmt.where(ApprovalWorkflow.created_at >= day_start(date_from))
    if day_end(date_to):
        stmt = stmt.where(ApprovalWorkflow.created_at <= day_end(date_to))

    column = _SORT_FIELDS.get(sort_by, ApprovalWorkflow.created_at)
    order = column.asc() if sort_order == "asc" else column.desc()
    stmt = stmt.order_by(order, ApprovalWorkflow.id)

    items, pagination = paginate(stmt, page, limit)
    return ok(data=[_with_counts(wf) for wf in items], pagination=pagination)


@service_action("Failed to fetch approval workflow")
def get_approval_workflow_by_id(ctx: AccessContext, business_unit_id: int, workflow_id: int) -> dict:
    """Workflow with steps ascending by step_order and role details populated."""
    require_assignment(ctx, business_unit_id)
    wf = _get_workflow(workflow_id)
    d = _with_counts(wf, include_steps=True)
    d["active_request_count"] = _request_count(wf.id, REQUEST_OPEN_STATUSES)
    return ok(data=d)


@service_action("Failed to fetch approval workflow statistics")
def get_approval_workflow_stats(ctx: AccessContext, business_unit_id: int) -> dict:
    require_assignment(ctx, business_unit_id)

    total = db.session.execute(select(func.count(ApprovalWorkflow.id))).scalar_one()
    active = db.session.execute(
        select(func.count(ApprovalWorkflow.id)).where(ApprovalWorkflow.is_active.is_(True))
    ).scalar_one()
    by_entity_type = dict(db.session.execute(
        select(ApprovalWorkflow.entity_type, func.count(ApprovalWorkflow.id))
        .group_by(ApprovalWorkflow.entity_type)
    ).all())
    total_steps = db.session.execute(select(func.count(ApprovalStep.id))).scalar_one()
    recent = db.session.execute(
        select(func.count(ApprovalWorkflow.id)).where(
            ApprovalWorkflow.created_at >= utcnow() - timedelta(days=RECENT_DAYS)
        )
    ).scalar_one()

    return ok(data={
        "total": total,
        "active": active,
        "inactive": total - active,
        "by_entity_type": by_entity_type,
        "total_steps": total_steps,
        "avg_steps_per_workflow": round(total_steps / total, 1) if total else 0,
        "recently_created": recent,
    })


@service_action("Failed to fetch workflow filter options")
def get_workflow_filter_options(ctx: AccessContext, business_unit_id: int) -> dict:
    require_assignment(ctx, business_unit_id)
    counts = dict(db.session.execute(
        select(ApprovalWorkflow.entity_type, func.count(ApprovalWorkflow.id))
        .group_by(ApprovalWorkflow.entity_type)
    ).all())
    return ok(data={
        "entity_types": [
            {"value": value, "label": label, "count": counts.get(value, 0)}
            for value, label in ENTITY_TYPE_LABELS.items()
        ],
    })
