"""
Role & permission service.

Roles are global; a role's permissions are one row per module with five
action flags. Permission sets are replaced wholesale, never patched.

Business rules:
    - Role names are unique.
    - A role needs at least one permission row and at most one per module.
    - Levels run 0 (Staff) to 4 (Managing Director).
    - A role with assigned members, or required by an approval step,
      cannot be deleted.
"""

import logging

from sqlalchemy import func, or_, select

from backoffice.core.exceptions import ConflictError, NotFoundError, ValidationError
from backoffice.models import db, utcnow
from backoffice.models.approval import ApprovalStep
from backoffice.models.audit import write_audit
from backoffice.models.auth import (
    PERMISSION_MODULES,
    ROLE_LEVELS,
    BusinessUnitMember,
    Role,
    RolePermission,
)
from backoffice.services.access_context import AccessContext, require_assignment
from backoffice.services.helpers.action_result import ok, service_action

logger = logging.getLogger(__name__)

_FLAGS = ("can_create", "can_read", "can_update", "can_delete", "can_approve")

DEFAULT_ROLES = (
    {
        "name": "System Admin",
        "description": "Full access to every module",
        "level": 4,
        "permissions": [{"module": m, **{f: True for f in _FLAGS}} for m in PERMISSION_MODULES],
    },
    {
        "name": "Approver",
        "description": "Approves property movements and payments",
        "level": 2,
        "permissions": [
            {"module": "PROPERTY", "can_read": True, "can_approve": True},
            {"module": "APPROVAL", "can_read": True, "can_update": True, "can_approve": True},
            {"module": "RPT", "can_read": True, "can_approve": True},
        ],
    },
    {
        "name": "Manager",
        "description": "Manages properties within a business unit",
        "level": 1,
        "permissions": [
            {"module": "PROPERTY", "can_create": True, "can_read": True, "can_update": True},
            {"module": "APPROVAL", "can_read": True},
            {"module": "REPORTS", "can_read": True},
        ],
    },
    {
        "name": "Staff",
        "description": "Day-to-day property records",
        "level": 0,
        "permissions": [
            {"module": "PROPERTY", "can_create": True, "can_read": True},
        ],
    },
    {
        "name": "Custodian",
        "description": "Keeps physical custody of property titles",
        "level": 0,
        "permissions": [
            {"module": "PROPERTY", "can_read": True, "can_update": True},
            {"module": "DOCUMENTS", "can_read": True},
        ],
    },
)


# ── Private helpers ────────────────────────────────────────────────────────────


def _validate_level(level):
    if not isinstance(level, int) or isinstance(level, bool) or level not in ROLE_LEVELS:
        raise ValidationError(
            "Role level must be between 0 and 4", details={"level": level}
        )


def _validate_permissions(permissions):
    if not permissions:
        raise ValidationError("At least one permission is required")
    seen = set()
    for perm in permissions:
        module = perm.get("module")
        if module not in PERMISSION_MODULES:
            raise ValidationError(f"Unknown permission module '{module}'", details={"module": module})
        if module in seen:
            raise ValidationError(f"Duplicate permission module '{module}'", details={"module": module})
        seen.add(module)


def _build_permissions(permissions):
    return [
        RolePermission(module=p["module"], **{f: bool(p.get(f, False)) for f in _FLAGS})
        for p in permissions
    ]


def _ensure_unique_name(name, exclude_id=None):
    stmt = select(Role.id).where(Role.name == name)
    if exclude_id is not None:
        stmt = stmt.where(Role.id != exclude_id)
    if db.session.execute(stmt).first():
        raise ConflictError("Role", "name", name, message="A role with this name already exists")


def _get_role(role_id):
    role = db.session.get(Role, role_id)
    if role is None:
        raise NotFoundError("Role", role_id, message="Role not found")
    return role


def _member_count(role_id):
    return db.session.execute(
        select(func.count(BusinessUnitMember.id)).where(
            BusinessUnitMember.role_id == role_id,
            BusinessUnitMember.is_active.is_(True),
        )
    ).scalar_one()


def _snapshot(role):
    return {
        "name": role.name,
        "description": role.description,
        "level": role.level,
    }


# ── Reads ──────────────────────────────────────────────────────────────────────


@service_action("Failed to fetch roles")
def list_roles(ctx: AccessContext, business_unit_id: int, search: str | None = None) -> dict:
    require_assignment(ctx, business_unit_id)
    stmt = select(Role).order_by(Role.level.desc(), Role.name)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(Role.name.ilike(pattern), Role.description.ilike(pattern)))
    roles = db.session.execute(stmt).scalars().all()
    data = []
    for role in roles:
        d = role.to_dict(include_permissions=True)
        d["member_count"] = _member_count(role.id)
        data.append(d)
    return ok(data=data)


@service_action("Failed to fetch role")
def get_role(ctx: AccessContext, business_unit_id: int, role_id: int) -> dict:
    require_assignment(ctx, business_unit_id)
    role = _get_role(role_id)
    d = role.to_dict(include_permissions=True)
    d["member_count"] = _member_count(role.id)
    return ok(data=d)


@service_action("Failed to fetch available roles")
def get_available_roles(ctx: AccessContext, business_unit_id: int) -> dict:
    """Roles selectable for workflow steps, most senior first."""
    require_assignment(ctx, business_unit_id)
    roles = db.session.execute(
        select(Role).order_by(Role.level.desc(), Role.name)
    ).scalars().all()
    return ok(data=[
        {"id": r.id, "name": r.name, "description": r.description, "level": r.level}
        for r in roles
    ])


@service_action("Failed to fetch role statistics")
def get_role_stats(ctx: AccessContext, business_unit_id: int) -> dict:
    require_assignment(ctx, business_unit_id)
    total = db.session.execute(select(func.count(Role.id))).scalar_one()
    total_permissions = db.session.execute(select(func.count(RolePermission.id))).scalar_one()
    by_level = {
        level: count
        for level, count in db.session.execute(
            select(Role.level, func.count(Role.id)).group_by(Role.level)
        ).all()
    }
    return ok(data={
        "total_roles": total,
        "total_permissions": total_permissions,
        "by_level": {ROLE_LEVELS.get(k, str(k)): v for k, v in sorted(by_level.items())},
    })


# ── Mutations ──────────────────────────────────────────────────────────────────


@service_action("Failed to create role")
def create_role(
    ctx: AccessContext,
    business_unit_id: int,
    name: str,
    permissions: list[dict],
    description: str | None = None,
    level: int = 0,
) -> dict:
    require_assignment(ctx, business_unit_id)
    name = (name or "").strip()
    if not name:
        raise ValidationError("Role name is required", details={"name": "required"})
    _validate_level(level)
    _ensure_unique_name(name)
    _validate_permissions(permissions)

    role = Role(name=name, description=description, level=level)
    role.permissions = _build_permissions(permissions)
    db.session.add(role)
    db.session.flush()

    write_audit(
        action="CREATE",
        entity="Role",
        entity_id=role.id,
        user_id=ctx.user_id,
        business_unit_id=business_unit_id,
        new_values={**_snapshot(role), "permissions_count": len(permissions)},
    )
    db.session.commit()

    logger.info(
        "Role created: %s", role.name,
        extra={"business_unit_id": business_unit_id, "actor_id": ctx.user_id},
    )
    return ok(data=role.to_dict(include_permissions=True))


@service_action("Failed to update role")
def update_role(ctx: AccessContext, business_unit_id: int, role_id: int, **fields) -> dict:
    require_assignment(ctx, business_unit_id)
    role = _get_role(role_id)
    old = _snapshot(role)

    if "name" in fields and fields["name"] is not None:
        name = fields["name"].strip()
        if not name:
            raise ValidationError("Role name is required", details={"name": "required"})
        if name != role.name:
            _ensure_unique_name(name, exclude_id=role.id)
        role.name = name
    if "description" in fields:
        role.description = fields["description"]
    if "level" in fields and fields["level"] is not None:
        _validate_level(fields["level"])
        role.level = fields["level"]

    db.session.flush()
    write_audit(
        action="UPDATE",
        entity="Role",
        entity_id=role.id,
        user_id=ctx.user_id,
        business_unit_id=business_unit_id,
        old_values=old,
        new_values=_snapshot(role),
    )
    db.session.commit()
    return ok(data=role.to_dict(include_permissions=True))


@service_action("Failed to update role permissions")
def update_role_permissions(
    ctx: AccessContext, business_unit_id: int, role_id: int, permissions: list[dict]
) -> dict:
    require_assignment(ctx, business_unit_id)
    role = _get_role(role_id)
    _validate_permissions(permissions)

    old = [p.to_dict() for p in role.permissions]
    # Delete-then-insert must be flushed in order or the (role, module)
    # unique constraint trips on the new rows.
    role.permissions = []
    db.session.flush()
    role.permissions = _build_permissions(permissions)
    role.updated_at = utcnow()
    db.session.flush()

    write_audit(
        action="UPDATE",
        entity="RolePermissions",
        entity_id=role.id,
        user_id=ctx.user_id,
        business_unit_id=business_unit_id,
        old_values={"permissions": old},
        new_values={"permissions": [p.to_dict() for p in role.permissions]},
    )
    db.session.commit()
    return ok(data=role.to_dict(include_permissions=True))


@service_action("Failed to delete role")
def delete_role(ctx: AccessContext, business_unit_id: int, role_id: int) -> dict:
    require_assignment(ctx, business_unit_id)
    role = _get_role(role_id)

    if _member_count(role.id):
        raise ConflictError(
            "Role",
            message="Cannot delete role with active members. Please reassign users first.",
        )
    any_member = db.session.execute(
        select(BusinessUnitMember.id).where(BusinessUnitMember.role_id == role.id)
    ).first()
    if any_member:
        raise ConflictError(
            "Role",
            message="Cannot delete role that is still assigned to inactive memberships",
        )
    in_steps = db.session.execute(
        select(ApprovalStep.id).where(ApprovalStep.role_id == role.id)
    ).first()
    if in_steps:
        raise ConflictError(
            "Role",
            message="Cannot delete role that is required by an approval workflow step",
        )

    old = _snapshot(role)
    db.session.delete(role)
    db.session.flush()
    write_audit(
        action="DELETE",
        entity="Role",
        entity_id=role_id,
        user_id=ctx.user_id,
        business_unit_id=business_unit_id,
        old_values=old,
    )
    db.session.commit()
    logger.info(
        "Role deleted: %s", old["name"],
        extra={"business_unit_id": business_unit_id, "actor_id": ctx.user_id},
    )
    return ok(message="Role deleted successfully")


def seed_default_roles() -> int:
    """Create the default role ladder. Idempotent; caller commits.

    Returns the number of roles created.
    """
    created = 0
    for definition in DEFAULT_ROLES:
        exists = db.session.execute(select(Role.id).where(Role.name == definition["name"])).first()
        if exists:
            continue
        role = Role(name=definition["name"], description=definition["description"], level=definition["level"])
        role.permissions = _build_permissions(definition["permissions"])
        db.session.add(role)
        created += 1
    db.session.flush()
    return created
