"""
Access context — the caller's identity and per-business-unit role grants.

Every service operation receives an ``AccessContext`` explicitly; nothing in
the service layer reads ``flask.g``. The context comes from one of two places:

    - ``build_access_context(user_id)``  projects active memberships from the DB
    - ``AccessContext.from_token_payload(payload)``  rebuilds it from a JWT

The first check of every operation is ``require_assignment``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import select

from backoffice.core.exceptions import AuthorizationError
from backoffice.models import db
from backoffice.models.auth import BusinessUnitMember, User


@dataclass(frozen=True)
class PermissionGrant:
    module: str
    can_create: bool = False
    can_read: bool = False
    can_update: bool = False
    can_delete: bool = False
    can_approve: bool = False

    def allows(self, action: str) -> bool:
        return bool(getattr(self, f"can_{action}", False))


@dataclass(frozen=True)
class RoleGrant:
    id: int
    name: str
    level: int
    description: str | None = None
    permissions: tuple[PermissionGrant, ...] = ()


@dataclass(frozen=True)
class Assignment:
    business_unit_id: int
    role: RoleGrant
    business_unit_name: str | None = None


@dataclass(frozen=True)
class AccessContext:
    user_id: int
    assignments: tuple[Assignment, ...] = field(default_factory=tuple)

    def assignment_for(self, business_unit_id: int) -> Assignment | None:
        for assignment in self.assignments:
            if assignment.business_unit_id == business_unit_id:
                return assignment
        return None

    def has_access(self, business_unit_id: int) -> bool:
        return self.assignment_for(business_unit_id) is not None

    def can(self, business_unit_id: int, module: str, action: str) -> bool:
        """True when the caller's role in the business unit grants ``action`` on ``module``."""
        assignment = self.assignment_for(business_unit_id)
        if assignment is None:
            return False
        return any(
            p.module == module and p.allows(action) for p in assignment.role.permissions
        )

    # ── Token (de)serialisation ──────────────────────────────────────────

    def to_token_payload(self) -> list[dict]:
        return [
            {
                "business_unit_id": a.business_unit_id,
                "business_unit_name": a.business_unit_name,
                "role": {
                    "id": a.role.id,
                    "name": a.role.name,
                    "level": a.role.level,
                    "description": a.role.description,
                    "permissions": [
                        {
                            "module": p.module,
                            "can_create": p.can_create,
                            "can_read": p.can_read,
                            "can_update": p.can_update,
                            "can_delete": p.can_delete,
                            "can_approve": p.can_approve,
                        }
                        for p in a.role.permissions
                    ],
                },
            }
            for a in self.assignments
        ]

    @classmethod
    def from_token_payload(cls, payload: dict) -> AccessContext:
        assignments = []
        for item in payload.get("assignments") or []:
            role = item["role"]
            assignments.append(Assignment(
                business_unit_id=int(item["business_unit_id"]),
                business_unit_name=item.get("business_unit_name"),
                role=RoleGrant(
                    id=int(role["id"]),
                    name=role["name"],
                    level=int(role.get("level") or 0),
                    description=role.get("description"),
                    permissions=tuple(
                        PermissionGrant(**perm) for perm in role.get("permissions") or []
                    ),
                ),
            ))
        return cls(user_id=int(payload["sub"]), assignments=tuple(assignments))


def build_access_context(user_id: int) -> AccessContext | None:
    """Project the active memberships of an active user into an ``AccessContext``.

    Returns None when the user does not exist or is deactivated.
    """
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        return None

    members = db.session.execute(
        select(BusinessUnitMember)
        .where(
            BusinessUnitMember.user_id == user_id,
            BusinessUnitMember.is_active.is_(True),
        )
        .order_by(BusinessUnitMember.business_unit_id)
    ).scalars().all()

    assignments = []
    for m in members:
        if not m.business_unit.is_active:
            continue
        role = m.role
        assignments.append(Assignment(
            business_unit_id=m.business_unit_id,
            business_unit_name=m.business_unit.name,
            role=RoleGrant(
                id=role.id,
                name=role.name,
                level=role.level,
                description=role.description,
                permissions=tuple(
                    PermissionGrant(
                        module=p.module,
                        can_create=p.can_create,
                        can_read=p.can_read,
                        can_update=p.can_update,
                        can_delete=p.can_delete,
                        can_approve=p.can_approve,
                    )
                    for p in role.permissions
                ),
            ),
        ))
    return AccessContext(user_id=user_id, assignments=tuple(assignments))


def require_assignment(ctx: AccessContext | None, business_unit_id: int) -> Assignment:
    """Return the caller's assignment for the business unit or raise AuthorizationError."""
    assignment = ctx.assignment_for(business_unit_id) if ctx is not None else None
    if assignment is None:
        raise AuthorizationError("Access denied to this business unit")
    return assignment
