"""
Auth Models — business units, users, roles, role permissions, memberships.

A business unit is the tenant boundary. A user reaches a business unit only
through an active BusinessUnitMember row, which also fixes the user's role
there. Roles are global and carry one RolePermission row per module.
"""

from backoffice.models import db, iso, utcnow

# ── Constants ────────────────────────────────────────────────────────────────

PERMISSION_MODULES = (
    "PROPERTY",
    "RPT",
    "USER_MANAGEMENT",
    "APPROVAL",
    "DOCUMENTS",
    "REPORTS",
    "AUDIT",
    "BUSINESS_UNITS",
    "ROLES",
    "SYSTEM",
)

PERMISSION_ACTIONS = ("create", "read", "update", "delete", "approve")

# 0 = Staff … 4 = Managing Director
ROLE_LEVELS = {
    0: "Staff",
    1: "Supervisor/Manager",
    2: "Department Head",
    3: "Director",
    4: "Managing Director",
}


# ═══════════════════════════════════════════════════════════════
# 1. BUSINESS UNITS
# ═══════════════════════════════════════════════════════════════
class BusinessUnit(db.Model):
    __tablename__ = "business_units"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), unique=True, nullable=False)
    description = db.Column(db.Text)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    members = db.relationship("BusinessUnitMember", back_populates="business_unit", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
        }


# ═══════════════════════════════════════════════════════════════
# 2. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(100), unique=True, nullable=False)
    email = db.Column(db.String(200))
    first_name = db.Column(db.String(100))
    last_name = db.Column(db.String(100))
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    memberships = db.relationship(
        "BusinessUnitMember", back_populates="user", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    @property
    def full_name(self):
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) or self.username

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
        }


# ═══════════════════════════════════════════════════════════════
# 3. ROLES
# ═══════════════════════════════════════════════════════════════
class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.Text)
    level = db.Column(db.Integer, nullable=False, default=0)  # see ROLE_LEVELS
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    permissions = db.relationship(
        "RolePermission", back_populates="role",
        cascade="all, delete-orphan", order_by="RolePermission.module",
    )
    members = db.relationship("BusinessUnitMember", back_populates="role", lazy="dynamic")

    def to_dict(self, include_permissions=False):
        d = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "level": self.level,
            "level_label": ROLE_LEVELS.get(self.level),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        if include_permissions:
            d["permissions"] = [p.to_dict() for p in self.permissions]
        return d


# ═══════════════════════════════════════════════════════════════
# 4. ROLE PERMISSIONS (one row per role × module)
# ═══════════════════════════════════════════════════════════════
class RolePermission(db.Model):
    __tablename__ = "role_permissions"

    id = db.Column(db.Integer, primary_key=True)
    role_id = db.Column(
        db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False
    )
    module = db.Column(db.String(30), nullable=False)  # one of PERMISSION_MODULES
    can_create = db.Column(db.Boolean, nullable=False, default=False)
    can_read = db.Column(db.Boolean, nullable=False, default=False)
    can_update = db.Column(db.Boolean, nullable=False, default=False)
    can_delete = db.Column(db.Boolean, nullable=False, default=False)
    can_approve = db.Column(db.Boolean, nullable=False, default=False)

    __table_args__ = (
        db.UniqueConstraint("role_id", "module", name="uq_role_permission_module"),
    )

    role = db.relationship("Role", back_populates="permissions")

    def to_dict(self):
        return {
            "module": self.module,
            "can_create": self.can_create,
            "can_read": self.can_read,
            "can_update": self.can_update,
            "can_delete": self.can_delete,
            "can_approve": self.can_approve,
        }


# ═══════════════════════════════════════════════════════════════
# 5. BUSINESS UNIT MEMBERS (role assignment per business unit)
# ═══════════════════════════════════════════════════════════════
class BusinessUnitMember(db.Model):
    __tablename__ = "business_unit_members"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    business_unit_id = db.Column(
        db.Integer, db.ForeignKey("business_units.id", ondelete="CASCADE"), nullable=False
    )
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id"), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    joined_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        db.UniqueConstraint("user_id", "business_unit_id", name="uq_business_unit_member"),
        db.Index("ix_business_unit_members_role_id", "role_id"),
    )

    user = db.relationship("User", back_populates="memberships")
    business_unit = db.relationship("BusinessUnit", back_populates="members")
    role = db.relationship("Role", back_populates="members")
