"""
Approval workflow models.

ApprovalWorkflow → ordered ApprovalStep rows (step_order 1..N, no gaps).
ApprovalRequest  → one governed entity walking through a workflow's steps.
ApprovalStepResponse → append-only decision trail for a request.

Polymorphic entity reference:
    entity_type + entity_id together identify the governed record.
    entity_id is stored as String(64) so movement ids, payment ids and
    document ids share the column.
"""

from backoffice.models import db, iso, utcnow

# ── Constants ─────────────────────────────────────────────────────────────────

ENTITY_TYPE_LABELS = {
    "PROPERTY_RELEASE": "Property Release",
    "PROPERTY_TURNOVER": "Property Turnover",
    "PROPERTY_RETURN": "Property Return",
    "RPT_PAYMENT": "RPT Payment",
    "DOCUMENT_APPROVAL": "Document Approval",
    "USER_ASSIGNMENT": "User Assignment",
}
ENTITY_TYPES = frozenset(ENTITY_TYPE_LABELS)

REQUEST_OPEN_STATUSES = ("PENDING", "IN_PROGRESS")
REQUEST_TERMINAL_STATUSES = ("APPROVED", "REJECTED", "CANCELLED", "OVERRIDDEN")
REQUEST_STATUSES = REQUEST_OPEN_STATUSES + REQUEST_TERMINAL_STATUSES

RESPONSE_STATUSES = ("APPROVED", "REJECTED")


class ApprovalWorkflow(db.Model):
    """
    Named, ordered chain of role-gated steps for one entity type.

    Business rules (enforced in workflow_service):
    - name is unique across the installation.
    - steps form a contiguous 1..N sequence; an empty workflow is invalid.
    - never deleted while any ApprovalRequest references it.
    """

    __tablename__ = "approval_workflows"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), unique=True, nullable=False)
    description = db.Column(db.Text)
    entity_type = db.Column(
        db.String(30), nullable=False, index=True,
        comment="PROPERTY_RELEASE | PROPERTY_TURNOVER | PROPERTY_RETURN | RPT_PAYMENT | ...",
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    steps = db.relationship(
        "ApprovalStep", back_populates="workflow",
        cascade="all, delete-orphan", order_by="ApprovalStep.step_order",
    )
    requests = db.relationship("ApprovalRequest", back_populates="workflow", lazy="dynamic")

    def to_dict(self, include_steps=False):
        d = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "entity_type": self.entity_type,
            "entity_type_label": ENTITY_TYPE_LABELS.get(self.entity_type, self.entity_type),
            "is_active": self.is_active,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        if include_steps:
            d["steps"] = [s.to_dict() for s in self.steps]
        return d


class ApprovalStep(db.Model):
    __tablename__ = "approval_steps"

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("approval_workflows.id", ondelete="CASCADE"), nullable=False
    )
    step_order = db.Column(db.Integer, nullable=False)
    step_name = db.Column(db.String(200), nullable=False)
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id"), nullable=False)
    is_required = db.Column(db.Boolean, nullable=False, default=True)
    can_override = db.Column(db.Boolean, nullable=False, default=False)
    override_min_level = db.Column(db.Integer, nullable=True)

    __table_args__ = (
        db.UniqueConstraint("workflow_id", "step_order", name="uq_approval_step_order"),
    )

    workflow = db.relationship("ApprovalWorkflow", back_populates="steps")
    role = db.relationship("Role")

    def to_dict(self):
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "step_order": self.step_order,
            "step_name": self.step_name,
            "role_id": self.role_id,
            "role": {
                "id": self.role.id,
                "name": self.role.name,
                "description": self.role.description,
                "level": self.role.level,
            } if self.role else None,
            "is_required": self.is_required,
            "can_override": self.can_override,
            "override_min_level": self.override_min_level,
        }


class ApprovalRequest(db.Model):
    """
    One governed entity's walk through a workflow.

    Lifecycle:
        PENDING (step 1) → IN_PROGRESS (later steps)
        → APPROVED | REJECTED | CANCELLED | OVERRIDDEN  (terminal, immutable)

    At most one PENDING/IN_PROGRESS request may exist per
    (entity_type, entity_id); the partial unique index backs the
    service-level check against concurrent creates.
    """

    __tablename__ = "approval_requests"

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("approval_workflows.id"), nullable=False, index=True
    )
    entity_type = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.String(64), nullable=False)
    property_id = db.Column(
        db.Integer, db.ForeignKey("properties.id", ondelete="SET NULL"), nullable=True, index=True
    )
    business_unit_id = db.Column(
        db.Integer, db.ForeignKey("business_units.id"), nullable=False, index=True
    )
    requested_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="PENDING")
    current_step_order = db.Column(db.Integer, nullable=False, default=1)
    is_overridden = db.Column(db.Boolean, nullable=False, default=False)
    overridden_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    overridden_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.Index("ix_approval_requests_entity", "entity_type", "entity_id"),
        db.Index(
            "uq_approval_requests_open_entity",
            "entity_type",
            "entity_id",
            unique=True,
            postgresql_where=db.text("status IN ('PENDING', 'IN_PROGRESS')"),
            sqlite_where=db.text("status IN ('PENDING', 'IN_PROGRESS')"),
        ),
    )

    workflow = db.relationship("ApprovalWorkflow", back_populates="requests")
    property_record = db.relationship("Property")
    requested_by = db.relationship("User", foreign_keys=[requested_by_id])
    overridden_by = db.relationship("User", foreign_keys=[overridden_by_id])
    responses = db.relationship(
        "ApprovalStepResponse", back_populates="request",
        cascade="all, delete-orphan",
        order_by="ApprovalStepResponse.id",
    )

    @property
    def is_open(self):
        return self.status in REQUEST_OPEN_STATUSES

    @property
    def current_step(self):
        for step in self.workflow.steps:
            if step.step_order == self.current_step_order:
                return step
        return None

    def to_dict(self):
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "workflow_name": self.workflow.name if self.workflow else None,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "property_id": self.property_id,
            "business_unit_id": self.business_unit_id,
            "requested_by_id": self.requested_by_id,
            "requested_by": self.requested_by.to_dict() if self.requested_by else None,
            "status": self.status,
            "current_step_order": self.current_step_order,
            "is_overridden": self.is_overridden,
            "overridden_by_id": self.overridden_by_id,
            "overridden_at": iso(self.overridden_at),
            "completed_at": iso(self.completed_at),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }


class ApprovalStepResponse(db.Model):
    """Immutable decision on one step of a request. Never updated or deleted."""

    __tablename__ = "approval_step_responses"

    id = db.Column(db.Integer, primary_key=True)
    approval_request_id = db.Column(
        db.Integer, db.ForeignKey("approval_requests.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    step_id = db.Column(db.Integer, db.ForeignKey("approval_steps.id", ondelete="SET NULL"))
    # Snapshot of the step as it was when answered; steps can be replaced later.
    step_order = db.Column(db.Integer, nullable=False)
    step_name = db.Column(db.String(200))
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id", ondelete="SET NULL"))
    responded_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    status = db.Column(db.String(20), nullable=False)  # APPROVED | REJECTED
    comments = db.Column(db.Text)
    is_override = db.Column(db.Boolean, nullable=False, default=False)
    responded_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    request = db.relationship("ApprovalRequest", back_populates="responses")
    step = db.relationship("ApprovalStep")
    role = db.relationship("Role")
    responded_by = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "approval_request_id": self.approval_request_id,
            "step_id": self.step_id,
            "step_order": self.step_order,
            "step_name": self.step_name,
            "role_id": self.role_id,
            "step_role": self.role.name if self.role else None,
            "responded_by_id": self.responded_by_id,
            "responded_by": self.responded_by.to_dict() if self.responded_by else None,
            "status": self.status,
            "comments": self.comments,
            "is_override": self.is_override,
            "responded_at": iso(self.responded_at),
        }
