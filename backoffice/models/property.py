"""
Property domain models.

Models:
    - Property:          the governed asset (title, status, current location)
    - PropertyMovement:  append-only physical movement history
    - PropertyReturn / PropertyRelease / PropertyTurnover:
                         movement requests, each bound to one ApprovalRequest

Movement rows remember the property's status and location from before the
request so a rejected or cancelled movement can put the property back.
"""

from sqlalchemy.orm import declared_attr

from backoffice.models import db, iso, utcnow

# ── Constants ─────────────────────────────────────────────────────────────────

PROPERTY_STATUSES = (
    "ACTIVE",
    "INACTIVE",
    "PENDING",
    "RELEASED",
    "RETURNED",
    "UNDER_REVIEW",
    "BANK_CUSTODY",
    "DISPUTED",
)

PROPERTY_LOCATIONS = (
    "MAIN_OFFICE",
    "BANK_CUSTODY",
    "SUBSIDIARY_COMPANY",
    "EXTERNAL_HOLDER",
    "IN_TRANSIT",
)

MOVEMENT_TYPES = (
    "RELEASE_TO_BANK",
    "RELEASE_TO_SUBSIDIARY",
    "RELEASE_TO_EXTERNAL",
    "RETURN_FROM_BANK",
    "RETURN_FROM_SUBSIDIARY",
    "RETURN_FROM_EXTERNAL",
    "TURNOVER_INTERNAL",
)

MOVEMENT_STATUSES = ("PENDING", "APPROVED", "IN_PROGRESS", "COMPLETED", "CANCELLED")
MOVEMENT_OPEN_STATUSES = ("PENDING", "APPROVED", "IN_PROGRESS")

RETURN_TYPES = ("FROM_SUBSIDIARY", "FROM_BANK", "FROM_EXTERNAL")
RELEASE_TYPES = ("TO_SUBSIDIARY", "TO_BANK", "TO_EXTERNAL")
TURNOVER_TYPES = ("INTERNAL_DEPARTMENT", "BETWEEN_SUBSIDIARIES", "CUSTODY_TRANSFER")


class Property(db.Model):
    __tablename__ = "properties"

    id = db.Column(db.Integer, primary_key=True)
    business_unit_id = db.Column(
        db.Integer, db.ForeignKey("business_units.id"), nullable=False, index=True
    )
    title_number = db.Column(db.String(100), unique=True, nullable=False)
    property_name = db.Column(db.String(255), nullable=False)
    location = db.Column(db.String(255))
    classification = db.Column(db.String(50))
    area = db.Column(db.Numeric(14, 2))
    status = db.Column(db.String(20), nullable=False, default="ACTIVE")
    current_location = db.Column(db.String(30), nullable=False, default="MAIN_OFFICE")
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    business_unit = db.relationship("BusinessUnit")

    def to_dict(self):
        return {
            "id": self.id,
            "business_unit_id": self.business_unit_id,
            "title_number": self.title_number,
            "property_name": self.property_name,
            "location": self.location,
            "classification": self.classification,
            "area": float(self.area) if self.area is not None else None,
            "status": self.status,
            "current_location": self.current_location,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }


class PropertyMovement(db.Model):
    """Append-only record of a property changing hands or location."""

    __tablename__ = "property_movements"

    id = db.Column(db.Integer, primary_key=True)
    property_id = db.Column(
        db.Integer, db.ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True
    )
    business_unit_id = db.Column(db.Integer, db.ForeignKey("business_units.id"), nullable=False)
    movement_type = db.Column(db.String(30), nullable=False)
    from_location = db.Column(db.String(30))
    to_location = db.Column(db.String(30))
    reference_type = db.Column(db.String(20))  # RETURN | RELEASE | TURNOVER
    reference_id = db.Column(db.Integer)
    moved_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    movement_date = db.Column(db.DateTime(timezone=True), default=utcnow)
    notes = db.Column(db.Text)

    def to_dict(self):
        return {
            "id": self.id,
            "property_id": self.property_id,
            "business_unit_id": self.business_unit_id,
            "movement_type": self.movement_type,
            "from_location": self.from_location,
            "to_location": self.to_location,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "moved_by_id": self.moved_by_id,
            "movement_date": iso(self.movement_date),
            "notes": self.notes,
        }


class MovementRequestMixin:
    """Columns shared by return, release and turnover requests."""

    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(20), nullable=False, default="PENDING")
    previous_property_status = db.Column(db.String(20))
    previous_location = db.Column(db.String(30))
    notes = db.Column(db.Text)
    completed_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @declared_attr
    def property_id(cls):
        return db.Column(
            db.Integer, db.ForeignKey("properties.id", ondelete="CASCADE"),
            nullable=False, index=True,
        )

    @declared_attr
    def business_unit_id(cls):
        return db.Column(db.Integer, db.ForeignKey("business_units.id"), nullable=False, index=True)

    @declared_attr
    def approval_request_id(cls):
        return db.Column(
            db.Integer, db.ForeignKey("approval_requests.id", ondelete="SET NULL"), nullable=True
        )

    @declared_attr
    def requested_by_id(cls):
        return db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    @declared_attr
    def approved_by_id(cls):
        return db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    @declared_attr
    def received_by_id(cls):
        return db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    @declared_attr
    def property_record(cls):
        return db.relationship("Property")

    @declared_attr
    def approval_request(cls):
        return db.relationship("ApprovalRequest")

    @declared_attr
    def requested_by(cls):
        return db.relationship("User", foreign_keys=lambda: [cls.requested_by_id])

    def base_dict(self):
        req = self.approval_request
        return {
            "id": self.id,
            "property_id": self.property_id,
            "property": self.property_record.to_dict() if self.property_record else None,
            "business_unit_id": self.business_unit_id,
            "approval_request_id": self.approval_request_id,
            "approval_status": req.status if req else None,
            "requested_by_id": self.requested_by_id,
            "requested_by": self.requested_by.to_dict() if self.requested_by else None,
            "approved_by_id": self.approved_by_id,
            "received_by_id": self.received_by_id,
            "status": self.status,
            "previous_property_status": self.previous_property_status,
            "previous_location": self.previous_location,
            "notes": self.notes,
            "completed_at": iso(self.completed_at),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }


class PropertyReturn(MovementRequestMixin, db.Model):
    __tablename__ = "property_returns"

    return_type = db.Column(db.String(20), nullable=False)  # one of RETURN_TYPES
    returned_by_name = db.Column(db.String(200))
    reason_for_return = db.Column(db.Text)
    condition = db.Column(db.String(100))
    return_date = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        d = self.base_dict()
        d.update({
            "return_type": self.return_type,
            "returned_by_name": self.returned_by_name,
            "reason_for_return": self.reason_for_return,
            "condition": self.condition,
            "return_date": iso(self.return_date),
        })
        return d


class PropertyRelease(MovementRequestMixin, db.Model):
    __tablename__ = "property_releases"

    release_type = db.Column(db.String(20), nullable=False)  # one of RELEASE_TYPES
    target_business_unit_id = db.Column(db.Integer, db.ForeignKey("business_units.id"))
    bank_name = db.Column(db.String(200))
    purpose_of_release = db.Column(db.Text)
    received_by_name = db.Column(db.String(200))
    transmittal_number = db.Column(db.String(100))
    release_date = db.Column(db.DateTime(timezone=True), default=utcnow)
    expected_return_date = db.Column(db.Date)

    def to_dict(self):
        d = self.base_dict()
        d.update({
            "release_type": self.release_type,
            "target_business_unit_id": self.target_business_unit_id,
            "bank_name": self.bank_name,
            "purpose_of_release": self.purpose_of_release,
            "received_by_name": self.received_by_name,
            "transmittal_number": self.transmittal_number,
            "release_date": iso(self.release_date),
            "expected_return_date": iso(self.expected_return_date),
        })
        return d


class PropertyTurnover(MovementRequestMixin, db.Model):
    __tablename__ = "property_turnovers"

    turnover_type = db.Column(db.String(30), nullable=False)  # one of TURNOVER_TYPES
    from_business_unit_id = db.Column(db.Integer, db.ForeignKey("business_units.id"))
    to_business_unit_id = db.Column(db.Integer, db.ForeignKey("business_units.id"))
    purpose = db.Column(db.Text)
    turnover_date = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        d = self.base_dict()
        d.update({
            "turnover_type": self.turnover_type,
            "from_business_unit_id": self.from_business_unit_id,
            "to_business_unit_id": self.to_business_unit_id,
            "purpose": self.purpose,
            "turnover_date": iso(self.turnover_date),
        })
        return d
