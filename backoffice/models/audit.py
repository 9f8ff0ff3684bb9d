"""
Property Back Office
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for every create, update
      and delete on workflows, requests, roles and movements.
"""

import json

from backoffice.models import db, iso, utcnow

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ACTIONS = frozenset({
    "CREATE",
    "UPDATE",
    "DELETE",
    "APPROVE",
    "REJECT",
    "OVERRIDE",
    "CANCEL",
    "COMPLETE",
})


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(20), nullable=False)
    entity = db.Column(db.String(60), nullable=False, index=True)
    entity_id = db.Column(db.String(64), nullable=False)
    property_id = db.Column(db.Integer, db.ForeignKey("properties.id", ondelete="SET NULL"))
    business_unit_id = db.Column(db.Integer, db.ForeignKey("business_units.id"), index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    old_values = db.Column(db.Text)
    new_values = db.Column(db.Text)
    timestamp = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        db.Index("ix_audit_logs_entity_ref", "entity", "entity_id"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "action": self.action,
            "entity": self.entity,
            "entity_id": self.entity_id,
            "property_id": self.property_id,
            "business_unit_id": self.business_unit_id,
            "user_id": self.user_id,
            "old_values": json.loads(self.old_values) if self.old_values else None,
            "new_values": json.loads(self.new_values) if self.new_values else None,
            "timestamp": iso(self.timestamp),
        }


def write_audit(
    *,
    action: str,
    entity: str,
    entity_id,
    user_id: int,
    business_unit_id: int | None = None,
    property_id: int | None = None,
    old_values: dict | None = None,
    new_values: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control; the row commits or rolls back with the change
    it describes.

    Returns the (flushed) AuditLog instance.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action {action!r}")

    log = AuditLog(
        action=action,
        entity=entity,
        entity_id=str(entity_id),
        user_id=user_id,
        business_unit_id=business_unit_id,
        property_id=property_id,
        old_values=json.dumps(old_values, default=str) if old_values is not None else None,
        new_values=json.dumps(new_values, default=str) if new_values is not None else None,
    )
    db.session.add(log)
    db.session.flush()
    return log
