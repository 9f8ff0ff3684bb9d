"""
Property Back Office
SQLAlchemy database instance shared by every model module.

Model modules:
    - auth:      BusinessUnit, User, Role, RolePermission, BusinessUnitMember
    - approval:  ApprovalWorkflow, ApprovalStep, ApprovalRequest, ApprovalStepResponse
    - property:  Property, PropertyMovement, PropertyReturn, PropertyRelease, PropertyTurnover
    - audit:     AuditLog
"""

from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def utcnow():
    """Timezone-aware now, used as the default for every timestamp column."""
    return datetime.now(timezone.utc)


def iso(value):
    """ISO-8601 string for a date/datetime, or None."""
    return value.isoformat() if value else None
