"""
Business-unit scoped query helpers.

Every get-by-id on tenant-owned rows (properties, approval requests,
movements) goes through these helpers instead of ``db.session.get``. A
plain ``get`` ignores the business unit and would let one tenant read
another tenant's records.

Usage:
    prop = get_scoped(Property, property_id, business_unit_id=bu_id,
                      message="Property not found")
    req = get_scoped_or_none(ApprovalRequest, request_id, business_unit_id=bu_id)

Cross-tenant access is indistinguishable from a missing record: both raise
NotFoundError.
"""

import logging

from sqlalchemy import select

from backoffice.core.exceptions import NotFoundError
from backoffice.models import db

logger = logging.getLogger(__name__)


def get_scoped(model, pk: int, *, business_unit_id: int, message: str | None = None):
    """Fetch a single entity by PK within a business unit.

    Raises:
        ValueError: If the model has no ``business_unit_id`` column, which
                    would make the lookup unscoped.
        NotFoundError: If the entity does not exist OR belongs to another
                       business unit.
    """
    if business_unit_id is None:
        raise ValueError(f"{model.__name__} id={pk} requires a business_unit_id scope")
    if not hasattr(model, "business_unit_id"):
        raise ValueError(
            f"{model.__name__} has no business_unit_id column; refusing an unscoped lookup"
        )

    stmt = select(model).where(model.id == pk, model.business_unit_id == business_unit_id)
    result = db.session.execute(stmt).scalar_one_or_none()

    if result is None:
        logger.debug(
            "get_scoped: %s id=%s not found in business unit %s",
            model.__name__,
            pk,
            business_unit_id,
        )
        raise NotFoundError(resource=model.__name__, resource_id=pk, message=message)

    return result


def get_scoped_or_none(model, pk: int, *, business_unit_id: int):
    """Same as get_scoped but returns None instead of raising NotFoundError."""
    try:
        return get_scoped(model, pk, business_unit_id=business_unit_id)
    except NotFoundError:
        return None
