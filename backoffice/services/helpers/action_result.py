"""
Operation boundary for service functions.

Public service operations never let an exception escape to the caller.
``service_action`` wraps them and converts every failure into a result
dict of the shape::

    {"success": False, "error": "<message>", "code": "<E.* code>"}

Successful operations build their own ``{"success": True, ...}`` payload
with ``ok()``.

Mapping:
    AuthorizationError  → E.FORBIDDEN          (message as raised)
    NotFoundError       → E.NOT_FOUND          (message as raised)
    ValidationError     → E.VALIDATION_CONSTRAINT (+ details)
    ConflictError       → E.CONFLICT_DUPLICATE / E.CONFLICT_STATE
    IntegrityError      → E.CONFLICT_DUPLICATE with the operation's
                          integrity message, when one is configured
    anything else       → E.DATABASE / E.INTERNAL with the operation's
                          generic failure message; details only in logs

The session is rolled back on every failure so a half-applied operation
never commits later by accident.
"""

import functools
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from backoffice.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from backoffice.models import db
from backoffice.utils.errors import E

logger = logging.getLogger(__name__)


def ok(**payload) -> dict:
    """Successful operation result."""
    return {"success": True, **payload}


def failure(message: str, code: str, details: dict | None = None) -> dict:
    """Failed operation result."""
    result = {"success": False, "error": message, "code": code}
    if details:
        result["details"] = details
    return result


def service_action(failure_message: str, integrity_message: str | None = None):
    """Decorate a service operation so it always returns a result dict.

    Args:
        failure_message: Generic message used for infrastructure failures.
        integrity_message: Message for IntegrityError on commit, used where a
            database constraint backs a business rule (e.g. one open request
            per entity). Without it integrity errors are infrastructure errors.
    """

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except AuthorizationError as exc:
                db.session.rollback()
                logger.info("%s denied: %s", fn.__name__, exc)
                return failure(str(exc), E.FORBIDDEN)
            except NotFoundError as exc:
                db.session.rollback()
                return failure(str(exc), E.NOT_FOUND)
            except ValidationError as exc:
                db.session.rollback()
                return failure(str(exc), E.VALIDATION_CONSTRAINT, exc.details)
            except ConflictError as exc:
                db.session.rollback()
                code = E.CONFLICT_DUPLICATE if exc.field else E.CONFLICT_STATE
                return failure(str(exc), code)
            except IntegrityError as exc:
                db.session.rollback()
                if integrity_message:
                    logger.warning("%s integrity conflict: %s", fn.__name__, exc.orig)
                    return failure(integrity_message, E.CONFLICT_DUPLICATE)
                logger.exception("%s failed on a constraint", fn.__name__)
                return failure(failure_message, E.DATABASE)
            except SQLAlchemyError:
                db.session.rollback()
                logger.exception("%s failed with a database error", fn.__name__)
                return failure(failure_message, E.DATABASE)
            except Exception:
                db.session.rollback()
                logger.exception("%s failed unexpectedly", fn.__name__)
                return failure(failure_message, E.INTERNAL)

        return wrapper

    return decorator
