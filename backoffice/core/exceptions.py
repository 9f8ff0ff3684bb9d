"""
Back-office exception hierarchy.

Services raise these types; ``service_action`` turns them into result
dicts at the operation boundary and blueprints map result codes to HTTP
statuses. Nothing outside the service layer should need to catch them.

Usage:
    from backoffice.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Approval request", resource_id=42)
    raise ValidationError("Invalid approval step", details={"step_id": 7})
"""


class AuthorizationError(Exception):
    """Raised when the caller may not perform the operation in this business unit.

    The message is fixed by the caller and never names the missing role,
    level or assignment, so a denied user learns nothing about the
    workflow configuration.
    """

    def __init__(self, message: str = "Access denied to this business unit") -> None:
        super().__init__(message)


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the business unit.

    Used for genuinely missing records and for records owned by another
    business unit alike.

    Args:
        resource: Human-readable entity name (e.g. "Approval workflow").
        resource_id: The PK that was looked up. Logged, not shown to users.
        message: Optional override for the user-facing message.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(message or f"{resource} not found")


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Covers structural workflow errors (step ordering, unknown roles) as well
    as state errors (request not pending, wrong step, ineligible property).

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique value or collide with live state.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
        message: Optional override for the user-facing message.
    """

    def __init__(
        self,
        resource: str,
        field: str | None = None,
        value: str | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} with {field}={value!r} already exists")
