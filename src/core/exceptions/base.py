from decimal import Decimal
from typing import Any


class AppException(Exception):
    """
    Base application exception.

    `error_code` is the stable tag API clients branch on. `message` is for people.
    """

    error_code = "app_error"

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(AppException):
    """Resource not found."""

    error_code = "not_found"

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} with id={identifier} not found"
        super().__init__(message=message, status_code=404)


class ValidationError(AppException):
    """Malformed or missing input. Raised before any write."""

    error_code = "validation_error"

    def __init__(self, message: str, field: str | None = None):
        details = {"field": field} if field else {}
        super().__init__(message=message, status_code=422, details=details)


class AuthenticationError(AppException):
    """Authentication failed."""

    error_code = "authentication_failed"

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message=message, status_code=401)


class AuthorizationError(AppException):
    """Not authorized to perform action."""

    error_code = "forbidden"

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message=message, status_code=403)


class CapacityExceededError(AppException):
    """Room has no free seat for the semester at admission time."""

    error_code = "capacity_exceeded"

    def __init__(self, room_id: int, capacity: int, occupied: int):
        message = "Selected room is fully booked for this semester"
        super().__init__(
            message=message,
            status_code=409,
            details={"room_id": room_id, "capacity": capacity, "occupied": occupied},
        )


class BalanceViolationError(AppException):
    """Payment exceeds the outstanding balance, or nothing is owed."""

    error_code = "balance_violation"

    def __init__(self, message: str, outstanding: Decimal, requested: Decimal | None = None):
        details: dict[str, Any] = {"outstanding": str(outstanding)}
        if requested is not None:
            details["requested"] = str(requested)
        super().__init__(message=message, status_code=400, details=details)


class StatePreconditionError(AppException):
    """Operation not allowed in the entity's current state."""

    error_code = "invalid_state"

    def __init__(self, message: str, state: str | None = None):
        details = {"state": state} if state else {}
        super().__init__(message=message, status_code=409, details=details)


class DependencyFailure(AppException):
    """Schema capability gap or failure of an external collaborator."""

    error_code = "dependency_unavailable"

    def __init__(self, message: str, dependency: str):
        super().__init__(message=message, status_code=503, details={"dependency": dependency})
