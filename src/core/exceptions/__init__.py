from src.core.exceptions.base import (
    AppException,
    NotFoundError,
    ValidationError,
    AuthenticationError,
    AuthorizationError,
    CapacityExceededError,
    BalanceViolationError,
    StatePreconditionError,
    DependencyFailure,
)

__all__ = [
    "AppException",
    "NotFoundError",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "CapacityExceededError",
    "BalanceViolationError",
    "StatePreconditionError",
    "DependencyFailure",
]
