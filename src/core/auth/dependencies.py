from typing import Annotated

from fastapi import Depends, Header
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.jwt import decode_token, token_user_id
from src.core.auth.models import User, UserRole
from src.core.database import get_db
from src.core.exceptions import AuthenticationError, AuthorizationError


async def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
    db: AsyncSession = Depends(get_db),
) -> User:
    """Dependency to get current authenticated user from JWT token."""
    if not authorization:
        raise AuthenticationError("Authorization header required")

    if not authorization.startswith("Bearer "):
        raise AuthenticationError("Invalid authorization header format")

    token = authorization.replace("Bearer ", "")

    payload = decode_token(token, token_type="access")
    user_id = token_user_id(payload)

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthenticationError("User account is deactivated")

    # Staff moved to another hostel must re-authenticate
    token_hostel = payload.get("hostel_id")
    if token_hostel is not None and token_hostel != user.hostel_id:
        raise AuthenticationError("Token was issued for another hostel")

    return user


def require_roles(*roles: UserRole):
    """
    Dependency factory to require specific roles.

    Usage:
        @router.post("/bookings")
        async def create_booking(
            user: User = Depends(require_roles(UserRole.CUSTODIAN))
        ):
            ...
    """

    async def role_checker(
        current_user: User = Depends(get_current_user),
    ) -> User:
        if not current_user.has_role(*roles):
            allowed = ", ".join(r.value for r in roles)
            raise AuthorizationError(f"Required role: {allowed}")
        return current_user

    return role_checker


def resolve_hostel_scope(user: User, requested_hostel_id: int | None = None) -> int:
    """
    Hostel the user may act on.

    SuperAdmin may address any hostel but must name it; everyone else is
    pinned to their own hostel and may not ask for another one.
    """
    if user.is_super_admin:
        if requested_hostel_id is None:
            raise AuthorizationError("hostel_id is required for super admin")
        return requested_hostel_id

    if user.hostel_id is None:
        raise AuthorizationError("Hostel scope required")
    if requested_hostel_id is not None and requested_hostel_id != user.hostel_id:
        raise AuthorizationError("Forbidden for this hostel")
    return user.hostel_id


def ensure_hostel_access(user: User, hostel_id: int) -> None:
    """Raise if the user may not see or change data of the given hostel."""
    if user.is_super_admin:
        return
    if user.hostel_id != hostel_id:
        raise AuthorizationError("Forbidden for this hostel")


# Convenience dependencies
CurrentUser = Annotated[User, Depends(get_current_user)]
StaffUser = Annotated[
    User,
    Depends(require_roles(UserRole.SUPER_ADMIN, UserRole.HOSTEL_ADMIN, UserRole.CUSTODIAN)),
]
SuperAdminUser = Annotated[User, Depends(require_roles(UserRole.SUPER_ADMIN))]
