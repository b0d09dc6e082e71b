from src.core.auth.models import User, UserRole
from src.core.auth.jwt import create_access_token, decode_token
from src.core.auth.dependencies import (
    ensure_hostel_access,
    get_current_user,
    require_roles,
    resolve_hostel_scope,
)

__all__ = [
    "User",
    "UserRole",
    "create_access_token",
    "decode_token",
    "ensure_hostel_access",
    "get_current_user",
    "require_roles",
    "resolve_hostel_scope",
]
