from enum import StrEnum

from sqlalchemy import BigInteger, Boolean, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import BaseModel


class UserRole(StrEnum):
    """Staff roles."""

    SUPER_ADMIN = "SuperAdmin"
    HOSTEL_ADMIN = "HostelAdmin"
    CUSTODIAN = "Custodian"


class User(BaseModel):
    """
    Staff member acting on the system (records payments, checks students in).

    Accounts are managed by the auth service; this backend only reads them.
    HostelAdmin and Custodian users are scoped to a single hostel.
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    hostel_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("hostels.id"), nullable=True, index=True
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def has_role(self, *roles: UserRole) -> bool:
        """Check if user has any of the specified roles."""
        return self.role in [r.value for r in roles]

    @property
    def is_super_admin(self) -> bool:
        return self.role == UserRole.SUPER_ADMIN.value
