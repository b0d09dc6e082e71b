from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import BaseModel, HostelScopedMixin, MoneyType


class AssignmentStatus(StrEnum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class EnrollmentStatus(StrEnum):
    ACTIVE = "active"
    COMPLETED = "completed"


class Resident(HostelScopedMixin, BaseModel):
    """Student living in (or registered with) a hostel."""

    __tablename__ = "residents"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    registration_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    course: Mapped[str | None] = mapped_column(String(200), nullable=True)
    gender: Mapped[str | None] = mapped_column(String(20), nullable=True)
    emergency_contact: Mapped[str | None] = mapped_column(Text, nullable=True)


# The tables below are declared for migrations and create_all. Their shape
# varies between deployments, so services go through src.core.schema.views.


class ResidentAssignment(BaseModel):
    __tablename__ = "resident_assignments"

    student_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("residents.id"), nullable=False, index=True
    )
    room_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("rooms.id"), nullable=False, index=True
    )
    semester_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("semesters.id"), nullable=True, index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AssignmentStatus.ACTIVE.value
    )
    assigned_by: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=True
    )
    assignment_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class SemesterEnrollment(BaseModel):
    __tablename__ = "semester_enrollments"

    student_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("residents.id"), nullable=False, index=True
    )
    semester_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("semesters.id"), nullable=False, index=True
    )
    room_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("rooms.id"), nullable=True
    )
    total_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0.00"))
    amount_paid: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0.00"))
    balance: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0.00"))
    enrollment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=EnrollmentStatus.ACTIVE.value
    )

    __table_args__ = (
        UniqueConstraint("student_id", "semester_id", name="uq_enrollment_student_semester"),
    )
