from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import BigInteger, CheckConstraint, DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.database.base import Base, BaseModel, BigIntPK, MoneyType


class PaymentMethod(StrEnum):
    CASH = "cash"
    MOBILE_MONEY = "mobile_money"


class PaymentStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class BookingPayment(BaseModel):
    """
    Money received against a booking. Append-only.

    A pending row is settled by a later completed or failed row that points
    back at it through supersedes_payment_id.
    """

    __tablename__ = "booking_payments"

    receipt_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    booking_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("bookings.id"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    reference: Mapped[str | None] = mapped_column(String(200), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    supersedes_payment_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("booking_payments.id"), nullable=True, unique=True
    )
    recorded_by_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=True
    )
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    booking: Mapped["Booking"] = relationship("Booking", back_populates="payments")

    __table_args__ = (CheckConstraint("amount > 0", name="ck_booking_payments_amount_positive"),)

    @property
    def is_completed(self) -> bool:
        return self.status == PaymentStatus.COMPLETED.value


class LedgerPayment(Base):
    """
    Resident ledger row (the legacy ``payments`` table). Append-only.

    Declared in its newest shape for migrations; services access it through
    src.core.schema.views.ledger_view.
    """

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    student_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("residents.id"), nullable=False, index=True
    )
    hostel_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("hostels.id"), nullable=True, index=True
    )
    semester_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("semesters.id"), nullable=True, index=True
    )
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(10), nullable=True)
    purpose: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # Set on rows mirrored from a booking at check-in
    source_booking_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("bookings.id"), nullable=True, index=True
    )
    recorded_by: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
