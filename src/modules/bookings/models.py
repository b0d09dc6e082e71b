from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import BigInteger, CheckConstraint, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.database.base import BaseModel, HostelScopedMixin, MoneyType
from src.shared.utils.money import outstanding_of


class BookingStatus(StrEnum):
    PENDING = "pending"
    BOOKED = "booked"
    CHECKED_IN = "checked_in"
    CANCELLED = "cancelled"


class BookingPaymentStatus(StrEnum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"


class BookingSource(StrEnum):
    ON_SITE = "on_site"
    ONLINE = "online"


# Bookings in these states hold a seat in their room
SEAT_HOLDING_STATUSES = (BookingStatus.PENDING.value, BookingStatus.BOOKED.value)


class Booking(HostelScopedMixin, BaseModel):
    """
    Room booking from first contact to check-in.

    Status flow: pending -> booked -> checked_in, and pending|booked -> cancelled.
    amount_paid only ever moves through the ledger's conditional update.
    """

    __tablename__ = "bookings"

    booking_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    semester_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("semesters.id"), nullable=True, index=True
    )
    room_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("rooms.id"), nullable=True, index=True
    )
    source: Mapped[str] = mapped_column(String(20), nullable=False, default=BookingSource.ON_SITE.value)

    # Student contact
    student_name: Mapped[str] = mapped_column(String(200), nullable=False)
    student_email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    student_phone: Mapped[str] = mapped_column(String(50), nullable=False)
    whatsapp: Mapped[str | None] = mapped_column(String(50), nullable=True)
    gender: Mapped[str | None] = mapped_column(String(20), nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    registration_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    course: Mapped[str | None] = mapped_column(String(200), nullable=True)
    emergency_contact: Mapped[str | None] = mapped_column(Text, nullable=True)
    preferred_check_in: Mapped[date | None] = mapped_column(Date, nullable=True)
    stay_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Money
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    amount_due: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0.00"))
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BookingPaymentStatus.PENDING.value
    )
    payment_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BookingStatus.PENDING.value, index=True
    )
    verification_code: Mapped[str | None] = mapped_column(String(20), unique=True, nullable=True)
    verification_issued_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    resident_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("residents.id"), nullable=True, index=True
    )
    checked_in_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=True
    )

    payments: Mapped[list["BookingPayment"]] = relationship(
        "BookingPayment",
        back_populates="booking",
        order_by="BookingPayment.id",
    )

    __table_args__ = (
        CheckConstraint("amount_paid >= 0", name="ck_bookings_amount_paid_non_negative"),
        CheckConstraint("amount_paid <= amount_due", name="ck_bookings_amount_paid_within_due"),
    )

    @property
    def outstanding(self) -> Decimal:
        return outstanding_of(self.amount_due, self.amount_paid)

    @property
    def is_terminal(self) -> bool:
        return self.status in (BookingStatus.CHECKED_IN.value, BookingStatus.CANCELLED.value)
