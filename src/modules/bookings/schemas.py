from datetime import date, datetime
from decimal import Decimal

from pydantic import EmailStr, Field, field_validator

from src.modules.bookings.models import BookingSource
from src.modules.ledger.models import PaymentMethod
from src.modules.ledger.schemas import BalanceSnapshot, BookingPaymentResponse
from src.shared.schemas import BaseSchema


class InitialPayment(BaseSchema):
    """Money taken at the desk together with the booking."""

    amount: Decimal = Field(..., decimal_places=2)
    method: PaymentMethod = PaymentMethod.CASH
    reference: str | None = Field(None, max_length=200)
    payment_phone: str | None = Field(None, max_length=50)

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("Amount must be positive")
        return v


class BookingCreate(BaseSchema):
    """Schema for creating a booking."""

    hostel_id: int | None = None  # Required for super admin, implied for hostel staff
    semester_id: int | None = None  # Defaults to the hostel's current semester
    room_id: int
    source: BookingSource = BookingSource.ON_SITE

    student_name: str = Field(..., min_length=1, max_length=200)
    student_email: EmailStr | None = None
    student_phone: str = Field(..., min_length=3, max_length=50)
    whatsapp: str | None = Field(None, max_length=50)
    gender: str | None = Field(None, max_length=20)
    date_of_birth: date | None = None
    registration_number: str | None = Field(None, max_length=100)
    course: str | None = Field(None, max_length=200)
    emergency_contact: str | None = None
    preferred_check_in: date | None = None
    stay_duration: int | None = Field(None, ge=1)
    notes: str | None = None

    currency: str | None = Field(None, max_length=10)
    # Overrides the amount policy when given
    amount_due: Decimal | None = Field(None, decimal_places=2)

    initial_payment: InitialPayment | None = None

    @field_validator("student_name", "student_phone")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Field cannot be blank")
        return v


class BookingCancel(BaseSchema):
    reason: str | None = None


class CheckInRequest(BaseSchema):
    booking_id: int


class BookingResponse(BaseSchema):
    id: int
    booking_number: str
    hostel_id: int
    semester_id: int | None = None
    room_id: int | None = None
    source: str
    student_name: str
    student_email: str | None = None
    student_phone: str
    whatsapp: str | None = None
    gender: str | None = None
    registration_number: str | None = None
    course: str | None = None
    currency: str
    amount_due: Decimal
    amount_paid: Decimal
    outstanding: Decimal
    payment_status: str
    status: str
    verification_code: str | None = None
    verification_issued_at: datetime | None = None
    resident_id: int | None = None
    checked_in_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    created_at: datetime


class BookingDetailResponse(BookingResponse):
    payments: list[BookingPaymentResponse] = []


class BookingWithPaymentResponse(BaseSchema):
    """Booking after a money movement, with the row that caused it."""

    booking: BookingResponse
    payment: BookingPaymentResponse | None = None
    balance: BalanceSnapshot
