from datetime import datetime
from decimal import Decimal

from pydantic import Field, field_validator

from src.modules.ledger.models import PaymentMethod, PaymentStatus
from src.shared.schemas import BaseSchema


class BookingPaymentCreate(BaseSchema):
    """Money received against a booking."""

    amount: Decimal = Field(..., decimal_places=2)
    method: PaymentMethod
    status: PaymentStatus = PaymentStatus.COMPLETED
    reference: str | None = Field(None, max_length=200)
    notes: str | None = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("Amount must be positive")
        return v


class ResidentPaymentCreate(BaseSchema):
    """Walk-in payment recorded straight into a resident's ledger."""

    resident_id: int
    semester_id: int | None = None  # Defaults to the hostel's current semester
    amount: Decimal = Field(..., decimal_places=2)
    method: PaymentMethod = PaymentMethod.CASH
    currency: str | None = Field(None, max_length=10)
    purpose: str | None = Field(None, max_length=255)

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("Amount must be positive")
        return v


class BalanceSnapshot(BaseSchema):
    amount_due: Decimal
    amount_paid: Decimal
    outstanding: Decimal
    payment_status: str


class BookingPaymentResponse(BaseSchema):
    id: int
    receipt_number: str
    booking_id: int
    amount: Decimal
    method: str
    status: str
    reference: str | None = None
    notes: str | None = None
    supersedes_payment_id: int | None = None
    recorded_by_id: int | None = None
    recorded_at: datetime


class LedgerPaymentResponse(BaseSchema):
    id: int
    resident_id: int
    resident_name: str | None = None
    resident_email: str | None = None
    amount: Decimal
    hostel_id: int | None = None
    semester_id: int | None = None
    method: str | None = None
    currency: str | None = None
    purpose: str | None = None
    source_booking_id: int | None = None
    created_at: datetime | None = None


class RecordedLedgerPaymentResponse(BaseSchema):
    payment: LedgerPaymentResponse
    balance: BalanceSnapshot
