from decimal import Decimal
from typing import Literal

from src.shared.schemas import BaseSchema

ZERO = Decimal("0.00")


class StudentBalance(BaseSchema):
    """One payer: a resident account or a booking not yet converted."""

    kind: Literal["resident", "booking"]
    resident_id: int | None = None
    booking_id: int | None = None
    semester_id: int | None = None
    name: str
    email: str | None = None
    room_id: int | None = None
    room_number: str | None = None
    expected: Decimal
    paid: Decimal
    balance: Decimal
    status: Literal["unassigned", "unpaid", "partial", "paid"]


class HostelSummary(BaseSchema):
    hostel_id: int
    semester_id: int | None = None
    # False when the ledger has no semester column and could not be filtered
    semester_filter_applied: bool
    dedup_mode: Literal["exact", "heuristic"]
    total_collected: Decimal
    total_expected: Decimal
    total_outstanding: Decimal
    booking_total: Decimal
    ledger_total: Decimal
    duplicated: Decimal
    method_breakdown: dict[str, Decimal]
    students: list[StudentBalance]


class RoomSummary(BaseSchema):
    room_id: int
    room_number: str
    hostel_id: int
    semester_id: int | None = None
    capacity: int
    total_collected: Decimal
    total_expected: Decimal
    total_outstanding: Decimal
    students: list[StudentBalance]


class ResidentSummary(BaseSchema):
    resident_id: int
    hostel_id: int
    semester_id: int | None = None
    name: str
    email: str | None = None
    room_number: str | None = None
    expected: Decimal
    paid: Decimal
    balance: Decimal
    status: str
    # One entry per semester the resident is charged for
    semesters: list[StudentBalance] = []


class SemesterTotals(BaseSchema):
    semester_id: int
    name: str
    is_current: bool
    total_collected: Decimal
    total_expected: Decimal
    total_outstanding: Decimal


class SemesterHistory(BaseSchema):
    hostel_id: int
    current: SemesterTotals | None = None
    semesters: list[SemesterTotals]


class HostelTotals(BaseSchema):
    hostel_id: int
    hostel_name: str
    total_collected: Decimal
    total_outstanding: Decimal
    current_semester: SemesterTotals | None = None


class GlobalSummary(BaseSchema):
    hostels: list[HostelTotals]
    total_collected: Decimal = ZERO
    total_outstanding: Decimal = ZERO
    current_collected: Decimal = ZERO
    current_outstanding: Decimal = ZERO
