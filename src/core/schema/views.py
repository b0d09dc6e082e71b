"""
Core table views over the deployment-dependent tables.

Each view is a lightweight ``table()`` with only the columns the connected
schema has, so queries are composed from column objects and never from SQL
strings. Optional columns are ``None`` on the view when absent.
"""
from dataclasses import dataclass

from sqlalchemy import DateTime, Integer, String, column, table
from sqlalchemy.sql.expression import ColumnClause, TableClause

from src.core.database.base import MoneyType
from src.core.schema.adapter import LogicalSchema


def _optional(name: str | None, type_) -> ColumnClause | None:
    return column(name, type_) if name else None


def _table(name: str, *cols: ColumnClause | None) -> TableClause:
    return table(name, *[c for c in cols if c is not None])


@dataclass(frozen=True)
class LedgerView:
    table: TableClause
    id: ColumnClause
    resident: ColumnClause
    amount: ColumnClause
    created_at: ColumnClause
    hostel_id: ColumnClause | None
    semester_id: ColumnClause | None
    method: ColumnClause | None
    currency: ColumnClause | None
    purpose: ColumnClause | None
    source_booking_id: ColumnClause | None
    recorded_by: ColumnClause | None

    def row_values(
        self,
        *,
        resident_id: int,
        amount,
        hostel_id: int | None = None,
        semester_id: int | None = None,
        method: str | None = None,
        currency: str | None = None,
        purpose: str | None = None,
        source_booking_id: int | None = None,
        recorded_by: int | None = None,
    ) -> dict:
        """Insert values, keeping only the columns this deployment has."""
        values = {self.resident.name: resident_id, self.amount.name: amount}
        optional = (
            (self.hostel_id, hostel_id),
            (self.semester_id, semester_id),
            (self.method, method),
            (self.currency, currency),
            (self.purpose, purpose),
            (self.source_booking_id, source_booking_id),
            (self.recorded_by, recorded_by),
        )
        for col, value in optional:
            if col is not None and value is not None:
                values[col.name] = value
        return values


def ledger_view(schema: LogicalSchema) -> LedgerView:
    schema.require("payments")
    cols = dict(
        id=column("id", Integer),
        resident=column(schema.ledger_resident_column, Integer),
        amount=column("amount", MoneyType),
        created_at=column("created_at", DateTime(timezone=True)),
        hostel_id=_optional("hostel_id" if schema.ledger_has_hostel else None, Integer),
        semester_id=_optional("semester_id" if schema.ledger_has_semester else None, Integer),
        method=_optional("payment_method" if schema.ledger_has_method else None, String(50)),
        currency=_optional(schema.ledger_currency_column, String(10)),
        purpose=_optional(schema.ledger_purpose_column, String(255)),
        source_booking_id=_optional(
            "source_booking_id" if schema.ledger_has_source_booking else None, Integer
        ),
        recorded_by=_optional("recorded_by" if schema.ledger_has_recorded_by else None, Integer),
    )
    return LedgerView(table=_table("payments", *cols.values()), **cols)


@dataclass(frozen=True)
class AssignmentView:
    table: TableClause
    id: ColumnClause
    resident: ColumnClause
    room_id: ColumnClause
    status: ColumnClause
    assigned_by: ColumnClause
    assignment_date: ColumnClause
    semester_id: ColumnClause | None


def assignment_view(schema: LogicalSchema) -> AssignmentView:
    schema.require("resident_assignments")
    cols = dict(
        id=column("id", Integer),
        resident=column(schema.assignment_resident_column, Integer),
        room_id=column("room_id", Integer),
        status=column("status", String(20)),
        assigned_by=column("assigned_by", Integer),
        assignment_date=column("assignment_date", DateTime(timezone=True)),
        semester_id=_optional("semester_id" if schema.assignment_has_semester else None, Integer),
    )
    return AssignmentView(table=_table("resident_assignments", *cols.values()), **cols)


@dataclass(frozen=True)
class EnrollmentView:
    table: TableClause
    id: ColumnClause
    resident: ColumnClause
    semester_id: ColumnClause
    total_amount: ColumnClause
    amount_paid: ColumnClause
    balance: ColumnClause
    enrollment_status: ColumnClause
    room_id: ColumnClause | None


def enrollment_view(schema: LogicalSchema) -> EnrollmentView:
    schema.require("semester_enrollments")
    cols = dict(
        id=column("id", Integer),
        resident=column(schema.enrollment_resident_column, Integer),
        semester_id=column("semester_id", Integer),
        total_amount=column("total_amount", MoneyType),
        amount_paid=column("amount_paid", MoneyType),
        balance=column("balance", MoneyType),
        enrollment_status=column("enrollment_status", String(20)),
        room_id=_optional("room_id" if schema.enrollment_has_room else None, Integer),
    )
    return EnrollmentView(table=_table("semester_enrollments", *cols.values()), **cols)


@dataclass(frozen=True)
class RoomView:
    table: TableClause
    id: ColumnClause
    hostel_id: ColumnClause
    room_number: ColumnClause
    capacity: ColumnClause
    status: ColumnClause
    current_occupants: ColumnClause
    price: ColumnClause | None


def room_view(schema: LogicalSchema) -> RoomView:
    cols = dict(
        id=column("id", Integer),
        hostel_id=column("hostel_id", Integer),
        room_number=column("room_number", String(50)),
        capacity=column("capacity", Integer),
        status=column("status", String(20)),
        current_occupants=column("current_occupants", Integer),
        price=_optional(schema.room_price_column, MoneyType),
    )
    return RoomView(table=_table("rooms", *cols.values()), **cols)
