"""
Runtime schema negotiation.

Deployments of the hostel database drifted over time: the ledger table keys
residents by ``student_id`` in some and ``user_id`` in others, optional
columns were added by later migrations, and some installations never got the
booking tables. The adapter inspects the live schema once per process and
exposes the result as an immutable capability descriptor that every query
builder consults.
"""
import logging
from dataclasses import dataclass, field

from fastapi import Request
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from src.core.exceptions import DependencyFailure

logger = logging.getLogger(__name__)

RESIDENT_COLUMN_CANDIDATES = ("student_id", "user_id")
PURPOSE_COLUMN_CANDIDATES = ("purpose", "notes")
ROOM_PRICE_CANDIDATES = ("price_per_semester", "price")

KNOWN_TABLES = (
    "hostels",
    "rooms",
    "semesters",
    "residents",
    "bookings",
    "booking_payments",
    "payments",
    "resident_assignments",
    "semester_enrollments",
)


@dataclass(frozen=True)
class LogicalSchema:
    """What the connected database can do."""

    ledger_resident_column: str | None = "student_id"
    ledger_has_hostel: bool = True
    ledger_has_semester: bool = True
    ledger_has_method: bool = True
    ledger_has_source_booking: bool = True
    ledger_currency_column: str | None = "currency"
    ledger_purpose_column: str | None = "purpose"
    ledger_has_recorded_by: bool = True

    assignment_resident_column: str | None = "student_id"
    assignment_has_semester: bool = True

    enrollment_resident_column: str | None = "student_id"
    enrollment_has_room: bool = True

    room_price_column: str | None = "price_per_semester"

    missing_tables: frozenset[str] = field(default_factory=frozenset)

    def has_table(self, name: str) -> bool:
        return name not in self.missing_tables

    def require(self, name: str) -> None:
        """Write paths call this; a missing table is a hard failure."""
        if name in self.missing_tables:
            raise DependencyFailure(
                f"Table '{name}' is not available in this deployment",
                dependency=name,
            )


def _first_present(columns: set[str], candidates: tuple[str, ...]) -> str | None:
    for name in candidates:
        if name in columns:
            return name
    return None


def probe_schema(sync_session: Session) -> LogicalSchema:
    """Build a LogicalSchema from the live database (sync, run via run_sync)."""
    inspector = inspect(sync_session.connection())
    tables = set(inspector.get_table_names())

    def columns_of(table: str) -> set[str]:
        if table not in tables:
            return set()
        return {col["name"] for col in inspector.get_columns(table)}

    missing = {t for t in KNOWN_TABLES if t not in tables}

    ledger_cols = columns_of("payments")
    ledger_resident = _first_present(ledger_cols, RESIDENT_COLUMN_CANDIDATES)
    if "payments" in tables and ledger_resident is None:
        missing.add("payments")

    assignment_cols = columns_of("resident_assignments")
    assignment_resident = _first_present(assignment_cols, RESIDENT_COLUMN_CANDIDATES)
    if "resident_assignments" in tables and assignment_resident is None:
        missing.add("resident_assignments")

    enrollment_cols = columns_of("semester_enrollments")
    enrollment_resident = _first_present(enrollment_cols, RESIDENT_COLUMN_CANDIDATES)
    if "semester_enrollments" in tables and enrollment_resident is None:
        missing.add("semester_enrollments")

    return LogicalSchema(
        ledger_resident_column=ledger_resident,
        ledger_has_hostel="hostel_id" in ledger_cols,
        ledger_has_semester="semester_id" in ledger_cols,
        ledger_has_method="payment_method" in ledger_cols,
        ledger_has_source_booking="source_booking_id" in ledger_cols,
        ledger_currency_column="currency" if "currency" in ledger_cols else None,
        ledger_purpose_column=_first_present(ledger_cols, PURPOSE_COLUMN_CANDIDATES),
        ledger_has_recorded_by="recorded_by" in ledger_cols,
        assignment_resident_column=assignment_resident,
        assignment_has_semester="semester_id" in assignment_cols,
        enrollment_resident_column=enrollment_resident,
        enrollment_has_room="room_id" in enrollment_cols,
        room_price_column=_first_present(columns_of("rooms"), ROOM_PRICE_CANDIDATES),
        missing_tables=frozenset(missing),
    )


class SchemaAdapter:
    """Probes once, then serves the cached LogicalSchema until invalidated."""

    def __init__(self) -> None:
        self._schema: LogicalSchema | None = None

    async def resolve(self, session: AsyncSession) -> LogicalSchema:
        if self._schema is None:
            schema = await session.run_sync(probe_schema)
            if schema.missing_tables:
                logger.warning(
                    "Schema probe: missing tables %s", ", ".join(sorted(schema.missing_tables))
                )
            logger.info(
                "Schema probe: ledger resident column=%s hostel=%s semester=%s method=%s "
                "source_booking=%s, room price column=%s",
                schema.ledger_resident_column,
                schema.ledger_has_hostel,
                schema.ledger_has_semester,
                schema.ledger_has_method,
                schema.ledger_has_source_booking,
                schema.room_price_column,
            )
            self._schema = schema
        return self._schema

    def invalidate(self) -> None:
        self._schema = None


schema_adapter = SchemaAdapter()


def get_schema_adapter(request: Request) -> SchemaAdapter:
    return getattr(request.app.state, "schema_adapter", schema_adapter)
