"""
Folds bookings, booking payments and the resident ledger into one
collected/outstanding figure per student, room, semester and hostel.

Money taken against a booking shows up twice once the student is checked
in: as completed booking payments and as the ledger row mirrored at
registration. The duplicated share is subtracted exactly where ledger rows
carry source_booking_id, and per resident (never more than the smaller of
the two sums) on older schemas.

Residents are charged per semester. Without a semester scope each
(resident, semester) pair is its own balance, so money paid in one semester
never hides debt owed in another.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.cache import CacheKey, SummaryCache, summary_cache
from src.core.cache.service import GLOBAL_SCOPE
from src.core.exceptions import NotFoundError
from src.core.schema import (
    LogicalSchema,
    SchemaAdapter,
    assignment_view,
    enrollment_view,
    ledger_view,
    room_view,
    schema_adapter,
)
from src.modules.bookings.models import SEAT_HOLDING_STATUSES, Booking, BookingStatus
from src.modules.hostels.models import Semester
from src.modules.hostels.service import HostelService, SemesterService
from src.modules.ledger.models import BookingPayment, PaymentStatus
from src.modules.reconciliation.schemas import (
    GlobalSummary,
    HostelSummary,
    HostelTotals,
    ResidentSummary,
    RoomSummary,
    SemesterHistory,
    SemesterTotals,
    StudentBalance,
)
from src.modules.residents.models import AssignmentStatus, Resident
from src.shared.utils.money import ZERO, outstanding_of, round_money

logger = logging.getLogger(__name__)

UNSPECIFIED = "unspecified"


@dataclass
class _BookingRow:
    id: int
    status: str
    resident_id: int | None
    email: str | None
    name: str
    room_id: int | None
    amount_due: Decimal
    semester_id: int | None = None


@dataclass
class _LedgerGroup:
    resident_id: int
    method: str | None
    source_booking_id: int | None
    amount: Decimal
    semester_id: int | None = None


@dataclass
class _Assignment:
    room_id: int
    # Enrollment total when there is one, else the room price
    expected: Decimal


def balance_status(expected: Decimal, paid: Decimal, assigned: bool = True) -> str:
    if not assigned:
        return "unassigned"
    if paid >= expected:
        return "paid"
    if paid > 0:
        return "partial"
    return "unpaid"


def _semester_order(key: int | None) -> tuple[bool, int]:
    return key is None, key or 0


def allocate_paid(
    expected: dict[int | None, Decimal], money: dict[int | None, Decimal]
) -> dict[int | None, Decimal]:
    """
    Split a resident's money over their semester charges.

    Money recorded against a charged semester stays there. Money with no
    matching charge (legacy rows without a semester, or a semester with no
    assignment) settles the oldest gaps first, and any surplus lands on the
    latest semester.
    """
    keys = sorted(expected, key=_semester_order)
    paid = {key: money.get(key, ZERO) for key in keys}
    pool = sum((amount for key, amount in money.items() if key not in expected), ZERO)

    for key in keys:
        if pool <= 0:
            break
        gap = expected[key] - paid[key]
        if gap > 0:
            taken = min(gap, pool)
            paid[key] += taken
            pool -= taken
    if pool > 0 and keys:
        paid[keys[-1]] += pool
    return {key: round_money(amount) for key, amount in paid.items()}


def _deduct(pots: dict[int | None, Decimal], amount: Decimal, preferred: list[int | None]) -> None:
    """Take amount out of per-semester pots, starting with the preferred semesters."""
    for key in dict.fromkeys([*preferred, None, *pots]):
        if amount <= 0:
            return
        taken = min(pots.get(key, ZERO), amount)
        if taken > 0:
            pots[key] -= taken
            amount -= taken


class ReconciliationService:
    def __init__(
        self,
        db: AsyncSession,
        adapter: SchemaAdapter | None = None,
        cache: SummaryCache | None = None,
    ):
        self.db = db
        self.adapter = adapter or schema_adapter
        self.cache = cache if cache is not None else summary_cache

    # --- Public views ---

    async def hostel_summary(self, hostel_id: int, semester_id: int | None = None) -> HostelSummary:
        key = CacheKey("hostel", hostel_id, semester_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        await HostelService(self.db, self.adapter).get_hostel(hostel_id)
        summary = await self._build_hostel_summary(hostel_id, semester_id)
        self.cache.set(key, summary)
        return summary

    async def room_summary(self, room_id: int, semester_id: int | None = None) -> RoomSummary:
        room = await HostelService(self.db, self.adapter).get_room(room_id)
        summary = await self.hostel_summary(room.hostel_id, semester_id)
        rows = [s for s in summary.students if s.room_id == room.id]
        return RoomSummary(
            room_id=room.id,
            room_number=room.room_number,
            hostel_id=room.hostel_id,
            semester_id=semester_id,
            capacity=room.capacity,
            total_collected=round_money(sum((r.paid for r in rows), ZERO)),
            total_expected=round_money(sum((r.expected for r in rows), ZERO)),
            total_outstanding=round_money(sum((r.balance for r in rows), ZERO)),
            students=rows,
        )

    async def resident_summary(self, resident_id: int, semester_id: int | None = None) -> ResidentSummary:
        resident = await self.db.get(Resident, resident_id)
        if not resident:
            raise NotFoundError("Resident", resident_id)

        summary = await self.hostel_summary(resident.hostel_id, semester_id)
        rows = [s for s in summary.students if s.kind == "resident" and s.resident_id == resident.id]
        if not rows:
            return ResidentSummary(
                resident_id=resident.id,
                hostel_id=resident.hostel_id,
                semester_id=semester_id,
                name=resident.name,
                email=resident.email,
                expected=ZERO,
                paid=ZERO,
                balance=ZERO,
                status="unassigned",
            )

        expected = round_money(sum((r.expected for r in rows), ZERO))
        paid = round_money(sum((r.paid for r in rows), ZERO))
        balance = round_money(sum((r.balance for r in rows), ZERO))
        assigned = [r for r in rows if r.status != "unassigned"]
        if not assigned:
            status = "unassigned"
        elif balance == 0:
            status = "paid"
        else:
            status = "partial" if paid > 0 else "unpaid"

        latest = assigned[-1] if assigned else rows[-1]
        return ResidentSummary(
            resident_id=resident.id,
            hostel_id=resident.hostel_id,
            semester_id=semester_id,
            name=latest.name,
            email=latest.email,
            room_number=latest.room_number,
            expected=expected,
            paid=paid,
            balance=balance,
            status=status,
            semesters=rows,
        )

    async def semester_history(self, hostel_id: int) -> SemesterHistory:
        key = CacheKey("semesters", hostel_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        await HostelService(self.db, self.adapter).get_hostel(hostel_id)
        semesters = await SemesterService(self.db).list_semesters(hostel_id)

        totals = []
        for semester in semesters:
            totals.append(await self._semester_totals(hostel_id, semester))

        history = SemesterHistory(
            hostel_id=hostel_id,
            current=next((t for t in totals if t.is_current), None),
            semesters=totals,
        )
        self.cache.set(key, history)
        return history

    async def global_summary(self) -> GlobalSummary:
        key = CacheKey(GLOBAL_SCOPE)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        hostels = await HostelService(self.db, self.adapter).list_hostels()
        semesters = SemesterService(self.db)

        result = GlobalSummary(hostels=[])
        for hostel in hostels:
            overall = await self.hostel_summary(hostel.id)
            current = await semesters.get_current(hostel.id)
            current_totals = await self._semester_totals(hostel.id, current) if current else None

            result.hostels.append(
                HostelTotals(
                    hostel_id=hostel.id,
                    hostel_name=hostel.name,
                    total_collected=overall.total_collected,
                    total_outstanding=overall.total_outstanding,
                    current_semester=current_totals,
                )
            )
            result.total_collected += overall.total_collected
            result.total_outstanding += overall.total_outstanding
            if current_totals:
                result.current_collected += current_totals.total_collected
                result.current_outstanding += current_totals.total_outstanding

        self.cache.set(key, result)
        return result

    async def _semester_totals(self, hostel_id: int, semester: Semester) -> SemesterTotals:
        summary = await self.hostel_summary(hostel_id, semester.id)
        return SemesterTotals(
            semester_id=semester.id,
            name=semester.name,
            is_current=semester.is_current,
            total_collected=summary.total_collected,
            total_expected=summary.total_expected,
            total_outstanding=summary.total_outstanding,
        )

    # --- The fold ---

    async def _build_hostel_summary(self, hostel_id: int, semester_id: int | None) -> HostelSummary:
        schema = await self.adapter.resolve(self.db)

        bookings, booking_paid, booking_methods = await self._load_bookings(schema, hostel_id, semester_id)
        groups, semester_filter_applied = await self._load_ledger(schema, hostel_id, semester_id)
        residents = await self._load_residents(schema, hostel_id)
        assignments = await self._load_assignments(schema, hostel_id, semester_id)
        room_numbers = await self._load_room_numbers(schema, hostel_id)

        booking_total = round_money(sum(booking_paid.values(), ZERO))
        ledger_total = round_money(sum((g.amount for g in groups), ZERO))

        def scoped(key: int | None) -> int | None:
            return semester_id if semester_id is not None else key

        ledger_by_resident: dict[int, Decimal] = defaultdict(lambda: ZERO)
        ledger_at: dict[int, dict[int | None, Decimal]] = defaultdict(lambda: defaultdict(lambda: ZERO))
        for g in groups:
            ledger_by_resident[g.resident_id] += g.amount
            ledger_at[g.resident_id][scoped(g.semester_id)] += g.amount

        # Checked-in money belongs to the resident the booking became
        email_index = {r["email"].lower(): rid for rid, r in residents.items() if r["email"]}
        booking_owner: dict[int, int] = {}
        for b in bookings:
            if b.status != BookingStatus.CHECKED_IN.value:
                continue
            owner = b.resident_id
            if owner is None and b.email:
                owner = email_index.get(b.email.lower())
            if owner is not None:
                booking_owner[b.id] = owner

        booking_semester = {b.id: b.semester_id for b in bookings}
        booking_by_resident: dict[int, Decimal] = defaultdict(lambda: ZERO)
        booking_at: dict[int, dict[int | None, Decimal]] = defaultdict(lambda: defaultdict(lambda: ZERO))
        for booking_id, owner in booking_owner.items():
            amount = booking_paid.get(booking_id, ZERO)
            booking_by_resident[owner] += amount
            booking_at[owner][scoped(booking_semester[booking_id])] += amount

        exact = schema.ledger_has_source_booking
        duplicated = ZERO
        dup_by_resident: dict[int, Decimal] = defaultdict(lambda: ZERO)
        excluded_groups: set[int] = set()

        if exact:
            mirrors: dict[int, list[int]] = defaultdict(list)
            for idx, g in enumerate(groups):
                if g.source_booking_id is not None and booking_paid.get(g.source_booking_id, ZERO) > 0:
                    mirrors[g.source_booking_id].append(idx)
            for booking_id, indexes in mirrors.items():
                mirrored = sum((groups[i].amount for i in indexes), ZERO)
                share = min(mirrored, booking_paid[booking_id])
                duplicated += share
                dup_by_resident[groups[indexes[0]].resident_id] += share
                excluded_groups.update(indexes)
                remaining = share
                for i in indexes:
                    taken = min(groups[i].amount, remaining)
                    ledger_at[groups[i].resident_id][scoped(groups[i].semester_id)] -= taken
                    remaining -= taken
        else:
            for resident_id, booking_sum in booking_by_resident.items():
                share = min(ledger_by_resident.get(resident_id, ZERO), booking_sum)
                if share > 0:
                    duplicated += share
                    dup_by_resident[resident_id] += share
                    _deduct(ledger_at[resident_id], share, preferred=list(booking_at[resident_id]))
            excluded_groups = {i for i, g in enumerate(groups) if g.resident_id in dup_by_resident}

        duplicated = round_money(duplicated)
        total_collected = round_money(ledger_total - duplicated + booking_total)

        breakdown: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for method, amount in booking_methods.items():
            breakdown[method] += amount
        for idx, g in enumerate(groups):
            if idx not in excluded_groups:
                breakdown[g.method or UNSPECIFIED] += g.amount
        residual = total_collected - sum(breakdown.values(), ZERO)
        if residual != 0:
            breakdown[UNSPECIFIED] += residual
        method_breakdown = {m: round_money(v) for m, v in sorted(breakdown.items()) if v != 0}

        students: list[StudentBalance] = []

        if semester_id is None:
            resident_ids = set(residents)
        else:
            resident_ids = set()
        resident_ids |= set(assignments) | set(ledger_at) | set(booking_at)

        for resident_id in sorted(resident_ids):
            info = residents.get(resident_id, {"name": f"Resident #{resident_id}", "email": None})
            money: dict[int | None, Decimal] = defaultdict(lambda: ZERO)
            for pots in (ledger_at.get(resident_id, {}), booking_at.get(resident_id, {})):
                for key, amount in pots.items():
                    money[key] += amount

            charges = assignments.get(resident_id)
            if not charges:
                students.append(
                    StudentBalance(
                        kind="resident",
                        resident_id=resident_id,
                        semester_id=semester_id,
                        name=info["name"],
                        email=info["email"],
                        expected=ZERO,
                        paid=round_money(sum(money.values(), ZERO)),
                        balance=ZERO,
                        status="unassigned",
                    )
                )
                continue

            paid_by_semester = allocate_paid({key: a.expected for key, a in charges.items()}, money)
            for key in sorted(charges, key=_semester_order):
                assignment = charges[key]
                paid = paid_by_semester[key]
                students.append(
                    StudentBalance(
                        kind="resident",
                        resident_id=resident_id,
                        semester_id=key,
                        name=info["name"],
                        email=info["email"],
                        room_id=assignment.room_id,
                        room_number=room_numbers.get(assignment.room_id),
                        expected=assignment.expected,
                        paid=paid,
                        balance=outstanding_of(assignment.expected, paid),
                        status=balance_status(assignment.expected, paid),
                    )
                )

        for b in bookings:
            live = b.status in SEAT_HOLDING_STATUSES
            orphan_check_in = b.status == BookingStatus.CHECKED_IN.value and b.id not in booking_owner
            if not (live or orphan_check_in):
                continue
            paid = booking_paid.get(b.id, ZERO)
            students.append(
                StudentBalance(
                    kind="booking",
                    booking_id=b.id,
                    resident_id=b.resident_id,
                    name=b.name,
                    email=b.email,
                    room_id=b.room_id,
                    semester_id=b.semester_id,
                    room_number=room_numbers.get(b.room_id),
                    expected=b.amount_due,
                    paid=paid,
                    balance=outstanding_of(b.amount_due, paid),
                    status=balance_status(b.amount_due, paid),
                )
            )

        summary = HostelSummary(
            hostel_id=hostel_id,
            semester_id=semester_id,
            semester_filter_applied=semester_filter_applied,
            dedup_mode="exact" if exact else "heuristic",
            total_collected=total_collected,
            total_expected=round_money(sum((s.expected for s in students), ZERO)),
            total_outstanding=round_money(sum((s.balance for s in students), ZERO)),
            booking_total=booking_total,
            ledger_total=ledger_total,
            duplicated=duplicated,
            method_breakdown=method_breakdown,
            students=students,
        )
        logger.debug(
            "Hostel %s semester %s: collected %s (ledger %s - duplicated %s + bookings %s)",
            hostel_id,
            semester_id,
            total_collected,
            ledger_total,
            duplicated,
            booking_total,
        )
        return summary

    # --- Loaders ---

    async def _load_bookings(
        self, schema: LogicalSchema, hostel_id: int, semester_id: int | None
    ) -> tuple[list[_BookingRow], dict[int, Decimal], dict[str, Decimal]]:
        """Bookings in scope, completed money per booking and per method."""
        if not schema.has_table("bookings"):
            return [], {}, {}

        conditions = [Booking.hostel_id == hostel_id]
        if semester_id is not None:
            conditions.append(Booking.semester_id == semester_id)

        result = await self.db.execute(
            select(
                Booking.id,
                Booking.status,
                Booking.resident_id,
                Booking.student_email,
                Booking.student_name,
                Booking.room_id,
                Booking.amount_due,
                Booking.semester_id,
            )
            .where(*conditions)
            .order_by(Booking.id)
        )
        bookings = [
            _BookingRow(
                id=row.id,
                status=row.status,
                resident_id=row.resident_id,
                email=row.student_email,
                name=row.student_name,
                room_id=row.room_id,
                amount_due=round_money(row.amount_due),
                semester_id=row.semester_id,
            )
            for row in result
        ]

        booking_paid: dict[int, Decimal] = defaultdict(lambda: ZERO)
        by_method: dict[str, Decimal] = defaultdict(lambda: ZERO)
        if not schema.has_table("booking_payments"):
            return bookings, {}, {}

        result = await self.db.execute(
            select(BookingPayment.booking_id, BookingPayment.method, func.sum(BookingPayment.amount))
            .join(Booking, Booking.id == BookingPayment.booking_id)
            .where(*conditions, BookingPayment.status == PaymentStatus.COMPLETED.value)
            .group_by(BookingPayment.booking_id, BookingPayment.method)
        )
        for booking_id, method, amount in result:
            booking_paid[booking_id] += round_money(amount)
            by_method[method] += round_money(amount)
        return bookings, dict(booking_paid), dict(by_method)

    async def _load_ledger(
        self, schema: LogicalSchema, hostel_id: int, semester_id: int | None
    ) -> tuple[list[_LedgerGroup], bool]:
        """Ledger sums in scope grouped by resident, method and source booking."""
        if not schema.has_table("payments"):
            return [], False

        lv = ledger_view(schema)
        has_residents = schema.has_table("residents")
        source = lv.table
        if has_residents:
            residents = Resident.__table__
            source = source.outerjoin(residents, residents.c.id == lv.resident)

        if lv.hostel_id is not None and has_residents:
            # Older rows may predate the hostel column being filled
            hostel_condition = or_(
                lv.hostel_id == hostel_id,
                and_(lv.hostel_id.is_(None), Resident.hostel_id == hostel_id),
            )
        elif lv.hostel_id is not None:
            hostel_condition = lv.hostel_id == hostel_id
        elif has_residents:
            hostel_condition = Resident.hostel_id == hostel_id
        else:
            logger.warning("Ledger cannot be scoped to hostel %s: no hostel column and no residents", hostel_id)
            return [], False

        conditions = [hostel_condition]
        semester_filter_applied = False
        if semester_id is not None and lv.semester_id is not None:
            conditions.append(lv.semester_id == semester_id)
            semester_filter_applied = True

        keys = [lv.resident]
        if lv.method is not None:
            keys.append(lv.method)
        if lv.source_booking_id is not None:
            keys.append(lv.source_booking_id)
        if lv.semester_id is not None:
            keys.append(lv.semester_id)
        result = await self.db.execute(
            select(*keys, func.sum(lv.amount).label("total"))
            .select_from(source)
            .where(*conditions)
            .group_by(*keys)
        )
        groups = []
        for row in result.mappings():
            groups.append(
                _LedgerGroup(
                    resident_id=row[lv.resident.name],
                    method=row[lv.method.name] if lv.method is not None else None,
                    source_booking_id=(
                        row[lv.source_booking_id.name] if lv.source_booking_id is not None else None
                    ),
                    amount=round_money(row["total"]),
                    semester_id=row[lv.semester_id.name] if lv.semester_id is not None else None,
                )
            )
        return groups, semester_filter_applied

    async def _load_residents(self, schema: LogicalSchema, hostel_id: int) -> dict[int, dict]:
        if not schema.has_table("residents"):
            return {}
        result = await self.db.execute(
            select(Resident.id, Resident.name, Resident.email).where(Resident.hostel_id == hostel_id)
        )
        return {row.id: {"name": row.name, "email": row.email} for row in result}

    async def _load_assignments(
        self, schema: LogicalSchema, hostel_id: int, semester_id: int | None
    ) -> dict[int, dict[int | None, _Assignment]]:
        """Active assignments in scope per resident, keyed by semester."""
        if not schema.has_table("resident_assignments"):
            return {}

        av = assignment_view(schema)
        rooms = room_view(schema)
        conditions = [rooms.hostel_id == hostel_id, av.status == AssignmentStatus.ACTIVE.value]
        if semester_id is not None and av.semester_id is not None:
            conditions.append(av.semester_id == semester_id)

        cols = [av.resident.label("resident"), av.room_id.label("room_id")]
        if av.semester_id is not None:
            cols.append(av.semester_id.label("semester_id"))
        if rooms.price is not None:
            cols.append(rooms.price.label("price"))
        result = await self.db.execute(
            select(*cols)
            .select_from(av.table.join(rooms.table, rooms.id == av.room_id))
            .where(*conditions)
            .order_by(av.id)
        )

        assignments: dict[int, dict[int | None, _Assignment]] = defaultdict(dict)
        for row in result.mappings():
            key = semester_id if semester_id is not None else row.get("semester_id")
            # Latest assignment wins should legacy data hold more than one per semester
            assignments[row["resident"]][key] = _Assignment(
                room_id=row["room_id"], expected=round_money(row.get("price"))
            )

        if assignments and schema.has_table("semester_enrollments"):
            ev = enrollment_view(schema)
            result = await self.db.execute(
                select(ev.resident.label("resident"), ev.semester_id.label("semester_id"), ev.total_amount)
                .where(ev.resident.in_(list(assignments)))
            )
            for resident_id, enrolled_in, total in result:
                assignment = assignments[resident_id].get(enrolled_in)
                if assignment is not None:
                    assignment.expected = round_money(total)
        return dict(assignments)

    async def _load_room_numbers(self, schema: LogicalSchema, hostel_id: int) -> dict[int, str]:
        rooms = room_view(schema)
        result = await self.db.execute(
            select(rooms.id, rooms.room_number).where(rooms.hostel_id == hostel_id)
        )
        return {room_id: number for room_id, number in result}

