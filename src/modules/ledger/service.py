import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit import AuditAction, AuditService
from src.core.cache import SummaryCache, summary_cache
from src.core.config import settings
from src.core.database import run_with_retry
from src.core.documents.number_generator import DocumentPrefix, get_document_number
from src.core.exceptions import (
    BalanceViolationError,
    DependencyFailure,
    NotFoundError,
    StatePreconditionError,
    ValidationError,
)
from src.core.notifications.service import (
    NotificationSender,
    PaymentReceipt,
    default_sender,
    notify_safely,
)
from src.core.schema import (
    LogicalSchema,
    SchemaAdapter,
    assignment_view,
    enrollment_view,
    ledger_view,
    room_view,
    schema_adapter,
)
from src.modules.bookings.models import Booking, BookingStatus
from src.modules.hostels.models import Semester
from src.modules.ledger.models import BookingPayment, PaymentMethod, PaymentStatus
from src.modules.ledger.schemas import BalanceSnapshot, LedgerPaymentResponse
from src.modules.residents.models import AssignmentStatus, Resident
from src.shared.utils.money import ZERO, outstanding_of, payment_status_for, round_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingTarget:
    booking_id: int


@dataclass(frozen=True)
class ResidentTarget:
    resident_id: int
    semester_id: int | None = None


PaymentTarget = BookingTarget | ResidentTarget


@dataclass
class RecordedPayment:
    """Outcome of a ledger write: the stored row and the balance after it."""

    payment: BookingPayment | LedgerPaymentResponse
    balances: BalanceSnapshot
    hostel_id: int
    booking: Booking | None = None
    recipient_email: str | None = None
    recipient_name: str = ""
    currency: str = settings.default_currency

    @property
    def counts_toward_balance(self) -> bool:
        if isinstance(self.payment, BookingPayment):
            return self.payment.is_completed
        return True


def _check_against_outstanding(outstanding: Decimal, amount: Decimal) -> None:
    if outstanding <= 0:
        raise BalanceViolationError(
            "Nothing is owed: the balance is already cleared",
            outstanding=outstanding,
            requested=amount,
        )
    if amount > outstanding:
        raise BalanceViolationError(
            f"Payment of {amount} exceeds the outstanding balance of {outstanding}",
            outstanding=outstanding,
            requested=amount,
        )


def booking_balance(booking: Booking) -> BalanceSnapshot:
    return BalanceSnapshot(
        amount_due=round_money(booking.amount_due),
        amount_paid=round_money(booking.amount_paid),
        outstanding=booking.outstanding,
        payment_status=booking.payment_status,
    )


class LedgerService:
    """
    Single entry point for recording money.

    Balances never go negative and never exceed what is due: the booking and
    enrollment increments are conditional updates, so a concurrent writer
    that would overshoot gets zero rows and is rejected without side effects.
    """

    def __init__(
        self,
        db: AsyncSession,
        adapter: SchemaAdapter | None = None,
        cache: SummaryCache | None = None,
        notifier: NotificationSender | None = None,
    ):
        self.db = db
        self.adapter = adapter or schema_adapter
        self.cache = cache if cache is not None else summary_cache
        self.notifier = notifier or default_sender
        self.audit = AuditService(db)

    # --- Writes ---

    async def record_payment(
        self,
        target: PaymentTarget,
        amount: Decimal,
        method: str = PaymentMethod.CASH.value,
        status: str = PaymentStatus.COMPLETED.value,
        reference: str | None = None,
        notes: str | None = None,
        currency: str | None = None,
        purpose: str | None = None,
        user_id: int | None = None,
        commit: bool = True,
    ) -> RecordedPayment:
        """
        Record a payment against a booking or a resident's semester account.

        With commit=False the write joins the caller's transaction and the
        caller is responsible for commit and after_commit().

        Raises:
            ValidationError: amount not positive
            NotFoundError: target does not exist
            BalanceViolationError: nothing owed, or amount exceeds outstanding
            StatePreconditionError: booking is cancelled
            DependencyFailure: ledger table missing (resident path)
        """
        amount = round_money(amount)
        if amount <= 0:
            raise ValidationError("Amount must be positive", field="amount")

        async def work() -> RecordedPayment:
            if isinstance(target, BookingTarget):
                return await self._record_booking_payment(
                    target.booking_id, amount, str(method), str(status), reference, notes, user_id
                )
            return await self._record_resident_payment(
                target, amount, str(method), str(status), currency, purpose, user_id
            )

        if not commit:
            return await work()

        recorded = await self._commit_with_retry(work, "record_payment")
        await self.after_commit(recorded)
        return recorded

    async def confirm_pending(
        self, payment_id: int, user_id: int | None = None, commit: bool = True
    ) -> RecordedPayment:
        """Settle a pending booking payment as received. Subject to the usual balance checks."""

        async def work() -> RecordedPayment:
            return await self._settle_pending(payment_id, PaymentStatus.COMPLETED, user_id)

        if not commit:
            return await work()
        recorded = await self._commit_with_retry(work, "confirm_pending")
        await self.after_commit(recorded)
        return recorded

    async def fail_pending(
        self, payment_id: int, user_id: int | None = None, commit: bool = True
    ) -> RecordedPayment:
        """Mark a pending booking payment as failed. Balances are not touched."""

        async def work() -> RecordedPayment:
            return await self._settle_pending(payment_id, PaymentStatus.FAILED, user_id)

        if not commit:
            return await work()
        recorded = await self._commit_with_retry(work, "fail_pending")
        await self.after_commit(recorded)
        return recorded

    async def after_commit(self, recorded: RecordedPayment) -> None:
        """Cache invalidation and the receipt, once the money is durable."""
        self.cache.invalidate_hostel(recorded.hostel_id)
        if not recorded.counts_toward_balance:
            return
        payment = recorded.payment
        receipt = PaymentReceipt(
            email=recorded.recipient_email,
            name=recorded.recipient_name,
            receipt_number=getattr(payment, "receipt_number", None),
            amount=round_money(payment.amount),
            balance=recorded.balances.outstanding,
            currency=recorded.currency,
            verification_code=recorded.booking.verification_code if recorded.booking else None,
        )
        await notify_safely(self.notifier.send_payment_receipt(receipt))

    async def _commit_with_retry(self, work, operation: str) -> RecordedPayment:
        async def unit() -> RecordedPayment:
            recorded = await work()
            try:
                await self.db.commit()
            except IntegrityError as e:
                await self.db.rollback()
                raise StatePreconditionError("Payment was already settled") from e
            return recorded

        return await run_with_retry(self.db, unit, settings.payment_retry_attempts, operation)

    # --- Booking path ---

    async def _lock_booking(self, booking_id: int) -> Booking:
        result = await self.db.execute(
            select(Booking)
            .where(Booking.id == booking_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        booking = result.scalar_one_or_none()
        if not booking:
            raise NotFoundError("Booking", booking_id)
        if booking.status == BookingStatus.CANCELLED.value:
            raise StatePreconditionError("Booking is cancelled", state=booking.status)
        return booking

    async def _increment_booking(self, booking: Booking, amount: Decimal) -> None:
        """Conditional increment; zero rows means someone else paid first."""
        new_paid = Booking.amount_paid + amount
        result = await self.db.execute(
            update(Booking)
            .where(Booking.id == booking.id, new_paid <= Booking.amount_due)
            .values(amount_paid=new_paid)
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(booking)

        if result.rowcount == 0:
            raise BalanceViolationError(
                "Payment exceeds the outstanding balance",
                outstanding=booking.outstanding,
                requested=amount,
            )

        booking.payment_status = payment_status_for(booking.amount_due, booking.amount_paid)
        await self.db.flush()

    async def _add_booking_payment(
        self,
        booking: Booking,
        amount: Decimal,
        method: str,
        status: str,
        reference: str | None,
        notes: str | None,
        user_id: int | None,
        supersedes_payment_id: int | None = None,
    ) -> BookingPayment:
        payment = BookingPayment(
            receipt_number=await get_document_number(self.db, DocumentPrefix.RECEIPT),
            booking_id=booking.id,
            amount=amount,
            method=method,
            status=status,
            reference=reference,
            notes=notes,
            supersedes_payment_id=supersedes_payment_id,
            recorded_by_id=user_id,
        )
        self.db.add(payment)
        await self.db.flush()
        await self.db.refresh(payment)
        return payment

    async def _record_booking_payment(
        self,
        booking_id: int,
        amount: Decimal,
        method: str,
        status: str,
        reference: str | None,
        notes: str | None,
        user_id: int | None,
    ) -> RecordedPayment:
        booking = await self._lock_booking(booking_id)
        _check_against_outstanding(booking.outstanding, amount)

        if status == PaymentStatus.COMPLETED.value:
            await self._increment_booking(booking, amount)

        payment = await self._add_booking_payment(
            booking, amount, method, status, reference, notes, user_id
        )

        await self.audit.log(
            action=AuditAction.RECORD_PAYMENT,
            entity_type="BookingPayment",
            entity_id=payment.id,
            hostel_id=booking.hostel_id,
            user_id=user_id,
            reference=payment.receipt_number,
            new_values={
                "booking_id": booking.id,
                "amount": str(amount),
                "method": method,
                "status": status,
                "amount_paid": str(round_money(booking.amount_paid)),
            },
        )
        logger.info(
            "Booking %s payment %s: %s via %s (%s), outstanding %s",
            booking.booking_number,
            payment.receipt_number,
            amount,
            method,
            status,
            booking.outstanding,
        )
        return self._booking_result(booking, payment)

    async def _settle_pending(
        self, payment_id: int, outcome: PaymentStatus, user_id: int | None
    ) -> RecordedPayment:
        result = await self.db.execute(
            select(BookingPayment)
            .where(BookingPayment.id == payment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        pending = result.scalar_one_or_none()
        if not pending:
            raise NotFoundError("Payment", payment_id)
        if pending.status != PaymentStatus.PENDING.value:
            raise StatePreconditionError("Only pending payments can be settled", state=pending.status)

        result = await self.db.execute(
            select(BookingPayment).where(BookingPayment.supersedes_payment_id == pending.id)
        )
        settled = result.scalar_one_or_none()
        if settled:
            raise StatePreconditionError("Payment was already settled", state=settled.status)

        booking = await self._lock_booking(pending.booking_id)
        if outcome == PaymentStatus.COMPLETED:
            _check_against_outstanding(booking.outstanding, round_money(pending.amount))
            await self._increment_booking(booking, round_money(pending.amount))

        payment = await self._add_booking_payment(
            booking,
            round_money(pending.amount),
            pending.method,
            outcome.value,
            pending.reference,
            pending.notes,
            user_id,
            supersedes_payment_id=pending.id,
        )

        await self.audit.log(
            action=(
                AuditAction.CONFIRM_PAYMENT
                if outcome == PaymentStatus.COMPLETED
                else AuditAction.FAIL_PAYMENT
            ),
            entity_type="BookingPayment",
            entity_id=pending.id,
            hostel_id=booking.hostel_id,
            user_id=user_id,
            reference=pending.receipt_number,
            old_values={"status": pending.status},
            new_values={"status": outcome.value, "settled_by_payment_id": payment.id},
        )
        return self._booking_result(booking, payment)

    def _booking_result(self, booking: Booking, payment: BookingPayment) -> RecordedPayment:
        return RecordedPayment(
            payment=payment,
            balances=booking_balance(booking),
            hostel_id=booking.hostel_id,
            booking=booking,
            recipient_email=booking.student_email,
            recipient_name=booking.student_name,
            currency=booking.currency,
        )

    # --- Resident path ---

    async def _record_resident_payment(
        self,
        target: ResidentTarget,
        amount: Decimal,
        method: str,
        status: str,
        currency: str | None,
        purpose: str | None,
        user_id: int | None,
    ) -> RecordedPayment:
        if status != PaymentStatus.COMPLETED.value:
            raise ValidationError(
                "Only completed payments can be recorded against a resident", field="status"
            )

        schema = await self.adapter.resolve(self.db)
        lv = ledger_view(schema)

        resident = await self.db.get(Resident, target.resident_id)
        if not resident:
            raise NotFoundError("Resident", target.resident_id)

        semester_id = target.semester_id
        if semester_id is None:
            result = await self.db.execute(
                select(Semester.id).where(
                    Semester.hostel_id == resident.hostel_id, Semester.is_current.is_(True)
                )
            )
            semester_id = result.scalars().first()

        balances = await self._apply_to_enrollment(schema, resident.id, semester_id, amount)
        if balances is None:
            balances = await self._legacy_resident_balance(schema, resident, semester_id, amount)

        currency = currency or settings.default_currency
        values = lv.row_values(
            resident_id=resident.id,
            amount=amount,
            hostel_id=resident.hostel_id,
            semester_id=semester_id,
            method=method,
            currency=currency,
            purpose=purpose or "Accommodation payment",
            recorded_by=user_id,
        )
        result = await self.db.execute(insert(lv.table).values(values).returning(lv.id))
        payment_id = result.scalar_one()

        await self.audit.log(
            action=AuditAction.RECORD_PAYMENT,
            entity_type="LedgerPayment",
            entity_id=payment_id,
            hostel_id=resident.hostel_id,
            user_id=user_id,
            reference=resident.email,
            new_values={
                "resident_id": resident.id,
                "semester_id": semester_id,
                "amount": str(amount),
                "method": method,
            },
        )
        logger.info(
            "Ledger payment %s for resident %s: %s, outstanding %s",
            payment_id,
            resident.id,
            amount,
            balances.outstanding,
        )

        return RecordedPayment(
            payment=LedgerPaymentResponse(
                id=payment_id,
                resident_id=resident.id,
                resident_name=resident.name,
                resident_email=resident.email,
                amount=amount,
                hostel_id=resident.hostel_id,
                semester_id=semester_id if lv.semester_id is not None else None,
                method=method if lv.method is not None else None,
                currency=currency if lv.currency is not None else None,
                purpose=(purpose or "Accommodation payment") if lv.purpose is not None else None,
            ),
            balances=balances,
            hostel_id=resident.hostel_id,
            recipient_email=resident.email,
            recipient_name=resident.name,
            currency=currency,
        )

    async def _apply_to_enrollment(
        self,
        schema: LogicalSchema,
        resident_id: int,
        semester_id: int | None,
        amount: Decimal,
    ) -> BalanceSnapshot | None:
        """Conditional increment of the semester enrollment; None when there is none."""
        if semester_id is None or not schema.has_table("semester_enrollments"):
            return None

        ev = enrollment_view(schema)
        result = await self.db.execute(
            select(ev.id, ev.total_amount, ev.amount_paid)
            .where(ev.resident == resident_id, ev.semester_id == semester_id)
            .with_for_update()
        )
        row = result.first()
        if row is None:
            return None

        _check_against_outstanding(outstanding_of(row.total_amount, row.amount_paid), amount)

        new_paid = ev.amount_paid + amount
        result = await self.db.execute(
            update(ev.table)
            .where(ev.id == row.id, new_paid <= ev.total_amount)
            .values({ev.amount_paid.name: new_paid, ev.balance.name: ev.total_amount - new_paid})
        )
        if result.rowcount == 0:
            fresh = await self.db.execute(select(ev.total_amount, ev.amount_paid).where(ev.id == row.id))
            current = fresh.one()
            raise BalanceViolationError(
                "Payment exceeds the outstanding balance",
                outstanding=outstanding_of(current.total_amount, current.amount_paid),
                requested=amount,
            )

        fresh = await self.db.execute(select(ev.total_amount, ev.amount_paid).where(ev.id == row.id))
        current = fresh.one()
        total, paid = round_money(current.total_amount), round_money(current.amount_paid)
        return BalanceSnapshot(
            amount_due=total,
            amount_paid=paid,
            outstanding=outstanding_of(total, paid),
            payment_status=payment_status_for(total, paid),
        )

    async def _legacy_resident_balance(
        self,
        schema: LogicalSchema,
        resident: Resident,
        semester_id: int | None,
        amount: Decimal,
    ) -> BalanceSnapshot:
        """
        Balance for deployments without an enrollment row: expected is the
        active room's price, paid is the ledger sum.
        """
        # Serializes concurrent payments for the same resident
        await self.db.execute(
            update(Resident)
            .where(Resident.id == resident.id)
            .values(updated_at=func.now())
            .execution_options(synchronize_session=False)
        )

        expected = await self.expected_for_resident(schema, resident.id, semester_id)
        if expected is None:
            raise StatePreconditionError("Resident has no active room assignment", state="unassigned")

        paid = await self.ledger_sum_for_resident(schema, resident.id, semester_id)
        _check_against_outstanding(outstanding_of(expected, paid), amount)

        paid_after = paid + amount
        return BalanceSnapshot(
            amount_due=expected,
            amount_paid=paid_after,
            outstanding=outstanding_of(expected, paid_after),
            payment_status=payment_status_for(expected, paid_after),
        )

    async def expected_for_resident(
        self, schema: LogicalSchema, resident_id: int, semester_id: int | None
    ) -> Decimal | None:
        """Room price of the resident's active assignment, or None when unassigned."""
        if not schema.has_table("resident_assignments"):
            return None
        av = assignment_view(schema)
        rooms = room_view(schema)
        price = rooms.price

        conditions = [av.resident == resident_id, av.status == AssignmentStatus.ACTIVE.value]
        if av.semester_id is not None and semester_id is not None:
            conditions.append(av.semester_id == semester_id)

        columns = [av.id, price] if price is not None else [av.id]
        result = await self.db.execute(
            select(*columns)
            .select_from(av.table.join(rooms.table, rooms.id == av.room_id))
            .where(*conditions)
            .order_by(av.id.desc())
            .limit(1)
        )
        row = result.first()
        if row is None:
            return None
        return round_money(row[1]) if price is not None else ZERO

    async def ledger_sum_for_resident(
        self, schema: LogicalSchema, resident_id: int, semester_id: int | None
    ) -> Decimal:
        lv = ledger_view(schema)
        conditions = [lv.resident == resident_id]
        if lv.semester_id is not None and semester_id is not None:
            conditions.append(lv.semester_id == semester_id)
        result = await self.db.execute(select(func.sum(lv.amount)).where(*conditions))
        return round_money(result.scalar_one_or_none())

    # --- Reads ---

    async def list_payments(
        self,
        hostel_id: int | None = None,
        semester_id: int | None = None,
        resident_id: int | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[LedgerPaymentResponse], int]:
        """
        List ledger rows with filters and pagination.

        Raises:
            DependencyFailure: semester filter on a ledger without semester column
        """
        schema = await self.adapter.resolve(self.db)
        lv = ledger_view(schema)

        if semester_id is not None and lv.semester_id is None:
            raise DependencyFailure(
                "Semester filtering is not supported by the payments table",
                dependency="payments.semester_id",
            )

        source = lv.table.outerjoin(Resident.__table__, Resident.id == lv.resident)
        conditions = []
        if hostel_id is not None:
            if lv.hostel_id is not None:
                conditions.append(
                    or_(
                        lv.hostel_id == hostel_id,
                        (lv.hostel_id.is_(None)) & (Resident.hostel_id == hostel_id),
                    )
                )
            else:
                conditions.append(Resident.hostel_id == hostel_id)
        if semester_id is not None:
            conditions.append(lv.semester_id == semester_id)
        if resident_id is not None:
            conditions.append(lv.resident == resident_id)
        if search:
            pattern = f"%{search}%"
            conditions.append(or_(Resident.name.ilike(pattern), Resident.email.ilike(pattern)))

        total_result = await self.db.execute(
            select(func.count()).select_from(source).where(*conditions)
        )
        total = total_result.scalar_one()

        optional = [
            c
            for c in (
                lv.hostel_id,
                lv.semester_id,
                lv.method,
                lv.currency,
                lv.purpose,
                lv.source_booking_id,
            )
            if c is not None
        ]
        stmt = (
            select(
                lv.id,
                lv.resident,
                lv.amount,
                lv.created_at,
                Resident.name.label("resident_name"),
                Resident.email.label("resident_email"),
                *optional,
            )
            .select_from(source)
            .where(*conditions)
            .order_by(lv.created_at.desc(), lv.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.db.execute(stmt)

        items = []
        for row in result.mappings():
            items.append(
                LedgerPaymentResponse(
                    id=row["id"],
                    resident_id=row[lv.resident.name],
                    resident_name=row["resident_name"],
                    resident_email=row["resident_email"],
                    amount=round_money(row["amount"]),
                    hostel_id=row.get("hostel_id"),
                    semester_id=row.get("semester_id"),
                    method=row.get("payment_method"),
                    currency=row.get(lv.currency.name) if lv.currency is not None else None,
                    purpose=row.get(lv.purpose.name) if lv.purpose is not None else None,
                    source_booking_id=row.get("source_booking_id"),
                    created_at=row["created_at"],
                )
            )
        return items, total
