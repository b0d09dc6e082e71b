import logging
import secrets
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.core.audit import AuditAction, AuditService
from src.core.cache import SummaryCache, summary_cache
from src.core.config import settings
from src.core.database import run_with_retry
from src.core.documents.number_generator import DocumentPrefix, get_document_number
from src.core.exceptions import (
    DependencyFailure,
    NotFoundError,
    StatePreconditionError,
    ValidationError,
)
from src.core.notifications.service import NotificationSender, default_sender, notify_safely
from src.core.schema import SchemaAdapter, schema_adapter
from src.modules.bookings.models import (
    Booking,
    BookingPaymentStatus,
    BookingStatus,
)
from src.modules.bookings.schemas import BookingCreate
from src.modules.capacity.service import CapacityService
from src.modules.hostels.models import Hostel
from src.modules.hostels.service import HostelService, RoomInfo, SemesterService
from src.modules.ledger.models import BookingPayment, PaymentMethod, PaymentStatus
from src.modules.ledger.service import BookingTarget, LedgerService, RecordedPayment
from src.modules.residents.schemas import ResidentProfile
from src.modules.residents.service import ResidentRegistrationService
from src.shared.utils.money import round_money

logger = logging.getLogger(__name__)

# No 0/O or 1/I, codes are read out over the phone
VERIFICATION_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_verification_code(length: int | None = None) -> str:
    length = length or settings.verification_code_length
    return "".join(secrets.choice(VERIFICATION_ALPHABET) for _ in range(length))


class BookingService:
    """Booking lifecycle: create, take payments, check in, cancel."""

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
        self.ledger = LedgerService(db, self.adapter, self.cache, self.notifier)
        self.capacity = CapacityService(db, self.adapter)
        self.hostels = HostelService(db, self.adapter)
        self.semesters = SemesterService(db)
        self.registration = ResidentRegistrationService(db, self.adapter)

    # --- Reads ---

    async def get_booking(self, booking_id: int, with_payments: bool = False) -> Booking:
        stmt = (
            select(Booking)
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        if with_payments:
            stmt = stmt.options(selectinload(Booking.payments))
        result = await self.db.execute(stmt)
        booking = result.scalar_one_or_none()
        if not booking:
            raise NotFoundError("Booking", booking_id)
        return booking

    async def list_bookings(
        self,
        hostel_id: int | None = None,
        status: str | None = None,
        payment_status: str | None = None,
        semester_id: int | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[Booking], int]:
        """List bookings with filters and pagination."""
        query = select(Booking)
        if hostel_id is not None:
            query = query.where(Booking.hostel_id == hostel_id)
        if status:
            query = query.where(Booking.status == status)
        if payment_status:
            query = query.where(Booking.payment_status == payment_status)
        if semester_id is not None:
            query = query.where(Booking.semester_id == semester_id)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    Booking.student_name.ilike(pattern),
                    Booking.student_email.ilike(pattern),
                    Booking.student_phone.ilike(pattern),
                    Booking.booking_number.ilike(pattern),
                )
            )

        total_result = await self.db.execute(select(func.count()).select_from(query.subquery()))
        total = total_result.scalar_one()

        query = query.order_by(Booking.created_at.desc(), Booking.id.desc())
        query = query.offset((page - 1) * limit).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def verify_code(self, code: str, hostel_id: int | None = None) -> Booking:
        """Find the booking a verification code was issued for."""
        query = select(Booking).where(Booking.verification_code == code.strip().upper())
        if hostel_id is not None:
            query = query.where(Booking.hostel_id == hostel_id)
        result = await self.db.execute(query)
        booking = result.scalar_one_or_none()
        if not booking:
            raise NotFoundError("Booking with this verification code")
        return booking

    # --- Create ---

    async def create_booking(
        self, data: BookingCreate, hostel_id: int, user_id: int | None = None
    ) -> tuple[Booking, RecordedPayment | None]:
        """
        Create a pending booking, admitting it through the capacity gate in
        the same transaction. An optional initial payment is applied too.

        Raises:
            NotFoundError: hostel, room or semester not found
            ValidationError: room/semester of another hostel, no semester, amount_due <= 0
            CapacityExceededError: room is full for the semester
            BalanceViolationError: initial payment exceeds amount due
        """
        hostel = await self.hostels.get_hostel(hostel_id)
        room = await self.hostels.get_room(data.room_id, hostel_id=hostel.id)

        semester_id = data.semester_id
        if semester_id is None:
            current = await self.semesters.get_current(hostel.id)
            if not current:
                raise ValidationError(
                    "No current semester for this hostel, semester_id is required",
                    field="semester_id",
                )
            semester_id = current.id
        else:
            await self.semesters.get_semester(semester_id, hostel_id=hostel.id)

        amount_due = self._resolve_amount_due(data.amount_due, room, hostel)
        hostel_id = hostel.id

        async def work() -> tuple[Booking, RecordedPayment | None]:
            await self.capacity.ensure_available(room.id, semester_id)

            booking = Booking(
                booking_number=await get_document_number(self.db, DocumentPrefix.BOOKING),
                hostel_id=hostel_id,
                semester_id=semester_id,
                room_id=room.id,
                source=data.source.value,
                student_name=data.student_name,
                student_email=data.student_email.lower() if data.student_email else None,
                student_phone=data.student_phone,
                whatsapp=data.whatsapp,
                gender=data.gender,
                date_of_birth=data.date_of_birth,
                registration_number=data.registration_number,
                course=data.course,
                emergency_contact=data.emergency_contact,
                preferred_check_in=data.preferred_check_in,
                stay_duration=data.stay_duration,
                notes=data.notes,
                currency=data.currency or settings.default_currency,
                amount_due=amount_due,
                amount_paid=Decimal("0.00"),
                payment_status=BookingPaymentStatus.PENDING.value,
                status=BookingStatus.PENDING.value,
                payment_phone=data.initial_payment.payment_phone if data.initial_payment else None,
                created_by_id=user_id,
            )
            self.db.add(booking)
            await self.db.flush()

            await self.audit.log(
                action=AuditAction.CREATE_BOOKING,
                entity_type="Booking",
                entity_id=booking.id,
                hostel_id=booking.hostel_id,
                user_id=user_id,
                reference=booking.booking_number,
                new_values={
                    "room_id": room.id,
                    "semester_id": semester_id,
                    "amount_due": str(amount_due),
                },
            )

            recorded = None
            if data.initial_payment:
                initial = data.initial_payment
                # Mobile money without a transaction reference still has to be confirmed
                status = PaymentStatus.COMPLETED.value
                if initial.method == PaymentMethod.MOBILE_MONEY and not initial.reference:
                    status = PaymentStatus.PENDING.value
                recorded = await self.ledger.record_payment(
                    BookingTarget(booking.id),
                    initial.amount,
                    method=initial.method.value,
                    status=status,
                    reference=initial.reference,
                    notes="Initial payment",
                    user_id=user_id,
                    commit=False,
                )
                await self._issue_code_if_paid(booking, user_id)
            return booking, recorded

        booking, recorded = await self._run_unit(work, "create_booking")
        await self.db.refresh(booking)

        logger.info(
            "Booking %s created for room %s semester %s, due %s",
            booking.booking_number,
            room.id,
            semester_id,
            amount_due,
        )
        if recorded:
            await self.ledger.after_commit(recorded)
        else:
            self.cache.invalidate_hostel(hostel_id)
        return booking, recorded

    def _resolve_amount_due(
        self, explicit: Decimal | None, room: RoomInfo, hostel: Hostel
    ) -> Decimal:
        if explicit is not None:
            amount = round_money(explicit)
        elif settings.booking_amount_policy == "booking_fee":
            amount = round_money(hostel.booking_fee)
        elif room.price is not None and room.price > 0:
            amount = room.price
        else:
            amount = round_money(hostel.booking_fee)

        if amount <= 0:
            raise ValidationError(
                "Booking amount could not be determined: set a room price or hostel booking fee",
                field="amount_due",
            )
        return amount

    # --- Payments ---

    async def apply_payment(
        self,
        booking_id: int,
        amount: Decimal,
        method: str,
        status: str = PaymentStatus.COMPLETED.value,
        reference: str | None = None,
        notes: str | None = None,
        user_id: int | None = None,
    ) -> RecordedPayment:
        """
        Record money against a booking. Once fully paid the booking gets its
        verification code and moves to booked.
        """

        async def work() -> RecordedPayment:
            recorded = await self.ledger.record_payment(
                BookingTarget(booking_id),
                amount,
                method=method,
                status=status,
                reference=reference,
                notes=notes,
                user_id=user_id,
                commit=False,
            )
            await self._issue_code_if_paid(recorded.booking, user_id)
            return recorded

        recorded = await self._run_unit(work, "apply_payment")
        await self.db.refresh(recorded.booking)
        await self.ledger.after_commit(recorded)
        return recorded

    async def confirm_payment(
        self, booking_id: int, payment_id: int, user_id: int | None = None
    ) -> RecordedPayment:
        await self._ensure_payment_of_booking(booking_id, payment_id)

        async def work() -> RecordedPayment:
            recorded = await self.ledger.confirm_pending(payment_id, user_id=user_id, commit=False)
            await self._issue_code_if_paid(recorded.booking, user_id)
            return recorded

        recorded = await self._run_unit(work, "confirm_payment")
        await self.db.refresh(recorded.booking)
        await self.ledger.after_commit(recorded)
        return recorded

    async def fail_payment(
        self, booking_id: int, payment_id: int, user_id: int | None = None
    ) -> RecordedPayment:
        await self._ensure_payment_of_booking(booking_id, payment_id)

        async def work() -> RecordedPayment:
            return await self.ledger.fail_pending(payment_id, user_id=user_id, commit=False)

        recorded = await self._run_unit(work, "fail_payment")
        await self.db.refresh(recorded.booking)
        await self.ledger.after_commit(recorded)
        return recorded

    async def _ensure_payment_of_booking(self, booking_id: int, payment_id: int) -> None:
        result = await self.db.execute(
            select(BookingPayment.booking_id).where(BookingPayment.id == payment_id)
        )
        owner = result.scalar_one_or_none()
        if owner is None or owner != booking_id:
            raise NotFoundError("Payment", payment_id)

    async def _issue_code_if_paid(self, booking: Booking, user_id: int | None) -> None:
        """Issue the verification code once, when nothing is outstanding any more."""
        if booking.verification_code or booking.outstanding > 0:
            return

        code = None
        for _ in range(settings.verification_code_attempts):
            candidate = generate_verification_code()
            result = await self.db.execute(
                select(Booking.id).where(Booking.verification_code == candidate)
            )
            if result.scalar_one_or_none() is None:
                code = candidate
                break
        if code is None:
            raise DependencyFailure(
                "Could not allocate a unique verification code", dependency="verification_code"
            )

        booking.verification_code = code
        booking.verification_issued_at = datetime.now(timezone.utc)
        if booking.status == BookingStatus.PENDING.value:
            booking.status = BookingStatus.BOOKED.value
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.ISSUE_VERIFICATION_CODE,
            entity_type="Booking",
            entity_id=booking.id,
            hostel_id=booking.hostel_id,
            user_id=user_id,
            reference=booking.booking_number,
            new_values={"status": booking.status},
        )
        logger.info("Booking %s fully paid, verification code issued", booking.booking_number)

    # --- Check-in / cancel ---

    async def check_in(self, booking_id: int, user_id: int | None = None) -> Booking:
        """
        Convert a fully paid booking into a resident.

        Idempotent: a booking that is already checked in is returned as is.
        Registration failure rolls everything back and raises DependencyFailure.
        """
        booking = await self.get_booking(booking_id)
        if booking.status == BookingStatus.CHECKED_IN.value:
            return booking

        async def work() -> Booking | None:
            target = await self.get_booking(booking_id)
            if target.status == BookingStatus.CANCELLED.value:
                raise StatePreconditionError("Cancelled bookings cannot be checked in", state=target.status)
            if target.outstanding > 0:
                raise StatePreconditionError(
                    f"Booking has an outstanding balance of {target.outstanding}",
                    state=target.payment_status,
                )
            if target.room_id is None:
                raise StatePreconditionError("Booking has no room assigned", state=target.status)
            if not target.student_email or not target.student_name:
                raise ValidationError("Booking is missing the student's name or email", field="student_email")

            semester_id = target.semester_id
            if semester_id is None:
                current = await self.semesters.get_current(target.hostel_id)
                if not current:
                    raise StatePreconditionError("Booking has no semester and the hostel has no current semester")
                semester_id = current.id

            old_status = target.status

            # Compare-and-set: the loser of a concurrent check-in sees zero rows
            claimed = await self.db.execute(
                update(Booking)
                .where(Booking.id == target.id, Booking.status != BookingStatus.CHECKED_IN.value)
                .values(status=BookingStatus.CHECKED_IN.value)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount == 0:
                return None

            paid = await self._completed_total(target.id)
            resident_id = await self.registration.register_resident(
                ResidentProfile(
                    name=target.student_name,
                    email=target.student_email,
                    phone=target.student_phone,
                    registration_number=target.registration_number,
                    course=target.course,
                    gender=target.gender,
                    emergency_contact=target.emergency_contact,
                ),
                hostel_id=target.hostel_id,
                room_id=target.room_id,
                semester_id=semester_id,
                initial_paid_amount=paid,
                amount_due=target.amount_due,
                source_booking_id=target.id,
                payment_method=await self._single_method(target.id),
                currency=target.currency,
                user_id=user_id,
            )

            await self.db.refresh(target)
            target.resident_id = resident_id
            target.semester_id = semester_id
            target.checked_in_at = datetime.now(timezone.utc)
            await self.db.flush()

            await self.audit.log(
                action=AuditAction.CHECK_IN,
                entity_type="Booking",
                entity_id=target.id,
                hostel_id=target.hostel_id,
                user_id=user_id,
                reference=target.booking_number,
                old_values={"status": old_status},
                new_values={"status": BookingStatus.CHECKED_IN.value, "resident_id": resident_id},
            )
            return target

        checked_in = await self._run_unit(work, "check_in")
        booking = await self.get_booking(booking_id)
        await self.db.refresh(booking)
        if checked_in is None:
            return booking

        logger.info("Booking %s checked in as resident %s", booking.booking_number, booking.resident_id)
        self.cache.invalidate_hostel(booking.hostel_id)
        room = await self.hostels.get_room(booking.room_id)
        await notify_safely(
            self.notifier.send_check_in_confirmation(
                booking.student_email, booking.student_name, room.room_number
            )
        )
        return booking

    async def cancel(self, booking_id: int, reason: str | None = None, user_id: int | None = None) -> Booking:
        """Cancel a pending or booked booking. Recorded payments stay in place."""

        async def work() -> Booking:
            booking = await self.get_booking(booking_id)
            if booking.is_terminal:
                raise StatePreconditionError(
                    f"Booking cannot be cancelled in status {booking.status}", state=booking.status
                )
            old_status = booking.status
            result = await self.db.execute(
                update(Booking)
                .where(
                    Booking.id == booking.id,
                    Booking.status.in_([BookingStatus.PENDING.value, BookingStatus.BOOKED.value]),
                )
                .values(
                    status=BookingStatus.CANCELLED.value,
                    cancelled_at=datetime.now(timezone.utc),
                    cancellation_reason=reason,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await self.db.refresh(booking)
                raise StatePreconditionError(
                    f"Booking cannot be cancelled in status {booking.status}", state=booking.status
                )

            await self.audit.log(
                action=AuditAction.CANCEL_BOOKING,
                entity_type="Booking",
                entity_id=booking.id,
                hostel_id=booking.hostel_id,
                user_id=user_id,
                reference=booking.booking_number,
                old_values={"status": old_status},
                new_values={"status": BookingStatus.CANCELLED.value},
                comment=reason,
            )
            return booking

        booking = await self._run_unit(work, "cancel_booking")
        await self.db.refresh(booking)
        self.cache.invalidate_hostel(booking.hostel_id)
        logger.info("Booking %s cancelled", booking.booking_number)
        return booking

    # --- Helpers ---

    async def _completed_total(self, booking_id: int) -> Decimal:
        result = await self.db.execute(
            select(func.sum(BookingPayment.amount)).where(
                BookingPayment.booking_id == booking_id,
                BookingPayment.status == PaymentStatus.COMPLETED.value,
            )
        )
        return round_money(result.scalar_one_or_none())

    async def _single_method(self, booking_id: int) -> str | None:
        """The payment method when all completed payments used one; otherwise None."""
        result = await self.db.execute(
            select(BookingPayment.method)
            .where(
                BookingPayment.booking_id == booking_id,
                BookingPayment.status == PaymentStatus.COMPLETED.value,
            )
            .distinct()
        )
        methods = list(result.scalars().all())
        return methods[0] if len(methods) == 1 else None

    async def _run_unit(self, work, operation: str):
        """
        Run and commit a write unit with retries.

        A unique-constraint clash at commit (verification code, double
        settlement) restarts the unit; the re-run sees the winner's state.
        """

        async def unit():
            outcome = await work()
            await self.db.commit()
            return outcome

        attempts = settings.verification_code_attempts
        for attempt in range(1, attempts + 1):
            try:
                return await run_with_retry(self.db, unit, settings.payment_retry_attempts, operation)
            except IntegrityError:
                if attempt == attempts:
                    raise StatePreconditionError(f"Could not complete {operation}, please retry")
                logger.warning("Constraint conflict during %s, retrying (%s/%s)", operation, attempt, attempts)
