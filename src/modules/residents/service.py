import logging
from decimal import Decimal

from sqlalchemy import case, func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit import AuditAction, AuditService
from src.core.config import settings
from src.core.exceptions import DependencyFailure
from src.core.schema import (
    LogicalSchema,
    SchemaAdapter,
    assignment_view,
    enrollment_view,
    ledger_view,
    room_view,
    schema_adapter,
)
from src.modules.hostels.models import RoomStatus
from src.modules.residents.models import AssignmentStatus, EnrollmentStatus, Resident
from src.modules.residents.schemas import ResidentProfile
from src.shared.utils.money import ZERO, outstanding_of, round_money

logger = logging.getLogger(__name__)

REGISTRATION = "resident_registration"


class ResidentRegistrationService:
    """
    Turns a checked-in booking into a resident account.

    Works inside the caller's transaction and never commits: the booking
    check-in and the registration succeed or fail together.
    """

    def __init__(self, db: AsyncSession, adapter: SchemaAdapter | None = None):
        self.db = db
        self.adapter = adapter or schema_adapter
        self.audit = AuditService(db)

    async def register_resident(
        self,
        profile: ResidentProfile,
        hostel_id: int,
        room_id: int,
        semester_id: int | None,
        initial_paid_amount: Decimal = ZERO,
        source_booking_id: int | None = None,
        payment_method: str | None = None,
        currency: str | None = None,
        user_id: int | None = None,
        amount_due: Decimal | None = None,
    ) -> int:
        """
        Create or link the resident, enrol them, assign the room and mirror
        the money already paid into the ledger. Returns the resident id.

        The enrollment is charged amount_due when the caller knows it (the
        booking being checked in). Direct registrations fall back to the
        room price.

        Raises:
            DependencyFailure: on any failure; the caller must roll back.
        """
        schema = await self.adapter.resolve(self.db)
        try:
            return await self._register(
                schema,
                profile,
                hostel_id,
                room_id,
                semester_id,
                round_money(initial_paid_amount),
                source_booking_id,
                payment_method,
                currency or settings.default_currency,
                user_id,
                None if amount_due is None else round_money(amount_due),
            )
        except SQLAlchemyError as e:
            logger.exception("Resident registration failed for %s", profile.email)
            raise DependencyFailure(
                f"Resident registration failed: {e.__class__.__name__}",
                dependency=REGISTRATION,
            ) from e

    async def _register(
        self,
        schema: LogicalSchema,
        profile: ResidentProfile,
        hostel_id: int,
        room_id: int,
        semester_id: int | None,
        initial_paid: Decimal,
        source_booking_id: int | None,
        payment_method: str | None,
        currency: str,
        user_id: int | None,
        amount_due: Decimal | None,
    ) -> int:
        schema.require("residents")
        schema.require("resident_assignments")

        resident = await self._get_or_create_resident(profile, hostel_id)
        total = amount_due if amount_due is not None else await self._room_price(schema, room_id)

        if semester_id is not None and schema.has_table("semester_enrollments"):
            await self._upsert_enrollment(schema, resident.id, semester_id, room_id, total, initial_paid)

        await self._ensure_assignment(schema, resident.id, room_id, semester_id, user_id)

        if initial_paid > 0:
            await self._mirror_payment(
                schema,
                resident.id,
                hostel_id,
                semester_id,
                initial_paid,
                source_booking_id,
                payment_method,
                currency,
                user_id,
            )

        await self.update_room_occupancy(room_id, schema)

        await self.audit.log(
            action=AuditAction.REGISTER_RESIDENT,
            entity_type="Resident",
            entity_id=resident.id,
            hostel_id=resident.hostel_id,
            user_id=user_id,
            reference=resident.email,
            new_values={
                "room_id": room_id,
                "semester_id": semester_id,
                "initial_paid": str(initial_paid),
                "amount_due": None if amount_due is None else str(amount_due),
                "source_booking_id": source_booking_id,
            },
        )
        logger.info("Registered resident %s in room %s", resident.id, room_id)
        return resident.id

    async def _get_or_create_resident(self, profile: ResidentProfile, hostel_id: int) -> Resident:
        email = profile.email.lower()
        result = await self.db.execute(select(Resident).where(func.lower(Resident.email) == email))
        resident = result.scalar_one_or_none()

        if resident is not None:
            if resident.hostel_id != hostel_id:
                raise DependencyFailure(
                    "Email is already registered under another hostel",
                    dependency=REGISTRATION,
                )
            # Fill gaps only, never overwrite what the resident already has
            for field in ("phone", "registration_number", "course", "gender", "emergency_contact"):
                if getattr(resident, field) is None and getattr(profile, field) is not None:
                    setattr(resident, field, getattr(profile, field))
            await self.db.flush()
            return resident

        resident = Resident(
            hostel_id=hostel_id,
            name=profile.name,
            email=email,
            phone=profile.phone,
            registration_number=profile.registration_number,
            course=profile.course,
            gender=profile.gender,
            emergency_contact=profile.emergency_contact,
        )
        self.db.add(resident)
        await self.db.flush()
        return resident

    async def _room_price(self, schema: LogicalSchema, room_id: int) -> Decimal:
        rooms = room_view(schema)
        if rooms.price is None:
            return ZERO
        result = await self.db.execute(select(rooms.price).where(rooms.id == room_id))
        return round_money(result.scalar_one_or_none())

    async def _upsert_enrollment(
        self,
        schema: LogicalSchema,
        resident_id: int,
        semester_id: int,
        room_id: int,
        total: Decimal,
        initial_paid: Decimal,
    ) -> None:
        ev = enrollment_view(schema)
        result = await self.db.execute(
            select(ev.id, ev.amount_paid).where(ev.resident == resident_id, ev.semester_id == semester_id)
        )
        existing = result.first()

        # Money already received is never more than what is charged
        paid = initial_paid if existing is None else max(round_money(existing.amount_paid), initial_paid)
        total = max(total, paid)

        values = {ev.total_amount.name: total}
        if ev.room_id is not None:
            values[ev.room_id.name] = room_id

        if existing is None:
            values.update(
                {
                    ev.resident.name: resident_id,
                    ev.semester_id.name: semester_id,
                    ev.amount_paid.name: paid,
                    ev.balance.name: outstanding_of(total, paid),
                    ev.enrollment_status.name: EnrollmentStatus.ACTIVE.value,
                }
            )
            await self.db.execute(insert(ev.table).values(values))
            return

        # Re-registration keeps money already recorded on the enrollment
        values.update({ev.amount_paid.name: paid, ev.balance.name: outstanding_of(total, paid)})
        await self.db.execute(update(ev.table).where(ev.id == existing.id).values(values))

    async def _ensure_assignment(
        self,
        schema: LogicalSchema,
        resident_id: int,
        room_id: int,
        semester_id: int | None,
        user_id: int | None,
    ) -> None:
        av = assignment_view(schema)
        conditions = [av.resident == resident_id, av.status == AssignmentStatus.ACTIVE.value]
        if av.semester_id is not None and semester_id is not None:
            conditions.append(av.semester_id == semester_id)

        result = await self.db.execute(select(av.id, av.room_id).where(*conditions))
        active = result.all()

        if any(row.room_id == room_id for row in active):
            return

        # Moving rooms: close the old assignment so only one stays active
        stale_ids = [row.id for row in active]
        if stale_ids:
            await self.db.execute(
                update(av.table)
                .where(av.id.in_(stale_ids))
                .values({av.status.name: AssignmentStatus.COMPLETED.value})
            )

        values = {
            av.resident.name: resident_id,
            av.room_id.name: room_id,
            av.status.name: AssignmentStatus.ACTIVE.value,
            av.assigned_by.name: user_id,
            av.assignment_date.name: func.now(),
        }
        if av.semester_id is not None:
            values[av.semester_id.name] = semester_id
        await self.db.execute(insert(av.table).values(values))

    async def _mirror_payment(
        self,
        schema: LogicalSchema,
        resident_id: int,
        hostel_id: int,
        semester_id: int | None,
        amount: Decimal,
        source_booking_id: int | None,
        payment_method: str | None,
        currency: str,
        user_id: int | None,
    ) -> None:
        lv = ledger_view(schema)

        if source_booking_id is not None and lv.source_booking_id is not None:
            result = await self.db.execute(
                select(func.count()).select_from(lv.table).where(lv.source_booking_id == source_booking_id)
            )
            if result.scalar_one() > 0:
                return

        values = lv.row_values(
            resident_id=resident_id,
            amount=amount,
            hostel_id=hostel_id,
            semester_id=semester_id,
            method=payment_method,
            currency=currency,
            purpose="Booking payment" if source_booking_id is None else f"Booking payment #{source_booking_id}",
            source_booking_id=source_booking_id,
            recorded_by=user_id,
        )
        await self.db.execute(insert(lv.table).values(values))

    async def update_room_occupancy(self, room_id: int, schema: LogicalSchema | None = None) -> int:
        """Refresh the room's cached occupant count and availability status."""
        schema = schema or await self.adapter.resolve(self.db)
        if not schema.has_table("resident_assignments"):
            return 0

        av = assignment_view(schema)
        result = await self.db.execute(
            select(func.count())
            .select_from(av.table)
            .where(av.room_id == room_id, av.status == AssignmentStatus.ACTIVE.value)
        )
        occupants = result.scalar_one()

        rooms = room_view(schema)
        await self.db.execute(
            update(rooms.table)
            .where(rooms.id == room_id)
            .values(
                {
                    rooms.current_occupants.name: occupants,
                    rooms.status.name: case(
                        (
                            rooms.status.in_([RoomStatus.MAINTENANCE.value, RoomStatus.RESERVED.value]),
                            rooms.status,
                        ),
                        (rooms.capacity <= occupants, RoomStatus.OCCUPIED.value),
                        else_=RoomStatus.AVAILABLE.value,
                    ),
                }
            )
        )
        return occupants
