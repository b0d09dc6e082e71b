import logging

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import CapacityExceededError, NotFoundError
from src.core.schema import LogicalSchema, SchemaAdapter, assignment_view, room_view, schema_adapter
from src.modules.bookings.models import SEAT_HOLDING_STATUSES, Booking, BookingStatus
from src.modules.capacity.schemas import RoomCapacity
from src.modules.hostels.service import HostelService, RoomInfo
from src.modules.residents.models import AssignmentStatus

logger = logging.getLogger(__name__)


class CapacityService:
    """
    Seat accounting for a room in a semester.

    Occupancy is always derived: active assignments plus bookings that hold
    a seat. A checked-in booking only counts while its resident has no active
    assignment in the room, so a student is never counted twice.
    """

    def __init__(self, db: AsyncSession, adapter: SchemaAdapter | None = None):
        self.db = db
        self.adapter = adapter or schema_adapter

    async def check_capacity(self, room_id: int, semester_id: int | None) -> RoomCapacity:
        room = await HostelService(self.db, self.adapter).get_room(room_id)
        schema = await self.adapter.resolve(self.db)
        return await self._compute(schema, room, semester_id)

    async def ensure_available(self, room_id: int, semester_id: int | None) -> RoomCapacity:
        """
        Admission check, to be called inside the admitting transaction.

        Write-locks the room row first so concurrent admissions to the same
        room are serialized, then re-counts.
        """
        schema = await self.adapter.resolve(self.db)
        rooms = room_view(schema)
        # No-op write: takes the row lock without depending on optional columns
        result = await self.db.execute(
            update(rooms.table).where(rooms.id == room_id).values({rooms.capacity.name: rooms.capacity})
        )
        if result.rowcount == 0:
            raise NotFoundError("Room", room_id)

        capacity = await self.check_capacity(room_id, semester_id)
        if capacity.available <= 0:
            logger.info(
                "Capacity rejected for room %s semester %s: %s/%s occupied",
                room_id,
                semester_id,
                capacity.occupied,
                capacity.capacity,
            )
            raise CapacityExceededError(room_id, capacity.capacity, capacity.occupied)
        return capacity

    async def _compute(self, schema: LogicalSchema, room: RoomInfo, semester_id: int | None) -> RoomCapacity:
        assigned = 0
        active_match = None

        if schema.has_table("resident_assignments"):
            av = assignment_view(schema)
            conditions = [av.room_id == room.id, av.status == AssignmentStatus.ACTIVE.value]
            if av.semester_id is not None and semester_id is not None:
                conditions.append(av.semester_id == semester_id)
            result = await self.db.execute(select(func.count()).select_from(av.table).where(*conditions))
            assigned = result.scalar_one()

            # Active assignment standing for a checked-in booking's resident
            match_conditions = [
                av.resident == Booking.resident_id,
                av.room_id == room.id,
                av.status == AssignmentStatus.ACTIVE.value,
            ]
            if av.semester_id is not None and semester_id is not None:
                match_conditions.append(av.semester_id == semester_id)
            active_match = select(av.id).where(*match_conditions).exists()

        holding = 0
        if schema.has_table("bookings"):
            semester_filter = [Booking.semester_id == semester_id] if semester_id is not None else []

            result = await self.db.execute(
                select(func.count(Booking.id)).where(
                    Booking.room_id == room.id,
                    Booking.status.in_(SEAT_HOLDING_STATUSES),
                    *semester_filter,
                )
            )
            holding = result.scalar_one()

            checked_in_conditions = [
                Booking.room_id == room.id,
                Booking.status == BookingStatus.CHECKED_IN.value,
                *semester_filter,
            ]
            if active_match is not None:
                checked_in_conditions.append(~active_match)
            result = await self.db.execute(select(func.count(Booking.id)).where(*checked_in_conditions))
            holding += result.scalar_one()

        occupied = assigned + holding
        return RoomCapacity(
            room_id=room.id,
            semester_id=semester_id,
            capacity=room.capacity,
            occupied=occupied,
            available=max(room.capacity - occupied, 0),
            active_assignments=assigned,
            holding_bookings=holding,
        )
