from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit import AuditAction, AuditService
from src.core.exceptions import NotFoundError, ValidationError
from src.core.schema import SchemaAdapter, room_view, schema_adapter
from src.modules.hostels.models import Hostel, Semester
from src.shared.utils.money import round_money


@dataclass(frozen=True)
class RoomInfo:
    """Room as read through the schema view (price column differs by deployment)."""

    id: int
    hostel_id: int
    room_number: str
    capacity: int
    status: str | None
    current_occupants: int | None
    price: Decimal | None


class HostelService:
    """Lookups shared by bookings, capacity and reconciliation."""

    def __init__(self, db: AsyncSession, adapter: SchemaAdapter | None = None):
        self.db = db
        self.adapter = adapter or schema_adapter

    async def get_hostel(self, hostel_id: int) -> Hostel:
        hostel = await self.db.get(Hostel, hostel_id)
        if not hostel:
            raise NotFoundError("Hostel", hostel_id)
        return hostel

    async def list_hostels(self) -> list[Hostel]:
        result = await self.db.execute(select(Hostel).order_by(Hostel.id))
        return list(result.scalars().all())

    async def get_room(self, room_id: int, hostel_id: int | None = None) -> RoomInfo:
        """Get room; when hostel_id is given the room must belong to it."""
        schema = await self.adapter.resolve(self.db)
        rooms = room_view(schema)
        columns = [
            rooms.id,
            rooms.hostel_id,
            rooms.room_number,
            rooms.capacity,
            rooms.status,
            rooms.current_occupants,
        ]
        if rooms.price is not None:
            columns.append(rooms.price)
        result = await self.db.execute(select(*columns).where(rooms.id == room_id))
        row = result.mappings().first()
        if not row:
            raise NotFoundError("Room", room_id)
        price = row[rooms.price.name] if rooms.price is not None else None
        room = RoomInfo(
            id=row["id"],
            hostel_id=row["hostel_id"],
            room_number=row["room_number"],
            capacity=row["capacity"],
            status=row["status"],
            current_occupants=row["current_occupants"],
            price=round_money(price) if price is not None else None,
        )
        if hostel_id is not None and room.hostel_id != hostel_id:
            raise ValidationError("Room does not belong to this hostel", field="room_id")
        return room


class SemesterService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    async def get_semester(self, semester_id: int, hostel_id: int | None = None) -> Semester:
        semester = await self.db.get(Semester, semester_id)
        if not semester:
            raise NotFoundError("Semester", semester_id)
        if hostel_id is not None and semester.hostel_id != hostel_id:
            raise ValidationError("Semester does not belong to this hostel", field="semester_id")
        return semester

    async def get_current(self, hostel_id: int) -> Semester | None:
        result = await self.db.execute(
            select(Semester)
            .where(Semester.hostel_id == hostel_id, Semester.is_current.is_(True))
            .order_by(Semester.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_semesters(self, hostel_id: int) -> list[Semester]:
        result = await self.db.execute(
            select(Semester)
            .where(Semester.hostel_id == hostel_id)
            .order_by(Semester.start_date.desc().nulls_last(), Semester.id.desc())
        )
        return list(result.scalars().all())

    async def set_current(self, semester_id: int, user_id: int | None = None) -> Semester:
        """
        Make a semester current.

        All other semesters of the hostel are cleared in the same transaction.
        """
        semester = await self.get_semester(semester_id)
        previous = await self.get_current(semester.hostel_id)

        await self.db.execute(
            update(Semester)
            .where(Semester.hostel_id == semester.hostel_id, Semester.id != semester.id)
            .values(is_current=False)
            .execution_options(synchronize_session=False)
        )
        semester.is_current = True
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.SET_CURRENT_SEMESTER,
            entity_type="Semester",
            entity_id=semester.id,
            hostel_id=semester.hostel_id,
            user_id=user_id,
            reference=semester.name,
            old_values={"current_semester_id": previous.id if previous else None},
            new_values={"current_semester_id": semester.id},
        )

        await self.db.commit()
        await self.db.refresh(semester)
        return semester
