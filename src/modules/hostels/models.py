from datetime import date
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import Boolean, Date, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.database.base import BaseModel, HostelScopedMixin, MoneyType


class RoomStatus(StrEnum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"
    RESERVED = "reserved"


class Hostel(BaseModel):
    __tablename__ = "hostels"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    # Used as booking amount when the room has no price (or by policy)
    booking_fee: Mapped[Decimal | None] = mapped_column(MoneyType, nullable=True)

    rooms: Mapped[list["Room"]] = relationship("Room", back_populates="hostel")


class Room(HostelScopedMixin, BaseModel):
    """
    Lettable room.

    current_occupants is a display cache refreshed on check-in; capacity
    checks always derive occupancy from assignments and bookings.
    """

    __tablename__ = "rooms"

    room_number: Mapped[str] = mapped_column(String(50), nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    price_per_semester: Mapped[Decimal | None] = mapped_column(MoneyType, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RoomStatus.AVAILABLE.value
    )
    current_occupants: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    hostel: Mapped["Hostel"] = relationship("Hostel", back_populates="rooms")

    __table_args__ = (UniqueConstraint("hostel_id", "room_number", name="uq_room_hostel_number"),)


class Semester(HostelScopedMixin, BaseModel):
    """Academic period of a hostel. At most one per hostel is current."""

    __tablename__ = "semesters"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    academic_year: Mapped[str | None] = mapped_column(String(20), nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
