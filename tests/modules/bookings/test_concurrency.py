"""
Races between independent sessions on a file-backed database.

The in-memory engine shares one connection, so these tests open their own
engine to get real lock contention.
"""
import asyncio
from collections.abc import AsyncGenerator
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.config import settings
from src.core.database.base import Base
from src.core.database.session import build_engine
from src.core.exceptions import BalanceViolationError, CapacityExceededError
from src.modules.bookings.models import Booking, BookingStatus
from src.modules.bookings.schemas import BookingCreate, InitialPayment
from src.modules.bookings.service import BookingService
from src.modules.hostels.models import Hostel, Room, Semester
from src.modules.ledger.models import BookingPayment, LedgerPayment, PaymentMethod, PaymentStatus
from src.modules.residents.models import Resident


@pytest.fixture
async def sessions(tmp_path, monkeypatch) -> AsyncGenerator[async_sessionmaker, None]:
    monkeypatch.setattr(settings, "payment_retry_attempts", 10)
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'race.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


async def _seed(maker: async_sessionmaker, capacity: int = 2) -> tuple[int, int]:
    async with maker() as db:
        hostel = Hostel(name="Race Hostel")
        db.add(hostel)
        await db.flush()
        room = Room(hostel_id=hostel.id, room_number="R1", capacity=capacity, price_per_semester=Decimal("100.00"))
        semester = Semester(hostel_id=hostel.id, name="Semester I", start_date=date(2026, 8, 10), is_current=True)
        db.add_all([room, semester])
        await db.commit()
        return hostel.id, room.id


def _data(room_id: int, name: str, email: str, initial: str | None = None) -> BookingCreate:
    return BookingCreate(
        room_id=room_id,
        student_name=name,
        student_email=email,
        student_phone="+256772000009",
        initial_payment=InitialPayment(amount=Decimal(initial), method=PaymentMethod.CASH) if initial else None,
    )


async def _create(maker: async_sessionmaker, hostel_id: int, data: BookingCreate) -> int:
    async with maker() as db:
        booking, _ = await BookingService(db).create_booking(data, hostel_id)
        return booking.id


async def test_parallel_payments_never_overshoot(sessions):
    hostel_id, room_id = await _seed(sessions)
    booking_id = await _create(sessions, hostel_id, _data(room_id, "Aisha", "aisha@example.com"))

    async def pay():
        async with sessions() as db:
            return await BookingService(db).apply_payment(booking_id, Decimal("60.00"), PaymentMethod.CASH.value)

    outcomes = await asyncio.gather(pay(), pay(), return_exceptions=True)

    assert sum(1 for o in outcomes if isinstance(o, BalanceViolationError)) == 1
    assert sum(1 for o in outcomes if not isinstance(o, Exception)) == 1

    async with sessions() as db:
        booking = await db.get(Booking, booking_id)
        assert booking.amount_paid == Decimal("60.00")
        result = await db.execute(
            select(func.count(BookingPayment.id)).where(BookingPayment.booking_id == booking_id)
        )
        assert result.scalar_one() == 1


async def test_last_seat_goes_to_one_booking(sessions):
    hostel_id, room_id = await _seed(sessions, capacity=1)

    outcomes = await asyncio.gather(
        _create(sessions, hostel_id, _data(room_id, "Aisha", "aisha@example.com")),
        _create(sessions, hostel_id, _data(room_id, "Brian", "brian@example.com")),
        return_exceptions=True,
    )

    assert sum(1 for o in outcomes if isinstance(o, CapacityExceededError)) == 1
    assert sum(1 for o in outcomes if isinstance(o, int)) == 1

    async with sessions() as db:
        result = await db.execute(select(func.count(Booking.id)).where(Booking.room_id == room_id))
        assert result.scalar_one() == 1


async def test_concurrent_check_in_registers_once(sessions):
    hostel_id, room_id = await _seed(sessions)
    booking_id = await _create(sessions, hostel_id, _data(room_id, "Aisha", "aisha@example.com", initial="100.00"))

    async def check_in():
        async with sessions() as db:
            booking = await BookingService(db).check_in(booking_id)
            return booking.status, booking.resident_id

    outcomes = await asyncio.gather(check_in(), check_in())

    assert [status for status, _ in outcomes] == [BookingStatus.CHECKED_IN, BookingStatus.CHECKED_IN]
    assert outcomes[0][1] == outcomes[1][1]

    async with sessions() as db:
        residents = await db.execute(select(func.count(Resident.id)))
        assert residents.scalar_one() == 1
        mirrors = await db.execute(
            select(func.count(LedgerPayment.id)).where(LedgerPayment.source_booking_id == booking_id)
        )
        assert mirrors.scalar_one() == 1


async def test_pending_settled_once(sessions):
    hostel_id, room_id = await _seed(sessions)
    async with sessions() as db:
        booking, recorded = await BookingService(db).create_booking(
            BookingCreate(
                room_id=room_id,
                student_name="Aisha",
                student_email="aisha@example.com",
                student_phone="+256772000009",
                initial_payment=InitialPayment(amount=Decimal("100.00"), method=PaymentMethod.MOBILE_MONEY),
            ),
            hostel_id,
        )
        booking_id, pending_id = booking.id, recorded.payment.id

    async def confirm():
        async with sessions() as db:
            return await BookingService(db).confirm_payment(booking_id, pending_id)

    outcomes = await asyncio.gather(confirm(), confirm(), return_exceptions=True)

    assert sum(1 for o in outcomes if not isinstance(o, Exception)) == 1

    async with sessions() as db:
        booking = await db.get(Booking, booking_id)
        assert booking.amount_paid == Decimal("100.00")
        result = await db.execute(
            select(func.count(BookingPayment.id)).where(
                BookingPayment.booking_id == booking_id,
                BookingPayment.status == PaymentStatus.COMPLETED.value,
            )
        )
        assert result.scalar_one() == 1
