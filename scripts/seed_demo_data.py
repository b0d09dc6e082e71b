#!/usr/bin/env python3
"""
Seed the database with demo hostels, rooms, semesters, staff and bookings.

Bookings are driven through the real services, so the demo data goes through
the capacity gate, the payment ledger and check-in registration exactly like
production traffic. Access tokens for the demo staff are printed at the end.

Usage:
    uv run python scripts/seed_demo_data.py --dry-run   # print the plan only
    uv run python scripts/seed_demo_data.py --confirm  # write to the database

Requires: migrations applied (alembic upgrade head), database reachable.
"""

import asyncio
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.jwt import create_access_token
from src.core.auth.models import User, UserRole
from src.core.config import settings
from src.core.database.session import async_session
from src.core.logging import setup_logging
from src.modules.bookings.schemas import BookingCreate, InitialPayment
from src.modules.bookings.service import BookingService
from src.modules.hostels.models import Hostel, Room, Semester
from src.modules.ledger.models import PaymentMethod

HOSTELS = [
    # name, address, booking fee, rooms (number, capacity, price per semester)
    (
        "Nkrumah Hall Annex",
        "Plot 12, Wandegeya, Kampala",
        Decimal("50000.00"),
        [("A101", 2, Decimal("850000.00")), ("A102", 2, Decimal("850000.00")), ("A201", 1, Decimal("1200000.00"))],
    ),
    (
        "Kikoni Heights",
        "Kikoni Road, Kampala",
        Decimal("30000.00"),
        [("K1", 4, Decimal("600000.00")), ("K2", 3, Decimal("650000.00"))],
    ),
]

SEMESTERS = [
    # name, academic year, start, end, current
    ("Semester I", "2026/2027", date(2026, 8, 10), date(2026, 12, 18), True),
    ("Semester II", "2025/2026", date(2026, 1, 19), date(2026, 5, 29), False),
]

# name, email, phone, course, paid share of the room price, check in
STUDENTS = [
    ("Aisha Nakato", "aisha.nakato@example.com", "+256772100101", "BSc Computer Science", Decimal("1"), True),
    ("Brian Okello", "brian.okello@example.com", "+256772100102", "BA Economics", Decimal("0.5"), False),
    ("Catherine Auma", "catherine.auma@example.com", "+256772100103", "BSc Nursing", Decimal("1"), False),
    ("Daniel Ssemakula", "daniel.ssemakula@example.com", "+256772100104", "BCom Accounting", Decimal("0"), False),
]


async def seed_hostels(session: AsyncSession) -> list[tuple[Hostel, list[Room], Semester]]:
    """Create hostels with rooms and semesters. Returns hostel, rooms, current semester."""
    result = await session.execute(select(Hostel).limit(1))
    if result.scalar_one_or_none():
        print("  Hostels already exist, skip.")
        return []

    seeded = []
    for name, address, fee, rooms_data in HOSTELS:
        hostel = Hostel(name=name, address=address, booking_fee=fee)
        session.add(hostel)
        await session.flush()

        rooms = [
            Room(hostel_id=hostel.id, room_number=number, capacity=capacity, price_per_semester=price)
            for number, capacity, price in rooms_data
        ]
        session.add_all(rooms)

        current = None
        for sem_name, year, start, end, is_current in SEMESTERS:
            semester = Semester(
                hostel_id=hostel.id,
                name=sem_name,
                academic_year=year,
                start_date=start,
                end_date=end,
                is_current=is_current,
            )
            session.add(semester)
            if is_current:
                current = semester
        await session.flush()
        seeded.append((hostel, rooms, current))
        print(f"  Hostel {hostel.name}: {len(rooms)} rooms, {len(SEMESTERS)} semesters")
    return seeded


async def seed_users(session: AsyncSession, hostel_ids: list[int]) -> dict[str, User]:
    """Staff accounts. Returns users by role."""
    result = await session.execute(select(User).where(User.email == "admin@hostel.demo"))
    if result.scalar_one_or_none():
        print("  Users already exist, skip.")
        users = (await session.execute(select(User))).scalars().all()
        return {u.role: u for u in users}

    first_hostel = hostel_ids[0] if hostel_ids else None
    users = [
        User(email="admin@hostel.demo", full_name="System Admin", role=UserRole.SUPER_ADMIN.value),
        User(
            email="manager@hostel.demo",
            full_name="Hostel Manager",
            role=UserRole.HOSTEL_ADMIN.value,
            hostel_id=first_hostel,
        ),
        User(
            email="custodian@hostel.demo",
            full_name="Front Desk Custodian",
            role=UserRole.CUSTODIAN.value,
            hostel_id=first_hostel,
        ),
    ]
    session.add_all(users)
    await session.flush()
    print(f"  Users: {', '.join(u.email for u in users)}")
    return {u.role: u for u in users}


async def seed_bookings(session: AsyncSession, hostel: Hostel, rooms: list[Room], user_id: int) -> None:
    service = BookingService(session)
    for index, (name, email, phone, course, share, check_in) in enumerate(STUDENTS):
        room = rooms[index % len(rooms)]
        due = room.price_per_semester
        paid = (due * share).quantize(Decimal("0.01"))
        data = BookingCreate(
            room_id=room.id,
            student_name=name,
            student_email=email,
            student_phone=phone,
            course=course,
            initial_payment=(
                InitialPayment(amount=paid, method=PaymentMethod.CASH) if paid > 0 else None
            ),
        )
        booking, _ = await service.create_booking(data, hostel.id, user_id=user_id)
        if check_in:
            booking = await service.check_in(booking.id, user_id=user_id)
        print(f"  Booking {booking.booking_number}: {name} in {room.room_number}, {booking.status}")


async def run_seed(session: AsyncSession) -> None:
    hostels = await seed_hostels(session)
    users = await seed_users(session, [h.id for h, _, _ in hostels])
    await session.commit()

    admin = users.get(UserRole.SUPER_ADMIN.value)
    if hostels and admin:
        hostel, rooms, _ = hostels[0]
        await seed_bookings(session, hostel, rooms, admin.id)

    print("\nAccess tokens:")
    for role, user in users.items():
        print(f"  {role:<12} {user.email:<24} {create_access_token(user.id, role)}")


def print_plan() -> None:
    for name, _, _, rooms in HOSTELS:
        print(f"  Hostel {name}: {len(rooms)} rooms, {len(SEMESTERS)} semesters")
    print("  Users: admin@hostel.demo, manager@hostel.demo, custodian@hostel.demo")
    print(f"  Bookings: {len(STUDENTS)} in the first hostel")


async def main() -> None:
    import argparse
    parser = argparse.ArgumentParser(description="Seed database with hostel demo data")
    parser.add_argument("--dry-run", action="store_true", help="Print the plan, write nothing")
    parser.add_argument("--confirm", action="store_true", help="Write to the database")
    args = parser.parse_args()
    if not args.dry_run and not args.confirm:
        print("Use --dry-run or --confirm")
        sys.exit(1)

    setup_logging()
    print("Database:", settings.database_url.split("@")[-1] if "@" in settings.database_url else "?")
    print("Mode:", "DRY-RUN" if args.dry_run else "CONFIRM")
    if args.dry_run:
        print_plan()
        return

    async with async_session() as session:
        await run_seed(session)
    print("Done.")


if __name__ == "__main__":
    asyncio.run(main())
