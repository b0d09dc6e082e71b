from collections.abc import AsyncGenerator
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.core.auth.jwt import create_access_token
from src.core.auth.models import User, UserRole
from src.core.cache import summary_cache
from src.core.database import get_db
from src.core.database.base import Base
from src.core.schema import schema_adapter
from src.main import app
from src.modules.bookings.schemas import BookingCreate, InitialPayment
from src.modules.hostels.models import Hostel, Room, Semester
from src.modules.ledger.models import PaymentMethod

# Test database URL (in-memory SQLite for speed, or use test PostgreSQL)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(TEST_DATABASE_URL, echo=False)
test_async_session = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test and drop after."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def reset_process_state():
    """The schema probe and the summary cache are per-process singletons."""
    summary_cache.clear()
    schema_adapter.invalidate()
    yield
    summary_cache.clear()
    schema_adapter.invalidate()


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get test database session."""
    async with test_async_session() as session:
        yield session


@pytest.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Get test HTTP client with overridden database dependency."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()


@dataclass
class HostelSetup:
    """Ids only: ORM instances expire whenever a service rolls back."""

    hostel_id: int
    room_id: int
    semester_id: int
    admin_id: int
    custodian_id: int
    room_price: Decimal


class Factory:
    """Builds hostel data directly through the session."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._emails = 0

    async def hostel(self, name: str = "Test Hostel", booking_fee: Decimal | None = None) -> int:
        hostel = Hostel(name=name, address="Kampala", booking_fee=booking_fee)
        self.db.add(hostel)
        await self.db.commit()
        return hostel.id

    async def room(
        self,
        hostel_id: int,
        room_number: str = "A1",
        capacity: int = 2,
        price: Decimal | None = Decimal("100.00"),
    ) -> int:
        room = Room(
            hostel_id=hostel_id,
            room_number=room_number,
            capacity=capacity,
            price_per_semester=price,
        )
        self.db.add(room)
        await self.db.commit()
        return room.id

    async def semester(
        self,
        hostel_id: int,
        name: str = "Semester I",
        is_current: bool = True,
        start_date: date | None = date(2026, 8, 10),
    ) -> int:
        semester = Semester(
            hostel_id=hostel_id,
            name=name,
            academic_year="2026/2027",
            start_date=start_date,
            is_current=is_current,
        )
        self.db.add(semester)
        await self.db.commit()
        return semester.id

    async def user(self, role: UserRole, hostel_id: int | None = None) -> int:
        self._emails += 1
        user = User(
            email=f"{role.value.lower()}{self._emails}@example.com",
            full_name=f"{role.value} User",
            role=role.value,
            hostel_id=hostel_id,
            is_active=True,
        )
        self.db.add(user)
        await self.db.commit()
        return user.id

    @staticmethod
    def booking_data(
        room_id: int,
        name: str = "Aisha Nakato",
        email: str | None = "aisha@example.com",
        amount_due: Decimal | None = None,
        initial: Decimal | None = None,
        method: PaymentMethod = PaymentMethod.CASH,
        reference: str | None = None,
        semester_id: int | None = None,
    ) -> BookingCreate:
        return BookingCreate(
            room_id=room_id,
            semester_id=semester_id,
            student_name=name,
            student_email=email,
            student_phone="+256772000001",
            amount_due=amount_due,
            initial_payment=(
                InitialPayment(amount=initial, method=method, reference=reference) if initial else None
            ),
        )


@pytest.fixture
def factory(db_session: AsyncSession) -> Factory:
    return Factory(db_session)


@pytest.fixture
async def hostel_setup(factory: Factory) -> HostelSetup:
    """One hostel, one double room priced 100.00, one current semester, two staff."""
    hostel_id = await factory.hostel()
    room_id = await factory.room(hostel_id)
    semester_id = await factory.semester(hostel_id)
    admin_id = await factory.user(UserRole.SUPER_ADMIN)
    custodian_id = await factory.user(UserRole.CUSTODIAN, hostel_id=hostel_id)
    return HostelSetup(
        hostel_id=hostel_id,
        room_id=room_id,
        semester_id=semester_id,
        admin_id=admin_id,
        custodian_id=custodian_id,
        room_price=Decimal("100.00"),
    )


def auth_headers(user_id: int, role: UserRole) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id, role.value)}"}


@pytest.fixture
def make_headers():
    """Authorization headers for any user id and role."""
    return auth_headers


@pytest.fixture
def admin_headers(hostel_setup: HostelSetup) -> dict[str, str]:
    return auth_headers(hostel_setup.admin_id, UserRole.SUPER_ADMIN)


@pytest.fixture
def custodian_headers(hostel_setup: HostelSetup) -> dict[str, str]:
    return auth_headers(hostel_setup.custodian_id, UserRole.CUSTODIAN)


# Ledger table as found on older deployments: keyed by user_id, no hostel,
# semester, currency or source booking columns.
LEGACY_PAYMENTS_DDL = """
CREATE TABLE payments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    amount NUMERIC(12, 2) NOT NULL,
    payment_method VARCHAR(50),
    notes VARCHAR(255),
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP NOT NULL
)
"""


class LegacySchema:
    """Reshapes the test database the way older deployments look."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _run(self, *statements: str) -> None:
        for statement in statements:
            await self.db.execute(text(statement))
        await self.db.commit()
        schema_adapter.invalidate()

    async def legacy_ledger(self) -> None:
        await self._run("DROP TABLE payments", LEGACY_PAYMENTS_DDL)

    async def legacy_room_price(self) -> None:
        """Rename rooms.price_per_semester to price. Create rooms before calling this."""
        await self._run("ALTER TABLE rooms RENAME COLUMN price_per_semester TO price")

    async def drop_table(self, name: str) -> None:
        await self._run(f"DROP TABLE {name}")

    async def insert_legacy_payment(self, user_id: int, amount: str, method: str | None = "cash") -> None:
        await self.db.execute(
            text("INSERT INTO payments (user_id, amount, payment_method) VALUES (:u, :a, :m)"),
            {"u": user_id, "a": amount, "m": method},
        )
        await self.db.commit()


@pytest.fixture
def legacy(db_session: AsyncSession) -> LegacySchema:
    return LegacySchema(db_session)
