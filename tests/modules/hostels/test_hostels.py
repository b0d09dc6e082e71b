from datetime import date

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import NotFoundError, ValidationError
from src.modules.hostels.models import Semester
from src.modules.hostels.service import HostelService, SemesterService


class TestHostelService:
    async def test_get_room(self, db_session: AsyncSession, hostel_setup):
        room = await HostelService(db_session).get_room(hostel_setup.room_id)

        assert room.hostel_id == hostel_setup.hostel_id
        assert room.room_number == "A1"
        assert room.capacity == 2
        assert room.price == hostel_setup.room_price

    async def test_room_of_other_hostel(self, db_session: AsyncSession, factory, hostel_setup):
        other_hostel = await factory.hostel("Other")

        with pytest.raises(ValidationError):
            await HostelService(db_session).get_room(hostel_setup.room_id, hostel_id=other_hostel)

    async def test_room_not_found(self, db_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await HostelService(db_session).get_room(404)

    async def test_room_with_legacy_price_column(self, db_session: AsyncSession, hostel_setup, legacy):
        await legacy.legacy_room_price()

        room = await HostelService(db_session).get_room(hostel_setup.room_id)

        assert room.price == hostel_setup.room_price


class TestSemesterService:
    async def test_set_current_keeps_a_single_current(self, db_session: AsyncSession, factory, hostel_setup):
        second = await factory.semester(
            hostel_setup.hostel_id, name="Semester II", is_current=False, start_date=date(2027, 1, 18)
        )
        service = SemesterService(db_session)

        semester = await service.set_current(second, user_id=hostel_setup.admin_id)

        assert semester.is_current is True
        result = await db_session.execute(
            select(Semester.id).where(
                Semester.hostel_id == hostel_setup.hostel_id, Semester.is_current.is_(True)
            )
        )
        assert result.scalars().all() == [second]
        current = await service.get_current(hostel_setup.hostel_id)
        assert current.id == second

    async def test_set_current_leaves_other_hostels_alone(
        self, db_session: AsyncSession, factory, hostel_setup
    ):
        other_hostel = await factory.hostel("Other")
        other_semester = await factory.semester(other_hostel)

        await SemesterService(db_session).set_current(hostel_setup.semester_id)

        current = await SemesterService(db_session).get_current(other_hostel)
        assert current.id == other_semester

    async def test_list_semesters_newest_first(self, db_session: AsyncSession, factory, hostel_setup):
        older = await factory.semester(
            hostel_setup.hostel_id, name="Semester II 2025/26", is_current=False, start_date=date(2026, 1, 19)
        )

        semesters = await SemesterService(db_session).list_semesters(hostel_setup.hostel_id)

        assert [s.id for s in semesters] == [hostel_setup.semester_id, older]

    async def test_semester_of_other_hostel(self, db_session: AsyncSession, factory, hostel_setup):
        other_hostel = await factory.hostel("Other")

        with pytest.raises(ValidationError):
            await SemesterService(db_session).get_semester(hostel_setup.semester_id, hostel_id=other_hostel)


class TestSemesterEndpoints:
    async def test_get_current(self, client: AsyncClient, hostel_setup, custodian_headers):
        response = await client.get(
            f"/api/v1/hostels/{hostel_setup.hostel_id}/semesters/current", headers=custodian_headers
        )

        assert response.status_code == 200
        assert response.json()["data"]["id"] == hostel_setup.semester_id

    async def test_make_current_requires_admin(self, client: AsyncClient, hostel_setup, custodian_headers):
        response = await client.post(
            f"/api/v1/semesters/{hostel_setup.semester_id}/make-current", headers=custodian_headers
        )
        assert response.status_code == 403

    async def test_make_current(self, client: AsyncClient, factory, hostel_setup, admin_headers):
        second = await factory.semester(hostel_setup.hostel_id, name="Semester II", is_current=False)

        response = await client.post(f"/api/v1/semesters/{second}/make-current", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["data"]["is_current"] is True
