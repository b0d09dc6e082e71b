from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit import AuditAction, AuditLog, AuditService
from src.core.exceptions import BalanceViolationError
from src.modules.bookings.service import BookingService


class TestAuditTrail:
    async def test_booking_lifecycle(self, db_session: AsyncSession, factory, hostel_setup):
        service = BookingService(db_session)
        booking, recorded = await service.create_booking(
            factory.booking_data(hostel_setup.room_id, initial=Decimal("100.00")),
            hostel_setup.hostel_id,
            user_id=hostel_setup.custodian_id,
        )
        booking_id, payment_id = booking.id, recorded.payment.id
        await service.check_in(booking_id, user_id=hostel_setup.custodian_id)

        audit = AuditService(db_session)
        trail = await audit.trail("Booking", booking_id)
        assert [entry.action for entry in trail] == [
            AuditAction.CREATE_BOOKING,
            AuditAction.ISSUE_VERIFICATION_CODE,
            AuditAction.CHECK_IN,
        ]
        assert {entry.hostel_id for entry in trail} == {hostel_setup.hostel_id}
        assert {entry.user_id for entry in trail} == {hostel_setup.custodian_id}
        assert trail[0].reference.startswith("BKG-")
        assert trail[-1].old_values == {"status": "booked"}

        [payment_entry] = await audit.trail("BookingPayment", payment_id)
        assert payment_entry.action == AuditAction.RECORD_PAYMENT
        assert payment_entry.new_values["amount"] == "100.00"

    async def test_cancel_keeps_reason(self, db_session: AsyncSession, factory, hostel_setup):
        service = BookingService(db_session)
        booking, _ = await service.create_booking(
            factory.booking_data(hostel_setup.room_id), hostel_setup.hostel_id
        )
        booking_id = booking.id
        await service.cancel(booking_id, reason="Changed university")

        trail = await AuditService(db_session).trail("Booking", booking_id)
        assert trail[-1].action == AuditAction.CANCEL_BOOKING
        assert trail[-1].comment == "Changed university"

    async def test_rejected_payment_leaves_no_entry(self, db_session: AsyncSession, factory, hostel_setup):
        service = BookingService(db_session)
        booking, _ = await service.create_booking(
            factory.booking_data(hostel_setup.room_id), hostel_setup.hostel_id
        )
        booking_id = booking.id
        before = (await db_session.execute(select(func.count(AuditLog.id)))).scalar_one()

        with pytest.raises(BalanceViolationError):
            await service.apply_payment(booking_id, Decimal("150.00"), "cash")

        after = (await db_session.execute(select(func.count(AuditLog.id)))).scalar_one()
        assert after == before
