from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import (
    BalanceViolationError,
    DependencyFailure,
    NotFoundError,
    StatePreconditionError,
    ValidationError,
)
from src.core.notifications.service import PaymentReceipt
from src.modules.ledger.models import LedgerPayment, PaymentStatus
from src.modules.ledger.service import LedgerService, ResidentTarget
from src.modules.residents.models import Resident, ResidentAssignment, SemesterEnrollment


class BrokenSender:
    """Notification sender whose mail server is down."""

    def __init__(self):
        self.attempts = 0

    async def send_payment_receipt(self, receipt: PaymentReceipt) -> None:
        self.attempts += 1
        raise ConnectionError("SMTP unavailable")

    async def send_check_in_confirmation(self, email, name, room_number) -> None:
        raise ConnectionError("SMTP unavailable")


class RecordingSender:
    def __init__(self):
        self.receipts: list[PaymentReceipt] = []

    async def send_payment_receipt(self, receipt: PaymentReceipt) -> None:
        self.receipts.append(receipt)

    async def send_check_in_confirmation(self, email, name, room_number) -> None:
        pass


async def _resident(
    db: AsyncSession,
    hostel_setup,
    email: str = "moses@example.com",
    assigned: bool = True,
    total: Decimal | None = None,
    paid: Decimal = Decimal("0.00"),
) -> int:
    """Resident in the setup room; with total given, also a semester enrollment."""
    resident = Resident(hostel_id=hostel_setup.hostel_id, name="Moses Kato", email=email)
    db.add(resident)
    await db.flush()
    if assigned:
        db.add(
            ResidentAssignment(
                student_id=resident.id,
                room_id=hostel_setup.room_id,
                semester_id=hostel_setup.semester_id,
            )
        )
    if total is not None:
        db.add(
            SemesterEnrollment(
                student_id=resident.id,
                semester_id=hostel_setup.semester_id,
                room_id=hostel_setup.room_id,
                total_amount=total,
                amount_paid=paid,
                balance=total - paid,
            )
        )
    await db.commit()
    return resident.id


async def _ledger_count(db: AsyncSession) -> int:
    result = await db.execute(select(func.count(LedgerPayment.id)))
    return result.scalar_one()


class TestResidentPayments:
    async def test_enrollment_payment(self, db_session: AsyncSession, hostel_setup):
        resident_id = await _resident(db_session, hostel_setup, total=Decimal("100.00"))

        recorded = await LedgerService(db_session).record_payment(
            ResidentTarget(resident_id), Decimal("40.00"), user_id=hostel_setup.custodian_id
        )

        assert recorded.balances.amount_paid == Decimal("40.00")
        assert recorded.balances.outstanding == Decimal("60.00")
        assert recorded.balances.payment_status == "partial"
        assert recorded.payment.semester_id == hostel_setup.semester_id
        assert recorded.payment.hostel_id == hostel_setup.hostel_id

        result = await db_session.execute(
            select(SemesterEnrollment.amount_paid, SemesterEnrollment.balance).where(
                SemesterEnrollment.student_id == resident_id
            )
        )
        paid, balance = result.one()
        assert paid == Decimal("40.00")
        assert balance == Decimal("60.00")

    async def test_excess_rejected_without_effect(self, db_session: AsyncSession, hostel_setup):
        resident_id = await _resident(db_session, hostel_setup, total=Decimal("100.00"), paid=Decimal("40.00"))
        service = LedgerService(db_session)

        with pytest.raises(BalanceViolationError) as exc_info:
            await service.record_payment(ResidentTarget(resident_id), Decimal("70.00"))

        assert exc_info.value.details == {"outstanding": "60.00", "requested": "70.00"}
        assert await _ledger_count(db_session) == 0
        result = await db_session.execute(
            select(SemesterEnrollment.amount_paid).where(SemesterEnrollment.student_id == resident_id)
        )
        assert result.scalar_one() == Decimal("40.00")

    async def test_nothing_owed(self, db_session: AsyncSession, hostel_setup):
        resident_id = await _resident(db_session, hostel_setup, total=Decimal("100.00"), paid=Decimal("100.00"))

        with pytest.raises(BalanceViolationError) as exc_info:
            await LedgerService(db_session).record_payment(ResidentTarget(resident_id), Decimal("1.00"))
        assert "Nothing is owed" in exc_info.value.message

    async def test_exact_balance_clears(self, db_session: AsyncSession, hostel_setup):
        resident_id = await _resident(db_session, hostel_setup, total=Decimal("100.00"), paid=Decimal("40.00"))

        recorded = await LedgerService(db_session).record_payment(ResidentTarget(resident_id), Decimal("60.00"))

        assert recorded.balances.outstanding == Decimal("0.00")
        assert recorded.balances.payment_status == "paid"

    async def test_without_enrollment_uses_room_price(self, db_session: AsyncSession, hostel_setup):
        resident_id = await _resident(db_session, hostel_setup)
        service = LedgerService(db_session)

        await service.record_payment(ResidentTarget(resident_id), Decimal("30.00"))
        recorded = await service.record_payment(ResidentTarget(resident_id), Decimal("50.00"))

        assert recorded.balances.amount_due == Decimal("100.00")
        assert recorded.balances.amount_paid == Decimal("80.00")
        assert recorded.balances.outstanding == Decimal("20.00")

        with pytest.raises(BalanceViolationError):
            await service.record_payment(ResidentTarget(resident_id), Decimal("25.00"))
        assert await _ledger_count(db_session) == 2

    async def test_unassigned_resident(self, db_session: AsyncSession, hostel_setup):
        resident_id = await _resident(db_session, hostel_setup, assigned=False)

        with pytest.raises(StatePreconditionError) as exc_info:
            await LedgerService(db_session).record_payment(ResidentTarget(resident_id), Decimal("10.00"))
        assert exc_info.value.details["state"] == "unassigned"

    async def test_legacy_ledger(self, db_session: AsyncSession, hostel_setup, legacy):
        resident_id = await _resident(db_session, hostel_setup)
        await legacy.legacy_ledger()
        await legacy.insert_legacy_payment(resident_id, "25.00")

        recorded = await LedgerService(db_session).record_payment(
            ResidentTarget(resident_id), Decimal("50.00"), purpose="Rent"
        )

        assert recorded.balances.amount_paid == Decimal("75.00")
        assert recorded.balances.outstanding == Decimal("25.00")
        assert recorded.payment.semester_id is None
        assert recorded.payment.currency is None
        assert recorded.payment.purpose == "Rent"

    async def test_pending_not_accepted(self, db_session: AsyncSession, hostel_setup):
        resident_id = await _resident(db_session, hostel_setup, total=Decimal("100.00"))

        with pytest.raises(ValidationError):
            await LedgerService(db_session).record_payment(
                ResidentTarget(resident_id), Decimal("10.00"), status=PaymentStatus.PENDING.value
            )

    async def test_non_positive_amount(self, db_session: AsyncSession, hostel_setup):
        resident_id = await _resident(db_session, hostel_setup, total=Decimal("100.00"))

        with pytest.raises(ValidationError):
            await LedgerService(db_session).record_payment(ResidentTarget(resident_id), Decimal("0.00"))

    async def test_unknown_resident(self, db_session: AsyncSession, hostel_setup):
        with pytest.raises(NotFoundError):
            await LedgerService(db_session).record_payment(ResidentTarget(404), Decimal("10.00"))


class TestNotifications:
    async def test_failed_receipt_keeps_payment(self, db_session: AsyncSession, hostel_setup):
        resident_id = await _resident(db_session, hostel_setup, total=Decimal("100.00"))
        sender = BrokenSender()

        recorded = await LedgerService(db_session, notifier=sender).record_payment(
            ResidentTarget(resident_id), Decimal("40.00")
        )

        assert sender.attempts == 1
        assert recorded.balances.outstanding == Decimal("60.00")
        assert await _ledger_count(db_session) == 1

    async def test_receipt_carries_balance(self, db_session: AsyncSession, hostel_setup):
        resident_id = await _resident(db_session, hostel_setup, total=Decimal("100.00"))
        sender = RecordingSender()

        await LedgerService(db_session, notifier=sender).record_payment(ResidentTarget(resident_id), Decimal("40.00"))

        [receipt] = sender.receipts
        assert receipt.email == "moses@example.com"
        assert receipt.amount == Decimal("40.00")
        assert receipt.balance == Decimal("60.00")


class TestListPayments:
    async def test_filters_by_hostel_and_resident(self, db_session: AsyncSession, factory, hostel_setup):
        first = await _resident(db_session, hostel_setup, total=Decimal("100.00"))
        second = await _resident(db_session, hostel_setup, email="ruth@example.com", total=Decimal("100.00"))
        service = LedgerService(db_session)
        await service.record_payment(ResidentTarget(first), Decimal("40.00"))
        await service.record_payment(ResidentTarget(second), Decimal("10.00"))

        items, total = await service.list_payments(hostel_id=hostel_setup.hostel_id)
        assert total == 2

        items, total = await service.list_payments(resident_id=second)
        assert total == 1
        assert items[0].amount == Decimal("10.00")
        assert items[0].resident_email == "ruth@example.com"
        assert items[0].method == "cash"

        other_hostel = await factory.hostel("Other")
        _, total = await service.list_payments(hostel_id=other_hostel)
        assert total == 0

    async def test_semester_filter(self, db_session: AsyncSession, hostel_setup):
        resident_id = await _resident(db_session, hostel_setup, total=Decimal("100.00"))
        service = LedgerService(db_session)
        await service.record_payment(ResidentTarget(resident_id), Decimal("40.00"))

        _, total = await service.list_payments(semester_id=hostel_setup.semester_id)

        assert total == 1

    async def test_semester_filter_on_legacy_ledger(self, db_session: AsyncSession, hostel_setup, legacy):
        await legacy.legacy_ledger()

        with pytest.raises(DependencyFailure) as exc_info:
            await LedgerService(db_session).list_payments(semester_id=hostel_setup.semester_id)
        assert exc_info.value.status_code == 503

    async def test_legacy_ledger_scoped_through_residents(self, db_session: AsyncSession, hostel_setup, legacy):
        resident_id = await _resident(db_session, hostel_setup)
        await legacy.legacy_ledger()
        await legacy.insert_legacy_payment(resident_id, "25.00", method=None)

        items, total = await LedgerService(db_session).list_payments(hostel_id=hostel_setup.hostel_id)

        assert total == 1
        assert items[0].resident_id == resident_id
        assert items[0].hostel_id is None
        assert items[0].method is None


class TestLedgerEndpoints:
    async def test_record_and_list(self, client: AsyncClient, db_session: AsyncSession, hostel_setup, custodian_headers):
        resident_id = await _resident(db_session, hostel_setup, total=Decimal("100.00"))

        response = await client.post(
            "/api/v1/ledger/payments",
            json={"resident_id": resident_id, "amount": "40.00", "method": "mobile_money"},
            headers=custodian_headers,
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert Decimal(data["balance"]["outstanding"]) == Decimal("60.00")
        assert data["payment"]["method"] == "mobile_money"

        listed = await client.get("/api/v1/ledger/payments", headers=custodian_headers)
        assert listed.status_code == 200
        assert listed.json()["data"]["total"] == 1

    async def test_excess_is_bad_request(
        self, client: AsyncClient, db_session: AsyncSession, hostel_setup, custodian_headers
    ):
        resident_id = await _resident(db_session, hostel_setup, total=Decimal("100.00"))

        response = await client.post(
            "/api/v1/ledger/payments",
            json={"resident_id": resident_id, "amount": "140.00"},
            headers=custodian_headers,
        )

        assert response.status_code == 400
        assert response.json()["success"] is False

    async def test_semester_filter_on_legacy_ledger(
        self, client: AsyncClient, hostel_setup, custodian_headers, legacy
    ):
        await legacy.legacy_ledger()

        response = await client.get(
            f"/api/v1/ledger/payments?semester_id={hostel_setup.semester_id}", headers=custodian_headers
        )

        assert response.status_code == 503
        body = response.json()
        assert body["error_code"] == "dependency_unavailable"
        assert body["details"]["dependency"] == "payments.semester_id"
