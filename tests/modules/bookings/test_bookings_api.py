from decimal import Decimal

from httpx import AsyncClient

from src.core.auth.models import UserRole


def _booking_payload(room_id: int, **overrides) -> dict:
    payload = {
        "room_id": room_id,
        "student_name": "Aisha Nakato",
        "student_email": "aisha@example.com",
        "student_phone": "+256772000001",
    }
    payload.update(overrides)
    return payload


class TestBookingEndpoints:
    async def test_create_booking(self, client: AsyncClient, hostel_setup, custodian_headers):
        response = await client.post(
            "/api/v1/bookings",
            json=_booking_payload(hostel_setup.room_id, initial_payment={"amount": "40.00", "method": "cash"}),
            headers=custodian_headers,
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["booking"]["status"] == "pending"
        assert data["booking"]["hostel_id"] == hostel_setup.hostel_id
        assert Decimal(data["balance"]["outstanding"]) == Decimal("60.00")
        assert data["payment"]["status"] == "completed"
        assert data["payment"]["receipt_number"].startswith("RCP-")

    async def test_super_admin_must_name_hostel(self, client: AsyncClient, hostel_setup, admin_headers):
        response = await client.post(
            "/api/v1/bookings", json=_booking_payload(hostel_setup.room_id), headers=admin_headers
        )
        assert response.status_code == 403

        response = await client.post(
            "/api/v1/bookings",
            json=_booking_payload(hostel_setup.room_id, hostel_id=hostel_setup.hostel_id),
            headers=admin_headers,
        )
        assert response.status_code == 201

    async def test_blank_name_rejected(self, client: AsyncClient, hostel_setup, custodian_headers):
        response = await client.post(
            "/api/v1/bookings",
            json=_booking_payload(hostel_setup.room_id, student_name="   "),
            headers=custodian_headers,
        )

        assert response.status_code == 422
        assert response.json()["success"] is False

    async def test_full_room_is_conflict(self, client: AsyncClient, factory, hostel_setup, custodian_headers):
        room_id = await factory.room(hostel_setup.hostel_id, room_number="S1", capacity=1)
        first = await client.post("/api/v1/bookings", json=_booking_payload(room_id), headers=custodian_headers)
        assert first.status_code == 201

        response = await client.post(
            "/api/v1/bookings",
            json=_booking_payload(room_id, student_name="Brian", student_email="brian@example.com"),
            headers=custodian_headers,
        )

        assert response.status_code == 409
        body = response.json()
        assert body["message"] == "Selected room is fully booked for this semester"
        assert body["error_code"] == "capacity_exceeded"
        assert body["details"]["room_id"] == room_id

    async def test_pay_verify_check_in(self, client: AsyncClient, hostel_setup, custodian_headers):
        created = await client.post(
            "/api/v1/bookings", json=_booking_payload(hostel_setup.room_id), headers=custodian_headers
        )
        booking_id = created.json()["data"]["booking"]["id"]

        paid = await client.post(
            f"/api/v1/bookings/{booking_id}/payments",
            json={"amount": "100.00", "method": "cash"},
            headers=custodian_headers,
        )
        assert paid.status_code == 201
        code = paid.json()["data"]["booking"]["verification_code"]
        assert code

        verified = await client.get(f"/api/v1/bookings/verify/{code}", headers=custodian_headers)
        assert verified.status_code == 200
        assert verified.json()["data"]["id"] == booking_id

        checked_in = await client.post(
            "/api/v1/bookings/check-in", json={"booking_id": booking_id}, headers=custodian_headers
        )
        assert checked_in.status_code == 200
        assert checked_in.json()["data"]["status"] == "checked_in"

        again = await client.post(f"/api/v1/bookings/{booking_id}/check-in", headers=custodian_headers)
        assert again.status_code == 200
        assert again.json()["data"]["resident_id"] == checked_in.json()["data"]["resident_id"]

    async def test_overpayment_is_rejected(self, client: AsyncClient, hostel_setup, custodian_headers):
        created = await client.post(
            "/api/v1/bookings", json=_booking_payload(hostel_setup.room_id), headers=custodian_headers
        )
        booking_id = created.json()["data"]["booking"]["id"]

        response = await client.post(
            f"/api/v1/bookings/{booking_id}/payments",
            json={"amount": "120.00", "method": "cash"},
            headers=custodian_headers,
        )

        assert response.status_code == 400
        assert response.json()["details"]["outstanding"] == "100.00"

    async def test_negative_amount_is_rejected(self, client: AsyncClient, hostel_setup, custodian_headers):
        created = await client.post(
            "/api/v1/bookings", json=_booking_payload(hostel_setup.room_id), headers=custodian_headers
        )
        booking_id = created.json()["data"]["booking"]["id"]

        response = await client.post(
            f"/api/v1/bookings/{booking_id}/payments",
            json={"amount": "-5.00", "method": "cash"},
            headers=custodian_headers,
        )

        assert response.status_code == 422

    async def test_check_in_with_balance_is_conflict(self, client: AsyncClient, hostel_setup, custodian_headers):
        created = await client.post(
            "/api/v1/bookings", json=_booking_payload(hostel_setup.room_id), headers=custodian_headers
        )
        booking_id = created.json()["data"]["booking"]["id"]

        response = await client.post(f"/api/v1/bookings/{booking_id}/check-in", headers=custodian_headers)

        assert response.status_code == 409

    async def test_mobile_money_confirmation(self, client: AsyncClient, hostel_setup, custodian_headers):
        created = await client.post(
            "/api/v1/bookings",
            json=_booking_payload(
                hostel_setup.room_id, initial_payment={"amount": "100.00", "method": "mobile_money"}
            ),
            headers=custodian_headers,
        )
        data = created.json()["data"]
        booking_id, payment_id = data["booking"]["id"], data["payment"]["id"]
        assert data["payment"]["status"] == "pending"

        confirmed = await client.post(
            f"/api/v1/bookings/{booking_id}/payments/{payment_id}/confirm", headers=custodian_headers
        )
        assert confirmed.status_code == 200
        assert confirmed.json()["data"]["booking"]["status"] == "booked"

        repeated = await client.post(
            f"/api/v1/bookings/{booking_id}/payments/{payment_id}/confirm", headers=custodian_headers
        )
        assert repeated.status_code == 409

    async def test_cancel(self, client: AsyncClient, hostel_setup, custodian_headers):
        created = await client.post(
            "/api/v1/bookings", json=_booking_payload(hostel_setup.room_id), headers=custodian_headers
        )
        booking_id = created.json()["data"]["booking"]["id"]

        response = await client.post(
            f"/api/v1/bookings/{booking_id}/cancel", json={"reason": "No show"}, headers=custodian_headers
        )

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "cancelled"
        assert response.json()["data"]["cancellation_reason"] == "No show"

    async def test_get_booking_with_payments(self, client: AsyncClient, hostel_setup, custodian_headers):
        created = await client.post(
            "/api/v1/bookings",
            json=_booking_payload(hostel_setup.room_id, initial_payment={"amount": "40.00", "method": "cash"}),
            headers=custodian_headers,
        )
        booking_id = created.json()["data"]["booking"]["id"]

        response = await client.get(f"/api/v1/bookings/{booking_id}", headers=custodian_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert len(data["payments"]) == 1
        assert Decimal(data["outstanding"]) == Decimal("60.00")

    async def test_list_bookings(self, client: AsyncClient, hostel_setup, custodian_headers):
        await client.post("/api/v1/bookings", json=_booking_payload(hostel_setup.room_id), headers=custodian_headers)

        response = await client.get("/api/v1/bookings", headers=custodian_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["total"] == 1
        assert data["items"][0]["student_name"] == "Aisha Nakato"

    async def test_other_hostel_staff_forbidden(
        self, client: AsyncClient, factory, hostel_setup, custodian_headers, make_headers
    ):
        created = await client.post(
            "/api/v1/bookings", json=_booking_payload(hostel_setup.room_id), headers=custodian_headers
        )
        booking_id = created.json()["data"]["booking"]["id"]
        other_hostel = await factory.hostel("Other")
        outsider = await factory.user(UserRole.CUSTODIAN, hostel_id=other_hostel)

        response = await client.get(
            f"/api/v1/bookings/{booking_id}", headers=make_headers(outsider, UserRole.CUSTODIAN)
        )

        assert response.status_code == 403

    async def test_unauthenticated(self, client: AsyncClient):
        response = await client.get("/api/v1/bookings")

        assert response.status_code == 401
