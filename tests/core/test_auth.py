import pytest
from httpx import AsyncClient

from src.core.auth.dependencies import ensure_hostel_access, resolve_hostel_scope
from src.core.auth.jwt import create_access_token, decode_token, token_user_id
from src.core.auth.models import User, UserRole
from src.core.config import settings
from src.core.exceptions import AuthenticationError, AuthorizationError


def _user(role: UserRole, hostel_id: int | None = None) -> User:
    return User(id=1, email="staff@example.com", full_name="Staff", role=role.value, hostel_id=hostel_id)


class TestTokens:
    def test_round_trip(self):
        token = create_access_token(42, UserRole.CUSTODIAN.value)
        payload = decode_token(token)

        assert payload["sub"] == "42"
        assert payload["role"] == "Custodian"

    def test_invalid_token(self):
        with pytest.raises(AuthenticationError):
            decode_token("not-a-token")

    def test_wrong_token_type(self):
        token = create_access_token(1, UserRole.SUPER_ADMIN.value)
        with pytest.raises(AuthenticationError) as exc_info:
            decode_token(token, token_type="refresh")
        assert "expected refresh" in exc_info.value.message

    def test_other_audience(self, monkeypatch):
        token = create_access_token(1, UserRole.CUSTODIAN.value)
        monkeypatch.setattr(settings, "jwt_audience", "another-service")
        with pytest.raises(AuthenticationError):
            decode_token(token)

    def test_subject_must_be_numeric(self):
        with pytest.raises(AuthenticationError):
            token_user_id({"sub": "staff"})
        assert token_user_id({"sub": "7"}) == 7


class TestHostelScope:
    def test_super_admin_must_name_hostel(self):
        admin = _user(UserRole.SUPER_ADMIN)
        assert resolve_hostel_scope(admin, 7) == 7
        with pytest.raises(AuthorizationError):
            resolve_hostel_scope(admin)

    def test_staff_pinned_to_own_hostel(self):
        custodian = _user(UserRole.CUSTODIAN, hostel_id=3)
        assert resolve_hostel_scope(custodian) == 3
        assert resolve_hostel_scope(custodian, 3) == 3
        with pytest.raises(AuthorizationError):
            resolve_hostel_scope(custodian, 4)

    def test_staff_without_hostel(self):
        with pytest.raises(AuthorizationError):
            resolve_hostel_scope(_user(UserRole.HOSTEL_ADMIN))

    def test_ensure_hostel_access(self):
        ensure_hostel_access(_user(UserRole.SUPER_ADMIN), 99)
        ensure_hostel_access(_user(UserRole.HOSTEL_ADMIN, hostel_id=2), 2)
        with pytest.raises(AuthorizationError):
            ensure_hostel_access(_user(UserRole.HOSTEL_ADMIN, hostel_id=2), 5)


class TestAuthEndpoints:
    async def test_missing_header(self, client: AsyncClient, hostel_setup):
        response = await client.get(f"/api/v1/bookings?hostel_id={hostel_setup.hostel_id}")
        assert response.status_code == 401
        assert response.json()["success"] is False

    async def test_unknown_user(self, client: AsyncClient, make_headers):
        response = await client.get("/api/v1/bookings", headers=make_headers(999, UserRole.SUPER_ADMIN))
        assert response.status_code == 401

    async def test_token_for_another_hostel(self, client: AsyncClient, hostel_setup):
        def headers(hostel_id: int) -> dict[str, str]:
            token = create_access_token(hostel_setup.custodian_id, UserRole.CUSTODIAN.value, hostel_id=hostel_id)
            return {"Authorization": f"Bearer {token}"}

        response = await client.get("/api/v1/bookings", headers=headers(hostel_setup.hostel_id + 1))
        assert response.status_code == 401

        response = await client.get("/api/v1/bookings", headers=headers(hostel_setup.hostel_id))
        assert response.status_code == 200

    async def test_global_summary_super_admin_only(
        self, client: AsyncClient, custodian_headers, admin_headers
    ):
        response = await client.get("/api/v1/reconciliation/global", headers=custodian_headers)
        assert response.status_code == 403

        response = await client.get("/api/v1/reconciliation/global", headers=admin_headers)
        assert response.status_code == 200

    async def test_custodian_cannot_read_other_hostel(
        self, client: AsyncClient, factory, custodian_headers
    ):
        other_hostel = await factory.hostel("Other Hostel")
        response = await client.get(
            f"/api/v1/reconciliation/hostels/{other_hostel}/summary", headers=custodian_headers
        )
        assert response.status_code == 403
