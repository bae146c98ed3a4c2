"""
Tests for access gates: moderation status, profile completeness and roles.
"""
import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.core.constants import USER_SUSPENDED, USER_INACTIVE
from ambassador.app.core.exceptions import ForbiddenError
from ambassador.app.models.user import User
from ambassador.app.services.access import ensure_active, ensure_profile_complete, ensure_role
from ambassador.tests.conftest import create_user, tg_headers, bearer_headers


class TestGateFunctions:
    def test_pending_user(self):
        user = User(status="PENDING")
        with pytest.raises(ForbiddenError) as exc_info:
            ensure_active(user)
        assert exc_info.value.reason == "pending_moderation"

    @pytest.mark.parametrize("status", [USER_SUSPENDED, USER_INACTIVE])
    def test_blocked_user(self, status):
        with pytest.raises(ForbiddenError) as exc_info:
            ensure_active(User(status=status))
        assert exc_info.value.reason == "account_blocked"
        assert exc_info.value.detail()["status"] == status

    def test_profile_needs_contact_and_address(self):
        with pytest.raises(ForbiddenError) as exc_info:
            ensure_profile_complete(User(phone="+7900"))
        assert exc_info.value.reason == "profile_incomplete"
        assert exc_info.value.extra["missing"] == ["address"]

        with pytest.raises(ForbiddenError) as exc_info:
            ensure_profile_complete(User())
        assert exc_info.value.extra["missing"] == ["contact", "address"]

    def test_email_and_address_are_enough(self):
        ensure_profile_complete(User(email="a@b.ru", address="Москва, ул. Ленина, 1"))

    def test_role(self):
        ensure_role(User(role="ADMIN"), ("MANAGER", "ADMIN"))
        with pytest.raises(ForbiddenError) as exc_info:
            ensure_role(User(role="AMBASSADOR"), ("MANAGER", "ADMIN"))
        assert exc_info.value.reason == "insufficient_role"


@pytest.mark.asyncio
async def test_pending_user_can_read_profile_only(client: AsyncClient, pending_ambassador: User):
    headers = tg_headers(pending_ambassador)

    me = await client.get("/api/users/me", headers=headers)
    tasks = await client.get("/api/tasks/me", headers=headers)

    assert me.status_code == 200
    assert me.json()["has_contact"] is False
    assert tasks.status_code == 403
    assert tasks.json()["detail"]["reason"] == "pending_moderation"


@pytest.mark.asyncio
async def test_suspended_user_is_blocked(client: AsyncClient, test_session: AsyncSession):
    user = await create_user(test_session, telegram_id=404404, status=USER_SUSPENDED)
    response = await client.get("/api/flariki/balance", headers=tg_headers(user))
    assert response.status_code == 403
    assert response.json()["detail"]["reason"] == "account_blocked"


@pytest.mark.asyncio
async def test_incomplete_profile_blocks_tasks_until_filled(client: AsyncClient, test_session: AsyncSession):
    user = await create_user(test_session, telegram_id=505505, complete_profile=False)
    headers = tg_headers(user)

    blocked = await client.get("/api/tasks/me", headers=headers)
    assert blocked.status_code == 403
    assert blocked.json()["detail"]["reason"] == "profile_incomplete"
    assert blocked.json()["detail"]["missing"] == ["contact", "address"]

    # Balance needs only an active account
    balance = await client.get("/api/flariki/balance", headers=headers)
    assert balance.status_code == 200

    updated = await client.patch(
        "/api/users/me",
        headers=headers,
        json={"phone": "+79990001122", "cdek_pvz": "SPB-7", "instagram_link": "https://instagram.com/me"},
    )
    assert updated.status_code == 200
    assert updated.json()["has_contact"] is True
    assert updated.json()["has_address"] is True

    allowed = await client.get("/api/tasks/me", headers=headers)
    assert allowed.status_code == 200


@pytest.mark.asyncio
async def test_profile_update_validation(client: AsyncClient, ambassador: User):
    headers = tg_headers(ambassador)

    bad_link = await client.patch("/api/users/me", headers=headers, json={"vk_link": "vk.com/me"})
    bad_email = await client.patch("/api/users/me", headers=headers, json={"email": "nope"})

    assert bad_link.status_code == 400
    assert bad_email.status_code == 400


@pytest.mark.asyncio
async def test_profile_email_conflict(client: AsyncClient, ambassador: User, manager: User):
    response = await client.patch(
        "/api/users/me", headers=tg_headers(ambassador), json={"email": "MANAGER@example.com"}
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_empty_string_clears_field(client: AsyncClient, ambassador: User):
    response = await client.patch("/api/users/me", headers=tg_headers(ambassador), json={"address": "  "})
    assert response.status_code == 200
    assert response.json()["address"] is None
    # CDEK point still satisfies the address requirement
    assert response.json()["has_address"] is True


@pytest.mark.asyncio
async def test_staff_endpoints_reject_ambassadors(client: AsyncClient, ambassador: User):
    headers = tg_headers(ambassador)
    for method, url in (
        ("GET", "/api/admin/users"),
        ("GET", "/api/users"),
        ("POST", "/api/tasks"),
        ("GET", "/api/statistics/leaderboard"),
        ("GET", "/api/flariki/stats"),
    ):
        response = await client.request(method, url, headers=headers, json={} if method == "POST" else None)
        assert response.status_code == 403, url
        assert response.json()["detail"]["reason"] == "insufficient_role"


@pytest.mark.asyncio
async def test_staff_via_telegram_is_allowed(client: AsyncClient, manager: User):
    response = await client.get("/api/admin/users", headers=tg_headers(manager))
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_staff_via_bearer(client: AsyncClient, manager: User, ambassador: User):
    response = await client.get("/api/admin/users", headers=bearer_headers(manager))
    assert response.status_code == 200
    assert response.json()["total"] == 2
