"""
Tests for the flariki ledger.

Tests cover:
- Credit / debit pairing of balance and ledger rows
- Insufficient balance and type checks
- Manual bonuses via the API
- Stats and reconciliation
"""
import pytest
from httpx import AsyncClient
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.core.constants import TX_EARNED, TX_SPENT, TX_BONUS, TX_PENALTY, AUDIT_FLARIKI_AWARDED
from ambassador.app.core.exceptions import ValidationError, NotFoundError
from ambassador.app.models.audit import AuditLog
from ambassador.app.models.ledger import FlarikiTransaction
from ambassador.app.models.user import User
from ambassador.app.services.ledger import (
    LedgerService,
    InsufficientBalanceError,
    LedgerUserNotFoundError,
)
from ambassador.tests.conftest import create_report, assert_ledger_consistent, tg_headers, bearer_headers


class TestLedgerService:
    @pytest.mark.asyncio
    async def test_credit_and_debit(self, test_session: AsyncSession, ambassador: User):
        ledger = LedgerService(test_session)

        earned = await ledger.credit(ambassador.id, 100, TX_EARNED, reason="задание")
        spent = await ledger.debit(ambassador.id, 30, TX_SPENT, reason="покупка")
        await test_session.commit()

        assert earned.amount == 100
        assert spent.amount == -30
        assert await ledger.get_balance(ambassador.id) == 70
        assert await ledger.ledger_sum(ambassador.id) == 70

    @pytest.mark.asyncio
    async def test_debit_cannot_go_negative(self, test_session: AsyncSession, ambassador: User):
        ledger = LedgerService(test_session)
        user_id = ambassador.id
        await ledger.credit(user_id, 20, TX_BONUS, reason="бонус")
        await test_session.commit()

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await ledger.debit(ambassador.id, 21, TX_PENALTY, reason="штраф")
        assert exc_info.value.required == 21
        assert exc_info.value.available == 20

        await test_session.rollback()
        assert await ledger.get_balance(user_id) == 20
        assert await ledger.ledger_sum(user_id) == 20
        penalty = await test_session.scalar(
            select(FlarikiTransaction.id).where(FlarikiTransaction.type == TX_PENALTY)
        )
        assert penalty is None

    @pytest.mark.asyncio
    async def test_type_and_amount_checks(self, test_session: AsyncSession, ambassador: User):
        ledger = LedgerService(test_session)
        with pytest.raises(ValidationError):
            await ledger.credit(ambassador.id, 10, TX_SPENT)
        with pytest.raises(ValidationError):
            await ledger.debit(ambassador.id, 10, TX_EARNED)
        with pytest.raises(ValidationError):
            await ledger.credit(ambassador.id, 0, TX_BONUS)

    @pytest.mark.asyncio
    async def test_unknown_user(self, test_session: AsyncSession):
        ledger = LedgerService(test_session)
        with pytest.raises(LedgerUserNotFoundError):
            await ledger.credit(424242, 10, TX_BONUS)
        with pytest.raises(LedgerUserNotFoundError):
            await ledger.debit(424242, 10, TX_PENALTY)

    @pytest.mark.asyncio
    async def test_one_earned_row_per_report(
        self, test_session: AsyncSession, ambassador: User, general_task
    ):
        report = await create_report(test_session, ambassador, general_task)
        user_id, report_id = ambassador.id, report.id
        ledger = LedgerService(test_session)
        await ledger.credit(user_id, 100, TX_EARNED, report_id=report_id)
        await test_session.commit()
        assert await ledger.has_report_reward(report_id)

        with pytest.raises(IntegrityError):
            await ledger.credit(user_id, 100, TX_EARNED, report_id=report_id)
        await test_session.rollback()

        # A bonus linked to the same report is not limited
        await ledger.award_bonus(user_id, 5, "за качество", report_id=report_id)
        await test_session.commit()
        assert await ledger.get_balance(user_id) == 105
        assert await ledger.ledger_sum(user_id) == 105

    @pytest.mark.asyncio
    async def test_award_requires_reason_and_existing_links(self, test_session: AsyncSession, ambassador: User):
        ledger = LedgerService(test_session)
        with pytest.raises(ValidationError):
            await ledger.award_bonus(ambassador.id, 10, "  ")
        with pytest.raises(NotFoundError):
            await ledger.award_bonus(ambassador.id, 10, "бонус", task_id=9999)


@pytest.mark.asyncio
async def test_award_endpoint(
    client: AsyncClient, ambassador: User, manager: User, fresh_session: AsyncSession
):
    response = await client.post(
        "/api/flariki/award",
        headers=bearer_headers(manager),
        json={"userId": ambassador.id, "amount": 25, "reason": "Лучший ролик недели"},
    )

    assert response.status_code == 201
    data = response.json()
    assert data["type"] == TX_BONUS
    assert data["amount"] == 25
    assert data["created_by_id"] == manager.id

    balance = await client.get("/api/flariki/balance", headers=tg_headers(ambassador))
    assert balance.json() == {"balance": 25}
    await assert_ledger_consistent(fresh_session, ambassador.id)

    audit = await fresh_session.scalar(select(AuditLog).where(AuditLog.action == AUDIT_FLARIKI_AWARDED))
    assert audit.entity_id == ambassador.id
    assert audit.details["amount"] == 25


@pytest.mark.asyncio
async def test_award_rejects_bad_input(client: AsyncClient, ambassador: User, manager: User):
    negative = await client.post(
        "/api/flariki/award",
        headers=bearer_headers(manager),
        json={"user_id": ambassador.id, "amount": -5, "reason": "ошибка"},
    )
    unknown_user = await client.post(
        "/api/flariki/award",
        headers=bearer_headers(manager),
        json={"user_id": 987654, "amount": 5, "reason": "ошибка"},
    )

    assert negative.status_code == 400
    assert "amount" in negative.json()["detail"]["errors"]
    assert unknown_user.status_code == 404


@pytest.mark.asyncio
async def test_transactions_paging(client: AsyncClient, test_session: AsyncSession, ambassador: User):
    ledger = LedgerService(test_session)
    for i in range(5):
        await ledger.credit(ambassador.id, 10 + i, TX_BONUS, reason=f"бонус {i}")
    await ledger.debit(ambassador.id, 3, TX_SPENT, reason="покупка")
    await test_session.commit()

    first = await client.get(
        "/api/flariki/transactions", params={"page": 1, "limit": 4}, headers=tg_headers(ambassador)
    )
    second = await client.get(
        "/api/flariki/transactions", params={"page": 2, "limit": 4}, headers=tg_headers(ambassador)
    )
    spent_only = await client.get(
        "/api/flariki/transactions", params={"type": TX_SPENT}, headers=tg_headers(ambassador)
    )
    bad_type = await client.get(
        "/api/flariki/transactions", params={"type": "GIFT"}, headers=tg_headers(ambassador)
    )

    assert first.json()["total"] == 6
    assert len(first.json()["items"]) == 4
    assert len(second.json()["items"]) == 2
    # Newest first
    assert first.json()["items"][0]["amount"] == -3
    assert [t["amount"] for t in spent_only.json()["items"]] == [-3]
    assert bad_type.status_code == 400


@pytest.mark.asyncio
async def test_stats_and_reconcile(
    client: AsyncClient, test_session: AsyncSession, ambassador: User, manager: User
):
    ledger = LedgerService(test_session)
    await ledger.credit(ambassador.id, 100, TX_EARNED)
    await ledger.credit(ambassador.id, 20, TX_BONUS)
    await ledger.debit(ambassador.id, 50, TX_SPENT)
    await test_session.commit()

    stats = await client.get("/api/flariki/stats", headers=bearer_headers(manager))
    assert stats.status_code == 200
    data = stats.json()
    assert data["total_earned"] == 120
    assert data["total_spent"] == 50
    assert data["total_balance"] == 70
    assert data["by_type"][TX_SPENT] == {"total": -50, "count": 1}

    consistent = await client.get("/api/flariki/reconcile", headers=bearer_headers(manager))
    assert consistent.json() == {"consistent": True, "mismatches": []}

    # Simulate a write that bypassed the ledger
    await test_session.execute(update(User).where(User.id == ambassador.id).values(flariki_balance=999))
    await test_session.commit()

    broken = await client.get("/api/flariki/reconcile", headers=bearer_headers(manager))
    assert broken.json() == {
        "consistent": False,
        "mismatches": [{"user_id": ambassador.id, "balance": 999, "ledger_sum": 70}],
    }
