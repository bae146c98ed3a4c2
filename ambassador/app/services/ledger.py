# ambassador/app/services/ledger.py
"""
Flariki ledger - the only code allowed to change users.flariki_balance.

Every balance change is one conditional UPDATE on the user row plus exactly
one FlarikiTransaction insert, issued on the caller's session. Nothing here
commits: the caller commits once, so the pair lands atomically together with
whatever business change triggered it (report approval, purchase, bonus).
"""
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.core.constants import (
    TX_EARNED,
    TX_SPENT,
    TX_BONUS,
    TX_PENALTY,
    TRANSACTION_TYPES,
)
from ambassador.app.core.exceptions import (
    ServiceError,
    ValidationError,
    NotFoundError,
    ConflictError,
)
from ambassador.app.core.logging import get_logger
from ambassador.app.core.metrics import flariki_credited_total, flariki_debited_total
from ambassador.app.models.ledger import FlarikiTransaction
from ambassador.app.models.report import Report
from ambassador.app.models.task import Task
from ambassador.app.models.user import User

logger = get_logger(__name__)


class LedgerServiceError(ServiceError):
    """Base exception for ledger errors."""


class LedgerUserNotFoundError(NotFoundError, LedgerServiceError):
    def __init__(self, user_id: int):
        super().__init__(f"User {user_id} not found")


class InsufficientBalanceError(ConflictError, LedgerServiceError):
    def __init__(self, required: int, available: int):
        super().__init__(f"Недостаточно флариков: нужно {required}, доступно {available}")
        self.required = required
        self.available = available


CREDIT_TYPES = (TX_EARNED, TX_BONUS)
DEBIT_TYPES = (TX_SPENT, TX_PENALTY)


class LedgerService:
    """Service class for flariki balance mutations and ledger reads."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def credit(
        self,
        user_id: int,
        amount: int,
        tx_type: str,
        reason: Optional[str] = None,
        task_id: Optional[int] = None,
        report_id: Optional[int] = None,
        created_by_id: Optional[int] = None,
    ) -> FlarikiTransaction:
        """
        Add ``amount`` to the balance and append the matching ledger row.

        Caller must commit the session after this returns.
        """
        if tx_type not in CREDIT_TYPES:
            raise ValidationError(f"{tx_type} is not a credit type")
        if amount <= 0:
            raise ValidationError("Amount must be positive", {"amount": "must be greater than 0"})

        result = await self.session.execute(
            update(User)
            .where(User.id == user_id)
            .values(flariki_balance=User.flariki_balance + amount)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 0:
            raise LedgerUserNotFoundError(user_id)

        tx = FlarikiTransaction(
            user_id=user_id,
            type=tx_type,
            amount=amount,
            reason=reason,
            task_id=task_id,
            report_id=report_id,
            created_by_id=created_by_id,
        )
        self.session.add(tx)
        await self.session.flush()
        flariki_credited_total.labels(type=tx_type).inc(amount)
        logger.info("Flariki credited", user_id=user_id, amount=amount, type=tx_type, tx_id=tx.id)
        return tx

    async def debit(
        self,
        user_id: int,
        amount: int,
        tx_type: str,
        reason: Optional[str] = None,
        task_id: Optional[int] = None,
        report_id: Optional[int] = None,
        created_by_id: Optional[int] = None,
    ) -> FlarikiTransaction:
        """
        Subtract ``amount`` if the balance covers it; the ledger row stores
        ``-amount``. The check and the decrement are a single UPDATE, so two
        concurrent debits can never take the balance below zero.

        Caller must commit the session after this returns.

        Raises:
            LedgerUserNotFoundError, InsufficientBalanceError
        """
        if tx_type not in DEBIT_TYPES:
            raise ValidationError(f"{tx_type} is not a debit type")
        if amount <= 0:
            raise ValidationError("Amount must be positive", {"amount": "must be greater than 0"})

        result = await self.session.execute(
            update(User)
            .where(User.id == user_id, User.flariki_balance >= amount)
            .values(flariki_balance=User.flariki_balance - amount)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 0:
            available = await self.session.scalar(
                select(User.flariki_balance).where(User.id == user_id)
            )
            if available is None:
                raise LedgerUserNotFoundError(user_id)
            raise InsufficientBalanceError(amount, available)

        tx = FlarikiTransaction(
            user_id=user_id,
            type=tx_type,
            amount=-amount,
            reason=reason,
            task_id=task_id,
            report_id=report_id,
            created_by_id=created_by_id,
        )
        self.session.add(tx)
        await self.session.flush()
        flariki_debited_total.labels(type=tx_type).inc(amount)
        logger.info("Flariki debited", user_id=user_id, amount=amount, type=tx_type, tx_id=tx.id)
        return tx

    async def has_report_reward(self, report_id: int) -> bool:
        """True if an EARNED row already exists for this report."""
        found = await self.session.scalar(
            select(FlarikiTransaction.id).where(
                FlarikiTransaction.report_id == report_id,
                FlarikiTransaction.type == TX_EARNED,
            ).limit(1)
        )
        return found is not None

    async def award_bonus(
        self,
        user_id: int,
        amount: int,
        reason: str,
        created_by_id: Optional[int] = None,
        task_id: Optional[int] = None,
        report_id: Optional[int] = None,
    ) -> FlarikiTransaction:
        """
        Manual grant by a manager. Linked task/report are optional but must
        exist when given. Caller must commit.
        """
        if not reason or not reason.strip():
            raise ValidationError("Reason is required", {"reason": "must not be empty"})
        if task_id is not None and await self.session.get(Task, task_id) is None:
            raise NotFoundError(f"Task {task_id} not found")
        if report_id is not None and await self.session.get(Report, report_id) is None:
            raise NotFoundError(f"Report {report_id} not found")
        return await self.credit(
            user_id,
            amount,
            TX_BONUS,
            reason=reason.strip(),
            task_id=task_id,
            report_id=report_id,
            created_by_id=created_by_id,
        )

    # --- Read side ---

    async def get_balance(self, user_id: int) -> int:
        balance = await self.session.scalar(select(User.flariki_balance).where(User.id == user_id))
        if balance is None:
            raise LedgerUserNotFoundError(user_id)
        return balance

    async def ledger_sum(self, user_id: int) -> int:
        total = await self.session.scalar(
            select(func.coalesce(func.sum(FlarikiTransaction.amount), 0)).where(
                FlarikiTransaction.user_id == user_id
            )
        )
        return int(total or 0)

    async def list_transactions(
        self,
        user_id: Optional[int] = None,
        tx_type: Optional[str] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[FlarikiTransaction], int]:
        """Newest first, with the total count for pagination."""
        if tx_type is not None and tx_type not in TRANSACTION_TYPES:
            raise ValidationError("Unknown transaction type", {"type": f"must be one of {', '.join(TRANSACTION_TYPES)}"})
        conditions = []
        if user_id is not None:
            conditions.append(FlarikiTransaction.user_id == user_id)
        if tx_type:
            conditions.append(FlarikiTransaction.type == tx_type)

        total = await self.session.scalar(select(func.count(FlarikiTransaction.id)).where(*conditions))
        result = await self.session.execute(
            select(FlarikiTransaction)
            .where(*conditions)
            .order_by(FlarikiTransaction.created_at.desc(), FlarikiTransaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total or 0

    async def get_stats(self) -> dict:
        """Programme-wide totals per transaction type plus the outstanding balance."""
        rows = await self.session.execute(
            select(
                FlarikiTransaction.type,
                func.coalesce(func.sum(FlarikiTransaction.amount), 0),
                func.count(FlarikiTransaction.id),
            ).group_by(FlarikiTransaction.type)
        )
        by_type = {t: {"total": 0, "count": 0} for t in TRANSACTION_TYPES}
        for tx_type, total, count in rows.all():
            by_type[tx_type] = {"total": int(total), "count": int(count)}

        outstanding = await self.session.scalar(select(func.coalesce(func.sum(User.flariki_balance), 0)))
        return {
            "by_type": by_type,
            "total_earned": by_type[TX_EARNED]["total"] + by_type[TX_BONUS]["total"],
            "total_spent": -(by_type[TX_SPENT]["total"] + by_type[TX_PENALTY]["total"]),
            "total_balance": int(outstanding or 0),
        }

    async def find_mismatches(self) -> list[dict]:
        """Users whose stored balance differs from their ledger sum. Empty when consistent."""
        sums = (
            select(
                FlarikiTransaction.user_id.label("user_id"),
                func.sum(FlarikiTransaction.amount).label("ledger_sum"),
            )
            .group_by(FlarikiTransaction.user_id)
            .subquery()
        )
        ledger_sum = func.coalesce(sums.c.ledger_sum, 0)
        result = await self.session.execute(
            select(User.id, User.flariki_balance, ledger_sum)
            .outerjoin(sums, sums.c.user_id == User.id)
            .where(User.flariki_balance != ledger_sum)
        )
        return [
            {"user_id": uid, "balance": balance, "ledger_sum": int(total)}
            for uid, balance, total in result.all()
        ]
