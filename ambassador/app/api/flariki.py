from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.api.deps import get_session, require_active, require_staff, pagination
from ambassador.app.core.constants import AUDIT_FLARIKI_AWARDED
from ambassador.app.core.exceptions import ServiceError, raise_http
from ambassador.app.core.logging import get_logger
from ambassador.app.models.user import User
from ambassador.app.schemas import AwardBody, BalanceResponse, TransactionResponse, Page
from ambassador.app.services.audit import AuditService
from ambassador.app.services.ledger import LedgerService

router = APIRouter()
logger = get_logger(__name__)


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    user: User = Depends(require_active),
    session: AsyncSession = Depends(get_session),
):
    try:
        balance = await LedgerService(session).get_balance(user.id)
    except ServiceError as e:
        raise_http(e)
    return BalanceResponse(balance=balance)


@router.get("/transactions", response_model=Page)
async def get_transactions(
    type: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1),
    user: User = Depends(require_active),
    session: AsyncSession = Depends(get_session),
):
    page, limit, offset = pagination(page, limit)
    try:
        transactions, total = await LedgerService(session).list_transactions(
            user_id=user.id, tx_type=type, offset=offset, limit=limit
        )
    except ServiceError as e:
        raise_http(e)
    return Page(
        items=[TransactionResponse.model_validate(t).model_dump() for t in transactions],
        total=total,
        page=page,
        limit=limit,
    )


@router.post("/award", response_model=TransactionResponse, status_code=201)
async def award_flariki(
    data: AwardBody,
    staff: User = Depends(require_staff),
    session: AsyncSession = Depends(get_session),
):
    """Ручное начисление бонуса (BONUS) менеджером."""
    try:
        tx = await LedgerService(session).award_bonus(
            data.user_id,
            data.amount,
            data.reason,
            created_by_id=staff.id,
            task_id=data.task_id,
            report_id=data.report_id,
        )
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        raise_http(e)

    out = TransactionResponse.model_validate(tx)
    await AuditService(session).record(
        AUDIT_FLARIKI_AWARDED,
        "User",
        data.user_id,
        staff.id,
        {"amount": data.amount, "reason": data.reason, "transaction_id": tx.id},
    )
    return out


@router.get("/stats")
async def get_stats(
    _staff: User = Depends(require_staff),
    session: AsyncSession = Depends(get_session),
):
    return await LedgerService(session).get_stats()


@router.get("/reconcile")
async def reconcile(
    _staff: User = Depends(require_staff),
    session: AsyncSession = Depends(get_session),
):
    """Пользователи, у которых баланс расходится с суммой по журналу."""
    mismatches = await LedgerService(session).find_mismatches()
    if mismatches:
        logger.error("Flariki ledger mismatch", count=len(mismatches))
    return {"consistent": not mismatches, "mismatches": mismatches}
