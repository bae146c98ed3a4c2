from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.api.deps import get_session, require_active, require_profile_complete, require_staff
from ambassador.app.core.constants import AUDIT_SHOP_PURCHASE, AUDIT_PURCHASE_STATUS_CHANGED
from ambassador.app.core.exceptions import ServiceError, raise_http
from ambassador.app.core.logging import get_logger
from ambassador.app.models.user import User
from ambassador.app.schemas import ShopItemResponse, PurchaseBody, PurchaseStatusBody, PurchaseResponse
from ambassador.app.services.audit import AuditService
from ambassador.app.services.shop import ShopService

router = APIRouter()
logger = get_logger(__name__)


@router.get("/items", response_model=list[ShopItemResponse])
async def list_items(
    _user: User = Depends(require_active),
    session: AsyncSession = Depends(get_session),
):
    return await ShopService(session).list_items(active_only=True)


@router.get("/purchases", response_model=list[PurchaseResponse])
async def my_purchases(
    user: User = Depends(require_profile_complete),
    session: AsyncSession = Depends(get_session),
):
    purchases, _ = await ShopService(session).list_purchases(user_id=user.id, limit=200)
    return purchases


@router.post("/purchase", response_model=PurchaseResponse, status_code=201)
async def purchase(
    data: PurchaseBody,
    user: User = Depends(require_profile_complete),
    session: AsyncSession = Depends(get_session),
):
    """
    Покупка за фларики. Ошибки остатка, баланса и количества - 400 с полем
    ``code``; отсутствующий товар - 404.
    """
    try:
        result = await ShopService(session).purchase(user.id, data.shop_item_id, data.quantity)
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        raise_http(e)

    out = PurchaseResponse.model_validate(result)
    await AuditService(session).record(
        AUDIT_SHOP_PURCHASE,
        "Purchase",
        result.id,
        user.id,
        {
            "shop_item_id": data.shop_item_id,
            "shop_item_name": out.item.name if out.item else None,
            "quantity": data.quantity,
            "total_price": result.total_price,
        },
    )
    return out


@router.patch("/purchases/{purchase_id}/status", response_model=PurchaseResponse)
async def update_purchase_status(
    purchase_id: int,
    data: PurchaseStatusBody,
    staff: User = Depends(require_staff),
    session: AsyncSession = Depends(get_session),
):
    """Статус меняется только вперед; отмена возможна из любого незавершенного."""
    try:
        result, previous = await ShopService(session).update_purchase_status(
            purchase_id, data.status, notes=data.notes
        )
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        raise_http(e)

    out = PurchaseResponse.model_validate(result)
    await AuditService(session).record(
        AUDIT_PURCHASE_STATUS_CHANGED,
        "Purchase",
        purchase_id,
        staff.id,
        {"old_status": previous, "new_status": data.status, "notes": data.notes},
    )
    return out
