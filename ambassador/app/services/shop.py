# ambassador/app/services/shop.py
"""
Shop service - catalogue management and flariki purchases.

A purchase is one transaction: conditional stock decrement, conditional
balance debit (through LedgerService, which writes the SPENT row) and the
Purchase insert. Both decrements are single UPDATE ... WHERE statements, so
concurrent buyers of the last unit cannot both succeed.
"""
from typing import Optional, Any

from sqlalchemy import select, update, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.core.constants import (
    TX_SPENT,
    MIN_PURCHASE_QUANTITY,
    MAX_PURCHASE_QUANTITY,
    PURCHASE_PENDING,
    PURCHASE_CANCELLED,
    PURCHASE_STATUSES,
    PURCHASE_PIPELINE,
    TERMINAL_PURCHASE_STATUSES,
)
from ambassador.app.core.exceptions import ServiceError, ValidationError, NotFoundError, ConflictError
from ambassador.app.core.logging import get_logger
from ambassador.app.core.metrics import purchases_total
from ambassador.app.models.shop import ShopItem, Purchase
from ambassador.app.services.ledger import LedgerService, InsufficientBalanceError as LedgerInsufficientBalance

logger = get_logger(__name__)


class ShopServiceError(ServiceError):
    """Base exception for shop errors. ``code`` tells the client which rule failed."""
    code = "shop_error"

    def detail(self):
        return {"message": self.message, "code": self.code}


class ShopItemNotFoundError(NotFoundError, ShopServiceError):
    code = "item_not_found"

    def __init__(self, item_id: int):
        super().__init__(f"Shop item {item_id} not found")


class ItemUnavailableError(ShopServiceError):
    code = "item_unavailable"

    def __init__(self, item_id: int):
        super().__init__(f"Shop item {item_id} is not available", 400)


class InsufficientStockError(ShopServiceError):
    code = "insufficient_stock"

    def __init__(self, requested: int, available: Optional[int]):
        super().__init__(f"Недостаточно товара на складе: запрошено {requested}, доступно {available or 0}", 400)
        self.requested = requested
        self.available = available


class InsufficientBalanceError(ShopServiceError):
    code = "insufficient_balance"

    def __init__(self, required: int, available: int):
        super().__init__(f"Недостаточно флариков. Требуется: {required}, доступно: {available}", 400)
        self.required = required
        self.available = available


class ShopItemInUseError(ShopServiceError):
    code = "item_has_purchases"

    def __init__(self, purchases: int):
        super().__init__(
            f"Товар был куплен {purchases} раз(а). Деактивируйте товар вместо удаления.", 400
        )


class PurchaseNotFoundError(NotFoundError, ShopServiceError):
    code = "purchase_not_found"

    def __init__(self, purchase_id: int):
        super().__init__(f"Purchase {purchase_id} not found")


class InvalidPurchaseTransitionError(ConflictError, ShopServiceError):
    code = "invalid_transition"

    def __init__(self, current: str, requested: str):
        super().__init__(f"Purchase is {current} and cannot be moved to {requested}")


def check_purchase_transition(current: str, requested: str) -> None:
    """
    Forward-only: PENDING -> PROCESSING -> SHIPPED -> DELIVERED, steps may be
    skipped; CANCELLED from any non-terminal state.
    """
    if requested not in PURCHASE_STATUSES:
        raise ValidationError("Unknown status", {"status": f"must be one of {', '.join(PURCHASE_STATUSES)}"})
    if current in TERMINAL_PURCHASE_STATUSES:
        raise InvalidPurchaseTransitionError(current, requested)
    if requested == PURCHASE_CANCELLED:
        return
    if PURCHASE_PIPELINE.index(requested) <= PURCHASE_PIPELINE.index(current):
        raise InvalidPurchaseTransitionError(current, requested)


class ShopService:
    """Service class for shop operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # --- Catalogue ---

    async def list_items(self, active_only: bool = True) -> list[ShopItem]:
        query = select(ShopItem).order_by(ShopItem.category, ShopItem.price, ShopItem.id)
        if active_only:
            query = query.where(ShopItem.is_active.is_(True))
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_item(self, item_id: int) -> ShopItem:
        item = await self.session.get(ShopItem, item_id, populate_existing=True)
        if item is None:
            raise ShopItemNotFoundError(item_id)
        return item

    async def create_item(
        self,
        name: str,
        price: int,
        description: Optional[str] = None,
        image_url: Optional[str] = None,
        category: Optional[str] = None,
        stock: Optional[int] = None,
        is_active: bool = True,
    ) -> ShopItem:
        self._check_item_fields(price=price, stock=stock)
        item = ShopItem(
            name=name,
            price=price,
            description=description,
            image_url=image_url,
            category=category,
            stock=stock,
            is_active=is_active,
        )
        self.session.add(item)
        await self.session.flush()
        return item

    async def update_item(self, item_id: int, **fields: Any) -> ShopItem:
        """Price changes never touch existing purchases, their total is frozen."""
        item = await self.get_item(item_id)
        self._check_item_fields(price=fields.get("price"), stock=fields.get("stock"))
        for key in ("name", "description", "image_url", "category", "price", "stock", "is_active"):
            if key in fields:
                setattr(item, key, fields[key])
        await self.session.flush()
        return item

    async def delete_item(self, item_id: int) -> None:
        item = await self.get_item(item_id)
        purchases = await self.session.scalar(
            select(func.count(Purchase.id)).where(Purchase.shop_item_id == item_id)
        )
        if purchases:
            raise ShopItemInUseError(purchases)
        await self.session.delete(item)
        await self.session.flush()

    def _check_item_fields(self, price: Optional[int] = None, stock: Optional[int] = None) -> None:
        errors = {}
        if price is not None and price <= 0:
            errors["price"] = "must be a positive integer"
        if stock is not None and stock < 0:
            errors["stock"] = "must not be negative"
        if errors:
            raise ValidationError("Invalid shop item", errors)

    # --- Purchases ---

    async def purchase(self, user_id: int, shop_item_id: int, quantity: int) -> Purchase:
        """
        Buy ``quantity`` units for flariki.

        Caller must commit on success and roll back on error; the stock
        decrement may already have been issued when the balance check fails.

        Raises:
            ValidationError: quantity outside 1..10
            ShopItemNotFoundError, ItemUnavailableError,
            InsufficientStockError, InsufficientBalanceError
        """
        if not MIN_PURCHASE_QUANTITY <= quantity <= MAX_PURCHASE_QUANTITY:
            raise ValidationError(
                f"Quantity must be between {MIN_PURCHASE_QUANTITY} and {MAX_PURCHASE_QUANTITY}",
                {"quantity": f"must be between {MIN_PURCHASE_QUANTITY} and {MAX_PURCHASE_QUANTITY}"},
            )

        item = await self.get_item(shop_item_id)
        if not item.is_active:
            purchases_total.labels(outcome="unavailable").inc()
            raise ItemUnavailableError(shop_item_id)

        # NULL stock stays NULL (unlimited)
        result = await self.session.execute(
            update(ShopItem)
            .where(
                ShopItem.id == shop_item_id,
                ShopItem.is_active.is_(True),
                or_(ShopItem.stock.is_(None), ShopItem.stock >= quantity),
            )
            .values(stock=ShopItem.stock - quantity)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 0:
            item = await self.get_item(shop_item_id)
            purchases_total.labels(outcome="insufficient_stock").inc()
            if not item.is_active:
                raise ItemUnavailableError(shop_item_id)
            raise InsufficientStockError(quantity, item.stock)

        total_price = item.price * quantity
        try:
            await LedgerService(self.session).debit(
                user_id,
                total_price,
                TX_SPENT,
                reason=f"Покупка: {item.name} x{quantity}",
            )
        except LedgerInsufficientBalance as e:
            purchases_total.labels(outcome="insufficient_balance").inc()
            raise InsufficientBalanceError(e.required, e.available)

        purchase = Purchase(
            user_id=user_id,
            shop_item_id=shop_item_id,
            quantity=quantity,
            total_price=total_price,
            status=PURCHASE_PENDING,
            item=item,
        )
        self.session.add(purchase)
        await self.session.flush()

        purchases_total.labels(outcome="success").inc()
        logger.info(
            "Purchase created",
            purchase_id=purchase.id,
            user_id=user_id,
            shop_item_id=shop_item_id,
            quantity=quantity,
            total_price=total_price,
        )
        return purchase

    async def get_purchase(self, purchase_id: int) -> Purchase:
        purchase = await self.session.get(Purchase, purchase_id)
        if purchase is None:
            raise PurchaseNotFoundError(purchase_id)
        return purchase

    async def list_purchases(
        self,
        user_id: Optional[int] = None,
        status: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[Purchase], int]:
        if status and status not in PURCHASE_STATUSES:
            raise ValidationError("Unknown status", {"status": f"must be one of {', '.join(PURCHASE_STATUSES)}"})
        conditions = []
        if user_id is not None:
            conditions.append(Purchase.user_id == user_id)
        if status:
            conditions.append(Purchase.status == status)
        total = await self.session.scalar(select(func.count(Purchase.id)).where(*conditions))
        result = await self.session.execute(
            select(Purchase)
            .where(*conditions)
            .order_by(Purchase.created_at.desc(), Purchase.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total or 0

    async def get_items_by_ids(self, item_ids: list[int]) -> dict[int, ShopItem]:
        if not item_ids:
            return {}
        result = await self.session.execute(select(ShopItem).where(ShopItem.id.in_(set(item_ids))))
        return {item.id: item for item in result.scalars().all()}

    async def update_purchase_status(
        self, purchase_id: int, status: str, notes: Optional[str] = None
    ) -> tuple[Purchase, str]:
        """
        Move a purchase forward. Cancelling does not refund flariki; a refund
        is a separate manual BONUS award. Returns the purchase and its
        previous status. Caller must commit.
        """
        purchase = await self.session.scalar(
            select(Purchase).where(Purchase.id == purchase_id).with_for_update()
        )
        if purchase is None:
            raise PurchaseNotFoundError(purchase_id)
        previous = purchase.status
        check_purchase_transition(previous, status)
        purchase.status = status
        if notes is not None:
            purchase.notes = notes
        await self.session.flush()
        logger.info("Purchase status changed", purchase_id=purchase_id, previous=previous, status=status)
        return purchase, previous
