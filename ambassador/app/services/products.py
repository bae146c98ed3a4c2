# ambassador/app/services/products.py
"""
Product catalogue - products ambassadors can tag in their reports.
"""
from typing import Optional, Any

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.core.exceptions import ServiceError, NotFoundError, ValidationError
from ambassador.app.models.report import Product, ReportProduct


class ProductServiceError(ServiceError):
    """Base exception for product service errors."""


class ProductNotFoundError(NotFoundError, ProductServiceError):
    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} not found")


class ProductService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_products(self, active_only: bool = False) -> list[Product]:
        query = select(Product).order_by(Product.name)
        if active_only:
            query = query.where(Product.is_active.is_(True))
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_product(self, product_id: int) -> Product:
        product = await self.session.get(Product, product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        return product

    async def create_product(
        self,
        name: str,
        description: Optional[str] = None,
        image_url: Optional[str] = None,
        is_active: bool = True,
    ) -> Product:
        if not name or not name.strip():
            raise ValidationError("Product name is required", {"name": "must not be empty"})
        product = Product(name=name.strip(), description=description, image_url=image_url, is_active=is_active)
        self.session.add(product)
        await self.session.flush()
        return product

    async def update_product(self, product_id: int, **fields: Any) -> Product:
        product = await self.get_product(product_id)
        for key in ("name", "description", "image_url", "is_active"):
            if key in fields:
                setattr(product, key, fields[key])
        await self.session.flush()
        return product

    async def delete_product(self, product_id: int) -> bool:
        """
        Delete an unused product. Products referenced by reports are only
        deactivated so report history stays intact. Returns True if deleted.
        """
        product = await self.get_product(product_id)
        used = await self.session.scalar(
            select(func.count(ReportProduct.id)).where(ReportProduct.product_id == product_id)
        )
        if used:
            product.is_active = False
            await self.session.flush()
            return False
        await self.session.delete(product)
        await self.session.flush()
        return True
