from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.api.deps import get_session, require_staff
from ambassador.app.core.exceptions import ServiceError, raise_http
from ambassador.app.core.logging import get_logger
from ambassador.app.models.user import User
from ambassador.app.schemas import ProductCreate, ProductUpdate, ProductResponse
from ambassador.app.services.products import ProductService

router = APIRouter()
logger = get_logger(__name__)


@router.get("", response_model=list[ProductResponse])
async def list_products(
    active_only: bool = False,
    _staff: User = Depends(require_staff),
    session: AsyncSession = Depends(get_session),
):
    return await ProductService(session).list_products(active_only=active_only)


@router.post("", response_model=ProductResponse, status_code=201)
async def create_product(
    data: ProductCreate,
    _staff: User = Depends(require_staff),
    session: AsyncSession = Depends(get_session),
):
    try:
        product = await ProductService(session).create_product(
            name=data.name,
            description=data.description,
            image_url=data.image_url,
            is_active=data.is_active,
        )
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        raise_http(e)
    return product


@router.patch("/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: int,
    data: ProductUpdate,
    _staff: User = Depends(require_staff),
    session: AsyncSession = Depends(get_session),
):
    try:
        product = await ProductService(session).update_product(product_id, **data.model_dump(exclude_unset=True))
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        raise_http(e)
    return product


@router.delete("/{product_id}")
async def delete_product(
    product_id: int,
    _staff: User = Depends(require_staff),
    session: AsyncSession = Depends(get_session),
):
    """Товар, упомянутый в отчетах, только деактивируется."""
    try:
        deleted = await ProductService(session).delete_product(product_id)
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        raise_http(e)
    logger.info("Product removed", product_id=product_id, deleted=deleted)
    return {"deleted": deleted, "deactivated": not deleted}
