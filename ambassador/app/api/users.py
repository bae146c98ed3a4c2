from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.api.deps import get_session, get_current_user, require_staff, pagination
from ambassador.app.core.constants import DEFAULT_PAGE_SIZE
from ambassador.app.core.exceptions import ServiceError, raise_http
from ambassador.app.core.logging import get_logger
from ambassador.app.models.user import User
from ambassador.app.schemas import MeResponse, ProfileUpdate, UserResponse, TransactionResponse, Page
from ambassador.app.services.ledger import LedgerService
from ambassador.app.services.users import UserService

router = APIRouter()
logger = get_logger(__name__)


@router.get("/me", response_model=MeResponse)
async def get_me(user: User = Depends(get_current_user)):
    """Профиль текущего пользователя; доступен и до модерации."""
    return user


@router.patch("/me", response_model=MeResponse)
async def update_me(
    data: ProfileUpdate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    fields = data.model_dump(exclude_unset=True)
    try:
        updated = await UserService(session).update_profile(user.id, **fields)
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        raise_http(e)
    logger.info("Profile updated", user_id=user.id, fields=sorted(fields))
    return updated


@router.get("/me/flariki", response_model=list[TransactionResponse])
async def my_flariki(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Последние 50 операций по фларикам."""
    transactions, _ = await LedgerService(session).list_transactions(user_id=user.id, limit=50)
    return transactions


@router.get("", response_model=Page)
async def list_users(
    status: Optional[str] = None,
    role: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1),
    _staff: User = Depends(require_staff),
    session: AsyncSession = Depends(get_session),
):
    page, limit, offset = pagination(page, limit)
    try:
        users, total = await UserService(session).list_users(
            status=status, role=role, search=search, offset=offset, limit=limit
        )
    except ServiceError as e:
        raise_http(e)
    return Page(
        items=[UserResponse.model_validate(u).model_dump() for u in users],
        total=total,
        page=page,
        limit=limit,
    )
