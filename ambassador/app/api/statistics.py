from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.api.deps import get_session, require_staff
from ambassador.app.core.exceptions import ServiceError, raise_http
from ambassador.app.models.user import User
from ambassador.app.schemas import naive_utc
from ambassador.app.services.statistics import StatisticsService

router = APIRouter()


@router.get("/overview")
async def overview(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    user_id: Optional[int] = None,
    task_id: Optional[int] = None,
    _staff: User = Depends(require_staff),
    session: AsyncSession = Depends(get_session),
):
    """Сводка по одобренным отчетам за период."""
    try:
        return await StatisticsService(session).overview(
            naive_utc(start_date), naive_utc(end_date), user_id=user_id, task_id=task_id
        )
    except ServiceError as e:
        raise_http(e)


@router.get("/leaderboard")
async def leaderboard(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    task_id: Optional[int] = None,
    _staff: User = Depends(require_staff),
    session: AsyncSession = Depends(get_session),
):
    """Рейтинг амбассадоров: просмотры + 2*лайки + 3*комментарии + 0.5*охват."""
    try:
        return await StatisticsService(session).leaderboard(
            naive_utc(start_date), naive_utc(end_date), task_id=task_id
        )
    except ServiceError as e:
        raise_http(e)
