"""
Admin panel API. Every route requires an ACTIVE MANAGER or ADMIN; the router
is mounted with ``require_staff`` in main.py and handlers take the staff user
again where they need its id.
"""
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.api.deps import get_session, get_notifier, require_staff, pagination
from ambassador.app.api.reports import moderate_report
from ambassador.app.api.tasks import task_response
from ambassador.app.core.constants import (
    AUDIT_USER_MODERATED,
    AUDIT_TAG_ASSIGNED,
    AUDIT_BROADCAST_SENT,
    DEFAULT_PAGE_SIZE,
    USER_ACTIVE,
)
from ambassador.app.core.exceptions import ServiceError, raise_http
from ambassador.app.core.logging import get_logger
from ambassador.app.core.settings import get_settings
from ambassador.app.models.user import User
from ambassador.app.schemas import (
    AdminUserResponse,
    AuditLogResponse,
    BroadcastCreate,
    BroadcastResponse,
    Page,
    PurchaseResponse,
    ReportModerateBody,
    ReportResponse,
    ShopItemCreate,
    ShopItemResponse,
    ShopItemUpdate,
    TagCreate,
    TagResponse,
    UserModerateBody,
    UserTagsBody,
)
from ambassador.app.services.audit import AuditService
from ambassador.app.services.broadcasts import BroadcastService, fan_out
from ambassador.app.services.notifications import Notifier, notify_account_activated
from ambassador.app.services.reports import ReportService
from ambassador.app.services.shop import ShopService
from ambassador.app.services.tasks import TaskService
from ambassador.app.services.users import UserService

router = APIRouter()
logger = get_logger(__name__)


def _admin_user(user: User, tags) -> dict:
    out = AdminUserResponse.model_validate(user)
    out.tags = [TagResponse.model_validate(t) for t in tags]
    return out.model_dump()


# --- Пользователи ---

@router.get("/users", response_model=Page)
async def list_users(
    status: Optional[str] = None,
    role: Optional[str] = None,
    search: Optional[str] = None,
    tag_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1),
    session: AsyncSession = Depends(get_session),
):
    page, limit, offset = pagination(page, limit)
    service = UserService(session)
    try:
        users, total = await service.list_users(
            status=status, role=role, search=search, tag_id=tag_id, offset=offset, limit=limit
        )
    except ServiceError as e:
        raise_http(e)
    tags = await service.get_tags_for_users([u.id for u in users])
    return Page(
        items=[_admin_user(u, tags.get(u.id, [])) for u in users],
        total=total,
        page=page,
        limit=limit,
    )


@router.patch("/users/{user_id}/moderate", response_model=AdminUserResponse)
async def moderate_user(
    user_id: int,
    data: UserModerateBody,
    staff: User = Depends(require_staff),
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
):
    """Смена статуса пользователя; при активации пользователь получает уведомление."""
    service = UserService(session)
    try:
        user, previous = await service.moderate_user(user_id, data.status, staff.id)
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        raise_http(e)

    out = _admin_user(user, await service.get_user_tags(user.id))
    if user.status == USER_ACTIVE and previous != USER_ACTIVE:
        await notify_account_activated(notifier, user.telegram_id)
    await AuditService(session).record(
        AUDIT_USER_MODERATED,
        "User",
        user.id,
        staff.id,
        {"previous_status": previous, "status": user.status},
    )
    return out


@router.post("/users/{user_id}/tags", response_model=list[TagResponse])
async def set_user_tags(
    user_id: int,
    data: UserTagsBody,
    staff: User = Depends(require_staff),
    session: AsyncSession = Depends(get_session),
):
    try:
        tags = await UserService(session).set_user_tags(user_id, data.tag_ids)
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        raise_http(e)

    out = [TagResponse.model_validate(t) for t in tags]
    await AuditService(session).record(
        AUDIT_TAG_ASSIGNED, "User", user_id, staff.id, {"tag_ids": [t.id for t in out]}
    )
    return out


# --- Теги ---

@router.get("/tags", response_model=list[TagResponse])
async def list_tags(session: AsyncSession = Depends(get_session)):
    return await UserService(session).list_tags()


@router.post("/tags", response_model=TagResponse, status_code=201)
async def create_tag(data: TagCreate, session: AsyncSession = Depends(get_session)):
    try:
        tag = await UserService(session).create_tag(data.name, color=data.color, description=data.description)
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        raise_http(e)
    return tag


@router.delete("/tags/{tag_id}")
async def delete_tag(tag_id: int, session: AsyncSession = Depends(get_session)):
    try:
        await UserService(session).delete_tag(tag_id)
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        raise_http(e)
    return {"deleted": True}


# --- Задания и отчеты ---

@router.get("/tasks", response_model=Page)
async def list_tasks(
    status: Optional[str] = None,
    type: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1),
    session: AsyncSession = Depends(get_session),
):
    page, limit, offset = pagination(page, limit)
    service = TaskService(session)
    try:
        tasks, total = await service.list_tasks(status=status, task_type=type, offset=offset, limit=limit)
    except ServiceError as e:
        raise_http(e)
    counts = await service.count_reports([t.id for t in tasks])
    return Page(
        items=[task_response(t, counts.get(t.id, 0)).model_dump() for t in tasks],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/reports", response_model=Page)
async def list_reports(
    status: Optional[str] = None,
    type: Optional[str] = None,
    task_id: Optional[int] = None,
    user_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1),
    session: AsyncSession = Depends(get_session),
):
    page, limit, offset = pagination(page, limit)
    try:
        reports, total = await ReportService(session).list_reports(
            user_id=user_id, task_id=task_id, status=status, report_type=type, offset=offset, limit=limit
        )
    except ServiceError as e:
        raise_http(e)
    return Page(
        items=[ReportResponse.model_validate(r).model_dump() for r in reports],
        total=total,
        page=page,
        limit=limit,
    )


@router.patch("/reports/{report_id}/moderate", response_model=ReportResponse)
async def moderate_report_admin(
    report_id: int,
    data: ReportModerateBody,
    staff: User = Depends(require_staff),
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
):
    return await moderate_report(session, notifier, report_id, staff, data)


# --- Рассылки ---

@router.post("/broadcasts", response_model=BroadcastResponse, status_code=201)
async def create_broadcast(
    data: BroadcastCreate,
    background_tasks: BackgroundTasks,
    staff: User = Depends(require_staff),
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Рассылка активным пользователям (по тегам или всем). Запись сохраняется
    до отправки; сами сообщения уходят в фоне после ответа.
    """
    try:
        broadcast, recipients, linked_tasks = await BroadcastService(session).create_broadcast(
            staff.id,
            data.message,
            title=data.title,
            tag_ids=data.tag_ids,
            task_ids=data.task_ids,
        )
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        raise_http(e)

    out = BroadcastResponse.model_validate(broadcast)
    background_tasks.add_task(
        fan_out,
        notifier,
        broadcast.id,
        [u.telegram_id for u in recipients],
        broadcast.title,
        broadcast.message,
        linked_tasks,
        get_settings().MINI_APP_URL,
    )
    await AuditService(session).record(
        AUDIT_BROADCAST_SENT,
        "Broadcast",
        broadcast.id,
        staff.id,
        {"title": broadcast.title, "recipients_count": broadcast.recipients_count, "task_ids": out.task_ids},
    )
    return out


@router.get("/broadcasts", response_model=Page)
async def list_broadcasts(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1),
    session: AsyncSession = Depends(get_session),
):
    page, limit, offset = pagination(page, limit)
    broadcasts, total = await BroadcastService(session).list_broadcasts(offset=offset, limit=limit)
    return Page(
        items=[BroadcastResponse.model_validate(b).model_dump() for b in broadcasts],
        total=total,
        page=page,
        limit=limit,
    )


# --- Журнал действий ---

@router.get("/audit-logs", response_model=Page)
async def list_audit_logs(
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    user_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1),
    session: AsyncSession = Depends(get_session),
):
    page, limit, offset = pagination(page, limit)
    entries, total = await AuditService(session).list_entries(
        action=action, entity_type=entity_type, user_id=user_id, offset=offset, limit=limit
    )
    return Page(
        items=[AuditLogResponse.model_validate(e).model_dump() for e in entries],
        total=total,
        page=page,
        limit=limit,
    )


# --- Магазин ---

@router.get("/shop-items", response_model=list[ShopItemResponse])
async def list_shop_items(session: AsyncSession = Depends(get_session)):
    return await ShopService(session).list_items(active_only=False)


@router.post("/shop-items", response_model=ShopItemResponse, status_code=201)
async def create_shop_item(data: ShopItemCreate, session: AsyncSession = Depends(get_session)):
    try:
        item = await ShopService(session).create_item(**data.model_dump())
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        raise_http(e)
    return item


@router.patch("/shop-items/{item_id}", response_model=ShopItemResponse)
async def update_shop_item(item_id: int, data: ShopItemUpdate, session: AsyncSession = Depends(get_session)):
    try:
        item = await ShopService(session).update_item(item_id, **data.model_dump(exclude_unset=True))
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        raise_http(e)
    return item


@router.delete("/shop-items/{item_id}")
async def delete_shop_item(item_id: int, session: AsyncSession = Depends(get_session)):
    """Товар с покупками удалить нельзя - только деактивировать."""
    try:
        await ShopService(session).delete_item(item_id)
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        raise_http(e)
    return {"deleted": True}


@router.get("/purchases", response_model=Page)
async def list_purchases(
    status: Optional[str] = None,
    user_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1),
    session: AsyncSession = Depends(get_session),
):
    page, limit, offset = pagination(page, limit)
    try:
        purchases, total = await ShopService(session).list_purchases(
            user_id=user_id, status=status, offset=offset, limit=limit
        )
    except ServiceError as e:
        raise_http(e)
    return Page(
        items=[PurchaseResponse.model_validate(p).model_dump() for p in purchases],
        total=total,
        page=page,
        limit=limit,
    )
