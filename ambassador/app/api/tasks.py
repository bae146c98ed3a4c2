from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.api.deps import (
    get_session,
    get_notifier,
    require_profile_complete,
    require_staff,
    pagination,
)
from ambassador.app.core.constants import (
    AUDIT_TASK_CREATED,
    AUDIT_TASK_UPDATED,
    AUDIT_TASK_PUBLISHED,
    DEFAULT_PAGE_SIZE,
    TASK_ACTIVE,
)
from ambassador.app.core.exceptions import ServiceError, raise_http
from ambassador.app.core.logging import get_logger
from ambassador.app.core.settings import get_settings
from ambassador.app.models.task import Task
from ambassador.app.models.user import User
from ambassador.app.schemas import TaskCreate, TaskUpdate, TaskResponse, Page
from ambassador.app.services.audit import AuditService
from ambassador.app.services.notifications import Notifier, notify_new_task
from ambassador.app.services.tasks import TaskService

router = APIRouter()
logger = get_logger(__name__)


def task_response(task: Task, reports_count: Optional[int] = None) -> TaskResponse:
    out = TaskResponse.model_validate(task)
    out.reports_count = reports_count
    return out


# --- Амбассадоры ---

@router.get("/me", response_model=list[TaskResponse])
async def my_tasks(
    status: Optional[str] = TASK_ACTIVE,
    type: Optional[str] = None,
    user: User = Depends(require_profile_complete),
    session: AsyncSession = Depends(get_session),
):
    """
    Задания, видимые пользователю: все GENERAL и назначенные ему PERSONAL.
    ``reports_count`` - число его отчетов по заданию.
    """
    service = TaskService(session)
    try:
        tasks = await service.list_visible(user.id, status=status or None, task_type=type)
    except ServiceError as e:
        raise_http(e)
    counts = await service.count_user_reports(user.id, [t.id for t in tasks])
    return [task_response(t, counts.get(t.id, 0)) for t in tasks]


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(
    task_id: int,
    user: User = Depends(require_profile_complete),
    session: AsyncSession = Depends(get_session),
):
    service = TaskService(session)
    try:
        task = await service.get_visible(task_id, user.id, status=TASK_ACTIVE)
    except ServiceError as e:
        raise_http(e)
    counts = await service.count_user_reports(user.id, [task.id])
    return task_response(task, counts.get(task.id, 0))


# --- Менеджеры ---

@router.get("", response_model=Page)
async def list_tasks(
    status: Optional[str] = None,
    type: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1),
    _staff: User = Depends(require_staff),
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


@router.post("", response_model=TaskResponse, status_code=201)
async def create_task(
    data: TaskCreate,
    staff: User = Depends(require_staff),
    session: AsyncSession = Depends(get_session),
):
    try:
        task = await TaskService(session).create_task(
            created_by_id=staff.id,
            title=data.title,
            task_type=data.type,
            description=data.description,
            requirements=data.requirements,
            deadline=data.deadline,
            reward_flariki=data.reward_flariki,
            assigned_user_ids=data.assigned_user_ids,
        )
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        raise_http(e)

    logger.info("Task created", task_id=task.id, type=task.type, created_by=staff.id)
    out = task_response(task, 0)
    await AuditService(session).record(
        AUDIT_TASK_CREATED, "Task", task.id, staff.id, {"title": task.title, "type": task.type}
    )
    return out


@router.patch("/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: int,
    data: TaskUpdate,
    staff: User = Depends(require_staff),
    session: AsyncSession = Depends(get_session),
):
    fields = data.model_dump(exclude_unset=True)
    try:
        task = await TaskService(session).update_task(task_id, **fields)
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        raise_http(e)

    out = task_response(task)
    await AuditService(session).record(
        AUDIT_TASK_UPDATED, "Task", task_id, staff.id, {"fields": sorted(fields)}
    )
    return out


@router.post("/{task_id}/publish", response_model=TaskResponse)
async def publish_task(
    task_id: int,
    staff: User = Depends(require_staff),
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
):
    """
    DRAFT -> ACTIVE. После коммита рассылает уведомление о новом задании;
    ошибки доставки не влияют на результат.
    """
    service = TaskService(session)
    try:
        task = await service.publish_task(task_id, staff.id)
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        raise_http(e)

    out = task_response(task)
    chat_ids = await service.notification_chat_ids(task)
    sent = await notify_new_task(
        notifier,
        chat_ids,
        task.id,
        task.title,
        task.description,
        task.deadline,
        mini_app_url=get_settings().MINI_APP_URL,
    )
    await AuditService(session).record(
        AUDIT_TASK_PUBLISHED,
        "Task",
        task.id,
        staff.id,
        {"type": task.type, "recipients": len(chat_ids), "delivered": sent},
    )
    return out
