from typing import Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.api.deps import (
    get_session,
    get_notifier,
    get_report_sync,
    get_blob_store,
    get_current_user,
    require_profile_complete,
    require_staff,
    pagination,
)
from ambassador.app.core.constants import (
    AUDIT_REPORT_MODERATED,
    DEFAULT_PAGE_SIZE,
    REPORT_APPROVED,
    REPORT_REJECTED,
    STAFF_ROLES,
)
from ambassador.app.core.exceptions import ServiceError, raise_http
from ambassador.app.core.logging import get_logger
from ambassador.app.models.task import Task
from ambassador.app.models.user import User
from ambassador.app.schemas import (
    ReportCreate,
    ReportModerateBody,
    ReportResponse,
    UploadResponse,
    Page,
)
from ambassador.app.services.audit import AuditService
from ambassador.app.services.notifications import Notifier, notify_report_approved, notify_report_rejected
from ambassador.app.services.report_sync import ReportSync, report_export_row, sync_report_safely
from ambassador.app.services.reports import ReportService
from ambassador.app.services.storage import BlobStore

router = APIRouter()
logger = get_logger(__name__)


async def moderate_report(
    session: AsyncSession,
    notifier: Notifier,
    report_id: int,
    moderator: User,
    data: ReportModerateBody,
) -> ReportResponse:
    """
    Shared by PATCH /reports/{id} and the admin alias: moderate, commit, then
    notify the author and write the audit entry. Only a real status change
    notifies.
    """
    try:
        result = await ReportService(session).moderate(
            report_id,
            moderator.id,
            data.status,
            notes=data.notes,
            rejection_reason=data.rejection_reason,
        )
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        raise_http(e)

    report = result.report
    out = ReportResponse.model_validate(report)
    if not result.status_changed:
        return out

    author = await session.get(User, report.user_id)
    chat_id = author.telegram_id if author else None
    if report.status == REPORT_APPROVED:
        await notify_report_approved(
            notifier, chat_id, result.task.title, result.reward.amount if result.reward else None
        )
    elif report.status == REPORT_REJECTED:
        await notify_report_rejected(notifier, chat_id, result.task.title, report.rejection_reason)

    await AuditService(session).record(
        AUDIT_REPORT_MODERATED,
        "Report",
        report.id,
        moderator.id,
        {
            "previous_status": result.previous_status,
            "status": report.status,
            "reward": result.reward.amount if result.reward else 0,
        },
    )
    return out


@router.post("/upload-screenshot", response_model=UploadResponse, status_code=201)
async def upload_screenshot(
    screenshot: UploadFile = File(...),
    user: User = Depends(require_profile_complete),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """Загрузка скриншота охвата сторис; возвращает URL для поля screenshot_url."""
    content = await screenshot.read()
    try:
        url = await blob_store.store(content)
    except ServiceError as e:
        raise_http(e)
    logger.info("Screenshot uploaded", user_id=user.id, url=url)
    return UploadResponse(url=url)


@router.post("", response_model=ReportResponse, status_code=201)
async def create_report(
    data: ReportCreate,
    user: User = Depends(require_profile_complete),
    session: AsyncSession = Depends(get_session),
    report_sync: ReportSync = Depends(get_report_sync),
):
    try:
        report = await ReportService(session).create_report(
            user_id=user.id,
            task_id=data.task_id,
            report_type=data.type,
            video_links=[link.model_dump() for link in data.video_links],
            stories=[story.as_dict() for story in data.stories],
            product_ids=data.product_ids,
            notes=data.notes,
        )
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        raise_http(e)

    out = ReportResponse.model_validate(report)
    task = await session.get(Task, report.task_id)
    await sync_report_safely(report_sync, report_export_row(report, user, task))
    return out


@router.get("/me", response_model=list[ReportResponse])
async def my_reports(
    task_id: Optional[int] = None,
    status: Optional[str] = None,
    type: Optional[str] = None,
    user: User = Depends(require_profile_complete),
    session: AsyncSession = Depends(get_session),
):
    try:
        reports, _ = await ReportService(session).list_reports(
            user_id=user.id, task_id=task_id, status=status, report_type=type, limit=200
        )
    except ServiceError as e:
        raise_http(e)
    return reports


@router.get("", response_model=Page)
async def list_reports(
    task_id: Optional[int] = None,
    user_id: Optional[int] = None,
    status: Optional[str] = None,
    type: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1),
    _staff: User = Depends(require_staff),
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


@router.get("/{report_id}", response_model=ReportResponse)
async def get_report(
    report_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Свой отчет; менеджеры видят любой."""
    service = ReportService(session)
    try:
        if user.role in STAFF_ROLES:
            return await service.get_report(report_id)
        return await service.get_own_report(report_id, user.id)
    except ServiceError as e:
        raise_http(e)


@router.patch("/{report_id}", response_model=ReportResponse)
async def patch_report(
    report_id: int,
    data: ReportModerateBody,
    staff: User = Depends(require_staff),
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
):
    return await moderate_report(session, notifier, report_id, staff, data)
