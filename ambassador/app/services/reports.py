# ambassador/app/services/reports.py
"""
Report service - submission and moderation of task reports.

Status machine::

    PENDING -> APPROVED | REJECTED

APPROVED and REJECTED are terminal. Moderating a terminal report with the
same status only edits the notes; asking for a different status is a
conflict. The flariki reward is credited on the PENDING -> APPROVED step,
in the same transaction as the status change, and only if no EARNED row
exists for the report yet.
"""
from dataclasses import dataclass
from typing import Optional, Any

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.core.base import utcnow
from ambassador.app.core.constants import (
    REPORT_VIDEO_LINK,
    REPORT_STORY_SCREENSHOT,
    REPORT_TYPES,
    REPORT_PENDING,
    REPORT_APPROVED,
    REPORT_REJECTED,
    REPORT_STATUSES,
    TERMINAL_REPORT_STATUSES,
    TASK_ACTIVE,
    TX_EARNED,
)
from ambassador.app.core.exceptions import ServiceError, ValidationError, NotFoundError, ConflictError
from ambassador.app.core.logging import get_logger
from ambassador.app.core.metrics import reports_submitted_total, reports_moderated_total
from ambassador.app.core.url_validation import is_http_url
from ambassador.app.models.ledger import FlarikiTransaction
from ambassador.app.models.report import Report, VideoLink, Story, Product, ReportProduct
from ambassador.app.models.task import Task
from ambassador.app.services.ledger import LedgerService
from ambassador.app.services.tasks import TaskService

logger = get_logger(__name__)


class ReportServiceError(ServiceError):
    """Base exception for report service errors."""


class ReportNotFoundError(NotFoundError, ReportServiceError):
    def __init__(self, report_id: int):
        super().__init__(f"Report {report_id} not found")


class InvalidReportTransitionError(ConflictError, ReportServiceError):
    def __init__(self, current: str, requested: str):
        super().__init__(f"Report is {current} and cannot be moved to {requested}")
        self.current = current
        self.requested = requested


@dataclass
class ModerationResult:
    report: Report
    task: Task
    previous_status: str
    status_changed: bool
    reward: Optional[FlarikiTransaction] = None


def _optional_count(value: Any, field: str, errors: dict[str, str]) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        errors[field] = "must be a non-negative integer"
        return None
    return value


def validate_report_payload(
    report_type: str,
    video_links: list[dict[str, Any]],
    stories: list[dict[str, Any]],
) -> None:
    """Shape rules per report type. Raises ValidationError listing every bad field."""
    if report_type not in REPORT_TYPES:
        raise ValidationError("Unknown report type", {"type": f"must be one of {', '.join(REPORT_TYPES)}"})

    errors: dict[str, str] = {}
    if report_type == REPORT_VIDEO_LINK and not video_links:
        errors["video_links"] = "at least one video link is required"
    if report_type == REPORT_STORY_SCREENSHOT and not stories:
        errors["stories"] = "at least one story is required"

    for i, link in enumerate(video_links):
        if not is_http_url(link.get("url")):
            errors[f"video_links.{i}.url"] = "must be a valid URL"
        for field in ("views", "likes", "comments"):
            _optional_count(link.get(field), f"video_links.{i}.{field}", errors)

    for i, story in enumerate(stories):
        if not is_http_url(story.get("story_url")):
            errors[f"stories.{i}.story_url"] = "must be a valid URL"
        reach = story.get("reach")
        if isinstance(reach, bool) or not isinstance(reach, int) or reach <= 0:
            errors[f"stories.{i}.reach"] = "must be a positive integer"
        screenshot = story.get("screenshot_url")
        if screenshot and not (is_http_url(screenshot) or screenshot.startswith("/")):
            errors[f"stories.{i}.screenshot_url"] = "must be a URL or an uploaded file path"

    if errors:
        raise ValidationError("Invalid report data", errors)


class ReportService:
    """Service class for report operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_report(
        self,
        user_id: int,
        task_id: int,
        report_type: str,
        video_links: Optional[list[dict[str, Any]]] = None,
        stories: Optional[list[dict[str, Any]]] = None,
        product_ids: Optional[list[int]] = None,
        notes: Optional[str] = None,
    ) -> Report:
        """
        Persist a PENDING report with its children in submission order.

        The task must be ACTIVE and visible to the submitter; every product
        must exist and be active. Caller must commit.
        """
        video_links = video_links or []
        stories = stories or []
        product_ids = list(dict.fromkeys(product_ids or []))

        validate_report_payload(report_type, video_links, stories)
        await TaskService(self.session).get_visible(task_id, user_id, status=TASK_ACTIVE)

        if product_ids:
            result = await self.session.execute(
                select(Product.id).where(Product.id.in_(product_ids), Product.is_active.is_(True))
            )
            found = set(result.scalars().all())
            missing = [pid for pid in product_ids if pid not in found]
            if missing:
                raise ValidationError(
                    "Некоторые товары не найдены или неактивны",
                    {"product_ids": f"unknown or inactive: {', '.join(str(m) for m in missing)}"},
                )

        report = Report(
            user_id=user_id,
            task_id=task_id,
            type=report_type,
            status=REPORT_PENDING,
            notes=notes,
        )
        report.video_links = [
            VideoLink(
                position=i,
                url=link["url"],
                platform=link.get("platform"),
                views=link.get("views"),
                likes=link.get("likes"),
                comments=link.get("comments"),
            )
            for i, link in enumerate(video_links)
        ]
        report.stories = [
            Story(
                position=i,
                story_url=story["story_url"],
                screenshot_url=story.get("screenshot_url"),
                reach=story["reach"],
            )
            for i, story in enumerate(stories)
        ]
        report.products = [ReportProduct(product_id=pid, quantity=1) for pid in product_ids]
        self.session.add(report)
        await self.session.flush()

        reports_submitted_total.labels(type=report_type).inc()
        logger.info("Report submitted", report_id=report.id, user_id=user_id, task_id=task_id, type=report_type)
        return report

    async def get_report(self, report_id: int) -> Report:
        report = await self.session.get(Report, report_id)
        if report is None:
            raise ReportNotFoundError(report_id)
        return report

    async def get_own_report(self, report_id: int, user_id: int) -> Report:
        """Reports of other users look missing."""
        report = await self.get_report(report_id)
        if report.user_id != user_id:
            raise ReportNotFoundError(report_id)
        return report

    async def list_reports(
        self,
        user_id: Optional[int] = None,
        task_id: Optional[int] = None,
        status: Optional[str] = None,
        report_type: Optional[str] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Report], int]:
        if status and status not in REPORT_STATUSES:
            raise ValidationError("Unknown status", {"status": f"must be one of {', '.join(REPORT_STATUSES)}"})
        if report_type and report_type not in REPORT_TYPES:
            raise ValidationError("Unknown report type", {"type": f"must be one of {', '.join(REPORT_TYPES)}"})
        conditions = []
        if user_id is not None:
            conditions.append(Report.user_id == user_id)
        if task_id is not None:
            conditions.append(Report.task_id == task_id)
        if status:
            conditions.append(Report.status == status)
        if report_type:
            conditions.append(Report.type == report_type)

        total = await self.session.scalar(select(func.count(Report.id)).where(*conditions))
        result = await self.session.execute(
            select(Report)
            .where(*conditions)
            .order_by(Report.submitted_at.desc(), Report.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total or 0

    async def moderate(
        self,
        report_id: int,
        moderator_id: int,
        status: str,
        notes: Optional[str] = None,
        rejection_reason: Optional[str] = None,
    ) -> ModerationResult:
        """
        Apply a moderation decision. Leaving PENDING is a conditional UPDATE on
        the status, so of two concurrent decisions only one succeeds and the
        other gets InvalidReportTransitionError.

        Caller must commit, then notify and audit using the result.

        Raises:
            ReportNotFoundError, ValidationError, InvalidReportTransitionError
        """
        if status not in REPORT_STATUSES:
            raise ValidationError("Unknown status", {"status": f"must be one of {', '.join(REPORT_STATUSES)}"})

        report = await self.session.scalar(
            select(Report).where(Report.id == report_id).with_for_update()
        )
        if report is None:
            raise ReportNotFoundError(report_id)
        task = await self.session.get(Task, report.task_id)
        previous = report.status

        if status == previous:
            # Notes-only edit, no reward and no notification
            if notes is not None:
                report.notes = notes
            await self.session.flush()
            return ModerationResult(report=report, task=task, previous_status=previous, status_changed=False)

        if previous in TERMINAL_REPORT_STATUSES or status == REPORT_PENDING:
            raise InvalidReportTransitionError(previous, status)

        values: dict[str, Any] = {
            "status": status,
            "reviewed_at": utcnow(),
            "reviewed_by_id": moderator_id,
            "rejection_reason": None,
        }
        if status == REPORT_REJECTED:
            reason = (rejection_reason or "").strip()
            if not reason:
                raise ValidationError(
                    "Причина отклонения обязательна",
                    {"rejection_reason": "required when rejecting"},
                )
            values["rejection_reason"] = reason
        if notes is not None:
            values["notes"] = notes

        # Only one moderator can take the report out of PENDING
        result = await self.session.execute(
            update(Report)
            .where(Report.id == report_id, Report.status == REPORT_PENDING)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 0:
            current = await self.session.scalar(select(Report.status).where(Report.id == report_id))
            raise InvalidReportTransitionError(current, status)

        reward = None
        amount = task.reward_flariki or 0
        if status == REPORT_APPROVED and amount > 0:
            ledger = LedgerService(self.session)
            if not await ledger.has_report_reward(report_id):
                reward = await ledger.credit(
                    report.user_id,
                    amount,
                    TX_EARNED,
                    reason=f"Награда за задание: {task.title}",
                    task_id=task.id,
                    report_id=report_id,
                    created_by_id=moderator_id,
                )
        await self.session.flush()

        reports_moderated_total.labels(status=status).inc()
        logger.info(
            "Report moderated",
            report_id=report.id,
            previous_status=previous,
            status=status,
            moderator_id=moderator_id,
            reward=reward.amount if reward else 0,
        )
        return ModerationResult(
            report=report, task=task, previous_status=previous, status_changed=True, reward=reward
        )
