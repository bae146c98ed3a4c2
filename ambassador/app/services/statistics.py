# ambassador/app/services/statistics.py
"""
Statistics service - aggregates over APPROVED reports for the admin panel.
"""
from datetime import datetime
from typing import Optional, Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.core.constants import (
    REPORT_APPROVED,
    ROLE_AMBASSADOR,
    USER_ACTIVE,
    RATING_VIEW_WEIGHT,
    RATING_LIKE_WEIGHT,
    RATING_COMMENT_WEIGHT,
    RATING_REACH_WEIGHT,
)
from ambassador.app.core.exceptions import ValidationError
from ambassador.app.models.report import Report
from ambassador.app.models.task import Task
from ambassador.app.models.user import User

UNKNOWN_NAME = "Неизвестно"


def _user_name(user: Optional[User]) -> str:
    if user is None:
        return UNKNOWN_NAME
    name = f"{user.first_name or ''} {user.last_name or ''}".strip()
    return name or user.username or UNKNOWN_NAME


def report_metrics(report: Report) -> dict[str, int]:
    """Counters of a single report; missing video counters count as zero."""
    return {
        "videos": len(report.video_links),
        "stories": len(report.stories),
        "views": sum(link.views or 0 for link in report.video_links),
        "likes": sum(link.likes or 0 for link in report.video_links),
        "comments": sum(link.comments or 0 for link in report.video_links),
        "story_reach": sum(story.reach or 0 for story in report.stories),
    }


def rating(metrics: dict[str, int]) -> float:
    value = (
        metrics["views"] * RATING_VIEW_WEIGHT
        + metrics["likes"] * RATING_LIKE_WEIGHT
        + metrics["comments"] * RATING_COMMENT_WEIGHT
        + metrics["story_reach"] * RATING_REACH_WEIGHT
    )
    return round(value, 2)


def _empty_totals() -> dict[str, int]:
    return {"videos": 0, "stories": 0, "views": 0, "likes": 0, "comments": 0, "story_reach": 0}


class StatisticsService:
    """Service class for report statistics."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _approved_reports(
        self,
        start: Optional[datetime],
        end: Optional[datetime],
        user_id: Optional[int] = None,
        task_id: Optional[int] = None,
    ) -> list[Report]:
        if start and end and start > end:
            raise ValidationError("Invalid period", {"start_date": "must not be after end_date"})
        conditions = [Report.status == REPORT_APPROVED]
        if start:
            conditions.append(Report.submitted_at >= start)
        if end:
            conditions.append(Report.submitted_at <= end)
        if user_id is not None:
            conditions.append(Report.user_id == user_id)
        if task_id is not None:
            conditions.append(Report.task_id == task_id)
        result = await self.session.execute(
            select(Report).where(*conditions).order_by(Report.submitted_at.desc(), Report.id.desc())
        )
        return list(result.scalars().all())

    async def overview(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        user_id: Optional[int] = None,
        task_id: Optional[int] = None,
    ) -> dict[str, Any]:
        """Totals over approved reports in the period plus a per-report breakdown."""
        reports = await self._approved_reports(start, end, user_id, task_id)

        user_ids = {r.user_id for r in reports}
        task_ids = {r.task_id for r in reports}
        users = {}
        tasks = {}
        if user_ids:
            users = {u.id: u for u in (await self.session.execute(select(User).where(User.id.in_(user_ids)))).scalars()}
        if task_ids:
            tasks = {t.id: t for t in (await self.session.execute(select(Task).where(Task.id.in_(task_ids)))).scalars()}

        totals = _empty_totals()
        rows = []
        for report in reports:
            metrics = report_metrics(report)
            for key, value in metrics.items():
                totals[key] += value
            task = tasks.get(report.task_id)
            rows.append({
                "id": report.id,
                "user_id": report.user_id,
                "user_name": _user_name(users.get(report.user_id)),
                "task_id": report.task_id,
                "task_title": task.title if task else None,
                "type": report.type,
                "submitted_at": report.submitted_at,
                **metrics,
            })

        return {
            "period": {"start_date": start, "end_date": end},
            "totals": {"reports": len(reports), **totals},
            "reports": rows,
        }

    async def leaderboard(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        task_id: Optional[int] = None,
    ) -> dict[str, Any]:
        """
        Ranking of ACTIVE ambassadors by weighted engagement of their approved
        reports. Ambassadors without reports in the period are left out.
        """
        reports = await self._approved_reports(start, end, task_id=task_id)
        per_user: dict[int, list[Report]] = {}
        for report in reports:
            per_user.setdefault(report.user_id, []).append(report)
        if not per_user:
            return {"period": {"start_date": start, "end_date": end}, "leaderboard": []}

        result = await self.session.execute(
            select(User).where(
                User.id.in_(per_user.keys()),
                User.role == ROLE_AMBASSADOR,
                User.status == USER_ACTIVE,
            )
        )
        entries = []
        for user in result.scalars().all():
            totals = _empty_totals()
            for report in per_user[user.id]:
                for key, value in report_metrics(report).items():
                    totals[key] += value
            entries.append({
                "user_id": user.id,
                "user_name": _user_name(user),
                "username": user.username,
                "telegram_id": user.telegram_id,
                "reports_count": len(per_user[user.id]),
                **totals,
                "rating": rating(totals),
                "flariki_balance": user.flariki_balance,
            })
        entries.sort(key=lambda e: (-e["rating"], e["user_id"]))
        return {"period": {"start_date": start, "end_date": end}, "leaderboard": entries}
