"""
Export of submitted reports to an external spreadsheet.

The spreadsheet client itself lives outside this service; the app only
depends on the ``ReportSync`` interface. ``NullReportSync`` is installed by
default and in tests.
"""
from typing import Any

from ambassador.app.core.logging import get_logger

logger = get_logger(__name__)


def report_export_row(report, user, task) -> dict[str, Any]:
    """Flatten a report into the row layout of the export sheet."""
    return {
        "report_id": report.id,
        "submitted_at": report.submitted_at.isoformat() if report.submitted_at else None,
        "user_name": " ".join(p for p in (user.first_name, user.last_name) if p),
        "telegram_id": user.telegram_id,
        "instagram": user.instagram_link,
        "youtube": user.youtube_link,
        "task_id": task.id,
        "task_title": task.title,
        "type": report.type,
        "status": report.status,
        "video_links": [link.url for link in report.video_links],
        "stories": [story.story_url for story in report.stories],
        "total_reach": sum(story.reach or 0 for story in report.stories),
    }


class ReportSync:
    async def push_report(self, row: dict[str, Any]) -> None:
        raise NotImplementedError


class NullReportSync(ReportSync):
    async def push_report(self, row: dict[str, Any]) -> None:
        logger.debug("Report export disabled", report_id=row.get("report_id"))


async def sync_report_safely(sync: ReportSync, row: dict[str, Any]) -> bool:
    """Push one row; failures are logged, never raised."""
    try:
        await sync.push_report(row)
        return True
    except Exception as e:
        logger.error("Report export failed", report_id=row.get("report_id"), error=str(e))
        return False
