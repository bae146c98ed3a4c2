# ambassador/app/services/reminders.py
"""Weekly report reminders, run by the scheduler in main.py."""
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.core.constants import TASK_ACTIVE, TASK_GENERAL, ROLE_AMBASSADOR, USER_ACTIVE
from ambassador.app.core.logging import get_logger
from ambassador.app.models.report import Report
from ambassador.app.models.task import Task
from ambassador.app.models.user import User
from ambassador.app.services.notifications import Notifier, notify_report_reminder

logger = get_logger(__name__)

MSK = timezone(timedelta(hours=3))


def week_start_utc(now: Optional[datetime] = None) -> datetime:
    """Monday 00:00 Moscow time of the current week, as naive UTC."""
    now = now or datetime.now(tz=MSK)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(MSK)
    monday = (local - timedelta(days=local.weekday())).replace(hour=0, minute=0, second=0, microsecond=0)
    return monday.astimezone(timezone.utc).replace(tzinfo=None)


async def send_weekly_report_reminders(
    session: AsyncSession,
    notifier: Notifier,
    mini_app_url: str = "",
    now: Optional[datetime] = None,
) -> int:
    """
    Remind every ACTIVE ambassador about each ACTIVE task they can see and
    have not reported on since Monday. Returns the number of reminders sent.
    """
    since = week_start_utc(now)

    tasks = list((await session.execute(select(Task).where(Task.status == TASK_ACTIVE).order_by(Task.id))).scalars())
    if not tasks:
        return 0

    ambassadors = {
        u.id: u
        for u in (
            await session.execute(
                select(User).where(User.status == USER_ACTIVE, User.role == ROLE_AMBASSADOR)
            )
        ).scalars()
    }
    reported = set(
        (
            await session.execute(
                select(Report.user_id, Report.task_id).where(
                    Report.submitted_at >= since,
                    Report.task_id.in_([t.id for t in tasks]),
                )
            )
        ).all()
    )

    sent = 0
    for task in tasks:
        if task.type == TASK_GENERAL:
            recipients = list(ambassadors.values())
        else:
            recipients = [ambassadors[uid] for uid in task.assigned_user_ids if uid in ambassadors]
        for user in recipients:
            if (user.id, task.id) in reported or not user.telegram_id:
                continue
            try:
                if await notify_report_reminder(notifier, user.telegram_id, task.id, task.title, mini_app_url):
                    sent += 1
            except Exception as e:
                logger.error("Report reminder failed", user_id=user.id, task_id=task.id, error=str(e))

    logger.info("Weekly report reminders sent", sent=sent, tasks=len(tasks), week_start=since.isoformat())
    return sent
