# ambassador/app/services/broadcasts.py
"""
Broadcast service - segmented mass messages to ambassadors.

The Broadcast row is committed before anything is sent; ``fan_out`` runs
afterwards as a background task and never raises.
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.core.constants import USER_ACTIVE
from ambassador.app.core.exceptions import ServiceError, ValidationError, NotFoundError
from ambassador.app.core.logging import get_logger
from ambassador.app.models.broadcast import Broadcast, BroadcastTask
from ambassador.app.models.task import Task
from ambassador.app.models.user import User, Tag, UserTag
from ambassador.app.services.notifications import Notifier, safe_send, task_message

logger = get_logger(__name__)


class BroadcastServiceError(ServiceError):
    """Base exception for broadcast service errors."""


class BroadcastNotFoundError(NotFoundError, BroadcastServiceError):
    def __init__(self, broadcast_id: int):
        super().__init__(f"Broadcast {broadcast_id} not found")


@dataclass
class LinkedTask:
    """Snapshot of a task attached to a broadcast, detached from the session."""
    id: int
    title: str
    description: Optional[str] = None
    deadline: Optional[object] = None


def broadcast_text(title: Optional[str], message: str) -> str:
    if title:
        return f"📢 {title}\n\n{message}"
    return f"📢 {message}"


class BroadcastService:
    """Service class for broadcast operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def resolve_recipients(self, tag_ids: Optional[list[int]] = None) -> list[User]:
        """ACTIVE users carrying any of ``tag_ids``; all ACTIVE users when no tags are given."""
        query = select(User).where(User.status == USER_ACTIVE)
        if tag_ids:
            query = query.where(
                User.id.in_(select(UserTag.user_id).where(UserTag.tag_id.in_(tag_ids)))
            )
        result = await self.session.execute(query.order_by(User.id))
        return list(result.scalars().all())

    async def create_broadcast(
        self,
        created_by_id: int,
        message: str,
        title: Optional[str] = None,
        tag_ids: Optional[list[int]] = None,
        task_ids: Optional[list[int]] = None,
    ) -> tuple[Broadcast, list[User], list[LinkedTask]]:
        """
        Persist the broadcast and resolve its audience once.

        Returns the broadcast, the recipients and snapshots of the linked
        tasks for the fan-out. Caller must commit before fanning out.
        """
        message = (message or "").strip()
        if not message:
            raise ValidationError("Сообщение обязательно", {"message": "must not be empty"})
        tag_ids = list(dict.fromkeys(tag_ids or []))
        task_ids = list(dict.fromkeys(task_ids or []))

        if tag_ids:
            found = set((await self.session.execute(select(Tag.id).where(Tag.id.in_(tag_ids)))).scalars().all())
            missing = [t for t in tag_ids if t not in found]
            if missing:
                raise ValidationError(
                    f"Tags not found: {', '.join(str(m) for m in missing)}",
                    {"tag_ids": "contains unknown tags"},
                )

        tasks: list[Task] = []
        if task_ids:
            result = await self.session.execute(select(Task).where(Task.id.in_(task_ids)))
            by_id = {task.id: task for task in result.scalars().all()}
            missing = [t for t in task_ids if t not in by_id]
            if missing:
                raise ValidationError(
                    f"Tasks not found: {', '.join(str(m) for m in missing)}",
                    {"task_ids": "contains unknown tasks"},
                )
            tasks = [by_id[t] for t in task_ids]

        recipients = await self.resolve_recipients(tag_ids)

        broadcast = Broadcast(
            title=title,
            message=message,
            tag_ids=tag_ids or None,
            recipients_count=len(recipients),
            created_by_id=created_by_id,
        )
        broadcast.tasks = [BroadcastTask(task_id=t) for t in task_ids]
        self.session.add(broadcast)
        await self.session.flush()

        linked = [
            LinkedTask(id=t.id, title=t.title, description=t.description, deadline=t.deadline)
            for t in tasks
        ]
        logger.info(
            "Broadcast created",
            broadcast_id=broadcast.id,
            recipients=len(recipients),
            tag_ids=tag_ids,
            task_ids=task_ids,
        )
        return broadcast, recipients, linked

    async def get_broadcast(self, broadcast_id: int) -> Broadcast:
        broadcast = await self.session.get(Broadcast, broadcast_id)
        if broadcast is None:
            raise BroadcastNotFoundError(broadcast_id)
        return broadcast

    async def list_broadcasts(self, offset: int = 0, limit: int = 20) -> tuple[list[Broadcast], int]:
        total = await self.session.scalar(select(func.count(Broadcast.id)))
        result = await self.session.execute(
            select(Broadcast).order_by(Broadcast.sent_at.desc(), Broadcast.id.desc()).offset(offset).limit(limit)
        )
        return list(result.scalars().all()), total or 0


async def fan_out(
    notifier: Notifier,
    broadcast_id: int,
    chat_ids: list[Optional[int]],
    title: Optional[str],
    message: str,
    tasks: Optional[list[LinkedTask]] = None,
    mini_app_url: str = "",
) -> int:
    """
    Send the broadcast, then each linked task, to every chat in order.

    A failure for one recipient is logged and skipped. Returns the number of
    recipients that received the main message.
    """
    text = broadcast_text(title, message)
    tasks = tasks or []
    delivered = 0
    for chat_id in chat_ids:
        if not chat_id:
            continue
        try:
            if await safe_send(notifier, chat_id, text):
                delivered += 1
            for task in tasks:
                url = f"{mini_app_url.rstrip('/')}/tasks/{task.id}" if mini_app_url else None
                await safe_send(
                    notifier,
                    chat_id,
                    task_message(task.title, task.description, task.deadline),
                    button_text="Открыть задание",
                    button_url=url,
                )
        except Exception as e:
            logger.error("Broadcast delivery failed", broadcast_id=broadcast_id, chat_id=chat_id, error=str(e))
    logger.info("Broadcast fan-out finished", broadcast_id=broadcast_id, recipients=len(chat_ids), delivered=delivered)
    return delivered
