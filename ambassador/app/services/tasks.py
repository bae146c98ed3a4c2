# ambassador/app/services/tasks.py
"""
Task service - task management, publication and the visibility rule.

A user may see a task when it is GENERAL, or PERSONAL with an assignment
for that user. ``visible_to`` builds that predicate once; the ambassador
task list, the single-task fetch and report submission all use it.
"""
from datetime import datetime
from typing import Optional, Any

from sqlalchemy import select, func, and_, or_, exists
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from ambassador.app.core.base import utcnow
from ambassador.app.core.constants import (
    TASK_GENERAL,
    TASK_PERSONAL,
    TASK_TYPES,
    TASK_DRAFT,
    TASK_ACTIVE,
    TASK_COMPLETED,
    TASK_CANCELLED,
    TASK_STATUSES,
    ROLE_AMBASSADOR,
    USER_ACTIVE,
)
from ambassador.app.core.exceptions import ServiceError, ValidationError, NotFoundError, ConflictError
from ambassador.app.core.logging import get_logger
from ambassador.app.models.report import Report
from ambassador.app.models.task import Task, TaskAssignment
from ambassador.app.models.user import User

logger = get_logger(__name__)


class TaskServiceError(ServiceError):
    """Base exception for task service errors."""


class TaskNotFoundError(NotFoundError, TaskServiceError):
    def __init__(self, task_id: int):
        super().__init__(f"Task {task_id} not found")


class InvalidTaskTransitionError(ConflictError, TaskServiceError):
    def __init__(self, task_id: int, status: str, requested: str = TASK_ACTIVE):
        if requested == TASK_ACTIVE:
            message = f"Task {task_id} is {status}; only DRAFT tasks can be published"
        else:
            message = f"Task {task_id} cannot move from {status} to {requested}"
        super().__init__(message)
        self.status = status
        self.requested = requested


# Status changes allowed through a plain update; DRAFT -> ACTIVE goes through publish_task
TASK_UPDATE_TRANSITIONS = {
    TASK_DRAFT: {TASK_COMPLETED, TASK_CANCELLED},
    TASK_ACTIVE: {TASK_COMPLETED, TASK_CANCELLED},
}


def visible_to(user_id: int) -> ColumnElement[bool]:
    """SQL predicate: task is GENERAL, or PERSONAL and assigned to ``user_id``."""
    assigned = exists().where(
        TaskAssignment.task_id == Task.id,
        TaskAssignment.user_id == user_id,
    )
    return or_(
        Task.type == TASK_GENERAL,
        and_(Task.type == TASK_PERSONAL, assigned),
    )


class TaskService:
    """Service class for task operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # --- Ambassador side ---

    async def list_visible(
        self,
        user_id: int,
        status: Optional[str] = TASK_ACTIVE,
        task_type: Optional[str] = None,
    ) -> list[Task]:
        """Tasks visible to the user, newest first. ``status=None`` means any status."""
        self._check_filters(status, task_type)
        conditions = [visible_to(user_id)]
        if status:
            conditions.append(Task.status == status)
        if task_type:
            conditions.append(Task.type == task_type)
        result = await self.session.execute(
            select(Task).where(*conditions).order_by(Task.created_at.desc(), Task.id.desc())
        )
        return list(result.scalars().all())

    async def get_visible(self, task_id: int, user_id: int, status: Optional[str] = None) -> Task:
        """A single task under the visibility rule; invisible and missing look the same (404)."""
        conditions = [Task.id == task_id, visible_to(user_id)]
        if status:
            conditions.append(Task.status == status)
        task = await self.session.scalar(select(Task).where(*conditions))
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    async def count_user_reports(self, user_id: int, task_ids: list[int]) -> dict[int, int]:
        if not task_ids:
            return {}
        result = await self.session.execute(
            select(Report.task_id, func.count(Report.id))
            .where(Report.user_id == user_id, Report.task_id.in_(task_ids))
            .group_by(Report.task_id)
        )
        return {task_id: count for task_id, count in result.all()}

    # --- Management ---

    async def get_task(self, task_id: int) -> Task:
        task = await self.session.get(Task, task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    async def list_tasks(
        self,
        status: Optional[str] = None,
        task_type: Optional[str] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Task], int]:
        self._check_filters(status, task_type)
        conditions = []
        if status:
            conditions.append(Task.status == status)
        if task_type:
            conditions.append(Task.type == task_type)
        total = await self.session.scalar(select(func.count(Task.id)).where(*conditions))
        result = await self.session.execute(
            select(Task).where(*conditions).order_by(Task.created_at.desc(), Task.id.desc()).offset(offset).limit(limit)
        )
        return list(result.scalars().all()), total or 0

    async def count_reports(self, task_ids: list[int]) -> dict[int, int]:
        if not task_ids:
            return {}
        result = await self.session.execute(
            select(Report.task_id, func.count(Report.id)).where(Report.task_id.in_(task_ids)).group_by(Report.task_id)
        )
        return {task_id: count for task_id, count in result.all()}

    async def create_task(
        self,
        created_by_id: int,
        title: str,
        task_type: str,
        description: Optional[str] = None,
        requirements: Optional[str] = None,
        deadline: Optional[datetime] = None,
        reward_flariki: Optional[int] = None,
        assigned_user_ids: Optional[list[int]] = None,
    ) -> Task:
        """
        Create a DRAFT task. PERSONAL tasks need at least one assignee.
        Caller must commit.
        """
        if task_type not in TASK_TYPES:
            raise ValidationError("Unknown task type", {"type": f"must be one of {', '.join(TASK_TYPES)}"})
        assigned_user_ids = list(dict.fromkeys(assigned_user_ids or []))
        if task_type == TASK_PERSONAL and not assigned_user_ids:
            raise ValidationError(
                "Personal task needs at least one assignee",
                {"assigned_user_ids": "required for PERSONAL tasks"},
            )
        if task_type == TASK_GENERAL and assigned_user_ids:
            raise ValidationError(
                "General tasks cannot have assignees",
                {"assigned_user_ids": "only allowed for PERSONAL tasks"},
            )
        await self._check_users_exist(assigned_user_ids)

        task = Task(
            title=title,
            description=description,
            requirements=requirements,
            type=task_type,
            status=TASK_DRAFT,
            deadline=deadline,
            reward_flariki=reward_flariki,
            created_by_id=created_by_id,
        )
        task.assignments = [TaskAssignment(user_id=uid) for uid in assigned_user_ids]
        self.session.add(task)
        await self.session.flush()
        return task

    async def update_task(self, task_id: int, **fields: Any) -> Task:
        """
        Partial update. ``assigned_user_ids`` replaces the assignment set of a
        PERSONAL task and may not be empty. Status can only move to COMPLETED
        or CANCELLED here; publishing is the only way to ACTIVE. Caller must commit.
        """
        task = await self.get_task(task_id)

        status = fields.pop("status", None)
        if status is not None:
            if status not in TASK_STATUSES:
                raise ValidationError("Unknown status", {"status": f"must be one of {', '.join(TASK_STATUSES)}"})
            if status != task.status:
                if status not in TASK_UPDATE_TRANSITIONS.get(task.status, set()):
                    raise InvalidTaskTransitionError(task_id, task.status, status)
                task.status = status

        assigned_user_ids = fields.pop("assigned_user_ids", None)
        if assigned_user_ids is not None:
            if task.type != TASK_PERSONAL:
                raise ValidationError(
                    "General tasks cannot have assignees",
                    {"assigned_user_ids": "only allowed for PERSONAL tasks"},
                )
            if not assigned_user_ids:
                raise ValidationError(
                    "Personal task needs at least one assignee",
                    {"assigned_user_ids": "required for PERSONAL tasks"},
                )
            assigned_user_ids = list(dict.fromkeys(assigned_user_ids))
            await self._check_users_exist(assigned_user_ids)
            current = {a.user_id: a for a in task.assignments}
            task.assignments = [current.get(uid) or TaskAssignment(user_id=uid) for uid in assigned_user_ids]

        for key in ("title", "description", "requirements", "deadline", "reward_flariki"):
            if key in fields:
                setattr(task, key, fields[key])

        await self.session.flush()
        return task

    async def publish_task(self, task_id: int, published_by_id: int) -> Task:
        """
        DRAFT -> ACTIVE. A PERSONAL task without assignees is refused rather
        than silently reclassified. Caller must commit, then notify.
        """
        task = await self.session.scalar(select(Task).where(Task.id == task_id).with_for_update())
        if task is None:
            raise TaskNotFoundError(task_id)
        if task.status != TASK_DRAFT:
            raise InvalidTaskTransitionError(task_id, task.status)
        if task.type == TASK_PERSONAL and not task.assignments:
            raise ValidationError(
                "Personal task has no assignees; assign users or change the type to GENERAL before publishing",
                {"assigned_user_ids": "required for PERSONAL tasks"},
            )
        task.status = TASK_ACTIVE
        task.published_at = utcnow()
        task.published_by_id = published_by_id
        await self.session.flush()
        logger.info("Task published", task_id=task.id, type=task.type, published_by=published_by_id)
        return task

    async def notification_chat_ids(self, task: Task) -> list[int]:
        """Telegram chats to notify about a task: active ambassadors or active assignees."""
        query = select(User.telegram_id).where(User.status == USER_ACTIVE, User.telegram_id.is_not(None))
        if task.type == TASK_GENERAL:
            query = query.where(User.role == ROLE_AMBASSADOR)
        else:
            query = query.where(User.id.in_(task.assigned_user_ids))
        result = await self.session.execute(query.order_by(User.id))
        return list(result.scalars().all())

    async def _check_users_exist(self, user_ids: list[int]) -> None:
        if not user_ids:
            return
        found = set((await self.session.execute(select(User.id).where(User.id.in_(user_ids)))).scalars().all())
        missing = [uid for uid in user_ids if uid not in found]
        if missing:
            raise ValidationError(
                f"Users not found: {', '.join(str(m) for m in missing)}",
                {"assigned_user_ids": "contains unknown users"},
            )

    def _check_filters(self, status: Optional[str], task_type: Optional[str]) -> None:
        if status and status not in TASK_STATUSES:
            raise ValidationError("Unknown status", {"status": f"must be one of {', '.join(TASK_STATUSES)}"})
        if task_type and task_type not in TASK_TYPES:
            raise ValidationError("Unknown task type", {"type": f"must be one of {', '.join(TASK_TYPES)}"})
