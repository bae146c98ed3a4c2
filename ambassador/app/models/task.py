"""Marketing tasks and their personal assignments."""
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, DateTime, ForeignKey, Integer, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ambassador.app.core.base import Base, utcnow
from ambassador.app.core.constants import TASK_GENERAL, TASK_DRAFT


class Task(Base):
    """
    A marketing task. GENERAL tasks are visible to every ambassador,
    PERSONAL ones only to users holding a TaskAssignment.
    """
    __tablename__ = 'tasks'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    requirements: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(20), default=TASK_GENERAL, server_default=TASK_GENERAL)
    status: Mapped[str] = mapped_column(String(20), default=TASK_DRAFT, server_default=TASK_DRAFT)
    reward_flariki: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    deadline: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    published_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id', ondelete='SET NULL'), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    assignments: Mapped[list["TaskAssignment"]] = relationship(
        "TaskAssignment", back_populates="task", lazy="selectin", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index('ix_tasks_status_type', 'status', 'type'),
    )

    @property
    def assigned_user_ids(self) -> list[int]:
        return [a.user_id for a in self.assignments]


class TaskAssignment(Base):
    __tablename__ = 'task_assignments'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    task_id: Mapped[int] = mapped_column(ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    task: Mapped["Task"] = relationship("Task", back_populates="assignments")

    __table_args__ = (
        UniqueConstraint('task_id', 'user_id', name='uq_task_assignments_task_user'),
        Index('ix_task_assignments_user_id', 'user_id'),
    )
