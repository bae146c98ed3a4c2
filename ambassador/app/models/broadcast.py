"""Broadcast campaigns."""
from datetime import datetime
from typing import Optional, List

from sqlalchemy import String, Text, DateTime, ForeignKey, Integer, JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ambassador.app.core.base import Base, utcnow


class Broadcast(Base):
    __tablename__ = 'broadcasts'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    tag_ids: Mapped[Optional[List[int]]] = mapped_column(JSON(), nullable=True)  # None = all active users
    # Resolved once when the broadcast is created, never recomputed
    recipients_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    sent_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    tasks: Mapped[list["BroadcastTask"]] = relationship(
        "BroadcastTask", lazy="selectin", cascade="all, delete-orphan"
    )

    @property
    def task_ids(self) -> list[int]:
        return [t.task_id for t in self.tasks]


class BroadcastTask(Base):
    __tablename__ = 'broadcast_tasks'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    broadcast_id: Mapped[int] = mapped_column(ForeignKey('broadcasts.id', ondelete='CASCADE'), nullable=False)
    task_id: Mapped[int] = mapped_column(ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False)

    __table_args__ = (
        UniqueConstraint('broadcast_id', 'task_id', name='uq_broadcast_tasks_broadcast_task'),
    )
