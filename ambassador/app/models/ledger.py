"""Append-only flariki ledger."""
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, DateTime, ForeignKey, Integer, Index, text
from sqlalchemy.orm import Mapped, mapped_column

from ambassador.app.core.base import Base, utcnow


class FlarikiTransaction(Base):
    """
    One balance movement. ``amount`` is signed: EARNED/BONUS are positive,
    SPENT/PENALTY negative. Rows are never updated or deleted; for every user
    the sum of ``amount`` equals ``users.flariki_balance``.
    """
    __tablename__ = 'flariki_transactions'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    task_id: Mapped[Optional[int]] = mapped_column(ForeignKey('tasks.id', ondelete='SET NULL'), nullable=True)
    report_id: Mapped[Optional[int]] = mapped_column(ForeignKey('reports.id', ondelete='SET NULL'), nullable=True)
    created_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index('ix_flariki_tx_user_id', 'user_id'),
        Index('ix_flariki_tx_type', 'type'),
        Index('ix_flariki_tx_created_at', 'created_at'),
        # At most one approval reward per report
        Index(
            'uq_flariki_tx_earned_report',
            'report_id',
            unique=True,
            postgresql_where=text("type = 'EARNED'"),
            sqlite_where=text("type = 'EARNED'"),
        ),
    )
