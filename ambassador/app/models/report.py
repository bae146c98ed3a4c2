"""Reports with their ordered video links / stories, and the product catalogue."""
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, DateTime, ForeignKey, Integer, Boolean, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ambassador.app.core.base import Base, utcnow
from ambassador.app.core.constants import REPORT_PENDING


class Product(Base):
    """Product that may be featured in ambassador content."""
    __tablename__ = 'products'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class Report(Base):
    __tablename__ = 'reports'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    task_id: Mapped[int] = mapped_column(ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=REPORT_PENDING, server_default=REPORT_PENDING)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    submitted_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    reviewed_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    video_links: Mapped[list["VideoLink"]] = relationship(
        "VideoLink", lazy="selectin", order_by="VideoLink.position", cascade="all, delete-orphan"
    )
    stories: Mapped[list["Story"]] = relationship(
        "Story", lazy="selectin", order_by="Story.position", cascade="all, delete-orphan"
    )
    products: Mapped[list["ReportProduct"]] = relationship(
        "ReportProduct", lazy="selectin", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index('ix_reports_user_id', 'user_id'),
        Index('ix_reports_task_id', 'task_id'),
        Index('ix_reports_status', 'status'),
    )


class VideoLink(Base):
    __tablename__ = 'video_links'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    report_id: Mapped[int] = mapped_column(ForeignKey('reports.id', ondelete='CASCADE'), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    platform: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    views: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    likes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    comments: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    __table_args__ = (Index('ix_video_links_report_id', 'report_id'),)


class Story(Base):
    __tablename__ = 'stories'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    report_id: Mapped[int] = mapped_column(ForeignKey('reports.id', ondelete='CASCADE'), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    story_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    screenshot_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    reach: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (Index('ix_stories_report_id', 'report_id'),)


class ReportProduct(Base):
    __tablename__ = 'report_products'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    report_id: Mapped[int] = mapped_column(ForeignKey('reports.id', ondelete='CASCADE'), nullable=False)
    product_id: Mapped[int] = mapped_column(ForeignKey('products.id', ondelete='CASCADE'), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, server_default='1')

    __table_args__ = (
        UniqueConstraint('report_id', 'product_id', name='uq_report_products_report_product'),
    )
