"""Users (ambassadors and staff) and segmentation tags."""
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    String,
    Text,
    DateTime,
    ForeignKey,
    Integer,
    Index,
    UniqueConstraint,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from ambassador.app.core.base import Base, utcnow
from ambassador.app.core.constants import ROLE_AMBASSADOR, USER_PENDING


class User(Base):
    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    # Admin accounts created from the CLI may have no Telegram identity
    telegram_id: Mapped[Optional[int]] = mapped_column(BigInteger, unique=True, nullable=True)
    username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Admin panel login
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    role: Mapped[str] = mapped_column(String(20), default=ROLE_AMBASSADOR, server_default=ROLE_AMBASSADOR)
    status: Mapped[str] = mapped_column(String(20), default=USER_PENDING, server_default=USER_PENDING)

    # Contact / delivery details (profile-complete gate)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    cdek_pvz: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Social profiles
    instagram_link: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    youtube_link: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    tiktok_link: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    vk_link: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    # Denormalised sum of flariki_transactions.amount, written only by LedgerService
    flariki_balance: Mapped[int] = mapped_column(Integer, default=0, server_default='0', nullable=False)

    moderated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    moderated_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id', ondelete='SET NULL'), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint('flariki_balance >= 0', name='ck_users_flariki_balance_non_negative'),
        Index('ix_users_role', 'role'),
        Index('ix_users_status', 'status'),
    )

    @property
    def has_contact(self) -> bool:
        return bool(self.phone or self.email)

    @property
    def has_address(self) -> bool:
        return bool(self.cdek_pvz or self.address)

    @property
    def display_name(self) -> str:
        name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return name or self.username or f"user {self.id}"


class Tag(Base):
    """Segment label used to target broadcasts."""
    __tablename__ = 'tags'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class UserTag(Base):
    __tablename__ = 'user_tags'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    tag_id: Mapped[int] = mapped_column(ForeignKey('tags.id', ondelete='CASCADE'), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('user_id', 'tag_id', name='uq_user_tags_user_tag'),
        Index('ix_user_tags_tag_id', 'tag_id'),
    )
