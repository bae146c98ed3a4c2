"""Shop catalogue and purchases paid with flariki."""
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, DateTime, ForeignKey, Integer, Boolean, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ambassador.app.core.base import Base, utcnow
from ambassador.app.core.constants import PURCHASE_PENDING


class ShopItem(Base):
    __tablename__ = 'shop_items'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    # None means unlimited
    stock: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint('price > 0', name='ck_shop_items_price_positive'),
        CheckConstraint('stock IS NULL OR stock >= 0', name='ck_shop_items_stock_non_negative'),
        Index('ix_shop_items_is_active', 'is_active'),
    )


class Purchase(Base):
    __tablename__ = 'purchases'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    shop_item_id: Mapped[int] = mapped_column(ForeignKey('shop_items.id'), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    # Frozen at purchase time, later price changes do not apply
    total_price: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=PURCHASE_PENDING, server_default=PURCHASE_PENDING)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    item: Mapped["ShopItem"] = relationship("ShopItem", lazy="selectin")

    __table_args__ = (
        Index('ix_purchases_user_id', 'user_id'),
        Index('ix_purchases_shop_item_id', 'shop_item_id'),
        Index('ix_purchases_status', 'status'),
    )
