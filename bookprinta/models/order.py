# /bookprinta/models/order.py
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, ForeignKey, DateTime, Boolean, Numeric

from bookprinta.core.database import Base


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    # Human readable: BP-2026-K3X9QZ
    order_number: Mapped[str] = mapped_column(String(30), unique=True, index=True)

    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True)
    package_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("packages.id", ondelete="SET NULL"), nullable=True
    )

    # STANDARD | REPRINT
    order_type: Mapped[str] = mapped_column(String(20), default="STANDARD")
    status: Mapped[str] = mapped_column(String(30), default="PAID")

    # A4 | A5 | A6, white | cream, matt | gloss
    book_size: Mapped[str] = mapped_column(String(5), default="A5")
    paper_color: Mapped[str] = mapped_column(String(10), default="white")
    lamination: Mapped[str] = mapped_column(String(10), default="gloss")

    has_cover_design: Mapped[bool] = mapped_column(Boolean, default=True)
    has_formatting: Mapped[bool] = mapped_column(Boolean, default=True)
    formatting_word_count: Mapped[int] = mapped_column(Integer, default=0)

    coupon_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(3), default="NGN")

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class OrderAddon(Base):
    """Addon line snapshotted onto an order at payment time."""
    __tablename__ = "order_addons"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    addon_id: Mapped[str] = mapped_column(String(36), ForeignKey("addons.id", ondelete="RESTRICT"))

    price_snapshot: Mapped[Decimal] = mapped_column(Numeric(12, 2))

    # Per-word addons only
    word_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
