# /bookprinta/models/catalog.py
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Text, DateTime, Boolean, Numeric

from bookprinta.core.database import Base


class Package(Base):
    """Publishing packages shown on the pricing page."""
    __tablename__ = "packages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(100))

    # Also used as the checkout "tier": first-draft, glow-up, legacy
    slug: Mapped[str] = mapped_column(String(60), unique=True)

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    base_price: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    page_limit: Mapped[int] = mapped_column(Integer)
    includes_isbn: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Addon(Base):
    """Checkout extras: cover design, formatting, ISBN registration."""
    __tablename__ = "addons"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(100))
    slug: Mapped[str] = mapped_column(String(60), unique=True)

    # fixed | per_word
    pricing_type: Mapped[str] = mapped_column(String(20), default="fixed")

    # Fixed addons set price, per-word addons set price_per_word
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    price_per_word: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 4), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
