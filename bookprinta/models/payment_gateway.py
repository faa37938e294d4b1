# /bookprinta/models/payment_gateway.py
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Text, JSON, DateTime, Boolean

from bookprinta.core.database import Base


class PaymentGateway(Base):
    """Admin-configurable availability of one payment provider."""
    __tablename__ = "payment_gateways"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    # One row per provider
    provider: Mapped[str] = mapped_column(String(30), unique=True)

    name: Mapped[str] = mapped_column(String(100))
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    is_test_mode: Mapped[bool] = mapped_column(Boolean, default=True)

    # Ascending = shown first at checkout
    priority: Mapped[int] = mapped_column(Integer, default=0)

    # Bank transfer only: {"accounts": [{"accountName", "accountNumber", "bank"}]}
    bank_details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
