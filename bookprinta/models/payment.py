# /bookprinta/models/payment.py
from datetime import datetime
from decimal import Decimal
from typing import Optional, Any
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, ForeignKey, DateTime, JSON, Numeric

from bookprinta.core.database import Base
from bookprinta.models.enums import PaymentStatus, PaymentType


class Payment(Base):
    """Ledger entry for one payment attempt.

    ``provider_ref`` + ``processed_at`` form the idempotency gate:
    ``processed_at`` goes from NULL to a timestamp exactly once.
    """
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    # PAYSTACK | STRIPE | PAYPAL | BANK_TRANSFER
    provider: Mapped[str] = mapped_column(String(30), index=True)

    # INITIAL | EXTRA_PAGES | REPRINT | ...
    type: Mapped[str] = mapped_column(String(30), default=PaymentType.INITIAL.value)

    # Major currency units (naira, not kobo)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(3), default="NGN")

    status: Mapped[str] = mapped_column(String(30), default=PaymentStatus.PENDING.value, index=True)

    provider_ref: Mapped[str] = mapped_column(String(190), unique=True, index=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Both stay NULL until checkout materialization links them
    user_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    order_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True
    )

    payer_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    payer_email: Mapped[Optional[str]] = mapped_column(String(190), nullable=True)
    payer_phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    # Checkout configuration carried through the provider round-trip
    meta: Mapped[Optional[Any]] = mapped_column("metadata", JSON, nullable=True)

    # Raw provider payload kept for audit
    gateway_response: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)

    # Bank transfer only
    receipt_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    approved_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    admin_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
