# FILE: bookprinta/services/payment_ledger.py
"""Payment status machine and the at-most-once claim on ``provider_ref``.

Every status change is a conditional UPDATE whose WHERE clause is derived
from ``ALLOWED_TRANSITIONS``. Two writers racing on the same row can both
issue it, but only one sees ``rowcount == 1``.
"""
import logging
import secrets
import string
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from bookprinta.core.errors import InvalidTransition
from bookprinta.models.enums import PaymentStatus, PaymentType
from bookprinta.models.payment import Payment

logger = logging.getLogger("bookprinta.payments.ledger")

ALLOWED_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.SUCCESS, PaymentStatus.FAILED},
    PaymentStatus.AWAITING_APPROVAL: {PaymentStatus.SUCCESS, PaymentStatus.FAILED},
    PaymentStatus.SUCCESS: {PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: set(),
    PaymentStatus.REFUNDED: set(),
}

_BASE36 = string.digits + string.ascii_lowercase

# ER_LOCK_WAIT_TIMEOUT, ER_LOCK_DEADLOCK
MYSQL_LOCK_ERRORS = (1205, 1213)


def can_transition(current, target) -> bool:
    return PaymentStatus(target) in ALLOWED_TRANSITIONS[PaymentStatus(current)]


def assert_transition(current, target) -> None:
    if not can_transition(current, target):
        raise InvalidTransition(f"Payment cannot move from {PaymentStatus(current).value} to {PaymentStatus(target).value}")


def sources_of(target) -> List[str]:
    """Statuses from which ``target`` is reachable."""
    target = PaymentStatus(target)
    return [src.value for src, targets in ALLOWED_TRANSITIONS.items() if target in targets]


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(_BASE36[rem])
    return "".join(reversed(out))


def generate_reference(prefix: str = "bp") -> str:
    # bp = guest checkout, ep = extra pages, rp = reprint, bt = bank transfer
    timestamp = to_base36(int(time.time() * 1000))
    random_part = "".join(secrets.choice(_BASE36) for _ in range(8))
    return f"{prefix}_{timestamp}_{random_part}"


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class ClaimResult:
    claimed: bool
    payment_id: Optional[str] = None
    payment_type: Optional[str] = None
    created: bool = False
    linked: bool = False

    @property
    def needs_materialization(self) -> bool:
        return self.claimed and self.payment_type == PaymentType.INITIAL.value and not self.linked


async def transition_status(
    session: AsyncSession,
    payment_id: str,
    current: PaymentStatus,
    target: PaymentStatus,
    **values: Any,
) -> bool:
    """Move one payment from ``current`` to ``target`` inside the caller's transaction.

    Returns False when the row is no longer in ``current`` (someone else moved it).
    """
    assert_transition(current, target)
    now = datetime.utcnow()
    stmt = (
        update(Payment)
        .where(Payment.id == payment_id, Payment.status == PaymentStatus(current).value)
        .values(status=PaymentStatus(target).value, updated_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


def is_lock_conflict(exc: OperationalError) -> bool:
    """True for aborts a retry can resolve: an InnoDB deadlock or lock wait
    timeout, or SQLite giving up on a busy database."""
    orig = getattr(exc, "orig", None)
    args = getattr(orig, "args", ()) or ()
    if args and args[0] in MYSQL_LOCK_ERRORS:
        return True
    return "database is locked" in str(orig or exc)


async def claim_confirmed_payment(
    session: AsyncSession,
    *,
    provider: str,
    reference: str,
    amount: Optional[Decimal],
    currency: Optional[str],
    payer_email: Optional[str],
    metadata: Optional[Dict[str, Any]],
    gateway_response: Optional[Dict[str, Any]],
    default_currency: str = "NGN",
) -> ClaimResult:
    """Record a provider-confirmed charge exactly once, in the caller's transaction.

    Either flips an unprocessed pre-created row to SUCCESS, or inserts a new
    SUCCESS INITIAL row. Anything else means another caller already applied
    this reference. Must be the first write of the transaction: the caller
    commits, and on "already processed" the transaction is rolled back here.
    A materialization failure after the claim rolls the claim back with it,
    so the provider's next delivery applies the charge again.
    """
    now = datetime.utcnow()
    try:
        # Write first so SQLite takes the write lock before any read
        result = await session.execute(
            update(Payment)
            .where(
                Payment.provider_ref == reference,
                Payment.processed_at.is_(None),
                Payment.status.in_(sources_of(PaymentStatus.SUCCESS)),
            )
            .values(
                status=PaymentStatus.SUCCESS.value,
                processed_at=now,
                gateway_response=gateway_response,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 1:
            payment = (
                await session.execute(select(Payment).where(Payment.provider_ref == reference))
            ).scalar_one()
            # Shallow merge: incoming keys replace stored ones wholesale
            payment.meta = {**(payment.meta or {}), **(metadata or {})}
            if payer_email and not payment.payer_email:
                payment.payer_email = payer_email
            await session.flush()
            logger.info("Claimed pre-created payment %s (%s)", payment.id, reference)
            return ClaimResult(
                claimed=True,
                payment_id=payment.id,
                payment_type=payment.type,
                created=False,
                linked=bool(payment.user_id and payment.order_id),
            )

        payment = Payment(
            id=new_id(),
            provider=provider,
            type=PaymentType.INITIAL.value,
            amount=amount if amount is not None else Decimal("0"),
            currency=(currency or default_currency).upper(),
            status=PaymentStatus.SUCCESS.value,
            provider_ref=reference,
            processed_at=now,
            payer_email=payer_email,
            meta=metadata or None,
            gateway_response=gateway_response,
        )
        session.add(payment)
        await session.flush()
    except IntegrityError:
        await session.rollback()
        logger.info("Payment %s already processed; skipping", reference)
        return ClaimResult(claimed=False)

    logger.info("Recorded new %s payment %s (%s)", provider, payment.id, reference)
    return ClaimResult(
        claimed=True,
        payment_id=payment.id,
        payment_type=PaymentType.INITIAL.value,
        created=True,
    )
