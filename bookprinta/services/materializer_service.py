# FILE: bookprinta/services/materializer_service.py
"""Turns a confirmed guest-checkout payment into User / Order / Book rows.

Both entry points work inside the caller's transaction and never commit, so
the ledger claim and the rows created here succeed or fail together.
"""
import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bookprinta.core.config import ORDER_NUMBER_MAX_ATTEMPTS, SIGNUP_TOKEN_TTL_HOURS
from bookprinta.core.errors import ServiceUnavailableError
from bookprinta.models import Addon, Book, Order, OrderAddon, Package, Payment, User
from bookprinta.models.enums import BookStatus, OrderStatus, PaymentType
from bookprinta.schemas.checkout import CheckoutMetadata
from bookprinta.services.payment_ledger import new_id

logger = logging.getLogger("bookprinta.payments.materializer")

_ORDER_ALPHABET = string.digits + string.ascii_uppercase


@dataclass
class MaterializationResult:
    email: str
    name: str
    locale: str
    signup_token: Optional[str]
    phone: Optional[str]


def generate_order_number(now: Optional[datetime] = None) -> str:
    year = (now or datetime.utcnow()).year
    suffix = "".join(secrets.choice(_ORDER_ALPHABET) for _ in range(6))
    return f"BP-{year}-{suffix}"


def normalize_email(email: str) -> str:
    return email.strip().lower()


class CheckoutMaterializer:
    def __init__(
        self,
        order_number_factory: Callable[[], str] = generate_order_number,
        max_order_number_attempts: int = ORDER_NUMBER_MAX_ATTEMPTS,
        token_ttl_hours: int = SIGNUP_TOKEN_TTL_HOURS,
    ):
        self.order_number_factory = order_number_factory
        self.max_order_number_attempts = max_order_number_attempts
        self.token_ttl = timedelta(hours=token_ttl_hours)

    async def _resolve_package(self, session: AsyncSession, meta: CheckoutMetadata) -> Optional[Package]:
        if meta.package_id:
            pkg = await session.get(Package, meta.package_id)
            if pkg:
                return pkg
        for slug in (meta.package_slug, meta.tier):
            if not slug:
                continue
            pkg = (await session.execute(select(Package).where(Package.slug == slug))).scalar_one_or_none()
            if pkg:
                return pkg
        return None

    async def _unique_order_number(self, session: AsyncSession) -> str:
        for _ in range(self.max_order_number_attempts):
            candidate = self.order_number_factory()
            taken = (
                await session.execute(select(Order.id).where(Order.order_number == candidate))
            ).first()
            if taken is None:
                return candidate
        logger.error("Order number generation exhausted %d attempts", self.max_order_number_attempts)
        raise ServiceUnavailableError("Could not allocate an order number. Please retry shortly.")

    def _issue_token(self, user: User) -> str:
        # Replaces any earlier token; only the latest link works
        token = secrets.token_urlsafe(32)
        user.verification_token = token
        user.token_expiry = datetime.utcnow() + self.token_ttl
        return token

    async def _find_or_create_user(self, session: AsyncSession, email: str, meta: CheckoutMetadata):
        user = (await session.execute(select(User).where(User.email == email))).scalar_one_or_none()

        if user is None:
            user = User(
                id=new_id(),
                email=email,
                name=meta.full_name or email.split("@")[0],
                phone=meta.phone,
                preferred_language=meta.locale,
                is_verified=False,
            )
            token = self._issue_token(user)
            session.add(user)
            await session.flush()
            logger.info("Created guest user %s", user.id)
            return user, token

        token = None
        if not user.password_hash or not user.is_verified:
            token = self._issue_token(user)
        if not user.phone and meta.phone:
            user.phone = meta.phone
        return user, token

    async def _create_order_addons(self, session: AsyncSession, order: Order, meta: CheckoutMetadata) -> int:
        if not meta.addons:
            return 0
        catalog = (await session.execute(select(Addon).where(Addon.is_active.is_(True)))).scalars().all()
        by_id = {a.id: a for a in catalog}
        by_slug = {a.slug: a for a in catalog}

        created = 0
        for line in meta.addons:
            addon = by_id.get(line.id) if line.id else None
            if addon is None and line.slug:
                addon = by_slug.get(line.slug)
            if addon is None:
                logger.warning("Skipping unknown addon %s/%s on order %s", line.id, line.slug, order.order_number)
                continue

            per_word = addon.pricing_type == "per_word"
            price = line.price
            if price is None:
                if per_word:
                    price = (addon.price_per_word or Decimal("0")) * meta.formatting_word_count
                else:
                    price = addon.price or Decimal("0")
            if price <= 0:
                continue

            session.add(
                OrderAddon(
                    order_id=order.id,
                    addon_id=addon.id,
                    price_snapshot=price,
                    word_count=meta.formatting_word_count if per_word else None,
                )
            )
            created += 1
        return created

    async def materialize(
        self,
        session: AsyncSession,
        *,
        payment_id: str,
        payer_email: Optional[str],
        metadata: Optional[Dict[str, Any]],
        amount: Optional[Decimal],
        currency: Optional[str],
    ) -> Optional[MaterializationResult]:
        if not payer_email:
            logger.warning("Payment %s has no payer email; skipping checkout materialization", payment_id)
            return None

        meta = CheckoutMetadata.parse(metadata)
        package = await self._resolve_package(session, meta)
        if package is None:
            logger.warning("Payment %s metadata has no resolvable package; skipping materialization", payment_id)
            return None

        email = normalize_email(payer_email)
        user, token = await self._find_or_create_user(session, email, meta)

        order_number = await self._unique_order_number(session)

        paid = Decimal(amount or 0)
        total = max(meta.total_price or Decimal("0"), paid)

        order = Order(
            id=new_id(),
            order_number=order_number,
            user_id=user.id,
            package_id=package.id,
            status=OrderStatus.PAID.value,
            book_size=meta.book_size,
            paper_color=meta.paper_color,
            lamination=meta.lamination,
            has_cover_design=meta.has_cover,
            has_formatting=meta.has_formatting,
            formatting_word_count=meta.formatting_word_count,
            coupon_code=meta.coupon_code,
            discount_amount=meta.discount_amount,
            total_amount=total,
            currency=(currency or "NGN").upper(),
        )
        session.add(order)
        await session.flush()

        addon_count = await self._create_order_addons(session, order, meta)

        session.add(
            Book(
                id=new_id(),
                order_id=order.id,
                user_id=user.id,
                status=BookStatus.PAYMENT_RECEIVED.value,
            )
        )

        payment = await session.get(Payment, payment_id)
        payment.user_id = user.id
        payment.order_id = order.id
        if not payment.payer_name:
            payment.payer_name = user.name
        if not payment.payer_phone and (meta.phone or user.phone):
            payment.payer_phone = meta.phone or user.phone

        await session.flush()
        logger.info(
            "Materialized order %s (%d addons) for payment %s, user %s",
            order_number, addon_count, payment_id, user.id,
        )
        return MaterializationResult(
            email=user.email,
            name=user.name,
            locale=meta.locale,
            signup_token=token,
            phone=user.phone or meta.phone,
        )

    async def materialize_payment(self, session: AsyncSession, payment_id: str) -> Optional[MaterializationResult]:
        """Materialize an INITIAL payment that is not linked yet.

        Returns None when the payment is of another type, already has its
        user and order, or its metadata cannot be materialized.
        """
        payment = await session.get(Payment, payment_id)
        if payment is None or payment.type != PaymentType.INITIAL.value:
            return None
        if payment.user_id or payment.order_id:
            return None
        return await self.materialize(
            session,
            payment_id=payment.id,
            payer_email=payment.payer_email,
            metadata=payment.meta,
            amount=payment.amount,
            currency=payment.currency,
        )
