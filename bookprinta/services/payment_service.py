# /bookprinta/services/payment_service.py
"""Payment orchestration: initialize, webhooks, verify polling, bank transfers.

Webhooks and client-side verify polling are two entry points into the same
``create_payment_from_webhook`` apply step. The ledger claim inside it lets
exactly one of them win; the loser sees "already processed".

Notifications always run after the payment/order transaction has committed
and never raise into the caller.
"""
import asyncio
import base64
import binascii
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from bookprinta.core.config import (
    DEFAULT_CURRENCY,
    EXTRA_PAGE_COST,
    FRONTEND_URL,
    LOG_DIR,
    RECEIPT_UPLOAD_FOLDER,
)
from bookprinta.core.errors import (
    BadRequestError,
    NotFoundError,
    ProviderError,
)
from bookprinta.models import Book, Notification, Order, Payment, User
from bookprinta.models.enums import (
    ADMIN_ROLES,
    ONLINE_PROVIDERS,
    PaymentProvider,
    PaymentStatus,
    PaymentType,
)
from bookprinta.schemas.payments import (
    AdminActionResponse,
    BankTransferResponse,
    GatewaySummary,
    InitializePaymentResponse,
    PendingBankTransfer,
    VerifyPaymentResponse,
)
from bookprinta.services.asset_store import AssetStore
from bookprinta.services.gateway_registry import GatewayRegistry
from bookprinta.services.materializer_service import CheckoutMaterializer, MaterializationResult
from bookprinta.services.payment_ledger import (
    claim_confirmed_payment,
    generate_reference,
    is_lock_conflict,
    new_id,
    transition_status,
)
from bookprinta.services.payment_provider import (
    PaymentProviderAdapter,
    VerifyResult,
    WebhookEvent,
    VERIFY_FAILED,
)

os.makedirs(LOG_DIR, exist_ok=True)
logger = logging.getLogger("bookprinta.payments")
if not logger.handlers:
    handler = logging.FileHandler(os.path.join(LOG_DIR, "payments.log"))
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    logger.setLevel(logging.INFO)
    logger.addHandler(handler)

NOT_AWAITING_APPROVAL = "Payment is no longer awaiting approval"

# Write conflicts (concurrent user creation, InnoDB deadlocks) restart the whole transaction
APPLY_MAX_ATTEMPTS = 3


@dataclass
class ReceiptUpload:
    content: bytes
    filename: str
    content_type: str


@dataclass
class ApplyOutcome:
    claimed: bool
    payment_id: Optional[str] = None
    materialization: Optional[MaterializationResult] = None


def parse_data_url(data_url: str) -> Tuple[bytes, str]:
    """``data:<mime>;base64,<payload>`` -> (bytes, mime)."""
    try:
        header, payload = data_url.split(",", 1)
    except ValueError:
        raise BadRequestError("Malformed receipt data URL")
    if not header.startswith("data:") or not header.endswith(";base64"):
        raise BadRequestError("Receipt data URL must be base64 encoded")
    mime = header[len("data:"):-len(";base64")].strip().lower()
    try:
        content = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise BadRequestError("Receipt data URL is not valid base64")
    return content, mime


def _status_label(status: str) -> str:
    return (status or "").lower()


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, IntegrityError):
        return True
    return isinstance(exc, OperationalError) and is_lock_conflict(exc)


class PaymentService:
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        providers: Dict[str, PaymentProviderAdapter],
        notifier,
        scanner,
        asset_store: AssetStore,
        materializer: Optional[CheckoutMaterializer] = None,
        frontend_url: str = FRONTEND_URL,
    ):
        self.session_factory = session_factory
        self.providers = providers
        self.registry = GatewayRegistry(providers)
        self.notifier = notifier
        self.scanner = scanner
        self.asset_store = asset_store
        self.materializer = materializer or CheckoutMaterializer()
        self.frontend_url = frontend_url.rstrip("/")

    # ---------- gateways ----------

    async def list_gateways(self) -> List[GatewaySummary]:
        async with self.session_factory() as session:
            return await self.registry.list_available(session)

    async def _ensure_online_gateway(self, provider: str) -> PaymentProviderAdapter:
        if provider == PaymentProvider.BANK_TRANSFER.value:
            raise BadRequestError("Bank transfers are submitted through the bank transfer endpoint")
        async with self.session_factory() as session:
            await self.registry.ensure_gateway_enabled(session, provider)
        return self.registry.ensure_provider_available(provider)

    # ---------- initialize ----------

    async def initialize(
        self,
        *,
        provider: str,
        email: Optional[str],
        amount: Decimal,
        currency: Optional[str] = None,
        order_id: Optional[str] = None,
        callback_url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> InitializePaymentResponse:
        """Guest checkout. Nothing is written until the provider confirms the charge."""
        adapter = await self._ensure_online_gateway(provider)
        if provider == PaymentProvider.PAYSTACK.value and not email:
            raise BadRequestError("Email is required for Paystack payments")

        reference = generate_reference("bp")
        meta = dict(metadata or {})
        if email:
            meta.setdefault("email", email)
        if order_id:
            meta.setdefault("orderId", order_id)

        init = await adapter.initialize(
            email=email,
            amount=amount,
            currency=currency or DEFAULT_CURRENCY,
            reference=reference,
            callback_url=callback_url,
            metadata=meta,
        )
        logger.info("Initialized %s checkout %s (%s %s)", provider, init.reference, amount, currency or DEFAULT_CURRENCY)
        return InitializePaymentResponse(
            authorization_url=init.authorization_url,
            reference=init.reference,
            provider=provider,
            access_code=init.access_code,
        )

    async def _initialize_pending(
        self,
        *,
        adapter: PaymentProviderAdapter,
        payment_type: PaymentType,
        prefix: str,
        user: User,
        order_id: Optional[str],
        amount: Decimal,
        currency: str,
        callback_url: Optional[str],
        metadata: Dict[str, Any],
    ) -> InitializePaymentResponse:
        reference = generate_reference(prefix)
        payment_id = new_id()

        async with self.session_factory() as session:
            session.add(
                Payment(
                    id=payment_id,
                    provider=adapter.provider,
                    type=payment_type.value,
                    amount=amount,
                    currency=currency,
                    status=PaymentStatus.PENDING.value,
                    provider_ref=reference,
                    user_id=user.id,
                    order_id=order_id,
                    payer_name=user.name,
                    payer_email=user.email,
                    payer_phone=user.phone,
                    meta=metadata,
                )
            )
            await session.commit()

        try:
            init = await adapter.initialize(
                email=user.email,
                amount=amount,
                currency=currency,
                reference=reference,
                callback_url=callback_url,
                metadata={**metadata, "paymentType": payment_type.value},
            )
        except Exception as e:
            async with self.session_factory() as session:
                await transition_status(
                    session, payment_id, PaymentStatus.PENDING, PaymentStatus.FAILED,
                    admin_note="Provider initialization failed",
                )
                await session.commit()
            logger.error("%s initialization of payment %s failed: %s", adapter.provider, payment_id, e)
            raise

        # Stripe and PayPal issue their own ids; webhooks and verify look those up
        if init.reference and init.reference != reference:
            async with self.session_factory() as session:
                try:
                    payment = await session.get(Payment, payment_id)
                    payment.provider_ref = init.reference
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    await self._adopt_early_confirmation(payment_id, init.reference)

        logger.info("Initialized %s %s payment %s (%s)", adapter.provider, payment_type.value, payment_id, init.reference)
        return InitializePaymentResponse(
            authorization_url=init.authorization_url,
            reference=init.reference or reference,
            provider=adapter.provider,
            access_code=init.access_code,
        )

    async def _adopt_early_confirmation(self, payment_id: str, provider_ref: str) -> None:
        """A confirmation for ``provider_ref`` was recorded before the provider's id
        reached the pre-created row. That confirmed row takes over the payment's
        type, owner and metadata; the pre-created row is failed."""
        async with self.session_factory() as session:
            pending = await session.get(Payment, payment_id)
            confirmed = (
                await session.execute(select(Payment).where(Payment.provider_ref == provider_ref))
            ).scalar_one()
            if confirmed.type == PaymentType.INITIAL.value and not (confirmed.user_id or confirmed.order_id):
                confirmed.type = pending.type
                confirmed.user_id = pending.user_id
                confirmed.order_id = pending.order_id
                confirmed.payer_name = confirmed.payer_name or pending.payer_name
                confirmed.payer_email = confirmed.payer_email or pending.payer_email
                confirmed.payer_phone = confirmed.payer_phone or pending.payer_phone
                confirmed.meta = {**(pending.meta or {}), **(confirmed.meta or {})}
            await transition_status(
                session, payment_id, PaymentStatus.PENDING, PaymentStatus.FAILED,
                admin_note=f"Superseded by confirmed payment {confirmed.id}",
            )
            await session.commit()
        logger.warning("Payment %s superseded by already confirmed %s (%s)", payment_id, confirmed.id, provider_ref)

    async def pay_extra_pages(
        self,
        *,
        user_id: str,
        book_id: str,
        provider: str,
        extra_pages: int,
        callback_url: Optional[str] = None,
    ) -> InitializePaymentResponse:
        if extra_pages <= 0:
            raise BadRequestError("extra_pages must be positive")

        async with self.session_factory() as session:
            book = await session.get(Book, book_id)
            if book is None:
                raise NotFoundError("Book not found")
            if book.user_id != user_id:
                raise BadRequestError("You do not own this book")
            user = await session.get(User, user_id)
            if user is None:
                raise NotFoundError("User not found")

        adapter = await self._ensure_online_gateway(provider)
        amount = Decimal(extra_pages * EXTRA_PAGE_COST)
        return await self._initialize_pending(
            adapter=adapter,
            payment_type=PaymentType.EXTRA_PAGES,
            prefix="ep",
            user=user,
            order_id=book.order_id,
            amount=amount,
            currency=DEFAULT_CURRENCY,
            callback_url=callback_url,
            metadata={"bookId": book.id, "extraPages": extra_pages, "costPerPage": EXTRA_PAGE_COST},
        )

    async def pay_reprint(
        self,
        *,
        user_id: str,
        order_id: str,
        provider: str,
        callback_url: Optional[str] = None,
    ) -> InitializePaymentResponse:
        async with self.session_factory() as session:
            order = await session.get(Order, order_id)
            if order is None:
                raise NotFoundError("Order not found")
            if order.user_id != user_id:
                raise BadRequestError("You do not own this order")
            user = await session.get(User, user_id)
            if user is None:
                raise NotFoundError("User not found")

        adapter = await self._ensure_online_gateway(provider)
        return await self._initialize_pending(
            adapter=adapter,
            payment_type=PaymentType.REPRINT,
            prefix="rp",
            user=user,
            order_id=order.id,
            amount=Decimal(order.total_amount),
            currency=order.currency or DEFAULT_CURRENCY,
            callback_url=callback_url,
            metadata={"orderId": order.id, "orderNumber": order.order_number},
        )

    # ---------- webhook / apply ----------

    def parse_webhook(self, provider: str, raw_body: bytes, signature: Optional[str]) -> WebhookEvent:
        adapter = self.providers.get(provider)
        if adapter is None:
            raise NotFoundError(f"No webhook receiver for {provider}")
        event = adapter.verify_webhook_signature(raw_body, signature)
        if event is None:
            raise BadRequestError("Invalid webhook signature")
        return event

    async def _find_payment(self, reference: str) -> Optional[Payment]:
        async with self.session_factory() as session:
            return (
                await session.execute(select(Payment).where(Payment.provider_ref == reference))
            ).scalar_one_or_none()

    async def handle_webhook(self, event: WebhookEvent) -> Dict[str, Any]:
        """Apply a signature-verified provider event at most once."""
        if not event.reference:
            logger.info("%s webhook %s has no reference; ignored", event.provider, event.event_type)
            return {"received": True, "message": "ignored"}

        existing = await self._find_payment(event.reference)
        if existing is not None and existing.processed_at is not None:
            logger.info("%s webhook for %s already processed", event.provider, event.reference)
            return {"received": True, "message": "already processed"}

        if not event.completed:
            logger.info("%s webhook %s for %s is not a completed charge; ignored",
                        event.provider, event.event_type, event.reference)
            return {"received": True, "message": "ignored"}

        outcome = await self.create_payment_from_webhook(
            provider=event.provider,
            provider_ref=event.reference,
            amount=event.amount,
            currency=event.currency,
            payer_email=event.payer_email or (event.metadata or {}).get("email"),
            gateway_response=event.raw,
            metadata=event.metadata,
        )
        if not outcome.claimed:
            return {"received": True, "message": "already processed"}
        return {"received": True, "message": "processed"}

    async def create_payment_from_webhook(
        self,
        *,
        provider: str,
        provider_ref: str,
        amount: Optional[Decimal],
        currency: Optional[str],
        payer_email: Optional[str],
        gateway_response: Optional[Dict[str, Any]],
        metadata: Optional[Dict[str, Any]],
    ) -> ApplyOutcome:
        """Claim the charge and materialize the checkout in one transaction.

        If materialization fails, the claim is rolled back with it and the
        provider's next delivery (or the next verify poll) applies it again.
        """
        claim = None
        result = None
        for attempt in range(1, APPLY_MAX_ATTEMPTS + 1):
            async with self.session_factory() as session:
                try:
                    claim = await claim_confirmed_payment(
                        session,
                        provider=provider,
                        reference=provider_ref,
                        amount=amount,
                        currency=currency,
                        payer_email=payer_email,
                        metadata=metadata,
                        gateway_response=gateway_response,
                        default_currency=DEFAULT_CURRENCY,
                    )
                    if not claim.claimed:
                        return ApplyOutcome(claimed=False)

                    result = None
                    if claim.needs_materialization:
                        result = await self.materializer.materialize_payment(session, claim.payment_id)
                    await session.commit()
                    break
                except (IntegrityError, OperationalError) as e:
                    await session.rollback()
                    if not _is_retryable(e) or attempt == APPLY_MAX_ATTEMPTS:
                        raise
                    logger.warning("Applying %s hit a write conflict (%s); retrying", provider_ref, e)

        if result and result.signup_token:
            await self._dispatch_signup_link(result)
        return ApplyOutcome(claimed=True, payment_id=claim.payment_id, materialization=result)

    async def _dispatch_signup_link(self, result: MaterializationResult) -> None:
        try:
            await self.notifier.send_signup_link(
                email=result.email,
                name=result.name,
                locale=result.locale,
                token=result.signup_token,
                phone=result.phone,
            )
        except Exception as e:
            logger.error("Signup link dispatch to %s failed: %s", result.email, e)

    # ---------- verify ----------

    async def _signup_url(self, payment: Payment) -> Optional[str]:
        if payment.type != PaymentType.INITIAL.value or payment.status != PaymentStatus.SUCCESS.value:
            return None
        if not payment.user_id:
            return None
        async with self.session_factory() as session:
            user = await session.get(User, payment.user_id)
        if user is None or not user.verification_token or not user.token_expiry:
            return None
        if user.token_expiry <= datetime.utcnow():
            return None
        locale = user.preferred_language or "en"
        return f"{self.frontend_url}/{locale}/signup/finish?token={user.verification_token}"

    async def _cached_response(self, payment: Payment) -> VerifyPaymentResponse:
        signup_url = await self._signup_url(payment)
        verified = payment.status == PaymentStatus.SUCCESS.value
        return VerifyPaymentResponse(
            status=_status_label(payment.status),
            reference=payment.provider_ref,
            amount=float(payment.amount) if payment.amount is not None else None,
            currency=payment.currency,
            verified=verified,
            provider=payment.provider,
            signup_url=signup_url,
            awaiting_webhook=verified and not signup_url,
        )

    async def _discover(self, reference: str) -> Tuple[PaymentProviderAdapter, VerifyResult]:
        # Read-only lookups first; a capturing verify runs only once the owner is certain
        hits = []
        for provider in ONLINE_PROVIDERS:
            adapter = self.providers.get(provider.value)
            if adapter is None or not adapter.is_available or not adapter.claims_reference(reference):
                continue
            try:
                result = await adapter.lookup(reference)
            except ProviderError as e:
                logger.debug("%s does not recognize %s: %s", provider.value, reference, e)
                continue
            hits.append((adapter, result))

        if len(hits) > 1:
            names = ", ".join(a.provider for a, _ in hits)
            logger.warning("Reference %s recognized by several providers (%s)", reference, names)
            raise BadRequestError("Reference is recognized by more than one provider; provider hint required")
        if not hits:
            raise NotFoundError("Payment reference not found")

        adapter, result = hits[0]
        if not adapter.verify_is_read_only:
            result = await adapter.verify(reference)
        return adapter, result

    async def verify(self, reference: str, provider_hint: Optional[str] = None) -> VerifyPaymentResponse:
        existing = await self._find_payment(reference)
        if existing is not None and existing.processed_at is not None:
            return await self._cached_response(existing)
        if existing is not None and existing.provider == PaymentProvider.BANK_TRANSFER.value:
            return await self._cached_response(existing)

        if provider_hint:
            adapter = self.registry.ensure_provider_available(provider_hint)
            result = await adapter.verify(reference)
        elif existing is not None:
            adapter = self.registry.ensure_provider_available(existing.provider)
            result = await adapter.verify(reference)
        else:
            adapter, result = await self._discover(reference)

        if result.verified:
            metadata = result.metadata or None
            await self.create_payment_from_webhook(
                provider=adapter.provider,
                provider_ref=reference,
                amount=result.amount,
                currency=result.currency,
                payer_email=result.payer_email or (result.metadata or {}).get("email"),
                gateway_response=result.raw,
                metadata=metadata,
            )
        elif result.status == VERIFY_FAILED and existing is not None and existing.status == PaymentStatus.PENDING.value:
            async with self.session_factory() as session:
                if await transition_status(session, existing.id, PaymentStatus.PENDING, PaymentStatus.FAILED,
                                           gateway_response=result.raw):
                    logger.info("Payment %s marked FAILED after %s verify", existing.id, adapter.provider)
                await session.commit()

        signup_url = None
        if result.verified:
            payment = await self._find_payment(reference)
            if payment is not None:
                signup_url = await self._signup_url(payment)

        return VerifyPaymentResponse(
            status=result.status,
            reference=reference,
            amount=float(result.amount) if result.amount is not None else None,
            currency=result.currency,
            verified=result.verified,
            provider=adapter.provider,
            signup_url=signup_url,
            awaiting_webhook=result.verified and not signup_url,
        )

    # ---------- bank transfer ----------

    async def _store_receipt(self, receipt: Optional[ReceiptUpload], receipt_url: Optional[str]) -> Optional[str]:
        if receipt is None and receipt_url and receipt_url.startswith("data:"):
            content, mime = parse_data_url(receipt_url)
            receipt = ReceiptUpload(content=content, filename="receipt", content_type=mime)
        elif receipt is None and receipt_url:
            if not receipt_url.startswith("https://"):
                raise BadRequestError("Receipt URL must be an https URL or a data URL")
            return receipt_url
        if receipt is None:
            return None

        # Local checks first; nothing leaves the process for a bad file
        if not self.asset_store.is_allowed_mime_type(receipt.content_type):
            raise BadRequestError("Unsupported receipt type. Upload a PDF, JPEG or PNG.")
        if not self.asset_store.is_within_size_limit(len(receipt.content)):
            raise BadRequestError("Receipt must be at most 10MB")

        scan = await self.scanner.scan_buffer(receipt.content, receipt.filename)
        if not scan.clean:
            logger.warning("Rejected infected receipt %r: %s", receipt.filename, scan.reason)
            raise BadRequestError("Receipt failed the security scan")

        return await self.asset_store.upload(receipt.content, folder=RECEIPT_UPLOAD_FOLDER, resource_type="auto")

    async def submit_bank_transfer(
        self,
        *,
        payer_name: str,
        payer_email: str,
        payer_phone: str,
        amount: Decimal,
        currency: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        receipt: Optional[ReceiptUpload] = None,
        receipt_url: Optional[str] = None,
    ) -> BankTransferResponse:
        async with self.session_factory() as session:
            await self.registry.ensure_gateway_enabled(session, PaymentProvider.BANK_TRANSFER.value)

        stored_url = await self._store_receipt(receipt, receipt_url)

        meta = {"fullName": payer_name, "phone": payer_phone, **(metadata or {})}
        payment = Payment(
            id=new_id(),
            provider=PaymentProvider.BANK_TRANSFER.value,
            type=PaymentType.INITIAL.value,
            amount=amount,
            currency=(currency or DEFAULT_CURRENCY).upper(),
            status=PaymentStatus.AWAITING_APPROVAL.value,
            provider_ref=generate_reference("bt"),
            payer_name=payer_name,
            payer_email=payer_email.strip().lower(),
            payer_phone=payer_phone,
            receipt_url=stored_url,
            meta=meta,
        )
        async with self.session_factory() as session:
            session.add(payment)
            await session.commit()
        logger.info("Bank transfer %s submitted by %s (%s %s)",
                    payment.id, payment.payer_email, payment.amount, payment.currency)

        await self._fan_out_bank_transfer(payment)
        return BankTransferResponse(
            id=payment.id,
            status=payment.status,
            message="Bank transfer submitted. We will confirm your payment shortly.",
        )

    async def _isolated(self, label: str, coro) -> Any:
        try:
            return await coro
        except Exception as e:
            logger.error("Bank transfer notification %s failed: %s", label, e)
            return None

    async def _notify_admins_in_app(self, payment: Payment) -> int:
        async with self.session_factory() as session:
            admins = (
                await session.execute(select(User.id).where(User.role.in_(ADMIN_ROLES)))
            ).scalars().all()
            for admin_id in admins:
                session.add(
                    Notification(
                        user_id=admin_id,
                        type="BANK_TRANSFER_RECEIVED",
                        title="New bank transfer",
                        message=f"{payment.payer_name} submitted {payment.currency} {payment.amount} for approval",
                        data={"paymentId": payment.id, "reference": payment.provider_ref},
                    )
                )
            await session.commit()
        return len(admins)

    async def _fan_out_bank_transfer(self, payment: Payment) -> None:
        await asyncio.gather(
            self._isolated("in-app", self._notify_admins_in_app(payment)),
            self._isolated("payer email", self.notifier.send_bank_transfer_received(
                email=payment.payer_email,
                name=payment.payer_name,
                amount=payment.amount,
                currency=payment.currency,
                reference=payment.provider_ref,
            )),
            self._isolated("admin email", self.notifier.send_admin_bank_transfer_email(
                payer_name=payment.payer_name,
                payer_email=payment.payer_email,
                amount=payment.amount,
                currency=payment.currency,
                reference=payment.provider_ref,
                receipt_url=payment.receipt_url,
            )),
            self._isolated("admin whatsapp", self.notifier.send_admin_bank_transfer_whatsapp(
                payer_name=payment.payer_name,
                amount=payment.amount,
                currency=payment.currency,
                reference=payment.provider_ref,
            )),
        )

    async def list_pending_bank_transfers(self) -> List[PendingBankTransfer]:
        async with self.session_factory() as session:
            rows = (
                await session.execute(
                    select(Payment)
                    .where(
                        Payment.provider == PaymentProvider.BANK_TRANSFER.value,
                        Payment.status == PaymentStatus.AWAITING_APPROVAL.value,
                    )
                    .order_by(Payment.created_at.asc())
                )
            ).scalars().all()
        return [
            PendingBankTransfer(
                id=p.id,
                amount=float(p.amount),
                currency=p.currency,
                status=p.status,
                provider_ref=p.provider_ref,
                payer_name=p.payer_name,
                payer_email=p.payer_email,
                payer_phone=p.payer_phone,
                receipt_url=p.receipt_url,
                metadata=p.meta,
                created_at=p.created_at.isoformat(),
            )
            for p in rows
        ]

    async def _load_awaiting_bank_transfer(self, payment_id: str) -> Payment:
        async with self.session_factory() as session:
            payment = await session.get(Payment, payment_id)
        if payment is None or payment.provider != PaymentProvider.BANK_TRANSFER.value:
            raise NotFoundError("Bank transfer payment not found")
        if payment.status != PaymentStatus.AWAITING_APPROVAL.value:
            raise BadRequestError(NOT_AWAITING_APPROVAL)
        return payment

    async def approve_bank_transfer(
        self, payment_id: str, admin_id: str, note: Optional[str] = None
    ) -> AdminActionResponse:
        await self._load_awaiting_bank_transfer(payment_id)
        note = (note or "").strip() or None

        result = None
        for attempt in range(1, APPLY_MAX_ATTEMPTS + 1):
            async with self.session_factory() as session:
                try:
                    now = datetime.utcnow()
                    moved = await transition_status(
                        session, payment_id, PaymentStatus.AWAITING_APPROVAL, PaymentStatus.SUCCESS,
                        approved_at=now, approved_by=admin_id, admin_note=note, processed_at=now,
                    )
                    if not moved:
                        await session.rollback()
                        raise BadRequestError(NOT_AWAITING_APPROVAL)

                    result = await self.materializer.materialize_payment(session, payment_id)
                    await session.commit()
                    break
                except (IntegrityError, OperationalError) as e:
                    await session.rollback()
                    result = None
                    if not _is_retryable(e) or attempt == APPLY_MAX_ATTEMPTS:
                        raise
                    logger.warning("Approval of %s hit a write conflict (%s); retrying", payment_id, e)

        logger.info("Bank transfer %s approved by %s", payment_id, admin_id)
        if result and result.signup_token:
            await self._dispatch_signup_link(result)
        return AdminActionResponse(id=payment_id, status=PaymentStatus.SUCCESS.value, message="Bank transfer approved")

    async def reject_bank_transfer(self, payment_id: str, admin_id: str, note: str) -> AdminActionResponse:
        note = (note or "").strip()
        if not note:
            raise BadRequestError("A note is required to reject a bank transfer")
        await self._load_awaiting_bank_transfer(payment_id)

        async with self.session_factory() as session:
            moved = await transition_status(
                session, payment_id, PaymentStatus.AWAITING_APPROVAL, PaymentStatus.FAILED,
                admin_note=note,
            )
            if not moved:
                await session.rollback()
                raise BadRequestError(NOT_AWAITING_APPROVAL)
            await session.commit()

        logger.info("Bank transfer %s rejected by %s", payment_id, admin_id)
        return AdminActionResponse(id=payment_id, status=PaymentStatus.FAILED.value, message="Bank transfer rejected")
