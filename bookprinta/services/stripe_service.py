# FILE: bookprinta/services/stripe_service.py
import asyncio
import json
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import stripe

from bookprinta.core.config import STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET, FRONTEND_URL
from bookprinta.core.errors import ProviderError, ReferenceNotRecognized
from bookprinta.models.enums import PaymentProvider
from bookprinta.schemas.checkout import stringify_metadata
from bookprinta.services.payment_provider import (
    InitResult,
    PaymentProviderAdapter,
    VerifyResult,
    WebhookEvent,
    VERIFY_FAILED,
    VERIFY_PENDING,
    VERIFY_SUCCESS,
    from_minor_units,
    to_minor_units,
)

logger = logging.getLogger("bookprinta.providers.stripe")

_COMPLETED_EVENTS = {"checkout.session.completed", "checkout.session.async_payment_succeeded"}


def _to_plain(obj: Any) -> Dict[str, Any]:
    """StripeObject -> plain dict, across SDK versions."""
    if obj is None:
        return {}
    for name in ("to_dict_recursive", "to_dict"):
        fn = getattr(obj, name, None)
        if callable(fn):
            return fn()
    return dict(obj)


def _decode_metadata(metadata: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    # Values were JSON-encoded on the way in; only lists/objects are decoded here
    out: Dict[str, Any] = {}
    for key, value in (metadata or {}).items():
        if isinstance(value, str) and value[:1] in ("[", "{"):
            try:
                out[key] = json.loads(value)
                continue
            except ValueError:
                pass
        out[key] = value
    return out


def _canonical_status(session: Dict[str, Any]) -> str:
    if session.get("payment_status") in ("paid", "no_payment_required"):
        return VERIFY_SUCCESS
    if session.get("status") == "expired":
        return VERIFY_FAILED
    return VERIFY_PENDING


class StripeService(PaymentProviderAdapter):
    """Stripe Checkout Sessions. The SDK is blocking, so calls run in a worker thread."""

    provider = PaymentProvider.STRIPE.value
    display_name = "Stripe"

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        client: Any = None,
    ):
        self.secret_key = STRIPE_SECRET_KEY if secret_key is None else secret_key
        self.webhook_secret = STRIPE_WEBHOOK_SECRET if webhook_secret is None else webhook_secret
        self._stripe = client or stripe
        self.is_available = bool(self.secret_key)

    def claims_reference(self, reference: str) -> bool:
        return (reference or "").startswith("cs_")

    async def initialize(
        self,
        *,
        email: Optional[str],
        amount: Decimal,
        currency: str,
        reference: str,
        callback_url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> InitResult:
        self.ensure_available()
        currency_code = currency.lower()
        return_url = callback_url or f"{FRONTEND_URL}/checkout/payment-return"
        sep = "&" if "?" in return_url else "?"

        params = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "customer_email": email,
            "line_items": [
                {
                    "price_data": {
                        "currency": currency_code,
                        "product_data": {"name": "BookPrinta Order", "description": "Book publishing service"},
                        "unit_amount": to_minor_units(amount),
                    },
                    "quantity": 1,
                }
            ],
            "success_url": f"{return_url}{sep}session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{return_url}{sep}cancelled=true",
            "client_reference_id": reference,
            "metadata": stringify_metadata({**(metadata or {}), "reference": reference}),
        }
        logger.info("Creating Stripe checkout session for %s (%s %s)", email, amount, currency)

        try:
            session = await asyncio.to_thread(
                self._stripe.checkout.Session.create, api_key=self.secret_key, **params
            )
        except stripe.StripeError as exc:
            logger.error("Stripe session creation failed", exc_info=exc)
            raise ProviderError("Stripe session creation failed") from exc

        session = _to_plain(session)
        return InitResult(authorization_url=session.get("url") or "", reference=session["id"])

    async def verify(self, reference: str) -> VerifyResult:
        self.ensure_available()
        logger.info("Verifying Stripe session: %s", reference)

        try:
            session = await asyncio.to_thread(
                self._stripe.checkout.Session.retrieve, reference, api_key=self.secret_key
            )
        except stripe.InvalidRequestError as exc:
            raise ReferenceNotRecognized(f"Stripe does not recognize session {reference}") from exc
        except stripe.StripeError as exc:
            logger.error("Stripe verify failed for %s", reference, exc_info=exc)
            raise ProviderError("Stripe verification failed") from exc

        session = _to_plain(session)
        details = session.get("customer_details") or {}
        return VerifyResult(
            status=_canonical_status(session),
            provider_status=session.get("payment_status"),
            reference=session.get("id") or reference,
            amount=from_minor_units(session.get("amount_total")),
            currency=(session.get("currency") or "").upper() or None,
            payer_email=session.get("customer_email") or details.get("email"),
            metadata=_decode_metadata(session.get("metadata")),
            raw=session,
        )

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> Optional[WebhookEvent]:
        if not self.webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET not set; cannot verify webhook signature")
            return None
        if not signature:
            return None

        try:
            event = self._stripe.Webhook.construct_event(raw_body, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            logger.warning("Stripe webhook signature verification failed: %s", exc)
            return None

        event = _to_plain(event)
        event_type = event.get("type") or ""
        session = (event.get("data") or {}).get("object") or {}
        details = session.get("customer_details") or {}
        return WebhookEvent(
            provider=self.provider,
            event_type=event_type,
            reference=session.get("id"),
            completed=event_type in _COMPLETED_EVENTS and session.get("payment_status") == "paid",
            amount=from_minor_units(session.get("amount_total")),
            currency=(session.get("currency") or "").upper() or None,
            payer_email=session.get("customer_email") or details.get("email"),
            metadata=_decode_metadata(session.get("metadata")),
            raw=event,
        )
