# FILE: bookprinta/services/paystack_service.py
import hashlib
import hmac
import json
import logging
import re
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from bookprinta.core.config import PAYSTACK_SECRET_KEY, PAYSTACK_BASE_URL, PROVIDER_TIMEOUT_SECONDS
from bookprinta.core.errors import ProviderError, ReferenceNotRecognized
from bookprinta.models.enums import PaymentProvider
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

logger = logging.getLogger("bookprinta.providers.paystack")

# Paystack accepts alphanumerics plus - . = and our own underscore separators
_REFERENCE_RE = re.compile(r"^[A-Za-z0-9_.=-]+$")

_FAILED_STATUSES = {"failed", "abandoned", "reversed"}


def _decode_metadata(value: Any) -> Dict[str, Any]:
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value.strip():
        try:
            decoded = json.loads(value)
        except ValueError:
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


def _canonical_status(status: Optional[str]) -> str:
    status = (status or "").lower()
    if status == "success":
        return VERIFY_SUCCESS
    if status in _FAILED_STATUSES:
        return VERIFY_FAILED
    return VERIFY_PENDING


class PaystackService(PaymentProviderAdapter):
    """Paystack transactions API. Amounts travel in kobo on the wire."""

    provider = PaymentProvider.PAYSTACK.value
    display_name = "Paystack"

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = PAYSTACK_SECRET_KEY if secret_key is None else secret_key
        self.base_url = (base_url or PAYSTACK_BASE_URL).rstrip("/")
        self._transport = transport
        self.is_available = bool(self.secret_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.secret_key}",
                "Content-Type": "application/json",
            },
            timeout=PROVIDER_TIMEOUT_SECONDS,
            transport=self._transport,
        )

    def claims_reference(self, reference: str) -> bool:
        return bool(_REFERENCE_RE.match(reference or ""))

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
        payload = {
            "email": email,
            "amount": to_minor_units(amount),
            "currency": currency,
            "reference": reference,
            "callback_url": callback_url,
            "metadata": metadata or {},
        }
        logger.info("Initializing Paystack payment %s for %s (%s %s)", reference, email, amount, currency)

        try:
            async with self._client() as client:
                resp = await client.post("/transaction/initialize", json=payload)
                resp.raise_for_status()
                data = resp.json().get("data") or {}
        except httpx.HTTPError as exc:
            logger.error("Paystack initialize failed for %s", reference, exc_info=exc)
            raise ProviderError("Paystack initialization failed") from exc

        return InitResult(
            authorization_url=data.get("authorization_url", ""),
            reference=data.get("reference") or reference,
            access_code=data.get("access_code"),
        )

    async def verify(self, reference: str) -> VerifyResult:
        self.ensure_available()
        logger.info("Verifying Paystack payment: %s", reference)

        try:
            async with self._client() as client:
                resp = await client.get(f"/transaction/verify/{reference}")
        except httpx.HTTPError as exc:
            logger.error("Paystack verify failed for %s", reference, exc_info=exc)
            raise ProviderError("Paystack verification failed") from exc

        if resp.status_code in (400, 404):
            raise ReferenceNotRecognized(f"Paystack does not recognize reference {reference}")
        if resp.status_code >= 400:
            raise ProviderError(f"Paystack verification failed with HTTP {resp.status_code}")

        data = resp.json().get("data") or {}
        customer = data.get("customer") or {}
        return VerifyResult(
            status=_canonical_status(data.get("status")),
            provider_status=data.get("status"),
            reference=data.get("reference") or reference,
            amount=from_minor_units(data.get("amount")),
            currency=data.get("currency"),
            payer_email=customer.get("email"),
            metadata=_decode_metadata(data.get("metadata")),
            raw=data,
        )

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> Optional[WebhookEvent]:
        if not self.secret_key:
            logger.error("Cannot verify Paystack webhook: secret key not configured")
            return None
        if not signature:
            return None

        expected = hmac.new(self.secret_key.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()
        if not hmac.compare_digest(expected, signature.strip().lower()):
            logger.warning("Paystack webhook signature mismatch")
            return None

        try:
            payload = json.loads(raw_body)
        except ValueError:
            logger.warning("Paystack webhook body is not JSON")
            return None

        event_type = payload.get("event") or ""
        data = payload.get("data") or {}
        customer = data.get("customer") or {}
        return WebhookEvent(
            provider=self.provider,
            event_type=event_type,
            reference=data.get("reference"),
            completed=event_type == "charge.success" and data.get("status") == "success",
            amount=from_minor_units(data.get("amount")),
            currency=data.get("currency"),
            payer_email=customer.get("email"),
            metadata=_decode_metadata(data.get("metadata")),
            raw=payload,
        )
