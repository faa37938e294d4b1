# FILE: bookprinta/services/paypal_service.py
import logging
import re
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import httpx

from bookprinta.core.config import (
    PAYPAL_CLIENT_ID,
    PAYPAL_CLIENT_SECRET,
    PAYPAL_BASE_URL,
    PROVIDER_TIMEOUT_SECONDS,
)
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
)

logger = logging.getLogger("bookprinta.providers.paypal")

# PayPal order ids are 17 upper-case alphanumerics
_ORDER_ID_RE = re.compile(r"^[A-Z0-9]{17}$")

TOKEN_REFRESH_MARGIN_SECONDS = 60


def _amount_of(order: Dict[str, Any]) -> Dict[str, Any]:
    units = order.get("purchase_units") or [{}]
    unit = units[0] or {}
    captures = (unit.get("payments") or {}).get("captures") or []
    if captures and captures[0].get("amount"):
        return captures[0]["amount"]
    return unit.get("amount") or {}


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


class PayPalService(PaymentProviderAdapter):
    """PayPal Orders v2. Amounts are already in major units."""

    provider = PaymentProvider.PAYPAL.value
    display_name = "PayPal"
    verify_is_read_only = False

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = PAYPAL_CLIENT_ID if client_id is None else client_id
        self.client_secret = PAYPAL_CLIENT_SECRET if client_secret is None else client_secret
        self.base_url = (base_url or PAYPAL_BASE_URL).rstrip("/")
        self._transport = transport
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0
        self.is_available = bool(self.client_id and self.client_secret)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=PROVIDER_TIMEOUT_SECONDS,
            transport=self._transport,
        )

    async def _get_access_token(self, client: httpx.AsyncClient) -> str:
        if self._access_token and time.monotonic() < self._token_expires_at - TOKEN_REFRESH_MARGIN_SECONDS:
            return self._access_token

        resp = await client.post(
            "/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self.client_id, self.client_secret),
        )
        resp.raise_for_status()
        body = resp.json()
        self._access_token = body["access_token"]
        self._token_expires_at = time.monotonic() + float(body.get("expires_in", 0))
        return self._access_token

    def claims_reference(self, reference: str) -> bool:
        return bool(_ORDER_ID_RE.match(reference or ""))

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
        payload: Dict[str, Any] = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": reference,
                    "custom_id": reference,
                    "description": "BookPrinta publishing service",
                    "amount": {"currency_code": currency, "value": f"{Decimal(amount):.2f}"},
                }
            ],
            "application_context": {"brand_name": "BookPrinta", "user_action": "PAY_NOW"},
        }
        if callback_url:
            payload["application_context"]["return_url"] = callback_url
            payload["application_context"]["cancel_url"] = f"{callback_url}?cancelled=true"

        logger.info("Creating PayPal order %s (%s %s)", reference, amount, currency)

        try:
            async with self._client() as client:
                token = await self._get_access_token(client)
                resp = await client.post(
                    "/v2/checkout/orders",
                    json=payload,
                    headers={"Authorization": f"Bearer {token}"},
                )
                resp.raise_for_status()
                order = resp.json()
        except httpx.HTTPError as exc:
            logger.error("PayPal order creation failed for %s", reference, exc_info=exc)
            raise ProviderError("PayPal order creation failed") from exc

        approve = next((l.get("href") for l in order.get("links") or [] if l.get("rel") in ("approve", "payer-action")), "")
        return InitResult(authorization_url=approve or "", reference=order["id"])

    async def verify(self, reference: str) -> VerifyResult:
        return await self._check_order(reference, capture=True)

    async def lookup(self, reference: str) -> VerifyResult:
        return await self._check_order(reference, capture=False)

    async def _check_order(self, reference: str, capture: bool) -> VerifyResult:
        self.ensure_available()
        logger.info("Checking PayPal order: %s (capture=%s)", reference, capture)

        try:
            async with self._client() as client:
                token = await self._get_access_token(client)
                headers = {"Authorization": f"Bearer {token}"}

                resp = await client.get(f"/v2/checkout/orders/{reference}", headers=headers)
                if resp.status_code in (404, 422):
                    raise ReferenceNotRecognized(f"PayPal does not recognize order {reference}")
                resp.raise_for_status()
                order = resp.json()

                # Buyer approved but funds not yet captured
                if capture and order.get("status") == "APPROVED":
                    logger.info("Capturing approved PayPal order: %s", reference)
                    cap = await client.post(
                        f"/v2/checkout/orders/{reference}/capture",
                        json={},
                        headers={**headers, "Content-Type": "application/json"},
                    )
                    cap.raise_for_status()
                    order = cap.json()
        except httpx.HTTPError as exc:
            logger.error("PayPal verify failed for %s", reference, exc_info=exc)
            raise ProviderError("PayPal verification failed") from exc

        provider_status = order.get("status")
        if provider_status == "COMPLETED":
            status = VERIFY_SUCCESS
        elif provider_status == "VOIDED":
            status = VERIFY_FAILED
        else:
            status = VERIFY_PENDING

        amount = _amount_of(order)
        payer = order.get("payer") or {}
        return VerifyResult(
            status=status,
            provider_status=provider_status,
            reference=order.get("id") or reference,
            amount=_decimal(amount.get("value")),
            currency=amount.get("currency_code"),
            payer_email=payer.get("email_address"),
            raw=order,
        )

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> Optional[WebhookEvent]:
        # PayPal confirmations arrive through verify() only
        logger.warning("PayPal webhooks are not accepted; use verify instead")
        return None
