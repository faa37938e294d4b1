# FILE: bookprinta/services/payment_provider.py
"""Uniform contract every online payment gateway adapter implements.

Adapters own all unit and field translation. Amounts leave an adapter in
major currency units (naira, dollars) as ``Decimal``; statuses leave it as
one of the canonical ``VERIFY_*`` values below.
"""
from __future__ import annotations

import abc
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

from bookprinta.core.errors import ServiceUnavailableError

VERIFY_SUCCESS = "success"
VERIFY_PENDING = "pending"
VERIFY_FAILED = "failed"


@dataclass
class InitResult:
    authorization_url: str
    reference: str
    access_code: Optional[str] = None


@dataclass
class VerifyResult:
    status: str
    reference: str
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    payer_email: Optional[str] = None
    provider_status: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def verified(self) -> bool:
        return self.status == VERIFY_SUCCESS


@dataclass
class WebhookEvent:
    provider: str
    event_type: str
    reference: Optional[str]
    completed: bool
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    payer_email: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)


def from_minor_units(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return (Decimal(str(value)) / 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentProviderAdapter(abc.ABC):
    provider: str = ""
    display_name: str = ""

    # Computed once from credentials at construction time
    is_available: bool = False
    # False when verify() changes provider state, e.g. captures funds
    verify_is_read_only: bool = True

    def ensure_available(self) -> None:
        if not self.is_available:
            raise ServiceUnavailableError(f"{self.display_name} is not configured. Please contact support.")

    @abc.abstractmethod
    def claims_reference(self, reference: str) -> bool:
        """Whether ``reference`` has a shape this provider could have issued."""

    @abc.abstractmethod
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
        ...

    @abc.abstractmethod
    async def verify(self, reference: str) -> VerifyResult:
        """Raises ReferenceNotRecognized when the provider does not know the reference."""

    async def lookup(self, reference: str) -> VerifyResult:
        """Status check with no side effects at the provider. Same errors as ``verify``."""
        return await self.verify(reference)

    @abc.abstractmethod
    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> Optional[WebhookEvent]:
        """Parsed event when the signature is valid, otherwise None."""
