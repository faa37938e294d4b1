# FILE: bookprinta/services/gateway_registry.py
import logging
import uuid
from typing import Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bookprinta.core.errors import NotFoundError, ServiceUnavailableError
from bookprinta.models.enums import PaymentProvider
from bookprinta.models.payment_gateway import PaymentGateway
from bookprinta.schemas.payments import GatewaySummary
from bookprinta.services.payment_provider import PaymentProviderAdapter

logger = logging.getLogger("bookprinta.payments.gateways")


class GatewayRegistry:
    """Which gateways checkout may offer, and in what order."""

    def __init__(self, providers: Dict[str, PaymentProviderAdapter]):
        self.providers = providers

    def is_provider_available(self, provider: str) -> bool:
        # Bank transfer needs no credentials
        if provider == PaymentProvider.BANK_TRANSFER.value:
            return True
        adapter = self.providers.get(provider)
        return bool(adapter and adapter.is_available)

    def ensure_provider_available(self, provider: str) -> PaymentProviderAdapter:
        adapter = self.providers.get(provider)
        if adapter is None or not adapter.is_available:
            raise ServiceUnavailableError(f"{provider} is not configured. Please contact support.")
        return adapter

    async def list_available(self, session: AsyncSession) -> List[GatewaySummary]:
        rows = (
            await session.execute(
                select(PaymentGateway)
                .where(PaymentGateway.is_enabled.is_(True))
                .order_by(PaymentGateway.priority.asc(), PaymentGateway.created_at.asc())
            )
        ).scalars().all()

        out = []
        for gw in rows:
            if not self.is_provider_available(gw.provider):
                logger.debug("Gateway %s enabled but adapter not configured; hidden", gw.provider)
                continue
            is_bank = gw.provider == PaymentProvider.BANK_TRANSFER.value
            out.append(
                GatewaySummary(
                    id=gw.id,
                    provider=gw.provider,
                    name=gw.name,
                    is_test_mode=gw.is_test_mode,
                    priority=gw.priority,
                    bank_details=gw.bank_details if is_bank else None,
                    instructions=gw.instructions if is_bank else None,
                )
            )
        return out

    async def ensure_gateway_enabled(self, session: AsyncSession, provider: str) -> PaymentGateway:
        gw = (
            await session.execute(select(PaymentGateway).where(PaymentGateway.provider == provider))
        ).scalar_one_or_none()
        if gw is None:
            raise NotFoundError(f"Payment gateway {provider} not found")
        if not gw.is_enabled:
            raise ServiceUnavailableError(f"{gw.name} is currently disabled")
        return gw


BANK_TRANSFER_INSTRUCTIONS = "After Payment, Kindly fill the form and upload your payment receipt"

BANK_TRANSFER_DETAILS = {
    "accounts": [
        {"accountName": "Dexta Synergy Services", "accountNumber": "4333291178", "bank": "MoniePoint"},
        {"accountName": "Dexta Synergy Services", "accountNumber": "0057301083", "bank": "Stanbic IBTC"},
    ]
}

GATEWAY_SEEDS = [
    {"provider": PaymentProvider.PAYSTACK.value, "name": "Paystack", "is_enabled": True, "is_test_mode": True, "priority": 1},
    {"provider": PaymentProvider.STRIPE.value, "name": "Stripe", "is_enabled": False, "is_test_mode": True, "priority": 2},
    {"provider": PaymentProvider.PAYPAL.value, "name": "PayPal", "is_enabled": False, "is_test_mode": True, "priority": 3},
    {
        "provider": PaymentProvider.BANK_TRANSFER.value,
        "name": "Bank Transfer",
        "is_enabled": True,
        "is_test_mode": False,
        "priority": 0,
        "instructions": BANK_TRANSFER_INSTRUCTIONS,
        "bank_details": BANK_TRANSFER_DETAILS,
    },
]


async def seed_gateways(session: AsyncSession, reset: bool = False) -> Dict[str, str]:
    """Insert missing gateway rows. With ``reset``, existing rows are overwritten too.

    Returns provider -> "created" | "updated" | "kept".
    """
    outcome = {}
    for seed in GATEWAY_SEEDS:
        gw = (
            await session.execute(select(PaymentGateway).where(PaymentGateway.provider == seed["provider"]))
        ).scalar_one_or_none()
        if gw is None:
            session.add(PaymentGateway(id=str(uuid.uuid4()), **seed))
            outcome[seed["provider"]] = "created"
        elif reset:
            for key, value in seed.items():
                setattr(gw, key, value)
            outcome[seed["provider"]] = "updated"
        else:
            outcome[seed["provider"]] = "kept"
    await session.commit()
    logger.info("Gateway seed: %s", outcome)
    return outcome
