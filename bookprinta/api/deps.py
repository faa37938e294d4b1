# FILE: bookprinta/api/deps.py

import jwt
from datetime import timezone
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bookprinta.core.database import get_db, SessionLocal
from bookprinta.core.config import JWT_SECRET, JWT_ALGORITHM
from bookprinta.core.errors import PaymentError
from bookprinta.models.enums import ADMIN_ROLES, PaymentProvider
from bookprinta.models.user import User
from bookprinta.services.asset_store import AssetStore
from bookprinta.services.notification_service import NotificationService
from bookprinta.services.payment_service import PaymentService
from bookprinta.services.paypal_service import PayPalService
from bookprinta.services.paystack_service import PaystackService
from bookprinta.services.scanner_service import build_scanner
from bookprinta.services.stripe_service import StripeService

security = HTTPBearer(auto_error=False)

_payment_service: Optional[PaymentService] = None


def build_payment_service() -> PaymentService:
    return PaymentService(
        session_factory=SessionLocal,
        providers={
            PaymentProvider.PAYSTACK.value: PaystackService(),
            PaymentProvider.STRIPE.value: StripeService(),
            PaymentProvider.PAYPAL.value: PayPalService(),
        },
        notifier=NotificationService(),
        scanner=build_scanner(),
        asset_store=AssetStore(),
    )


def get_payment_service() -> PaymentService:
    global _payment_service
    if _payment_service is None:
        _payment_service = build_payment_service()
    return _payment_service


def http_error(exc: PaymentError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=str(exc))


async def get_current_user(
        credentials: HTTPAuthorizationCredentials = Depends(security),
        db: AsyncSession = Depends(get_db),
):
    if not credentials or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        payload = jwt.decode(
            credentials.credentials.strip(),
            JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
        )

        user_id = payload.get("user_id") or payload.get("sub") or payload.get("id")
        if not user_id or not isinstance(user_id, str):
            raise HTTPException(status_code=401, detail="Invalid token payload")

        user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
        if not user:
            raise HTTPException(status_code=401, detail="User not found")

        return {
            "id": user.id,
            "email": user.email,
            "name": user.name,
            "role": user.role,
            "created_at": user.created_at.replace(tzinfo=timezone.utc).isoformat(),
        }

    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


async def require_admin(user: dict = Depends(get_current_user)):
    if user.get("role") not in ADMIN_ROLES:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
