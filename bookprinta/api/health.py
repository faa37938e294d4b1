# FILE: bookprinta/api/health.py
import asyncio
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import text

from bookprinta.api.deps import get_payment_service
from bookprinta.core.config import HEALTH_CHECK_TIMEOUT_SECONDS
from bookprinta.services.payment_service import PaymentService

logger = logging.getLogger("bookprinta.health")

router = APIRouter(prefix="/api", tags=["health"])


async def _check_dependency(name: str, coro, timeout: float) -> Dict[str, Any]:
    try:
        ok = await asyncio.wait_for(coro, timeout)
    except asyncio.TimeoutError:
        logger.warning("Health check %s timed out after %ss", name, timeout)
        return {"status": "degraded", "error": "timeout"}
    except Exception as e:
        logger.warning("Health check %s failed: %s", name, e)
        return {"status": "degraded", "error": str(e)}
    return {"status": "ok" if ok else "degraded"}


async def _ping_database(service: PaymentService) -> bool:
    async with service.session_factory() as session:
        await session.execute(text("SELECT 1"))
    return True


@router.get("/health")
async def health(service: PaymentService = Depends(get_payment_service)):
    database, scanner = await asyncio.gather(
        _check_dependency("database", _ping_database(service), HEALTH_CHECK_TIMEOUT_SECONDS),
        _check_dependency("scanner", service.scanner.ping(), HEALTH_CHECK_TIMEOUT_SECONDS),
    )
    overall = "ok" if database["status"] == "ok" and scanner["status"] == "ok" else "degraded"
    return {"status": overall, "checks": {"database": database, "scanner": scanner}}
