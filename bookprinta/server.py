# FILE: bookprinta/server.py
import logging

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from bookprinta.core.config import CORS_ORIGINS
from bookprinta.core.database import engine, Base
from bookprinta.api.payments import router as payments_router
from bookprinta.api.admin_payments import router as admin_payments_router
from bookprinta.api.health import router as health_router

import bookprinta.models  # noqa: F401  (register tables on Base.metadata)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("bookprinta")

app = FastAPI(title="BookPrinta Payments")

app.include_router(payments_router)
app.include_router(admin_payments_router)
app.include_router(health_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database ready")


@app.on_event("shutdown")
async def shutdown():
    await engine.dispose()
