#!/usr/bin/env python3
"""Create the four payment gateway rows (Paystack, Stripe, PayPal, Bank Transfer).

Existing rows are left alone unless --reset is given, so admin edits survive
re-runs.
"""
import argparse
import asyncio

from bookprinta.core.database import engine, SessionLocal, Base
from bookprinta.services.gateway_registry import seed_gateways

import bookprinta.models  # noqa: F401


async def main(reset: bool) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with SessionLocal() as session:
        outcome = await seed_gateways(session, reset=reset)
    await engine.dispose()
    for provider, action in outcome.items():
        print(f"{provider:<14} {action}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--reset", action="store_true", help="overwrite existing gateway rows with the defaults")
    args = parser.parse_args()
    asyncio.run(main(args.reset))
