#!/usr/bin/env python3
"""
Run one abandoned cart pass from the command line.

Useful on hosts that drive the job from system cron instead of Celery beat.

Usage:
    python scripts/process_abandoned_carts.py
    python scripts/process_abandoned_carts.py --ensure-schema-only
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import structlog

from cart_recovery_service.config import get_settings
from cart_recovery_service.infrastructure.database.connection import (
    ensure_schema,
    get_async_engine,
)
from cart_recovery_service.log_config import configure_logging
from email_worker.tasks.cart_abandonment import run_abandoned_cart_pass

logger = structlog.get_logger()


async def create_schema() -> None:
    engine = get_async_engine(get_settings())
    try:
        created = await ensure_schema(engine)
    finally:
        await engine.dispose()
    logger.info("Schema check completed", created=created)


async def main(ensure_schema_only: bool) -> None:
    if ensure_schema_only:
        await create_schema()
        return

    summary = await run_abandoned_cart_pass()
    logger.info("Abandoned cart pass completed", **summary)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run one abandoned cart pass")
    parser.add_argument(
        "--ensure-schema-only",
        action="store_true",
        help="Create the cart tables if missing and exit",
    )
    args = parser.parse_args()

    configure_logging()
    asyncio.run(main(args.ensure_schema_only))
