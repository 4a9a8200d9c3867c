#!/usr/bin/env python3
"""
Purge publish jobs older than the retention window.

Usage: cd app && python -m scripts.cleanup_jobs [--hours 24] [--dry-run]

Only meaningful for the redis backend; the in-memory store lives and dies
with the server process.
"""
import argparse
import asyncio

from dotenv import load_dotenv
load_dotenv()

from core.config import settings
from core.context import build_job_store
from core.logger import logger


async def cleanup(hours: float, dry_run: bool = False) -> int:
    store, redis_client = build_job_store(settings)
    try:
        if not await store.health_check():
            raise RuntimeError(f"Job store ({settings.JOB_STORE_BACKEND}) is not reachable")

        if dry_run:
            logger.info(f"[cleanup] Dry run: would purge jobs older than {hours}h")
            return 0

        removed = await store.purge_older_than(hours)
        logger.info(f"[cleanup] Purged {removed} jobs older than {hours}h")
        return removed
    finally:
        if redis_client is not None:
            redis_client.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Purge expired publish jobs")
    parser.add_argument("--hours", type=float, default=settings.JOB_RETENTION_HOURS)
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()

    removed = asyncio.run(cleanup(args.hours, args.dry_run))
    print(f"Removed {removed} jobs")
