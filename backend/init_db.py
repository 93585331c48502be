#!/usr/bin/env python3
"""
Create the Edit Watch tables and optionally purge old play-by-play.
From repo root: python3 backend/init_db.py [--prune]
Requires EW_DATABASE_URL (or DATABASE_URL) in the environment, or .env in backend/.
"""
import argparse
import asyncio
import os
import sys

# Backend dir on path so "shared" resolves (run from repo root or backend/)
_backend_dir = os.path.dirname(os.path.abspath(__file__))
if _backend_dir not in sys.path:
    sys.path.insert(0, _backend_dir)
os.chdir(_backend_dir)

from sqlalchemy.exc import SQLAlchemyError

from review.service import ReviewService
from shared.config import get_settings
from shared.errors import MonitorError
from shared.storage.sql import SQLActionStore, SQLGameStore
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger, setup_logging

logger = get_logger("init_db")


async def main(prune: bool) -> None:
    settings = get_settings()
    setup_logging("init_db")
    db = DatabaseManager(settings)
    await db.connect()
    try:
        await db.create_schema()
        if prune:
            review = ReviewService(SQLActionStore(db), SQLGameStore(db))
            await review.clear_old_play_by_play(settings.retention_days)
    except (SQLAlchemyError, MonitorError) as exc:
        logger.error("init_db_failed", error=str(exc))
        sys.exit(1)
    finally:
        await db.disconnect()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument(
        "--prune",
        action="store_true",
        help="Delete play-by-play for games older than EW_RETENTION_DAYS",
    )
    asyncio.run(main(parser.parse_args().prune))
