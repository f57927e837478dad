#!/usr/bin/env python3
"""
Run one synchronization pass for every user with a linked Gmail account.

Users without a stored historyId get a full sync over the last
MAIL_SYNC_FULL_WINDOW_DAYS days; everyone else syncs incrementally.
Useful for the initial backfill after deploying the sync engine.

Usage:
    python -m tools.migrations.run_full_sync

Environment variables required:
    - DB_CONNECTION_STRING
    - DB_NAME
    - GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, ENCRYPTION_KEY
"""

import asyncio
import logging

from pymongo import AsyncMongoClient

from mailsync.api.sync.service import MailboxSyncService
from mailsync.config import settings
from mailsync.database import ensure_indexes


async def run():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s"
    )
    logger = logging.getLogger(__name__)

    client = AsyncMongoClient(settings.DB_CONNECTION_STRING)
    try:
        db = client[settings.DB_NAME]
        await ensure_indexes(db)
        logger.info("Starting sync pass for all linked users...")
        await MailboxSyncService(db).sync_all_users()
        logger.info("Sync pass finished")
    finally:
        await client.close()


if __name__ == "__main__":
    asyncio.run(run())
