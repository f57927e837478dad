from functools import lru_cache

from fastapi import Depends
from pymongo import ASCENDING, DESCENDING, AsyncMongoClient
from pymongo.asynchronous.database import AsyncDatabase

from mailsync import config


@lru_cache
def get_settings():
    return config.Settings()


async def get_db(settings: config.Settings = Depends(get_settings)) -> AsyncDatabase:
    client = AsyncMongoClient(settings.DB_CONNECTION_STRING)
    db = client[settings.DB_NAME]
    try:
        yield db
    finally:
        await client.close()


async def ensure_indexes(db: AsyncDatabase):
    """Create the unique keys the sync engine relies on for idempotency."""
    await db["mail_sync_state"].create_index([("user_id", ASCENDING)], unique=True)
    await db["mail_sync_state"].create_index([("email_address", ASCENDING)])
    await db["conversations"].create_index([("thread_id", ASCENDING)], unique=True)
    await db["conversations"].create_index([("user_id", ASCENDING), ("last_message_at", DESCENDING)])
    await db["messages"].create_index([("message_id", ASCENDING)], unique=True)
    await db["messages"].create_index([("user_id", ASCENDING), ("thread_id", ASCENDING)])
    await db["messages"].create_index([("user_id", ASCENDING), ("received_at", DESCENDING)])
    await db["send_logs"].create_index([("user_id", ASCENDING), ("gmail_thread_id", ASCENDING)])
    await db["send_logs"].create_index([("user_id", ASCENDING), ("gmail_message_id", ASCENDING)])
