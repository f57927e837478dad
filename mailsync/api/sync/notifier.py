"""
Fire-and-forget notifications for replies observed in tracked threads.

Handlers run in background tasks after the message has been committed. A
failing handler is logged and otherwise ignored: the stored message stays.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Set

from pymongo.asynchronous.database import AsyncDatabase

logger = logging.getLogger(__name__)

ResponseHandler = Callable[[str, str], Awaitable[None]]


def mark_outreach_responded(db: AsyncDatabase) -> ResponseHandler:
    """Handler that flags the user's outreach tracker for the thread as RESPONDED."""
    trackers = db["outreach_trackers"]

    async def handler(user_id: str, thread_id: str):
        result = await trackers.update_one(
            {
                "user_id": user_id,
                "gmail_thread_id": thread_id,
                "response_received_at": None
            },
            {"$set": {"status": "RESPONDED", "response_received_at": datetime.now(timezone.utc)}}
        )
        if result.modified_count:
            logger.info(f"[NOTIFY] Outreach tracker marked RESPONDED for thread {thread_id}")

    return handler


class ThreadResponseNotifier:
    def __init__(self, handlers: Optional[List[ResponseHandler]] = None):
        self.handlers = list(handlers or [])
        self._pending: Set[asyncio.Task] = set()

    def notify(self, user_id: str, thread_id: str) -> Optional[asyncio.Task]:
        if not self.handlers:
            return None
        task = asyncio.create_task(self._dispatch(user_id, thread_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _dispatch(self, user_id: str, thread_id: str):
        for handler in self.handlers:
            try:
                await handler(user_id, thread_id)
            except Exception:
                logger.exception(f"[NOTIFY] Response handler failed for user {user_id}, thread {thread_id}")

    async def drain(self):
        """Wait for notifications still in flight."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
