"""
MongoDB persistence for the local mailbox mirror.

Collections:
- mail_sync_state: one row per user holding the Gmail historyId cursor
- conversations: one document per Gmail thread
- messages: one immutable document per Gmail message
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import DuplicateKeyError

from mailsync.api.sync.models import ProcessedMessage, SyncCursor, SyncStatus

logger = logging.getLogger(__name__)


class MongoMailboxStore:
    def __init__(self, db: AsyncDatabase):
        self.db = db
        self.sync_state_collection = db["mail_sync_state"]
        self.conversations_collection = db["conversations"]
        self.messages_collection = db["messages"]

    async def _run_in_transaction(self, callback):
        # with_transaction retries the callback on TransientTransactionError
        async with self.db.client.start_session() as session:
            return await session.with_transaction(callback)

    async def get_cursor(self, user_id: str) -> Optional[SyncCursor]:
        state = await self.sync_state_collection.find_one({"user_id": user_id})
        if not state or not state.get("history_id"):
            return None
        return SyncCursor(
            user_id=user_id,
            cursor_id=state["history_id"],
            updated_at=state.get("updated_at")
        )

    async def save_cursor(self, user_id: str, cursor_id: str, email_address: Optional[str] = None) -> SyncCursor:
        now = datetime.now(timezone.utc)
        update = {"history_id": cursor_id, "updated_at": now}
        if email_address:
            update["email_address"] = email_address
        await self.sync_state_collection.update_one(
            {"user_id": user_id},
            {
                "$set": update,
                "$setOnInsert": {"created_at": now}
            },
            upsert=True
        )
        logger.info(f"[SYNC STATE] Updated historyId to {cursor_id} for user {user_id}")
        return SyncCursor(user_id=user_id, cursor_id=cursor_id, updated_at=now)

    async def message_exists(self, message_id: str) -> bool:
        doc = await self.messages_collection.find_one({"message_id": message_id}, {"_id": 1})
        return doc is not None

    async def save_message(self, user_id: str, message: ProcessedMessage) -> bool:
        """
        Write a message and bump its conversation in one transaction.

        Returns False when the message was already stored, in which case the
        conversation is left untouched.
        """
        now = datetime.now(timezone.utc)
        message_doc = {
            **message.model_dump(mode="python"),
            "direction": message.direction.value,
            "user_id": user_id,
            "created_at": now
        }

        conversation_set = {"updated_at": now}
        conversation_insert = {"thread_id": message.thread_id, "user_id": user_id, "created_at": now}
        if message.subject is not None:
            conversation_set["subject"] = message.subject
        else:
            conversation_insert["subject"] = None

        async def write(session) -> bool:
            result = await self.messages_collection.update_one(
                {"message_id": message.message_id},
                {"$setOnInsert": message_doc},
                upsert=True,
                session=session
            )
            if result.upserted_id is None:
                return False

            await self.conversations_collection.update_one(
                {"thread_id": message.thread_id},
                {
                    "$set": conversation_set,
                    "$setOnInsert": conversation_insert,
                    "$inc": {"message_count": 1},
                    "$max": {"last_message_at": message.received_at}
                },
                upsert=True,
                session=session
            )
            return True

        try:
            inserted = await self._run_in_transaction(write)
        except DuplicateKeyError:
            inserted = False
        if not inserted:
            logger.debug(f"[STORE] Message {message.message_id} already stored, skipping")
        return inserted

    async def get_status(self, user_id: str) -> SyncStatus:
        cursor = await self.get_cursor(user_id)
        return SyncStatus(
            user_id=user_id,
            cursor=cursor.cursor_id if cursor else None,
            cursor_updated_at=cursor.updated_at if cursor else None,
            message_count=await self.messages_collection.count_documents({"user_id": user_id}),
            conversation_count=await self.conversations_collection.count_documents({"user_id": user_id})
        )
