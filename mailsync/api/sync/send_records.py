from typing import Optional

from pymongo.asynchronous.database import AsyncDatabase


class MongoSendRecordStore:
    """Read-only view of messages the application itself sent (send_logs)."""

    def __init__(self, db: AsyncDatabase):
        self.send_logs_collection = db["send_logs"]

    async def thread_has_send_record(self, user_id: str, thread_id: str) -> bool:
        doc = await self.send_logs_collection.find_one(
            {"user_id": user_id, "gmail_thread_id": thread_id},
            {"_id": 1}
        )
        return doc is not None

    async def find_send_record_id(self, user_id: str, remote_message_id: str) -> Optional[str]:
        doc = await self.send_logs_collection.find_one(
            {"user_id": user_id, "gmail_message_id": remote_message_id},
            {"_id": 1}
        )
        return str(doc["_id"]) if doc else None
