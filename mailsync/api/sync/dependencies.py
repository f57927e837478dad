from fastapi import Depends
from pymongo.asynchronous.database import AsyncDatabase
from mailsync.database import get_db
from mailsync.api.sync.service import MailboxSyncService

async def get_sync_service(db: AsyncDatabase = Depends(get_db)) -> MailboxSyncService:
    """Dependency to get MailboxSyncService instance"""
    return MailboxSyncService(db)
