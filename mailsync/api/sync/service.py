"""
Mailbox sync orchestration.

Picks incremental or full sync for a user, switches to full sync when the
stored historyId is stale, and folds every outcome into one SyncResult.
"""

import logging
from typing import Callable, Optional

from pymongo import AsyncMongoClient
from pymongo.asynchronous.database import AsyncDatabase

from mailsync.api.sync.errors import AuthError
from mailsync.api.sync.full import FullSyncProcessor
from mailsync.api.sync.gmail_client import GmailAccountResolver
from mailsync.api.sync.incremental import IncrementalSyncProcessor
from mailsync.api.sync.ingestion import MessageIngestionPipeline
from mailsync.api.sync.models import OutcomeStatus, SyncOutcome, SyncResult, SyncStatus, SyncType
from mailsync.api.sync.notifier import ThreadResponseNotifier, mark_outreach_responded
from mailsync.api.sync.send_records import MongoSendRecordStore
from mailsync.api.sync.store import MongoMailboxStore
from mailsync.config import settings
from mailsync.utils.time_budget import TimeBudget

logger = logging.getLogger(__name__)


class MailboxSyncService:
    """Service for mirroring a user's Gmail threads into the local store."""

    def __init__(
        self,
        db: Optional[AsyncDatabase],
        resolver: Optional[GmailAccountResolver] = None,
        store: Optional[MongoMailboxStore] = None,
        send_records: Optional[MongoSendRecordStore] = None,
        notifier: Optional[ThreadResponseNotifier] = None,
        budget_factory: Optional[Callable[[], TimeBudget]] = None
    ):
        self.db = db
        self.resolver = resolver or GmailAccountResolver(db)
        self.store = store or MongoMailboxStore(db)
        self.send_records = send_records or MongoSendRecordStore(db)
        self.notifier = notifier or ThreadResponseNotifier([mark_outreach_responded(db)])
        self.budget_factory = budget_factory or (lambda: TimeBudget(settings.MAIL_SYNC_TIME_BUDGET_SECONDS))

    def _build_processors(self, client):
        pipeline = MessageIngestionPipeline(
            client,
            self.store,
            self.send_records,
            self.notifier,
            max_body_length=settings.MAIL_SYNC_MAX_BODY_LENGTH
        )
        incremental = IncrementalSyncProcessor(client, self.store, pipeline)
        full = FullSyncProcessor(
            client,
            self.store,
            pipeline,
            window_days=settings.MAIL_SYNC_FULL_WINDOW_DAYS,
            page_size=settings.MAIL_SYNC_PAGE_SIZE
        )
        return incremental, full

    async def sync(self, user_id: str) -> SyncResult:
        logger.info(f"[SYNC] Starting sync for user {user_id}")
        budget = self.budget_factory()

        try:
            user_email, client = await self.resolver.resolve(user_id)
        except AuthError as e:
            logger.error(f"[SYNC] Auth error for user {user_id}: {e}")
            return SyncResult(success=False, sync_type=SyncType.NONE, error=f"Auth error: {e}")

        incremental, full = self._build_processors(client)
        sync_type = SyncType.NONE
        try:
            cursor = await self.store.get_cursor(user_id)
            if cursor:
                sync_type = SyncType.INCREMENTAL
                outcome = await incremental.run(user_id, user_email, cursor, budget)
                if outcome.status == OutcomeStatus.STALE_CURSOR:
                    logger.info(f"[SYNC] History stale for user {user_id}, falling back to full sync")
                    sync_type = SyncType.FULL
                    outcome = await full.run(user_id, user_email, budget)
            else:
                logger.info(f"[SYNC] No stored historyId for user {user_id}, performing full sync")
                sync_type = SyncType.FULL
                outcome = await full.run(user_id, user_email, budget)
        except Exception as e:
            logger.exception(f"[SYNC] Unexpected error for user {user_id}: {e}")
            return SyncResult(success=False, sync_type=sync_type, error=str(e))

        result = self._to_result(outcome)
        logger.info(
            f"[SYNC] Sync completed for user {user_id}: success={result.success}, type={result.sync_type.value}, "
            f"processed={result.messages_processed}, conversations={result.conversations_updated}, "
            f"timed_out={result.timed_out}"
        )
        return result

    @staticmethod
    def _to_result(outcome: SyncOutcome) -> SyncResult:
        success = outcome.status in (OutcomeStatus.COMPLETED, OutcomeStatus.TIMED_OUT)
        return SyncResult(
            success=success,
            messages_processed=outcome.messages_processed,
            conversations_updated=len(outcome.threads),
            sync_type=outcome.sync_type,
            error=None if success else outcome.error,
            timed_out=outcome.status == OutcomeStatus.TIMED_OUT,
            messages_skipped=outcome.messages_skipped
        )

    async def get_status(self, user_id: str) -> SyncStatus:
        return await self.store.get_status(user_id)

    async def find_user_id_by_email(self, email_address: str) -> Optional[str]:
        """Map a push notification's mailbox address to a local user id."""
        user = await self.db["users"].find_one({"email": email_address}, {"_id": 1})
        if user:
            return str(user["_id"])
        state = await self.db["mail_sync_state"].find_one({"email_address": email_address}, {"user_id": 1})
        if state:
            return state["user_id"]
        return None

    async def sync_all_users(self):
        cursor = self.db["users"].find({"google_refresh_token": {"$exists": True}}, {"_id": 1})
        async for user in cursor:
            user_id = str(user["_id"])
            result = await self.sync(user_id)
            if not result.success:
                logger.warning(f"[MAIL SYNC] Failed for user {user_id}: {result.error}")
        await self.notifier.drain()


async def sync_user_mailbox(user_id: str) -> SyncResult:
    """Run one sync for a user on a dedicated database connection."""
    client = AsyncMongoClient(settings.DB_CONNECTION_STRING)
    try:
        service = MailboxSyncService(client[settings.DB_NAME])
        result = await service.sync(user_id)
        await service.notifier.drain()
        return result
    finally:
        await client.close()
