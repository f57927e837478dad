"""
Full resync over a bounded recent window.

Used when there is no stored historyId or Gmail no longer accepts it. Once
the listing is drained, or the time budget runs out, the mailbox's current
historyId becomes the new baseline. Messages in the window that were not
reached before a timeout are not revisited.
"""

import logging
from datetime import datetime, timedelta, timezone

from mailsync.api.sync.base import BaseSyncProcessor
from mailsync.api.sync.errors import RateLimitedError
from mailsync.api.sync.models import OutcomeStatus, SyncOutcome, SyncType
from mailsync.utils.time_budget import TimeBudget

logger = logging.getLogger(__name__)

FULL_SYNC_WINDOW_DAYS = 7
FULL_SYNC_PAGE_SIZE = 100


class FullSyncProcessor(BaseSyncProcessor):
    log_tag = "FULL SYNC"

    def __init__(self, client, store, pipeline, window_days: int = FULL_SYNC_WINDOW_DAYS, page_size: int = FULL_SYNC_PAGE_SIZE):
        super().__init__(client, store, pipeline)
        self.window_days = window_days
        self.page_size = page_size

    async def run(self, user_id: str, user_email: str, budget: TimeBudget) -> SyncOutcome:
        after = datetime.now(timezone.utc) - timedelta(days=self.window_days)
        logger.info(f"[FULL SYNC] Listing messages for user {user_id} after {after.isoformat()}")
        outcome = SyncOutcome(status=OutcomeStatus.COMPLETED, sync_type=SyncType.FULL)

        page_token = None
        pages = 0
        timed_out = False

        try:
            while True:
                if budget.exceeded():
                    timed_out = True
                    break

                page = await self.client.list_messages_in_window(after, page_token, self.page_size)
                pages += 1
                logger.debug(f"[FULL SYNC] Page {pages}: {len(page.message_ids)} messages")

                for message_id in page.message_ids:
                    if budget.exceeded():
                        timed_out = True
                        break
                    await self._ingest_one(outcome, user_id, user_email, message_id)

                if timed_out or not page.next_page_token:
                    break
                page_token = page.next_page_token

            new_cursor = await self.client.get_current_position()
        except RateLimitedError as e:
            logger.warning(f"[FULL SYNC] Rate limited for user {user_id}, will retry on next trigger: {e}")
            outcome.status = OutcomeStatus.RATE_LIMITED
            outcome.error = "Rate limited (429)"
            return outcome

        if timed_out:
            outcome.status = OutcomeStatus.TIMED_OUT
            logger.warning(f"[FULL SYNC] Time budget of {budget.seconds}s exhausted for user {user_id} after {pages} pages")

        await self.store.save_cursor(user_id, new_cursor, user_email)
        outcome.cursor = new_cursor
        logger.info(
            f"[FULL SYNC] Done for user {user_id}: {outcome.messages_processed} processed, "
            f"{outcome.messages_skipped} skipped, new historyId {new_cursor}"
        )
        return outcome
