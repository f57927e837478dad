"""
Incremental sync from the Gmail history API.

The cursor only moves over history records whose messages have all been
handled. A timeout commits the last such record; a drained change log
commits the position Gmail reported with the last page.
"""

import logging

from mailsync.api.sync.base import BaseSyncProcessor
from mailsync.api.sync.errors import RateLimitedError, StaleCursorError
from mailsync.api.sync.models import OutcomeStatus, SyncCursor, SyncOutcome, SyncType
from mailsync.utils.time_budget import TimeBudget

logger = logging.getLogger(__name__)


class IncrementalSyncProcessor(BaseSyncProcessor):
    log_tag = "INCREMENTAL SYNC"

    async def run(self, user_id: str, user_email: str, cursor: SyncCursor, budget: TimeBudget) -> SyncOutcome:
        logger.info(f"[INCREMENTAL SYNC] Processing history for user {user_id} from historyId {cursor.cursor_id}")
        outcome = SyncOutcome(status=OutcomeStatus.COMPLETED, sync_type=SyncType.INCREMENTAL)

        last_processed_cursor = cursor.cursor_id
        latest_reported_cursor = None
        page_token = None
        seen = set()
        timed_out = False

        try:
            while True:
                if budget.exceeded():
                    timed_out = True
                    break

                page = await self.client.list_changes_since(cursor.cursor_id, page_token)
                latest_reported_cursor = page.latest_cursor or latest_reported_cursor

                for record in page.records:
                    if budget.exceeded():
                        timed_out = True
                        break
                    for message_id in record.message_ids:
                        if message_id in seen:
                            continue
                        seen.add(message_id)
                        await self._ingest_one(outcome, user_id, user_email, message_id)
                    last_processed_cursor = record.cursor_id

                if timed_out or not page.next_page_token:
                    break
                page_token = page.next_page_token
        except StaleCursorError as e:
            logger.warning(f"[INCREMENTAL SYNC] historyId expired for user {user_id}: {e}")
            outcome.status = OutcomeStatus.STALE_CURSOR
            outcome.error = "historyId expired"
            return outcome
        except RateLimitedError as e:
            logger.warning(f"[INCREMENTAL SYNC] Rate limited for user {user_id}, will retry on next trigger: {e}")
            outcome.status = OutcomeStatus.RATE_LIMITED
            outcome.error = "Rate limited (429)"
            return outcome

        if timed_out:
            outcome.status = OutcomeStatus.TIMED_OUT
            new_cursor = last_processed_cursor
            logger.warning(
                f"[INCREMENTAL SYNC] Time budget of {budget.seconds}s exhausted for user {user_id}, "
                f"checkpointing at {new_cursor}"
            )
        else:
            new_cursor = latest_reported_cursor or last_processed_cursor

        await self.store.save_cursor(user_id, new_cursor, user_email)
        outcome.cursor = new_cursor
        logger.info(
            f"[INCREMENTAL SYNC] Done for user {user_id}: {outcome.messages_processed} processed, "
            f"{outcome.messages_skipped} skipped"
        )
        return outcome
