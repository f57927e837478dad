import logging

from mailsync.api.sync.errors import TransientMessageError
from mailsync.api.sync.ingestion import MessageIngestionPipeline
from mailsync.api.sync.models import SyncOutcome

logger = logging.getLogger(__name__)


class BaseSyncProcessor:
    """Shared plumbing for the incremental and full processors."""

    log_tag = "SYNC"

    def __init__(self, client, store, pipeline: MessageIngestionPipeline):
        self.client = client
        self.store = store
        self.pipeline = pipeline

    async def _ingest_one(self, outcome: SyncOutcome, user_id: str, user_email: str, message_id: str):
        """Ingest a single message, absorbing failures that only concern that message."""
        try:
            outcome.record(await self.pipeline.ingest(user_id, user_email, message_id))
        except TransientMessageError as e:
            outcome.messages_skipped += 1
            logger.warning(f"[{self.log_tag}] Skipping message {message_id}: {e.reason}")
