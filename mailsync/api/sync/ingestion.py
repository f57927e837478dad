"""
Per-message ingestion: one Gmail message id in, at most one stored message out.

Every step is a gate. The pipeline returns None whenever the message is
already stored, belongs to a thread the application did not start, or was
written concurrently by another run.
"""

import logging
from typing import Callable, Optional

from mailsync.api.sync.errors import MessageParseError
from mailsync.api.sync.models import MessageDirection, ParsedMessage, ProcessedMessage
from mailsync.api.sync.notifier import ThreadResponseNotifier
from mailsync.api.sync.parser import parse_gmail_message

logger = logging.getLogger(__name__)

MAX_BODY_LENGTH = 10 * 1024 * 1024
TRUNCATION_MARKER = "\n\n[... message truncated ...]"


def detect_direction(sender: str, user_email: str) -> MessageDirection:
    if sender and sender.strip().lower() == user_email.strip().lower():
        return MessageDirection.SENT
    return MessageDirection.RECEIVED


def cap_body(body: Optional[str], max_length: int = MAX_BODY_LENGTH) -> Optional[str]:
    if body is None or len(body) <= max_length:
        return body
    return body[:max_length] + TRUNCATION_MARKER


class MessageIngestionPipeline:
    def __init__(
        self,
        client,
        store,
        send_records,
        notifier: ThreadResponseNotifier,
        parser: Callable[[dict], ParsedMessage] = parse_gmail_message,
        max_body_length: int = MAX_BODY_LENGTH
    ):
        self.client = client
        self.store = store
        self.send_records = send_records
        self.notifier = notifier
        self.parser = parser
        self.max_body_length = max_body_length

    async def ingest(self, user_id: str, user_email: str, message_id: str) -> Optional[ProcessedMessage]:
        if await self.store.message_exists(message_id):
            logger.debug(f"[INGEST] Message {message_id} already exists, skipping")
            return None

        msg_data = await self.client.get_message(message_id)
        thread_id = msg_data.get('threadId')
        if not thread_id:
            logger.warning(f"[INGEST] Message {message_id} has no threadId, skipping")
            return None

        if not await self.send_records.thread_has_send_record(user_id, thread_id):
            logger.debug(f"[INGEST] Thread {thread_id} was not started by the app, ignoring {message_id}")
            return None

        try:
            parsed = self.parser(msg_data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise MessageParseError(message_id, str(e)) from e

        direction = detect_direction(parsed.sender, user_email)

        send_record_id = None
        if direction == MessageDirection.SENT:
            send_record_id = await self.send_records.find_send_record_id(user_id, message_id)

        processed = ProcessedMessage(
            message_id=message_id,
            thread_id=thread_id,
            direction=direction,
            sender=parsed.sender,
            recipients=parsed.recipients,
            subject=parsed.subject,
            body_html=cap_body(parsed.body_html, self.max_body_length),
            body_text=cap_body(parsed.body_text, self.max_body_length),
            received_at=parsed.received_at,
            send_record_id=send_record_id
        )

        if not await self.store.save_message(user_id, processed):
            logger.debug(f"[INGEST] Message {message_id} was stored by a concurrent run")
            return None

        if direction == MessageDirection.RECEIVED:
            self.notifier.notify(user_id, thread_id)

        logger.info(f"[INGEST] Processed message {message_id} ({direction.value}) in thread {thread_id}")
        return processed
