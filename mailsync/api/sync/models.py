"""Pydantic models for the mailbox sync engine."""

from datetime import datetime
from enum import Enum
from typing import List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True
    )


class MessageDirection(str, Enum):
    SENT = "SENT"
    RECEIVED = "RECEIVED"


class SyncType(str, Enum):
    INCREMENTAL = "incremental"
    FULL = "full"
    NONE = "none"


class OutcomeStatus(str, Enum):
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    STALE_CURSOR = "stale_cursor"
    RATE_LIMITED = "rate_limited"


class SyncCursor(CamelModel):
    """Per-user position in the remote change log (Gmail historyId)."""
    user_id: str
    cursor_id: str
    updated_at: Optional[datetime] = None


class ChangeRecord(CamelModel):
    """One history record: its own position and the messages it added."""
    cursor_id: str
    message_ids: List[str] = []


class ChangePage(CamelModel):
    records: List[ChangeRecord] = []
    latest_cursor: Optional[str] = None  # mailbox position reported with the page
    next_page_token: Optional[str] = None


class MessagePage(CamelModel):
    message_ids: List[str] = []
    next_page_token: Optional[str] = None


class ParsedMessage(CamelModel):
    sender: str
    sender_name: Optional[str] = None
    recipients: List[str] = []
    subject: Optional[str] = None
    body_html: Optional[str] = None
    body_text: Optional[str] = None
    received_at: datetime


class ProcessedMessage(CamelModel):
    """A message ready to be written, and the shape of a stored message."""
    message_id: str
    thread_id: str
    direction: MessageDirection
    sender: str
    recipients: List[str] = []
    subject: Optional[str] = None
    body_html: Optional[str] = None
    body_text: Optional[str] = None
    received_at: datetime
    send_record_id: Optional[str] = None


class SyncOutcome(CamelModel):
    """
    What a single processor run ended with.

    `cursor` is the position the processor committed, or None when it
    committed nothing (stale cursor, rate limited).
    """
    status: OutcomeStatus
    sync_type: SyncType
    messages_processed: int = 0
    messages_skipped: int = 0
    threads: Set[str] = Field(default_factory=set)
    cursor: Optional[str] = None
    error: Optional[str] = None

    def record(self, processed: Optional[ProcessedMessage]):
        if processed is not None:
            self.messages_processed += 1
            self.threads.add(processed.thread_id)


class SyncResult(CamelModel):
    success: bool
    messages_processed: int = 0
    conversations_updated: int = 0
    sync_type: SyncType
    error: Optional[str] = None
    timed_out: bool = False
    messages_skipped: int = 0


class SyncStatus(CamelModel):
    """Debug view of a user's local mirror."""
    user_id: str
    cursor: Optional[str] = None
    cursor_updated_at: Optional[datetime] = None
    message_count: int = 0
    conversation_count: int = 0
