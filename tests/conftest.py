"""In-memory stand-ins for Gmail, MongoDB and the send log."""

import asyncio
import base64
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

from mailsync.api.sync.errors import RateLimitedError, StaleCursorError, TransientMessageError
from mailsync.api.sync.models import ChangePage, ChangeRecord, MessagePage, ProcessedMessage, SyncCursor, SyncStatus
from mailsync.api.sync.notifier import ThreadResponseNotifier
from mailsync.utils.time_budget import TimeBudget

USER_ID = "user-1"
USER_EMAIL = "me@example.com"


def encode_body(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")


def make_raw_message(message_id: str, thread_id: str, sender: str = "alice@example.com",
                     to: str = USER_EMAIL, subject: Optional[str] = "Hello", body: str = "hi there",
                     date: str = "Mon, 06 Oct 2025 10:00:00 +0000") -> dict:
    headers = [
        {"name": "From", "value": sender},
        {"name": "To", "value": to},
        {"name": "Date", "value": date},
    ]
    if subject is not None:
        headers.append({"name": "Subject", "value": subject})
    return {
        "id": message_id,
        "threadId": thread_id,
        "internalDate": "1759744800000",
        "payload": {
            "mimeType": "text/plain",
            "headers": headers,
            "body": {"data": encode_body(body)},
        },
    }


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float = 1.0):
        self.now += seconds


class FakeGmailClient:
    """
    Change log and window listing over a dict of raw messages.

    History records are (cursor_id, [message ids]) with numeric cursor ids;
    list_changes_since only returns records after the requested cursor, the
    way Gmail's history API does.
    """

    def __init__(self, messages: Dict[str, dict] = None, history: List[tuple] = None,
                 window: List[str] = None, position: str = "1000", page_size: int = 2):
        self.messages = dict(messages or {})
        self.history = list(history or [])
        self.window = list(window or [])
        self.position = position
        self.page_size = page_size
        self.clock: Optional[FakeClock] = None
        self.stale = False
        self.rate_limited = False
        self.failing_ids = set()
        self.fetched: List[str] = []
        self.history_calls = 0
        self.window_calls = 0

    def _page(self, items: list, page_token: Optional[str]):
        start = int(page_token or 0)
        end = start + self.page_size
        return items[start:end], (str(end) if end < len(items) else None)

    async def list_changes_since(self, cursor: str, page_token: Optional[str] = None) -> ChangePage:
        self.history_calls += 1
        if self.stale:
            raise StaleCursorError(cursor, 404)
        if self.rate_limited:
            raise RateLimitedError("slow down")
        pending = [r for r in self.history if int(r[0]) > int(cursor)]
        chunk, next_token = self._page(pending, page_token)
        return ChangePage(
            records=[ChangeRecord(cursor_id=c, message_ids=ids) for c, ids in chunk],
            latest_cursor=self.position,
            next_page_token=next_token,
        )

    async def list_messages_in_window(self, after: datetime, page_token: Optional[str] = None, page_size: int = 100) -> MessagePage:
        self.window_calls += 1
        if self.rate_limited:
            raise RateLimitedError("slow down")
        chunk, next_token = self._page(self.window, page_token)
        return MessagePage(message_ids=chunk, next_page_token=next_token)

    async def get_message(self, message_id: str) -> dict:
        self.fetched.append(message_id)
        await asyncio.sleep(0)
        if self.clock:
            self.clock.advance()
        if message_id in self.failing_ids or message_id not in self.messages:
            raise TransientMessageError(message_id, "fetch failed with HTTP 500")
        return self.messages[message_id]

    async def get_current_position(self) -> str:
        return self.position


class InMemoryMailboxStore:
    def __init__(self):
        self.cursors: Dict[str, SyncCursor] = {}
        self.messages: Dict[str, dict] = {}
        self.conversations: Dict[str, dict] = {}
        self.cursor_writes: List[str] = []

    async def get_cursor(self, user_id: str) -> Optional[SyncCursor]:
        return self.cursors.get(user_id)

    async def save_cursor(self, user_id: str, cursor_id: str, email_address: Optional[str] = None) -> SyncCursor:
        cursor = SyncCursor(user_id=user_id, cursor_id=cursor_id, updated_at=datetime.now(timezone.utc))
        self.cursors[user_id] = cursor
        self.cursor_writes.append(cursor_id)
        return cursor

    async def message_exists(self, message_id: str) -> bool:
        return message_id in self.messages

    async def save_message(self, user_id: str, message: ProcessedMessage) -> bool:
        if message.message_id in self.messages:
            return False
        self.messages[message.message_id] = {**message.model_dump(), "user_id": user_id}
        conversation = self.conversations.setdefault(message.thread_id, {
            "thread_id": message.thread_id,
            "user_id": user_id,
            "subject": None,
            "last_message_at": message.received_at,
            "message_count": 0,
        })
        if message.subject is not None:
            conversation["subject"] = message.subject
        conversation["last_message_at"] = max(conversation["last_message_at"], message.received_at)
        conversation["message_count"] += 1
        return True

    async def get_status(self, user_id: str) -> SyncStatus:
        cursor = self.cursors.get(user_id)
        return SyncStatus(
            user_id=user_id,
            cursor=cursor.cursor_id if cursor else None,
            message_count=len(self.messages),
            conversation_count=len(self.conversations),
        )


class FakeSendRecords:
    def __init__(self, thread_ids=(), message_records: Dict[str, str] = None):
        self.thread_ids = set(thread_ids)
        self.message_records = dict(message_records or {})

    async def thread_has_send_record(self, user_id: str, thread_id: str) -> bool:
        return thread_id in self.thread_ids

    async def find_send_record_id(self, user_id: str, remote_message_id: str) -> Optional[str]:
        return self.message_records.get(remote_message_id)


class RecordingHandler:
    def __init__(self):
        self.calls = []

    async def __call__(self, user_id: str, thread_id: str):
        self.calls.append((user_id, thread_id))


class FakeResolver:
    def __init__(self, client, email: str = USER_EMAIL, error: Exception = None):
        self.client = client
        self.email = email
        self.error = error

    async def resolve(self, user_id: str):
        if self.error:
            raise self.error
        return self.email, self.client


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def budget(clock):
    return TimeBudget(25, clock=clock)


@pytest.fixture
def store():
    return InMemoryMailboxStore()


@pytest.fixture
def handler():
    return RecordingHandler()


@pytest.fixture
def notifier(handler):
    return ThreadResponseNotifier([handler])
