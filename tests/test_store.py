from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import DuplicateKeyError, OperationFailure

from mailsync.api.sync.models import MessageDirection, ProcessedMessage
from mailsync.api.sync.store import MongoMailboxStore


class FakeSession:
    """Session whose with_transaction reruns the callback on transient errors, like pymongo's."""

    def __init__(self):
        self.attempts = 0

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def with_transaction(self, callback):
        while True:
            self.attempts += 1
            try:
                return await callback(self)
            except OperationFailure as e:
                if not e.has_error_label("TransientTransactionError"):
                    raise


def make_store() -> MongoMailboxStore:
    store = MongoMailboxStore.__new__(MongoMailboxStore)
    store.db = MagicMock()
    store.session = FakeSession()
    store.db.client.start_session.return_value = store.session
    store.sync_state_collection = MagicMock()
    store.conversations_collection = MagicMock()
    store.messages_collection = MagicMock()
    store.sync_state_collection.find_one = AsyncMock(return_value=None)
    store.sync_state_collection.update_one = AsyncMock()
    store.messages_collection.find_one = AsyncMock(return_value=None)
    store.messages_collection.update_one = AsyncMock(return_value=SimpleNamespace(upserted_id="new-id"))
    store.messages_collection.count_documents = AsyncMock(return_value=0)
    store.conversations_collection.update_one = AsyncMock()
    store.conversations_collection.count_documents = AsyncMock(return_value=0)
    return store


def make_message(subject="Hello") -> ProcessedMessage:
    return ProcessedMessage(
        message_id="m1",
        thread_id="t1",
        direction=MessageDirection.RECEIVED,
        sender="alice@example.com",
        recipients=["me@example.com"],
        subject=subject,
        body_text="hi",
        received_at=datetime(2025, 10, 6, 10, 0, tzinfo=timezone.utc)
    )


@pytest.mark.asyncio
async def test_get_cursor_returns_none_without_state():
    store = make_store()

    assert await store.get_cursor("u1") is None


@pytest.mark.asyncio
async def test_get_cursor_maps_history_id():
    store = make_store()
    updated = datetime(2025, 10, 6, tzinfo=timezone.utc)
    store.sync_state_collection.find_one.return_value = {"user_id": "u1", "history_id": "555", "updated_at": updated}

    cursor = await store.get_cursor("u1")

    assert cursor.cursor_id == "555"
    assert cursor.updated_at == updated


@pytest.mark.asyncio
async def test_save_cursor_upserts_state():
    store = make_store()

    cursor = await store.save_cursor("u1", "600", email_address="me@example.com")

    assert cursor.cursor_id == "600"
    args, kwargs = store.sync_state_collection.update_one.call_args
    assert args[0] == {"user_id": "u1"}
    assert args[1]["$set"]["history_id"] == "600"
    assert args[1]["$set"]["email_address"] == "me@example.com"
    assert kwargs["upsert"] is True


@pytest.mark.asyncio
async def test_save_message_inserts_and_bumps_conversation():
    store = make_store()

    assert await store.save_message("u1", make_message()) is True

    msg_args, msg_kwargs = store.messages_collection.update_one.call_args
    assert msg_args[0] == {"message_id": "m1"}
    assert msg_args[1]["$setOnInsert"]["direction"] == MessageDirection.RECEIVED.value
    assert msg_args[1]["$setOnInsert"]["user_id"] == "u1"
    assert msg_kwargs["session"] is store.session

    conv_args, conv_kwargs = store.conversations_collection.update_one.call_args
    assert conv_args[0] == {"thread_id": "t1"}
    assert conv_args[1]["$inc"] == {"message_count": 1}
    assert conv_args[1]["$set"]["subject"] == "Hello"
    assert conv_args[1]["$max"]["last_message_at"] == datetime(2025, 10, 6, 10, 0, tzinfo=timezone.utc)
    assert conv_kwargs["session"] is store.session


@pytest.mark.asyncio
async def test_save_message_without_subject_keeps_existing_subject():
    store = make_store()

    await store.save_message("u1", make_message(subject=None))

    conv_args, _ = store.conversations_collection.update_one.call_args
    assert "subject" not in conv_args[1]["$set"]
    assert conv_args[1]["$setOnInsert"]["subject"] is None


@pytest.mark.asyncio
async def test_save_message_existing_message_leaves_conversation_alone():
    store = make_store()
    store.messages_collection.update_one.return_value = SimpleNamespace(upserted_id=None)

    assert await store.save_message("u1", make_message()) is False
    store.conversations_collection.update_one.assert_not_awaited()


@pytest.mark.asyncio
async def test_save_message_duplicate_key_is_not_an_error():
    store = make_store()
    store.messages_collection.update_one.side_effect = DuplicateKeyError("E11000 duplicate key")

    assert await store.save_message("u1", make_message()) is False


@pytest.mark.asyncio
async def test_save_message_write_conflict_retries_and_sees_winner():
    store = make_store()
    conflict = OperationFailure("WriteConflict", code=112, details={"errorLabels": ["TransientTransactionError"]})
    # the concurrent writer has not committed yet when the conflict surfaces
    store.messages_collection.update_one.side_effect = [conflict, SimpleNamespace(upserted_id=None)]

    assert await store.save_message("u1", make_message()) is False
    assert store.session.attempts == 2
    assert store.messages_collection.update_one.await_count == 2
    store.messages_collection.find_one.assert_not_awaited()
    store.conversations_collection.update_one.assert_not_awaited()


@pytest.mark.asyncio
async def test_save_message_other_errors_propagate():
    store = make_store()
    store.messages_collection.update_one.side_effect = OperationFailure("boom", code=2)

    with pytest.raises(OperationFailure):
        await store.save_message("u1", make_message())


@pytest.mark.asyncio
async def test_get_status_counts_documents():
    store = make_store()
    store.sync_state_collection.find_one.return_value = {"user_id": "u1", "history_id": "700"}
    store.messages_collection.count_documents.return_value = 4
    store.conversations_collection.count_documents.return_value = 2

    status = await store.get_status("u1")

    assert status.cursor == "700"
    assert status.message_count == 4
    assert status.conversation_count == 2
