"""
Gmail access for the sync engine.

GmailMailboxClient is the only place that talks to the Gmail API. It turns
googleapiclient's HttpError into the engine's own error taxonomy so the
processors can tell a stale historyId from rate limiting from everything
else.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from pymongo.asynchronous.database import AsyncDatabase

from mailsync.api.sync.errors import (
    MailboxTransportError,
    MissingUserEmailError,
    NoGoogleAccountError,
    NoRefreshTokenError,
    RateLimitedError,
    StaleCursorError,
    TransientMessageError,
)
from mailsync.api.sync.models import ChangePage, ChangeRecord, MessagePage
from mailsync.config import settings
from mailsync.utils.security import decrypt_token

logger = logging.getLogger(__name__)

STALE_CURSOR_STATUSES = (404, 410)
RATE_LIMIT_REASONS = ("rateLimitExceeded", "userRateLimitExceeded")


def http_status(error: HttpError) -> Optional[int]:
    try:
        return int(error.resp.status)
    except (AttributeError, TypeError, ValueError):
        return None


def is_rate_limited(error: HttpError) -> bool:
    status = http_status(error)
    if status == 429:
        return True
    if status == 403:
        details = getattr(error, "error_details", None) or []
        if isinstance(details, list):
            return any(
                isinstance(d, dict) and d.get("reason") in RATE_LIMIT_REASONS
                for d in details
            )
    return False


class GmailMailboxClient:
    """Async facade over a Gmail v1 API resource for a single mailbox."""

    def __init__(self, service):
        self.service = service

    async def _execute(self, request):
        # googleapiclient is blocking; keep the event loop free for other users' syncs
        return await asyncio.to_thread(request.execute)

    async def list_changes_since(self, cursor: str, page_token: Optional[str] = None) -> ChangePage:
        """One page of 'messageAdded' history records after `cursor`."""
        request = self.service.users().history().list(
            userId='me',
            startHistoryId=cursor,
            historyTypes=['messageAdded'],
            pageToken=page_token
        )
        try:
            response = await self._execute(request)
        except HttpError as e:
            status = http_status(e)
            if status in STALE_CURSOR_STATUSES:
                raise StaleCursorError(cursor, status) from e
            if is_rate_limited(e):
                raise RateLimitedError(f"Rate limited listing history from {cursor}") from e
            raise MailboxTransportError(f"history.list failed: {e}", status) from e
        except OSError as e:
            raise MailboxTransportError(f"history.list failed: {e}") from e

        records = []
        for record in response.get('history', []):
            message_ids = []
            for added in record.get('messagesAdded', []):
                msg_id = added.get('message', {}).get('id')
                if msg_id:
                    message_ids.append(msg_id)
            records.append(ChangeRecord(cursor_id=str(record['id']), message_ids=message_ids))

        latest = response.get('historyId')
        return ChangePage(
            records=records,
            latest_cursor=str(latest) if latest else None,
            next_page_token=response.get('nextPageToken')
        )

    async def list_messages_in_window(self, after: datetime, page_token: Optional[str] = None, page_size: int = 100) -> MessagePage:
        """One page of message ids received after `after`."""
        request = self.service.users().messages().list(
            userId='me',
            q=f"after:{int(after.timestamp())}",
            maxResults=page_size,
            pageToken=page_token
        )
        try:
            response = await self._execute(request)
        except HttpError as e:
            if is_rate_limited(e):
                raise RateLimitedError("Rate limited listing messages") from e
            raise MailboxTransportError(f"messages.list failed: {e}", http_status(e)) from e
        except OSError as e:
            raise MailboxTransportError(f"messages.list failed: {e}") from e

        return MessagePage(
            message_ids=[m['id'] for m in response.get('messages', []) if m.get('id')],
            next_page_token=response.get('nextPageToken')
        )

    async def get_message(self, message_id: str) -> dict:
        request = self.service.users().messages().get(userId='me', id=message_id, format='full')
        try:
            return await self._execute(request)
        except HttpError as e:
            if is_rate_limited(e):
                raise RateLimitedError(f"Rate limited fetching message {message_id}") from e
            raise TransientMessageError(message_id, f"fetch failed with HTTP {http_status(e)}") from e
        except OSError as e:
            raise TransientMessageError(message_id, f"fetch failed: {e}") from e

    async def get_current_position(self) -> str:
        """The mailbox's current historyId."""
        try:
            profile = await self._execute(self.service.users().getProfile(userId='me'))
        except HttpError as e:
            if is_rate_limited(e):
                raise RateLimitedError("Rate limited fetching profile") from e
            raise MailboxTransportError(f"getProfile failed: {e}", http_status(e)) from e
        except OSError as e:
            raise MailboxTransportError(f"getProfile failed: {e}") from e

        history_id = profile.get('historyId')
        if not history_id:
            raise MailboxTransportError("getProfile returned no historyId")
        return str(history_id)


class GmailAccountResolver:
    """Resolves a local user into (email address, authenticated Gmail client)."""

    def __init__(self, db: AsyncDatabase):
        self.users_collection = db["users"]

    async def _find_user(self, user_id: str) -> Optional[dict]:
        try:
            return await self.users_collection.find_one({"_id": ObjectId(user_id)})
        except (InvalidId, TypeError):
            return await self.users_collection.find_one({"_id": user_id})

    def build_service(self, refresh_token: str):
        creds = Credentials(
            None,
            refresh_token=refresh_token,
            token_uri="https://oauth2.googleapis.com/token",
            client_id=settings.GOOGLE_CLIENT_ID,
            client_secret=settings.GOOGLE_CLIENT_SECRET
        )
        # Disable cache to avoid oauth2client<4.0.0 warning and crashes
        return build("gmail", "v1", credentials=creds, cache_discovery=False)

    async def resolve(self, user_id: str) -> Tuple[str, GmailMailboxClient]:
        user = await self._find_user(user_id)
        if not user:
            raise NoGoogleAccountError(user_id)
        if not user.get("google_refresh_token"):
            raise NoRefreshTokenError(user_id)
        if not user.get("email"):
            raise MissingUserEmailError(user_id)

        try:
            refresh_token = decrypt_token(user["google_refresh_token"])
        except ValueError as e:
            logger.error(f"[GMAIL] Cannot decrypt refresh token for user {user_id}: {e}")
            raise NoRefreshTokenError(user_id) from e

        return user["email"], GmailMailboxClient(self.build_service(refresh_token))
