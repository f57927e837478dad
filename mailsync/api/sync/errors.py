"""
Error taxonomy for mailbox synchronization.

Only AuthError and RateLimitedError are meant to end a sync run as a
failure. StaleCursorError is answered with a full resync, and
TransientMessageError only skips the message it concerns.
"""


class MailSyncError(Exception):
    """Base class for all sync engine errors."""


class AuthError(MailSyncError):
    """A remote client cannot be built for the user."""


class NoGoogleAccountError(AuthError):
    def __init__(self, user_id: str):
        super().__init__(f"No Google account linked for user {user_id}")
        self.user_id = user_id


class NoRefreshTokenError(AuthError):
    def __init__(self, user_id: str):
        super().__init__(f"No refresh token available for user {user_id}")
        self.user_id = user_id


class MissingUserEmailError(AuthError):
    def __init__(self, user_id: str):
        super().__init__(f"User {user_id} has no email address")
        self.user_id = user_id


class StaleCursorError(MailSyncError):
    """The remote rejected the stored change-log position as expired or unknown."""

    def __init__(self, cursor: str, status: int = None):
        super().__init__(f"historyId {cursor} is no longer valid (HTTP {status})")
        self.cursor = cursor
        self.status = status


class RateLimitedError(MailSyncError):
    """The remote asked us to slow down. Abort and wait for the next trigger."""


class MailboxTransportError(MailSyncError):
    """Any other remote failure on a listing or position call."""

    def __init__(self, message: str, status: int = None):
        super().__init__(message)
        self.status = status


class TransientMessageError(MailSyncError):
    """A single message could not be fetched; the run continues without it."""

    def __init__(self, message_id: str, reason: str):
        super().__init__(f"Message {message_id}: {reason}")
        self.message_id = message_id
        self.reason = reason


class MessageParseError(TransientMessageError):
    """A fetched message could not be turned into structured fields."""
