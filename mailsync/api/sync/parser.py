"""Turns a Gmail API message (format='full') into a ParsedMessage."""

import base64
import binascii
import email.utils
import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from mailsync.api.sync.errors import MessageParseError
from mailsync.api.sync.models import ParsedMessage

logger = logging.getLogger(__name__)


def _decode_base64url(data: str) -> str:
    try:
        padded = data + "=" * (-len(data) % 4)
        return base64.urlsafe_b64decode(padded).decode('utf-8', errors='ignore')
    except (binascii.Error, ValueError) as e:
        logger.warning(f"[PARSE] Failed to decode base64url body: {e}")
        return ""


def _get_header(headers: List[dict], name: str) -> Optional[str]:
    for h in headers:
        if h.get('name', '').lower() == name.lower():
            return h.get('value')
    return None


def _extract_bodies(parts: List[dict]) -> Tuple[Optional[str], Optional[str]]:
    """First text/html and first text/plain found, depth first."""
    html = None
    text = None
    for part in parts:
        if part.get('parts'):
            nested_html, nested_text = _extract_bodies(part['parts'])
            html = html or nested_html
            text = text or nested_text
            continue

        data = part.get('body', {}).get('data')
        if not data:
            continue
        mime_type = part.get('mimeType', '')
        if mime_type == 'text/html' and not html:
            html = _decode_base64url(data) or None
        elif mime_type == 'text/plain' and not text:
            text = _decode_base64url(data) or None
    return html, text


def _parse_received_at(date_header: Optional[str], internal_date: Optional[str]) -> datetime:
    if date_header:
        try:
            parsed = email.utils.parsedate_to_datetime(date_header)
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed
        except (TypeError, ValueError):
            logger.warning(f"[PARSE] Invalid Date header '{date_header}', falling back")
    if internal_date:
        try:
            return datetime.fromtimestamp(int(internal_date) / 1000, tz=timezone.utc)
        except (TypeError, ValueError):
            logger.warning(f"[PARSE] Invalid internalDate '{internal_date}', using current time")
    return datetime.now(timezone.utc)


def parse_gmail_message(msg_data: dict) -> ParsedMessage:
    msg_id = msg_data.get('id', 'unknown')
    payload = msg_data.get('payload')
    if not payload:
        raise MessageParseError(msg_id, "message payload is missing (fetch with format='full')")

    headers = payload.get('headers', [])

    from_name, from_email = email.utils.parseaddr(_get_header(headers, 'From') or '')

    recipients = []
    for field in ('To', 'Cc'):
        value = _get_header(headers, field)
        if not value:
            continue
        for _, addr in email.utils.getaddresses([value]):
            if addr:
                recipients.append(addr)

    body_html = None
    body_text = None
    if payload.get('parts'):
        body_html, body_text = _extract_bodies(payload['parts'])
    else:
        data = payload.get('body', {}).get('data')
        if data:
            decoded = _decode_base64url(data) or None
            if payload.get('mimeType') == 'text/html':
                body_html = decoded
            elif payload.get('mimeType') == 'text/plain':
                body_text = decoded

    return ParsedMessage(
        sender=from_email,
        sender_name=from_name or None,
        recipients=recipients,
        subject=_get_header(headers, 'Subject') or None,
        body_html=body_html,
        body_text=body_text,
        received_at=_parse_received_at(_get_header(headers, 'Date'), msg_data.get('internalDate'))
    )
