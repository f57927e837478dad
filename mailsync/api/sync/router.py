import base64
import binascii
import json
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status

from mailsync.api.auth.dependencies import get_current_user
from mailsync.api.auth.models import UserInfo
from mailsync.api.sync.dependencies import get_sync_service
from mailsync.api.sync.models import SyncResult, SyncStatus
from mailsync.api.sync.service import MailboxSyncService, sync_user_mailbox
from mailsync.config import settings
from mailsync.models.api_response import APIResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["Sync"])


def decode_pubsub_notification(body: dict) -> Optional[dict]:
    """Extract {emailAddress, historyId} from a Pub/Sub push envelope."""
    data = (body.get("message") or {}).get("data")
    if not data:
        return None
    try:
        padded = data + "=" * (-len(data) % 4)
        payload = json.loads(base64.urlsafe_b64decode(padded.replace("+", "-").replace("/", "_")))
    except (binascii.Error, ValueError) as e:
        logger.warning(f"[WEBHOOK] Could not decode Pub/Sub data: {e}")
        return None
    if not isinstance(payload, dict) or not payload.get("emailAddress"):
        return None
    return payload


@router.post("/webhooks/gmail", response_model=APIResponse[dict])
async def gmail_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    token: Optional[str] = Query(None, description="Shared secret configured on the push subscription"),
    sync_service: MailboxSyncService = Depends(get_sync_service)
):
    """Gmail push notification via Pub/Sub. Always acknowledged unless unauthorized."""
    if settings.GMAIL_WEBHOOK_TOKEN and token != settings.GMAIL_WEBHOOK_TOKEN:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook token")

    try:
        body = await request.json()
    except ValueError:
        body = None
    notification = decode_pubsub_notification(body) if isinstance(body, dict) else None
    if not notification:
        return APIResponse(data={"status": "ignored", "reason": "malformed notification"}, message="Ignored")

    email_address = notification["emailAddress"]
    logger.info(f"[WEBHOOK] Notification for {email_address}, historyId={notification.get('historyId')}")

    user_id = await sync_service.find_user_id_by_email(email_address)
    if not user_id:
        logger.warning(f"[WEBHOOK] No user found for {email_address}")
        return APIResponse(data={"status": "ignored", "reason": "unknown mailbox"}, message="Ignored")

    background_tasks.add_task(sync_user_mailbox, user_id)
    return APIResponse(data={"status": "scheduled", "userId": user_id}, message="Sync scheduled")


@router.post("/run", response_model=APIResponse[SyncResult])
async def run_sync(
    sync_service: MailboxSyncService = Depends(get_sync_service),
    current_user: UserInfo = Depends(get_current_user)
):
    """Synchronize the authenticated user's mailbox now."""
    result = await sync_service.sync(current_user.id)
    await sync_service.notifier.drain()
    message = "Sync completed" if result.success else "Sync failed"
    return APIResponse(data=result, message=message)


@router.get("/status", response_model=APIResponse[SyncStatus])
async def get_sync_status(
    sync_service: MailboxSyncService = Depends(get_sync_service),
    current_user: UserInfo = Depends(get_current_user)
):
    """Stored cursor and local mirror counts for the authenticated user."""
    sync_status = await sync_service.get_status(current_user.id)
    return APIResponse(data=sync_status, message="Sync status retrieved successfully")
