"""
Notification queue operator routes
"""
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from flightclaims.api.deps import get_notification_queue
from flightclaims.core import logger, require_trigger_secret
from flightclaims.services.notification_queue import EmailStatus, NotificationQueue

router = APIRouter(dependencies=[Depends(require_trigger_secret)])


class QueueStatusResponse(BaseModel):
    running: bool
    counts: Dict[str, int]


class FailedEmailsResponse(BaseModel):
    emails: List[Dict[str, Any]]


@router.get("/queue", response_model=QueueStatusResponse)
async def get_queue_status(queue: NotificationQueue = Depends(get_notification_queue)):
    return QueueStatusResponse(running=queue.running, counts=queue.get_queue_status())


@router.get("/failed", response_model=FailedEmailsResponse)
async def get_failed_emails(queue: NotificationQueue = Depends(get_notification_queue)):
    return FailedEmailsResponse(emails=[email.to_dict() for email in queue.get_failed_emails()])


@router.post("/{email_id}/retry")
async def retry_failed_email(
    email_id: str,
    queue: NotificationQueue = Depends(get_notification_queue),
):
    """Send a permanently failed email back to pending."""
    email = queue.get(email_id)
    if email is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Email not found")
    if email.status != EmailStatus.FAILED:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Email is {email.status.value}, only failed emails can be retried",
        )

    queue.retry_failed_email(email_id)
    logger.info(f"Operator requeued email {email_id}")
    return {"success": True, "email": queue.get(email_id).to_dict()}


@router.delete("/sent")
async def clear_sent_emails(queue: NotificationQueue = Depends(get_notification_queue)):
    return {"success": True, "cleared": queue.clear_sent_emails()}
