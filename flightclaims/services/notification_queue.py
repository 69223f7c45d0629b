"""
Notification Queue - in-memory prioritized retry queue for outbound email.

Item lifecycle:
    pending -> processing -> sent | retry | failed
    retry -> pending (once retry_delay has elapsed)

`failed` items stay failed until an operator calls retry_failed_email().
The queue is an owned component: the application starts and stops it and
injects it into the processors.
"""
import asyncio
import itertools
import uuid
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from flightclaims.core import get_logger, settings, utcnow
from flightclaims.core.exceptions import ValidationError
from flightclaims.services.email import EmailProvider
from flightclaims.services.email_templates import EMAIL_TEMPLATES, render_template

logger = get_logger(__name__)


class EmailPriority(str, Enum):
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class EmailStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    RETRY = "retry"
    FAILED = "failed"


PRIORITY_ORDER = {EmailPriority.HIGH: 0, EmailPriority.NORMAL: 1, EmailPriority.LOW: 2}


@dataclass
class QueuedEmail:
    id: str
    to: str
    template: str
    variables: Dict[str, Any]
    priority: EmailPriority
    max_attempts: int
    sequence: int
    created_at: datetime
    attempts: int = 0
    status: EmailStatus = EmailStatus.PENDING
    last_attempt: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None
    error: Optional[str] = None
    message_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["priority"] = self.priority.value
        data["status"] = self.status.value
        for key in ("created_at", "last_attempt", "next_attempt_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass
class QueueConfig:
    max_retries: int = 3
    retry_delay: float = 30.0  # seconds
    batch_size: int = 10
    processing_interval: float = 10.0  # seconds
    send_timeout: float = 20.0  # seconds

    @classmethod
    def from_settings(cls) -> "QueueConfig":
        return cls(
            max_retries=settings.EMAIL_QUEUE_MAX_RETRIES,
            retry_delay=settings.EMAIL_QUEUE_RETRY_DELAY_SECONDS,
            batch_size=settings.EMAIL_QUEUE_BATCH_SIZE,
            processing_interval=settings.EMAIL_QUEUE_INTERVAL_SECONDS,
            send_timeout=settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
        )


class NotificationQueue:
    """Priority queue (high > normal > low, FIFO within a tier) with retries."""

    def __init__(self, provider: EmailProvider, config: Optional[QueueConfig] = None):
        self.provider = provider
        self.config = config or QueueConfig()
        self._items: List[QueuedEmail] = []
        self._sequence = itertools.count()
        self._task: Optional[asyncio.Task] = None
        self._stopping: Optional[asyncio.Event] = None

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    def add_email(
        self,
        to: str,
        template: str,
        variables: Optional[Dict[str, Any]] = None,
        priority: str = EmailPriority.NORMAL.value,
    ) -> str:
        """Queue a message and return its id."""
        if template not in EMAIL_TEMPLATES:
            raise ValidationError(f"Template not found: {template}")
        if not to:
            raise ValidationError("Recipient address is required")

        email = QueuedEmail(
            id=f"email-{uuid.uuid4().hex[:16]}",
            to=to,
            template=template,
            variables=dict(variables or {}),
            priority=EmailPriority(priority),
            max_attempts=self.config.max_retries,
            sequence=next(self._sequence),
            created_at=utcnow(),
        )
        self._items.append(email)
        logger.info(f"Email queued: {email.id} template={template} priority={email.priority.value}")
        return email.id

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def _promote_due_retries(self, now: datetime) -> None:
        for email in self._items:
            if (
                email.status == EmailStatus.RETRY
                and email.next_attempt_at is not None
                and email.next_attempt_at <= now
            ):
                email.status = EmailStatus.PENDING

    def get_next_batch(self, now: Optional[datetime] = None) -> List[QueuedEmail]:
        now = now or utcnow()
        self._promote_due_retries(now)
        ready = [
            email for email in self._items
            if email.status == EmailStatus.PENDING
            or (
                email.status == EmailStatus.RETRY
                and email.attempts < email.max_attempts
                and (email.next_attempt_at is None or email.next_attempt_at <= now)
            )
        ]
        ready.sort(key=lambda e: (PRIORITY_ORDER[e.priority], e.sequence))
        return ready[: self.config.batch_size]

    async def _deliver(self, email: QueuedEmail) -> None:
        email.attempts += 1
        email.last_attempt = utcnow()
        logger.info(f"Processing email {email.id} (attempt {email.attempts}/{email.max_attempts})")

        try:
            rendered = render_template(email.template, email.variables)
            message_id = await asyncio.wait_for(
                self.provider.send(email.to, rendered.subject, rendered.html, rendered.text),
                timeout=self.config.send_timeout,
            )
        except Exception as exc:
            email.error = str(exc) or exc.__class__.__name__
            if email.attempts >= email.max_attempts:
                email.status = EmailStatus.FAILED
                email.next_attempt_at = None
                logger.error(f"Email {email.id} failed permanently after {email.attempts} attempts: {email.error}")
            else:
                email.status = EmailStatus.RETRY
                email.next_attempt_at = utcnow() + timedelta(seconds=self.config.retry_delay)
                logger.warning(
                    f"Email {email.id} will be retried "
                    f"(attempt {email.attempts}/{email.max_attempts}): {email.error}"
                )
            return

        email.status = EmailStatus.SENT
        email.message_id = message_id
        email.error = None
        email.next_attempt_at = None
        logger.info(f"Email {email.id} sent via {self.provider.name} ({message_id})")

    async def process_once(self) -> int:
        """Run one drain cycle; returns how many items were attempted."""
        batch = self.get_next_batch()
        if not batch:
            return 0
        # Claim the whole batch before the first await so an overlapping cycle
        # cannot select the same items.
        for email in batch:
            email.status = EmailStatus.PROCESSING
        await asyncio.gather(*(self._deliver(email) for email in batch))
        return len(batch)

    async def _run(self) -> None:
        assert self._stopping is not None
        while not self._stopping.is_set():
            try:
                await self.process_once()
            except Exception as exc:
                logger.error(f"Error in email queue processing: {exc}")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.config.processing_interval)
            except asyncio.TimeoutError:
                pass

    def start(self) -> None:
        """Start the background drain loop on the running event loop."""
        if self._task is not None and not self._task.done():
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("Email queue processing started")

    async def stop(self) -> None:
        if self._task is None:
            return
        assert self._stopping is not None
        self._stopping.set()
        await self._task
        self._task = None
        logger.info("Email queue processing stopped")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Operator contract
    # ------------------------------------------------------------------

    def get(self, email_id: str) -> Optional[QueuedEmail]:
        return next((e for e in self._items if e.id == email_id), None)

    def get_queue_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in EmailStatus}
        for email in self._items:
            counts[email.status.value] += 1
        return {"total": len(self._items), **counts}

    def get_failed_emails(self) -> List[QueuedEmail]:
        return [e for e in self._items if e.status == EmailStatus.FAILED]

    def retry_failed_email(self, email_id: str) -> bool:
        email = self.get(email_id)
        if email is None or email.status != EmailStatus.FAILED:
            return False
        email.status = EmailStatus.PENDING
        email.attempts = 0
        email.error = None
        email.next_attempt_at = None
        logger.info(f"Email {email_id} queued for retry")
        return True

    def clear_sent_emails(self) -> int:
        before = len(self._items)
        self._items = [e for e in self._items if e.status != EmailStatus.SENT]
        cleared = before - len(self._items)
        logger.info(f"Cleared {cleared} sent emails from queue")
        return cleared

    def __len__(self) -> int:
        return len(self._items)


# Helpers for common notifications

def queue_claim_filed_notification(queue: NotificationQueue, claim, airline_name: str) -> str:
    return queue.add_email(
        claim.email,
        "claim_filed",
        {
            "claim_id": claim.claim_id,
            "first_name": claim.first_name,
            "flight_number": claim.flight_number,
            "airline": airline_name,
            "airline_reference": claim.airline_reference,
            "filing_method": claim.filing_method,
        },
        priority=EmailPriority.HIGH.value,
    )


def queue_refund_notification(
    queue: NotificationQueue,
    claim,
    amount: int,
    currency: str,
    reason: str,
) -> str:
    return queue.add_email(
        claim.email,
        "refund_notification",
        {
            "claim_id": claim.claim_id,
            "first_name": claim.first_name,
            "amount": amount,
            "amount_display": f"{amount / 100:.2f} {currency.upper()}",
            "refund_reason": reason,
        },
        priority=EmailPriority.NORMAL.value,
    )


def queue_status_update_notification(
    queue: NotificationQueue,
    claim,
    update_message: str,
    next_steps: Optional[List[str]] = None,
) -> str:
    return queue.add_email(
        claim.email,
        "status_update",
        {
            "claim_id": claim.claim_id,
            "first_name": claim.first_name,
            "update_message": update_message,
            "next_steps": next_steps or [],
        },
        priority=EmailPriority.LOW.value,
    )
