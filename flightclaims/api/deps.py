"""
API dependencies
"""
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from flightclaims.core import require_trigger_secret, settings
from flightclaims.db import get_db
from flightclaims.services.filing import FilingProcessor
from flightclaims.services.follow_up import FollowUpService
from flightclaims.services.lifecycle import ClaimStateMachine
from flightclaims.services.notification_queue import NotificationQueue
from flightclaims.services.payments import PaymentClient, build_payment_client
from flightclaims.services.refunds import RefundProcessor
from flightclaims.services.store import ClaimStore, SqlClaimStore
from flightclaims.services.submission import AirlineSubmitter, build_airline_submitter


def get_claim_store(db: Session = Depends(get_db)) -> ClaimStore:
    return SqlClaimStore(db)


def get_state_machine(store: ClaimStore = Depends(get_claim_store)) -> ClaimStateMachine:
    return ClaimStateMachine(store)


def get_notification_queue(request: Request) -> NotificationQueue:
    """The queue owned by the application (created in the lifespan)."""
    return request.app.state.notification_queue


def get_payment_client() -> PaymentClient:
    return build_payment_client()


def get_airline_submitter(
    queue: NotificationQueue = Depends(get_notification_queue),
) -> AirlineSubmitter:
    return build_airline_submitter(queue.provider)


def get_filing_processor(
    store: ClaimStore = Depends(get_claim_store),
    state_machine: ClaimStateMachine = Depends(get_state_machine),
    submitter: AirlineSubmitter = Depends(get_airline_submitter),
    queue: NotificationQueue = Depends(get_notification_queue),
) -> FilingProcessor:
    return FilingProcessor(
        store,
        state_machine,
        submitter,
        queue,
        concurrency=settings.FILING_CONCURRENCY,
        timeout=settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
    )


def get_follow_up_service(
    store: ClaimStore = Depends(get_claim_store),
    state_machine: ClaimStateMachine = Depends(get_state_machine),
    queue: NotificationQueue = Depends(get_notification_queue),
) -> FollowUpService:
    return FollowUpService(store, state_machine, queue)


def get_refund_processor(
    store: ClaimStore = Depends(get_claim_store),
    state_machine: ClaimStateMachine = Depends(get_state_machine),
    payment_client: PaymentClient = Depends(get_payment_client),
    queue: NotificationQueue = Depends(get_notification_queue),
) -> RefundProcessor:
    return RefundProcessor(store, state_machine, payment_client, queue)


def get_refund_classifier(
    store: ClaimStore = Depends(get_claim_store),
    state_machine: ClaimStateMachine = Depends(get_state_machine),
    queue: NotificationQueue = Depends(get_notification_queue),
) -> RefundProcessor:
    """Refund processor without payment credentials, for read-only summaries."""
    return RefundProcessor(store, state_machine, None, queue)


__all__ = [
    "get_db",
    "require_trigger_secret",
    "get_claim_store",
    "get_state_machine",
    "get_notification_queue",
    "get_payment_client",
    "get_airline_submitter",
    "get_filing_processor",
    "get_follow_up_service",
    "get_refund_processor",
    "get_refund_classifier",
]
