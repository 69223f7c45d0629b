"""
Claims operator API routes
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator

from flightclaims.api.deps import (
    get_claim_store,
    get_follow_up_service,
    get_notification_queue,
    get_refund_processor,
    get_state_machine,
)
from flightclaims.core import logger, require_trigger_secret
from flightclaims.db.models import ClaimStatus
from flightclaims.services.follow_up import FollowUpService
from flightclaims.services.lifecycle import ClaimStateMachine, RefundTrigger, allowed_targets
from flightclaims.services.notification_queue import (
    NotificationQueue,
    queue_status_update_notification,
)
from flightclaims.services.refunds import RefundProcessor
from flightclaims.services.store import ClaimStore

router = APIRouter(dependencies=[Depends(require_trigger_secret)])


# Request/Response schemas
class UpdateStatusRequest(BaseModel):
    status: str
    notes: str = ""
    airline_reference: Optional[str] = None
    rejection_reason: Optional[str] = None
    notify_passenger: bool = True

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        valid_statuses = [cs.value for cs in ClaimStatus]
        if v not in valid_statuses:
            raise ValueError(f"status must be one of: {', '.join(valid_statuses)}")
        return v


class RefundRequest(BaseModel):
    trigger: str = RefundTrigger.CUSTOMER_REQUEST.value

    @field_validator("trigger")
    @classmethod
    def validate_trigger(cls, v: str) -> str:
        valid_triggers = [t.value for t in RefundTrigger]
        if v not in valid_triggers:
            raise ValueError(f"trigger must be one of: {', '.join(valid_triggers)}")
        return v


class ClaimStatusResponse(BaseModel):
    claim_id: str
    status: str
    previous_status: str
    allowed_next: List[str]
    timeline: List[Dict[str, Any]]


@router.get("/stats")
async def get_claim_stats(follow_up: FollowUpService = Depends(get_follow_up_service)):
    """Claim counts per status plus overdue and follow-up totals."""
    return follow_up.get_claim_filing_stats()


@router.post("/{claim_id}/status", response_model=ClaimStatusResponse)
async def update_claim_status(
    claim_id: str,
    request: UpdateStatusRequest,
    store: ClaimStore = Depends(get_claim_store),
    state_machine: ClaimStateMachine = Depends(get_state_machine),
    queue: NotificationQueue = Depends(get_notification_queue),
):
    """Apply an operator transition (refunds go through /refund)."""
    claim = store.get_by_id(claim_id)
    if not claim:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Claim not found")

    previous_status = claim.status
    updates = {
        key: value
        for key, value in {
            "airline_reference": request.airline_reference,
            "rejection_reason": request.rejection_reason,
        }.items()
        if value is not None
    }
    state_machine.transition(claim, request.status, "operator", updates=updates, notes=request.notes)

    if request.notify_passenger and claim.status != previous_status:
        message = f"Your claim status changed from {previous_status} to {claim.status}."
        if request.notes:
            message = f"{message}\n\n{request.notes}"
        queue_status_update_notification(queue, claim, message)

    logger.info(f"Operator moved claim {claim_id}: {previous_status} -> {claim.status}")
    return ClaimStatusResponse(
        claim_id=claim.claim_id,
        status=claim.status,
        previous_status=previous_status,
        allowed_next=allowed_targets(claim.status),
        timeline=list(claim.timeline or []),
    )


@router.post("/{claim_id}/refund")
async def refund_claim(
    claim_id: str,
    request: RefundRequest,
    store: ClaimStore = Depends(get_claim_store),
    processor: RefundProcessor = Depends(get_refund_processor),
):
    """Refund one claim's service fee (idempotent per claim and trigger)."""
    if not store.get_by_id(claim_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Claim not found")

    batch = await processor.process_batch_automatic_refunds([claim_id], request.trigger, "operator")
    result = batch.per_claim[0]
    return {
        "success": result.success,
        "message": "Refund processed" if result.success else (result.error or "Refund not processed"),
        "results": batch.to_dict(),
    }
