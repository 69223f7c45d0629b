"""
Scheduled trigger API routes

POST runs a processor and requires `Authorization: Bearer <CRON_SECRET>`.
GET on the same path is an unauthenticated, side-effect-free summary.
Partial failures are reported in the body with a 200 so the scheduler does
not retry the whole run.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from flightclaims.api.deps import (
    get_claim_store,
    get_filing_processor,
    get_follow_up_service,
    get_notification_queue,
    get_refund_classifier,
    get_refund_processor,
)
from flightclaims.core import logger, require_trigger_secret
from flightclaims.db.models import ClaimStatus
from flightclaims.services.filing import FilingProcessor
from flightclaims.services.follow_up import FollowUpService
from flightclaims.services.notification_queue import NotificationQueue
from flightclaims.services.refunds import RefundProcessor
from flightclaims.services.store import ClaimStore

router = APIRouter()


# Response schemas
class CronResponse(BaseModel):
    success: bool
    message: str
    results: Dict[str, Any]
    errors: Optional[List[str]] = None


class HealthResponse(BaseModel):
    status: str
    details: Dict[str, Any] = {}


@router.post("/process-automatic-filing", response_model=CronResponse)
async def process_automatic_filing(
    actor: str = Depends(require_trigger_secret),
    processor: FilingProcessor = Depends(get_filing_processor),
    follow_up: FollowUpService = Depends(get_follow_up_service),
):
    """File ready claims with their airlines, then send due airline follow-ups."""
    logger.info(f"Automatic filing triggered by {actor}")
    results = await processor.process_automatic_filing()
    follow_ups = follow_up.send_airline_follow_ups()

    errors = [f"{r.claim_id}: {r.error}" for r in results if r.error and not r.skipped]
    errors += [f"{r.claim_id}: {r.error}" for r in follow_ups if not r.success]
    filed = sum(1 for r in results if r.success)

    return CronResponse(
        success=True,
        message=f"Processed {len(results)} claim(s), filed {filed}",
        results={
            "summary": {
                "total": len(results),
                "filed": filed,
                "failed": sum(1 for r in results if not r.success and not r.skipped),
                "skipped": sum(1 for r in results if r.skipped),
                "follow_ups_sent": sum(1 for r in follow_ups if r.success),
            },
            "details": [r.to_dict() for r in results],
            "follow_ups": [r.to_dict() for r in follow_ups],
        },
        errors=errors or None,
    )


@router.get("/process-automatic-filing", response_model=HealthResponse)
async def automatic_filing_health(store: ClaimStore = Depends(get_claim_store)):
    counts = store.count_by_status()
    return HealthResponse(
        status="healthy",
        details={"ready_to_file": counts.get(ClaimStatus.READY_TO_FILE.value, 0)},
    )


@router.post("/check-follow-ups", response_model=CronResponse)
async def check_follow_ups(
    actor: str = Depends(require_trigger_secret),
    follow_up: FollowUpService = Depends(get_follow_up_service),
):
    """Alert operators about overdue claims and claims due a follow-up."""
    logger.info(f"Follow-up check triggered by {actor}")
    result = follow_up.check_follow_ups()
    return CronResponse(
        success=True,
        message=(
            f"Found {len(result.overdue_claims)} overdue claim(s) and "
            f"{result.follow_up_count} claim(s) needing follow-up"
        ),
        results={
            "summary": {
                "overdue": len(result.overdue_claims),
                "needing_follow_up": result.follow_up_count,
                "alerts_queued": len(result.alerts_queued),
                "alerts_skipped": result.alerts_skipped,
            },
            "details": result.to_dict(),
        },
        errors=result.errors or None,
    )


@router.get("/check-follow-ups", response_model=HealthResponse)
async def follow_up_health(follow_up: FollowUpService = Depends(get_follow_up_service)):
    return HealthResponse(
        status="healthy",
        details={
            "overdue": len(follow_up.detect_overdue()),
            "needing_follow_up": len(follow_up.detect_needing_follow_up()),
        },
    )


@router.post("/process-automatic-refunds", response_model=CronResponse)
async def process_automatic_refunds(
    actor: str = Depends(require_trigger_secret),
    processor: RefundProcessor = Depends(get_refund_processor),
):
    """Refund service fees for overdue, rejected, undocumented and ineligible claims."""
    logger.info(f"Automatic refunds triggered by {actor}")
    run = await processor.run_automatic_refunds(initiated_by=actor)

    errors = [
        f"{claim['claim_id']}: {claim['error']}"
        for batch in run["batches"].values()
        for claim in batch["per_claim"]
        if claim["error"] and not claim["skipped"]
    ]
    summary = run["summary"]
    return CronResponse(
        success=True,
        message=f"Processed {summary['total']} refund(s), {summary['successful']} successful",
        results={"summary": summary, "details": run},
        errors=errors or None,
    )


@router.get("/process-automatic-refunds", response_model=HealthResponse)
async def automatic_refunds_health(processor: RefundProcessor = Depends(get_refund_classifier)):
    return HealthResponse(
        status="healthy",
        details={"candidates": processor.get_claims_needing_automatic_refunds().counts()},
    )


@router.post("/process-notification-queue", response_model=CronResponse)
async def process_notification_queue(
    actor: str = Depends(require_trigger_secret),
    queue: NotificationQueue = Depends(get_notification_queue),
):
    """Drain one queue cycle (for deployments without the background loop)."""
    processed = await queue.process_once()
    return CronResponse(
        success=True,
        message=f"Processed {processed} queued email(s)",
        results={"summary": queue.get_queue_status(), "details": {"processed": processed}},
    )


@router.get("/process-notification-queue", response_model=HealthResponse)
async def notification_queue_health(queue: NotificationQueue = Depends(get_notification_queue)):
    return HealthResponse(
        status="healthy",
        details={"queue": queue.get_queue_status(), "running": queue.running},
    )
