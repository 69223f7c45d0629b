"""
Automatic Refund Processor

Classifies claims that should have their service fee refunded and issues
the refunds. Safe to run repeatedly or concurrently:

- a claim already `refunded` is skipped without an external call
- the claim is re-read after the payment call; a run that lost the race
  records nothing and queues no notification
- every refund carries the idempotency key refund-{claim_id}-{trigger}
- the claim status only changes after the payment processor succeeded
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from flightclaims.core import get_logger, log_audit_event, settings, utcnow
from flightclaims.core.exceptions import (
    AlreadyInTargetStateError,
    ConfigurationError,
    FlightClaimsError,
    IllegalTransition,
    ValidationError,
)
from flightclaims.db.models import Claim, ClaimStatus, PaymentStatus, RefundRecord
from flightclaims.services.batch import run_bounded
from flightclaims.services.db_utils import run_db
from flightclaims.services.idempotency import refund_idempotency_key
from flightclaims.services.lifecycle import ClaimStateMachine, RefundTrigger, can_transition
from flightclaims.services.notification_queue import NotificationQueue, queue_refund_notification
from flightclaims.services.payments import PaymentClient
from flightclaims.services.store import ClaimStore

logger = get_logger(__name__)

REFUND_REASONS: Dict[str, str] = {
    RefundTrigger.CLAIM_NOT_FILED_DEADLINE.value: "Claim not filed within the filing deadline",
    RefundTrigger.CLAIM_REJECTED_BY_AIRLINE.value: "Claim rejected by airline",
    RefundTrigger.INSUFFICIENT_DOCUMENTATION.value: "Insufficient documentation provided",
    RefundTrigger.INELIGIBLE_FLIGHT.value: "Flight not eligible for compensation",
    RefundTrigger.CUSTOMER_REQUEST.value: "Customer requested refund",
    RefundTrigger.SYSTEM_ERROR.value: "System error prevented claim filing",
    RefundTrigger.DUPLICATE_CLAIM.value: "Duplicate claim detected",
}

# Claims that have not reached the airline yet
UNFILED_STATUSES = (ClaimStatus.SUBMITTED, ClaimStatus.VALIDATED, ClaimStatus.READY_TO_FILE)


@dataclass
class RefundCandidates:
    overdue_claims: List[Claim] = field(default_factory=list)
    rejected_claims: List[Claim] = field(default_factory=list)
    insufficient_doc_claims: List[Claim] = field(default_factory=list)
    ineligible_claims: List[Claim] = field(default_factory=list)

    def by_trigger(self) -> Dict[RefundTrigger, List[Claim]]:
        return {
            RefundTrigger.CLAIM_NOT_FILED_DEADLINE: self.overdue_claims,
            RefundTrigger.CLAIM_REJECTED_BY_AIRLINE: self.rejected_claims,
            RefundTrigger.INSUFFICIENT_DOCUMENTATION: self.insufficient_doc_claims,
            RefundTrigger.INELIGIBLE_FLIGHT: self.ineligible_claims,
        }

    def counts(self) -> Dict[str, int]:
        return {trigger.value: len(claims) for trigger, claims in self.by_trigger().items()}


@dataclass
class RefundResult:
    claim_id: str
    success: bool
    skipped: bool = False
    trigger: Optional[str] = None
    amount: int = 0
    currency: Optional[str] = None
    refund_id: Optional[str] = None
    external_refund_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def empty_summary() -> Dict[str, int]:
    return {"total": 0, "successful": 0, "failed": 0, "skipped": 0, "total_amount": 0}


@dataclass
class RefundBatchResult:
    trigger: str
    initiated_by: str
    summary: Dict[str, int] = field(default_factory=empty_summary)
    per_claim: List[RefundResult] = field(default_factory=list)

    @classmethod
    def from_results(cls, trigger: str, initiated_by: str, results: List[RefundResult]) -> "RefundBatchResult":
        summary = empty_summary()
        for result in results:
            summary["total"] += 1
            if result.success:
                summary["successful"] += 1
                summary["total_amount"] += result.amount
            elif result.skipped:
                summary["skipped"] += 1
            else:
                summary["failed"] += 1
        return cls(trigger=trigger, initiated_by=initiated_by, summary=summary, per_claim=results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trigger": self.trigger,
            "initiated_by": self.initiated_by,
            "summary": dict(self.summary),
            "per_claim": [r.to_dict() for r in self.per_claim],
        }


class RefundProcessor:
    """
    Issues service-fee refunds through the payment processor.

    Without a payment client only the read-only classification is available.
    """

    def __init__(
        self,
        store: ClaimStore,
        state_machine: ClaimStateMachine,
        payment_client: Optional[PaymentClient],
        queue: NotificationQueue,
        concurrency: Optional[int] = None,
        timeout: Optional[float] = None,
        eligibility_days: Optional[float] = None,
    ):
        self.store = store
        self.state_machine = state_machine
        self.payment_client = payment_client
        self.queue = queue
        self.concurrency = concurrency or settings.REFUND_CONCURRENCY
        self.timeout = timeout or settings.EXTERNAL_CALL_TIMEOUT_SECONDS
        self.eligibility_days = eligibility_days or settings.REFUND_ELIGIBILITY_DAYS

    def get_claims_needing_automatic_refunds(self, now: Optional[datetime] = None) -> RefundCandidates:
        """
        Read-only classification of refund candidates.

        Unfiled claims past the eligibility deadline land in exactly one
        bucket: ineligible, then insufficient documentation, then overdue.
        """
        now = now or utcnow()
        candidates = RefundCandidates(
            rejected_claims=self.store.get_by_status(ClaimStatus.REJECTED),
        )

        cutoff = now - timedelta(days=self.eligibility_days)
        for claim in self.store.get_overdue(UNFILED_STATUSES, cutoff):
            if claim.estimated_compensation is not None and claim.estimated_compensation == 0:
                candidates.ineligible_claims.append(claim)
            elif not claim.boarding_pass_url or not claim.delay_proof_url:
                candidates.insufficient_doc_claims.append(claim)
            else:
                candidates.overdue_claims.append(claim)

        logger.info(f"Refund candidates: {candidates.counts()}")
        return candidates

    async def process_batch_automatic_refunds(
        self,
        claim_ids: Sequence[str],
        trigger: str,
        initiated_by: str = "cron",
    ) -> RefundBatchResult:
        try:
            trigger = RefundTrigger(trigger).value
        except ValueError:
            raise ValidationError(f"Unknown refund trigger: {trigger}")
        if self.payment_client is None:
            raise ConfigurationError("Payment processor is not configured")

        unique_ids = list(dict.fromkeys(claim_ids))
        logger.info(f"Refund batch: {len(unique_ids)} claim(s), trigger={trigger}, by={initiated_by}")

        async def _worker(claim_id: str) -> RefundResult:
            return await self._refund_claim(claim_id, trigger, initiated_by)

        def _on_error(claim_id: str, exc: Exception) -> RefundResult:
            if isinstance(exc, AlreadyInTargetStateError):
                return RefundResult(
                    claim_id=claim_id,
                    success=False,
                    skipped=True,
                    trigger=trigger,
                    error="Already refunded",
                    error_code=exc.code,
                )
            code = exc.code if isinstance(exc, FlightClaimsError) else "refund_error"
            if isinstance(exc, TimeoutError):
                code = "timeout"
            return RefundResult(claim_id=claim_id, success=False, trigger=trigger, error=str(exc), error_code=code)

        results = await run_bounded(
            unique_ids, _worker, _on_error, concurrency=self.concurrency, timeout=self.timeout
        )
        batch = RefundBatchResult.from_results(trigger, initiated_by, results)
        logger.info(f"Refund batch {trigger} complete: {batch.summary}")
        return batch

    async def _refund_claim(self, claim_id: str, trigger: str, initiated_by: str) -> RefundResult:
        claim = await run_db(self.store.get_by_id, claim_id)
        if claim is None:
            raise ValidationError(f"Claim {claim_id} not found", claim_id)

        if claim.status == ClaimStatus.REFUNDED.value:
            raise AlreadyInTargetStateError(claim_id, claim.status)

        if not can_transition(claim.status, ClaimStatus.REFUNDED):
            raise IllegalTransition(claim_id, claim.status, ClaimStatus.REFUNDED.value)

        if not claim.payment_id:
            raise ValidationError("No payment associated with claim", claim_id)
        payment = await run_db(self.store.get_payment, claim.payment_id)
        if payment is None:
            raise ValidationError("Payment record not found", claim_id)
        if payment.status != PaymentStatus.SUCCEEDED.value:
            raise ValidationError(f"Payment is {payment.status}, nothing to refund", claim_id)

        idempotency_key = refund_idempotency_key(claim_id, trigger)
        reason = REFUND_REASONS[trigger]
        refund = await self.payment_client.refund(
            payment.transaction_id,
            payment.amount,
            idempotency_key,
            metadata={"claim_id": claim_id, "trigger": trigger},
        )

        # An overlapping run may have finished this claim while the refund call
        # was in flight. The payment processor deduplicated the refund itself.
        claim = await run_db(self.store.get_by_id, claim_id)
        if claim is None:
            raise ValidationError(f"Claim {claim_id} not found", claim_id)
        if claim.status == ClaimStatus.REFUNDED.value:
            raise AlreadyInTargetStateError(claim_id, claim.status)

        # A duplicate idempotency key raises AlreadyInTargetStateError
        record = await run_db(self.store.add_refund, RefundRecord(
            claim_id=claim_id,
            payment_id=payment.payment_id,
            external_refund_id=refund.id,
            amount=refund.amount,
            currency=refund.currency or payment.currency,
            trigger=trigger,
            reason=reason,
            status=refund.status,
            processed_by=initiated_by,
            idempotency_key=idempotency_key,
            details={"transaction_id": payment.transaction_id},
        ))

        await run_db(
            self.state_machine.transition,
            claim,
            ClaimStatus.REFUNDED,
            trigger,
            updates={"refund_reason": trigger},
            notes=f"{reason} (refund {refund.id}, by {initiated_by})",
        )

        log_audit_event(
            "claim.refund",
            initiated_by,
            "system" if initiated_by == "cron" else "operator",
            {"claim_id": claim_id, "trigger": trigger, "amount": refund.amount, "refund_id": refund.id},
        )

        try:
            queue_refund_notification(self.queue, claim, refund.amount, record.currency, reason)
        except FlightClaimsError as exc:
            logger.error(f"Could not queue refund notification for {claim_id}: {exc}")

        return RefundResult(
            claim_id=claim_id,
            success=True,
            trigger=trigger,
            amount=refund.amount,
            currency=record.currency,
            refund_id=record.refund_id,
            external_refund_id=refund.id,
        )

    async def run_automatic_refunds(
        self,
        initiated_by: str = "cron",
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Classify candidates and run one batch per non-empty bucket."""
        candidates = self.get_claims_needing_automatic_refunds(now)
        summary = empty_summary()
        batches: Dict[str, Dict[str, Any]] = {}

        for trigger, claims in candidates.by_trigger().items():
            if not claims:
                continue
            batch = await self.process_batch_automatic_refunds(
                [claim.claim_id for claim in claims], trigger.value, initiated_by
            )
            batches[trigger.value] = batch.to_dict()
            for key, value in batch.summary.items():
                summary[key] += value

        return {"candidates": candidates.counts(), "summary": summary, "batches": batches}
