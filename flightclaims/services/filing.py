"""
Automatic Filing Processor

Files every `ready_to_file` claim with its airline. The status filter is the
duplicate guard: a claim that reached `filed` is never selected again, and a
claim whose status moved between the query and the per-claim re-read is
skipped.
"""
from dataclasses import dataclass, asdict
from datetime import timedelta
from typing import Any, Dict, List, Optional

from flightclaims.core import get_logger, settings, utcnow
from flightclaims.core.exceptions import FlightClaimsError, ValidationError
from flightclaims.db.models import ClaimStatus
from flightclaims.services.airlines import (
    follow_up_offset_days,
    generate_submission,
    get_airline_config,
)
from flightclaims.services.batch import run_bounded
from flightclaims.services.db_utils import run_db
from flightclaims.services.lifecycle import ClaimStateMachine, validate_claim_for_filing
from flightclaims.services.notification_queue import (
    NotificationQueue,
    queue_claim_filed_notification,
)
from flightclaims.services.store import ClaimStore
from flightclaims.services.submission import AirlineSubmitter

logger = get_logger(__name__)


@dataclass
class FilingResult:
    claim_id: str
    success: bool
    skipped: bool = False
    airline_reference: Optional[str] = None
    filing_method: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class FilingProcessor:
    """Submits ready claims to airlines and marks them filed."""

    def __init__(
        self,
        store: ClaimStore,
        state_machine: ClaimStateMachine,
        submitter: AirlineSubmitter,
        queue: NotificationQueue,
        concurrency: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        self.store = store
        self.state_machine = state_machine
        self.submitter = submitter
        self.queue = queue
        self.concurrency = concurrency or settings.FILING_CONCURRENCY
        self.timeout = timeout or settings.EXTERNAL_CALL_TIMEOUT_SECONDS

    async def process_automatic_filing(self) -> List[FilingResult]:
        claims = await run_db(self.store.get_by_status, ClaimStatus.READY_TO_FILE)
        logger.info(f"Automatic filing: {len(claims)} claim(s) ready to file")
        if not claims:
            return []

        results = await run_bounded(
            [claim.claim_id for claim in claims],
            self._file_claim,
            self._failure,
            concurrency=self.concurrency,
            timeout=self.timeout,
        )

        filed = sum(1 for r in results if r.success)
        failed = sum(1 for r in results if not r.success and not r.skipped)
        logger.info(f"Automatic filing complete: {filed} filed, {failed} failed")
        return results

    @staticmethod
    def _failure(claim_id: str, exc: Exception) -> FilingResult:
        code = exc.code if isinstance(exc, FlightClaimsError) else "filing_error"
        if isinstance(exc, TimeoutError):
            code = "timeout"
        return FilingResult(claim_id=claim_id, success=False, error=str(exc), error_code=code)

    async def _file_claim(self, claim_id: str) -> FilingResult:
        claim = await run_db(self.store.get_by_id, claim_id)
        if claim is None:
            raise ValidationError(f"Claim {claim_id} not found", claim_id)

        if claim.status != ClaimStatus.READY_TO_FILE.value:
            logger.info(f"Claim {claim_id} is {claim.status}; skipping filing")
            return FilingResult(
                claim_id=claim_id,
                success=False,
                skipped=True,
                error=f"Claim is {claim.status}, not ready_to_file",
            )

        config = get_airline_config(claim.airline)
        if config is None or not config.is_active:
            logger.error(f"No airline configuration for {claim.airline!r} (claim {claim_id})")
            return FilingResult(
                claim_id=claim_id,
                success=False,
                error=f"Airline configuration not found for {claim.airline}",
                error_code="airline_config_missing",
            )

        report = validate_claim_for_filing(claim, config)
        if not report.is_valid:
            return FilingResult(
                claim_id=claim_id,
                success=False,
                error="; ".join(report.errors),
                error_code="validation_failed",
            )
        for warning in report.warnings:
            logger.warning(f"Claim {claim_id}: {warning}")

        submission = generate_submission(config, claim)
        receipt = await self.submitter.submit(submission, claim)

        # Status may have moved while the submission was in flight
        claim = await run_db(self.store.get_by_id, claim_id)
        if claim is None:
            raise ValidationError(f"Claim {claim_id} not found", claim_id)
        if claim.status != ClaimStatus.READY_TO_FILE.value:
            logger.warning(f"Claim {claim_id} became {claim.status} during submission; not marking filed")
            return FilingResult(
                claim_id=claim_id,
                success=False,
                skipped=True,
                airline_reference=receipt.airline_reference,
                filing_method=receipt.method,
                error=f"Claim is {claim.status}, not ready_to_file",
            )

        now = utcnow()
        next_follow_up = now + timedelta(
            days=follow_up_offset_days(config, settings.FOLLOW_UP_DEFAULT_DAYS)
        )
        await run_db(
            self.state_machine.transition,
            claim,
            ClaimStatus.FILED,
            "auto",
            updates={
                "airline_reference": receipt.airline_reference,
                "filing_method": receipt.method,
                "next_follow_up_date": next_follow_up,
            },
            notes=f"Filed with {config.airline_name} via {receipt.method}",
        )

        try:
            queue_claim_filed_notification(self.queue, claim, config.airline_name)
        except FlightClaimsError as exc:
            # The claim is filed; a notification problem must not undo that
            logger.error(f"Could not queue filing notification for {claim_id}: {exc}")

        logger.info(f"Claim {claim_id} filed with {config.airline_code} ({receipt.airline_reference})")
        return FilingResult(
            claim_id=claim_id,
            success=True,
            airline_reference=receipt.airline_reference,
            filing_method=receipt.method,
        )
