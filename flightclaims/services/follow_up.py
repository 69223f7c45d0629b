"""
Follow-up & Overdue Detector

Read queries that produce candidate sets for alerting (overdue filings and
monitoring claims due a follow-up), the operator alert run, the airline
follow-up run, and the filing statistics.
"""
from collections import defaultdict
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from flightclaims.core import get_logger, settings, utcnow
from flightclaims.core.exceptions import FlightClaimsError
from flightclaims.db.models import Claim, ClaimStatus
from flightclaims.services.airlines import get_airline_config
from flightclaims.services.lifecycle import ClaimStateMachine, FILED_STATUSES
from flightclaims.services.notification_queue import (
    EmailPriority,
    NotificationQueue,
    queue_status_update_notification,
)
from flightclaims.services.store import ClaimStore

logger = get_logger(__name__)

DEFAULT_OVERDUE_STATUSES = (ClaimStatus.READY_TO_FILE, ClaimStatus.FILED)

UNKNOWN_AIRLINE = "Unknown"


def follow_up_type_for(days_since_filing: int) -> str:
    if days_since_filing >= 35:
        return "final"
    if days_since_filing >= 28:
        return "escalation"
    if days_since_filing >= 14:
        return "initial"
    return "reminder"


def next_follow_up_after(follow_up_type: str, now: datetime) -> datetime:
    return now + timedelta(days=30 if follow_up_type == "final" else 7)


def group_by_airline(claims: Iterable[Claim]) -> Dict[str, List[Dict[str, Any]]]:
    """Claim summaries keyed by airline; claims without one go under 'Unknown'."""
    grouped: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for claim in claims:
        grouped[claim.airline or UNKNOWN_AIRLINE].append(claim.to_summary())
    return dict(grouped)


def _dedupe(claims: Iterable[Claim], seen: Set[str]) -> List[Claim]:
    unique = []
    for claim in claims:
        if claim.claim_id in seen:
            continue
        seen.add(claim.claim_id)
        unique.append(claim)
    return unique


@dataclass
class FollowUpCheckResult:
    overdue_claims: List[Dict[str, Any]] = field(default_factory=list)
    follow_up_claims: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    alerts_queued: List[str] = field(default_factory=list)
    alerts_skipped: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def follow_up_count(self) -> int:
        return sum(len(claims) for claims in self.follow_up_claims.values())

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["overdue_count"] = len(self.overdue_claims)
        data["follow_up_count"] = self.follow_up_count
        return data


@dataclass
class FollowUpResult:
    claim_id: str
    success: bool
    follow_up_type: Optional[str] = None
    email_id: Optional[str] = None
    next_follow_up_date: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class FollowUpService:
    """Overdue detection, follow-up detection and alerting."""

    def __init__(
        self,
        store: ClaimStore,
        state_machine: ClaimStateMachine,
        queue: NotificationQueue,
        admin_email: Optional[str] = None,
        filing_sla_days: Optional[float] = None,
    ):
        self.store = store
        self.state_machine = state_machine
        self.queue = queue
        self.admin_email = admin_email if admin_email is not None else settings.ADMIN_EMAIL
        self.filing_sla_days = filing_sla_days or settings.FILING_SLA_DAYS

    # ------------------------------------------------------------------
    # Detection (read-only)
    # ------------------------------------------------------------------

    def detect_overdue(
        self,
        deadline_days: Optional[float] = None,
        now: Optional[datetime] = None,
        statuses: Sequence[ClaimStatus] = DEFAULT_OVERDUE_STATUSES,
    ) -> List[Claim]:
        """Claims in `statuses` submitted more than `deadline_days` ago (strict)."""
        days = self.filing_sla_days if deadline_days is None else deadline_days
        cutoff = (now or utcnow()) - timedelta(days=days)
        return self.store.get_overdue(statuses, cutoff)

    def detect_needing_follow_up(self, now: Optional[datetime] = None) -> List[Claim]:
        return self.store.get_follow_up_due(now or utcnow())

    # ------------------------------------------------------------------
    # Operator alerts
    # ------------------------------------------------------------------

    def check_follow_ups(self, now: Optional[datetime] = None) -> FollowUpCheckResult:
        """
        Compute both candidate sets and queue one alert per non-empty set.

        The two queries are independent: a failure in one is recorded in
        `errors` and the other still runs. A claim appears in at most one
        alert per run.
        """
        now = now or utcnow()
        result = FollowUpCheckResult()
        seen: Set[str] = set()

        overdue: List[Claim] = []
        try:
            overdue = _dedupe(self.detect_overdue(now=now), seen)
        except FlightClaimsError as exc:
            logger.error(f"Overdue detection failed: {exc}")
            result.errors.append(f"Overdue detection failed: {exc}")

        follow_up: List[Claim] = []
        try:
            follow_up = _dedupe(self.detect_needing_follow_up(now=now), seen)
        except FlightClaimsError as exc:
            logger.error(f"Follow-up detection failed: {exc}")
            result.errors.append(f"Follow-up detection failed: {exc}")

        result.overdue_claims = [claim.to_summary() for claim in overdue]
        result.follow_up_claims = group_by_airline(follow_up)

        if overdue:
            self._queue_alert(
                result,
                "admin_overdue_alert",
                {"claims": result.overdue_claims, "deadline_days": self.filing_sla_days},
            )
        if follow_up:
            self._queue_alert(
                result,
                "admin_follow_up_alert",
                {"claims_by_airline": result.follow_up_claims, "total_claims": len(follow_up)},
            )

        logger.info(
            f"Follow-up check: {len(overdue)} overdue, {len(follow_up)} needing follow-up, "
            f"{len(result.errors)} error(s)"
        )
        return result

    def _queue_alert(self, result: FollowUpCheckResult, template: str, variables: Dict[str, Any]) -> None:
        if not self.admin_email:
            logger.warning(f"ADMIN_EMAIL not configured; {template} not sent")
            result.alerts_skipped.append(template)
            return
        try:
            result.alerts_queued.append(
                self.queue.add_email(self.admin_email, template, variables, priority=EmailPriority.HIGH.value)
            )
        except FlightClaimsError as exc:
            logger.error(f"Could not queue {template}: {exc}")
            result.errors.append(f"Could not queue {template}: {exc}")

    # ------------------------------------------------------------------
    # Airline follow-ups
    # ------------------------------------------------------------------

    def send_airline_follow_ups(self, now: Optional[datetime] = None) -> List[FollowUpResult]:
        now = now or utcnow()
        try:
            claims = self.detect_needing_follow_up(now=now)
        except FlightClaimsError as exc:
            logger.error(f"Follow-up detection failed: {exc}")
            return [FollowUpResult(claim_id="*", success=False, error=str(exc))]

        results = []
        for claim in claims:
            try:
                results.append(self._follow_up_claim(claim, now))
            except FlightClaimsError as exc:
                logger.error(f"Follow-up for claim {claim.claim_id} failed: {exc}")
                results.append(FollowUpResult(claim_id=claim.claim_id, success=False, error=str(exc)))

        logger.info(f"Airline follow-ups: {sum(1 for r in results if r.success)}/{len(results)} queued")
        return results

    def _follow_up_claim(self, claim: Claim, now: datetime) -> FollowUpResult:
        config = get_airline_config(claim.airline)
        if config is None or not config.claim_email:
            return FollowUpResult(
                claim_id=claim.claim_id,
                success=False,
                error=f"No follow-up email address for airline {claim.airline}",
            )

        days_since_filing = (now - claim.filed_at).days if claim.filed_at else 0
        follow_up_type = follow_up_type_for(days_since_filing)

        email_id = self.queue.add_email(
            config.claim_email,
            "airline_follow_up",
            {
                "follow_up_type": follow_up_type,
                "claim_id": claim.claim_id,
                "flight_number": claim.flight_number,
                "departure_date": claim.departure_date,
                "airline_name": config.airline_name,
                "airline_reference": claim.airline_reference,
                "passenger_name": claim.passenger_name,
                "days_since_filing": days_since_filing,
            },
        )

        next_date = next_follow_up_after(follow_up_type, now)
        self.state_machine.schedule_follow_up(
            claim, next_date, note=f"Follow-up sent: {follow_up_type} - {email_id}"
        )

        queue_status_update_notification(
            self.queue,
            claim,
            f"We've sent a {follow_up_type} follow-up to {config.airline_name} regarding your claim.",
            [
                "We will continue monitoring for a response",
                "You will be notified when the airline responds",
                "If no response is received, we may escalate the matter",
            ],
        )

        return FollowUpResult(
            claim_id=claim.claim_id,
            success=True,
            follow_up_type=follow_up_type,
            email_id=email_id,
            next_follow_up_date=next_date.isoformat(),
        )

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_claim_filing_stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utcnow()
        by_status = self.store.count_by_status()
        return {
            "total_claims": sum(by_status.values()),
            "by_status": by_status,
            "ready_to_file": by_status.get(ClaimStatus.READY_TO_FILE.value, 0),
            "filed": sum(by_status.get(status.value, 0) for status in FILED_STATUSES),
            "refunded": by_status.get(ClaimStatus.REFUNDED.value, 0),
            "overdue": len(self.detect_overdue(now=now)),
            "needing_follow_up": len(self.detect_needing_follow_up(now=now)),
        }
