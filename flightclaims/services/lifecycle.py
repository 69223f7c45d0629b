"""
Claim Lifecycle State Machine

Defines the status graph, the transition function (the only writer of
Claim.status and of the per-status timestamps) and the filing validators.

Happy path:
    submitted -> validated -> documents_prepared -> ready_to_file -> filed
    -> airline_acknowledged -> monitoring -> airline_responded
    -> approved | rejected -> completed

`refunded` is terminal and only reachable through the refund processor.
"""
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Union

from flightclaims.core import log_audit_event, get_logger, utcnow
from flightclaims.core.exceptions import ExternalServiceError, IllegalTransition
from flightclaims.db.models import Claim, ClaimStatus
from flightclaims.services.store import ClaimStore

logger = get_logger(__name__)

S = ClaimStatus

ALLOWED_TRANSITIONS: Dict[ClaimStatus, FrozenSet[ClaimStatus]] = {
    S.SUBMITTED: frozenset({S.VALIDATED, S.REFUNDED}),
    S.VALIDATED: frozenset({S.DOCUMENTS_PREPARED, S.REFUNDED}),
    S.DOCUMENTS_PREPARED: frozenset({S.READY_TO_FILE}),
    S.READY_TO_FILE: frozenset({S.FILED, S.REFUNDED}),
    S.FILED: frozenset({S.AIRLINE_ACKNOWLEDGED, S.REFUNDED}),
    S.AIRLINE_ACKNOWLEDGED: frozenset({S.MONITORING}),
    S.MONITORING: frozenset({S.AIRLINE_RESPONDED, S.REFUNDED}),
    S.AIRLINE_RESPONDED: frozenset({S.APPROVED, S.REJECTED}),
    S.APPROVED: frozenset({S.COMPLETED}),
    S.REJECTED: frozenset({S.COMPLETED, S.REFUNDED}),
    S.COMPLETED: frozenset(),
    S.REFUNDED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)

# Statuses in which a claim has been filed with the airline
FILED_STATUSES = frozenset({
    S.FILED,
    S.AIRLINE_ACKNOWLEDGED,
    S.MONITORING,
    S.AIRLINE_RESPONDED,
    S.APPROVED,
    S.REJECTED,
    S.COMPLETED,
})

STATUS_TIMESTAMP_FIELDS: Dict[ClaimStatus, str] = {
    S.VALIDATED: "validated_at",
    S.DOCUMENTS_PREPARED: "documents_prepared_at",
    S.READY_TO_FILE: "ready_to_file_at",
    S.FILED: "filed_at",
    S.AIRLINE_ACKNOWLEDGED: "airline_acknowledged_at",
    S.AIRLINE_RESPONDED: "airline_responded_at",
    S.APPROVED: "approved_at",
    S.REJECTED: "rejected_at",
    S.COMPLETED: "completed_at",
    S.REFUNDED: "refunded_at",
}

# Fields a transition may never write through `updates`
PROTECTED_FIELDS = frozenset({"claim_id", "status", "timeline", *STATUS_TIMESTAMP_FIELDS.values()})


class RefundTrigger(str, Enum):
    """Causes that may move a claim to `refunded`."""

    CLAIM_NOT_FILED_DEADLINE = "claim_not_filed_deadline"
    CLAIM_REJECTED_BY_AIRLINE = "claim_rejected_by_airline"
    INSUFFICIENT_DOCUMENTATION = "insufficient_documentation"
    INELIGIBLE_FLIGHT = "ineligible_flight"
    CUSTOMER_REQUEST = "customer_request"
    SYSTEM_ERROR = "system_error"
    DUPLICATE_CLAIM = "duplicate_claim"


REFUND_CAUSES = frozenset(t.value for t in RefundTrigger)

REQUIRED_FILING_FIELDS = [
    "first_name",
    "last_name",
    "email",
    "flight_number",
    "airline",
    "departure_date",
    "departure_airport",
    "arrival_airport",
    "delay_duration",
]

StatusLike = Union[ClaimStatus, str]


def _sync(claim: Claim, fields: Dict[str, Any]) -> None:
    # Only touch attributes the store did not already refresh, so no stale
    # values are left pending on the session
    for key, value in fields.items():
        if getattr(claim, key) != value:
            setattr(claim, key, value)


def can_transition(current: StatusLike, target: StatusLike) -> bool:
    """True if `target` is a direct successor of `current`."""
    return ClaimStatus(target) in ALLOWED_TRANSITIONS[ClaimStatus(current)]


def allowed_targets(status: StatusLike) -> List[str]:
    return sorted(s.value for s in ALLOWED_TRANSITIONS[ClaimStatus(status)])


class ClaimStateMachine:
    """
    Applies lifecycle transitions through the record store.

    Every write to a claim goes through this class so that the timeline
    stays a faithful audit history.
    """

    def __init__(self, store: ClaimStore):
        self.store = store

    def transition(
        self,
        claim: Claim,
        target: StatusLike,
        cause: str,
        updates: Optional[Dict[str, Any]] = None,
        notes: str = "",
    ) -> Claim:
        """
        Move `claim` to `target`.

        Args:
            claim: Claim as most recently read from the store
            target: Desired status
            cause: Actor or trigger responsible ("auto", "operator", a refund trigger, ...)
            updates: Extra fields recorded with the transition (e.g. airline_reference)
            notes: Free-text note for the timeline entry

        Returns:
            The claim as persisted. A claim already at `target` is returned
            unchanged (no timestamps or timeline entries are written).

        Raises:
            IllegalTransition: target is not a direct successor, or a refund
                is requested with a cause that is not a refund trigger.
            ExternalServiceError: the store rejected or failed the write.
        """
        target = ClaimStatus(target)
        current = ClaimStatus(claim.status)

        if current == target:
            logger.debug(f"Claim {claim.claim_id} already {target.value}; transition is a no-op")
            return claim

        if target not in ALLOWED_TRANSITIONS[current]:
            raise IllegalTransition(claim.claim_id, current.value, target.value)

        if target == S.REFUNDED and cause not in REFUND_CAUSES:
            raise IllegalTransition(
                claim.claim_id,
                current.value,
                target.value,
                reason="refunds are only issued by the refund processor",
            )

        now = utcnow()
        fields: Dict[str, Any] = {
            key: value for key, value in (updates or {}).items() if key not in PROTECTED_FIELDS
        }
        fields["status"] = target.value
        timestamp_field = STATUS_TIMESTAMP_FIELDS.get(target)
        if timestamp_field:
            fields[timestamp_field] = now
        fields["timeline"] = list(claim.timeline or []) + [{
            "status": target.value,
            "previous_status": current.value,
            "timestamp": now.isoformat(),
            "actor": cause,
            "notes": notes,
        }]

        if not self.store.update(claim.claim_id, fields):
            raise ExternalServiceError(
                f"Claim {claim.claim_id} not found while writing transition",
                service="record_store",
                claim_id=claim.claim_id,
            )

        _sync(claim, fields)

        log_audit_event(
            "claim.transition",
            cause,
            "system" if cause in ("auto", "cron") else "trigger",
            {"claim_id": claim.claim_id, "from": current.value, "to": target.value},
        )
        return claim

    def schedule_follow_up(self, claim: Claim, next_date: datetime, note: str = "") -> Claim:
        """Record the next follow-up date (status is unchanged)."""
        fields: Dict[str, Any] = {"next_follow_up_date": next_date}
        if note:
            stamp = utcnow().isoformat()
            fields["internal_notes"] = f"{claim.internal_notes or ''}\n[{stamp}] {note}".strip()

        if not self.store.update(claim.claim_id, fields):
            raise ExternalServiceError(
                f"Claim {claim.claim_id} not found while scheduling follow-up",
                service="record_store",
                claim_id=claim.claim_id,
            )
        _sync(claim, fields)
        return claim


@dataclass
class ValidationReport:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    missing_documents: List[str] = field(default_factory=list)
    missing_fields: List[str] = field(default_factory=list)


def parse_delay_hours(delay_duration: Optional[str]) -> float:
    """'3.5 hours' -> 3.5, '90 minutes' -> 1.5, unparseable -> 0."""
    if not delay_duration:
        return 0.0
    match = re.search(r"(\d+(?:\.\d+)?)", delay_duration)
    if not match:
        return 0.0
    value = float(match.group(1))
    if "minute" in delay_duration.lower():
        return value / 60
    return value


def validate_claim_for_filing(claim: Claim, airline_config=None) -> ValidationReport:
    """Check that a claim carries everything an airline submission needs."""
    report = ValidationReport(is_valid=False)

    if not claim.payment_id:
        report.errors.append("Payment not confirmed")

    if not claim.boarding_pass_url:
        report.missing_documents.append("boarding_pass")
        report.errors.append("Boarding pass is required")
    if not claim.delay_proof_url:
        report.missing_documents.append("delay_proof")
        report.errors.append("Delay proof is required")

    for name in REQUIRED_FILING_FIELDS:
        if not getattr(claim, name, None):
            report.missing_fields.append(name)
            report.errors.append(f"{name} is required")

    if airline_config is not None:
        for name in airline_config.required_claim_fields:
            if not getattr(claim, name, None) and name not in report.missing_fields:
                report.missing_fields.append(name)
                report.errors.append(f"{name} is required by {airline_config.airline_name}")

    if parse_delay_hours(claim.delay_duration) < 3:
        report.warnings.append(
            "Delay duration is less than 3 hours - may not be eligible for compensation"
        )

    report.is_valid = not report.errors
    return report
