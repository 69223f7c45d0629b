"""
Record Store Adapter - keyed access to claims, payments and refunds.

The store offers simple equality/range queries and single-record updates.
It has no compare-and-swap: callers re-read a claim right before mutating it
and rely on idempotency keys for external side effects.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from flightclaims.core.exceptions import AlreadyInTargetStateError
from flightclaims.db.models import Claim, ClaimStatus, Payment, RefundRecord
from flightclaims.services.db_utils import with_db_retry

StatusArg = Union[ClaimStatus, str, Iterable[Union[ClaimStatus, str]]]


def _status_values(status: StatusArg) -> List[str]:
    if isinstance(status, (ClaimStatus, str)):
        return [ClaimStatus(status).value]
    return [ClaimStatus(s).value for s in status]


class ClaimStore(ABC):
    """Abstract record store consumed by the orchestration engine."""

    @abstractmethod
    def get_by_status(self, status: StatusArg) -> List[Claim]:
        """Claims whose status matches (one status or a collection)."""

    @abstractmethod
    def get_by_id(self, claim_id: str) -> Optional[Claim]:
        """Fresh read of a single claim; never served from a stale cache."""

    @abstractmethod
    def update(self, claim_id: str, fields: Dict[str, Any]) -> bool:
        """Write partial fields. Returns False if the claim does not exist."""

    @abstractmethod
    def get_overdue(self, statuses: StatusArg, submitted_before: datetime) -> List[Claim]:
        """Claims in `statuses` submitted strictly before the cutoff."""

    @abstractmethod
    def get_follow_up_due(self, now: datetime) -> List[Claim]:
        """Monitoring claims whose next follow-up date has passed."""

    @abstractmethod
    def get_payment(self, payment_id: str) -> Optional[Payment]:
        pass

    @abstractmethod
    def add_refund(self, refund: RefundRecord) -> RefundRecord:
        """Persist a refund. A second record with the same idempotency key
        raises AlreadyInTargetStateError."""

    @abstractmethod
    def count_by_status(self) -> Dict[str, int]:
        pass


class SqlClaimStore(ClaimStore):
    """SQLAlchemy-backed record store."""

    def __init__(self, db: Session):
        self.db = db

    @with_db_retry()
    def get_by_status(self, status: StatusArg) -> List[Claim]:
        return (
            self.db.query(Claim)
            .filter(Claim.status.in_(_status_values(status)))
            .order_by(Claim.submitted_at.asc())
            .populate_existing()
            .all()
        )

    @with_db_retry()
    def get_by_id(self, claim_id: str) -> Optional[Claim]:
        return (
            self.db.query(Claim)
            .filter(Claim.claim_id == claim_id)
            .populate_existing()
            .first()
        )

    @with_db_retry()
    def update(self, claim_id: str, fields: Dict[str, Any]) -> bool:
        updated = (
            self.db.query(Claim)
            .filter(Claim.claim_id == claim_id)
            .update(fields, synchronize_session="fetch")
        )
        self.db.commit()
        return updated > 0

    @with_db_retry()
    def get_overdue(self, statuses: StatusArg, submitted_before: datetime) -> List[Claim]:
        return (
            self.db.query(Claim)
            .filter(
                Claim.status.in_(_status_values(statuses)),
                Claim.submitted_at < submitted_before,
            )
            .order_by(Claim.submitted_at.asc())
            .populate_existing()
            .all()
        )

    @with_db_retry()
    def get_follow_up_due(self, now: datetime) -> List[Claim]:
        return (
            self.db.query(Claim)
            .filter(
                Claim.status == ClaimStatus.MONITORING.value,
                Claim.next_follow_up_date.isnot(None),
                Claim.next_follow_up_date <= now,
            )
            .order_by(Claim.next_follow_up_date.asc())
            .populate_existing()
            .all()
        )

    @with_db_retry()
    def get_payment(self, payment_id: str) -> Optional[Payment]:
        return self.db.query(Payment).filter(Payment.payment_id == payment_id).first()

    @with_db_retry()
    def add_refund(self, refund: RefundRecord) -> RefundRecord:
        self.db.add(refund)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            existing = (
                self.db.query(RefundRecord)
                .filter(RefundRecord.idempotency_key == refund.idempotency_key)
                .first()
            )
            if existing is None:
                raise
            raise AlreadyInTargetStateError(refund.claim_id, ClaimStatus.REFUNDED.value)
        self.db.refresh(refund)
        return refund

    @with_db_retry()
    def count_by_status(self) -> Dict[str, int]:
        rows = (
            self.db.query(Claim.status, func.count(Claim.claim_id))
            .group_by(Claim.status)
            .all()
        )
        counts = {status.value: 0 for status in ClaimStatus}
        for status, count in rows:
            counts[status] = count
        return counts
