"""
Claim database model
"""
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import Column, String, DateTime, Numeric, Text, JSON

from flightclaims.db.base import Base


class ClaimStatus(str, PyEnum):
    SUBMITTED = "submitted"
    VALIDATED = "validated"
    DOCUMENTS_PREPARED = "documents_prepared"
    READY_TO_FILE = "ready_to_file"
    FILED = "filed"
    AIRLINE_ACKNOWLEDGED = "airline_acknowledged"
    MONITORING = "monitoring"
    AIRLINE_RESPONDED = "airline_responded"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"
    REFUNDED = "refunded"


class Claim(Base):
    """Flight-delay compensation claim."""

    __tablename__ = "claims"

    claim_id = Column(String(50), primary_key=True)

    # Passenger (read-only after intake)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False)

    # Flight (read-only after intake)
    flight_number = Column(String(20), nullable=False)
    airline = Column(String(100), nullable=False, index=True)
    departure_date = Column(String(20), nullable=False)
    departure_airport = Column(String(10), nullable=False)
    arrival_airport = Column(String(10), nullable=False)
    delay_duration = Column(String(50), nullable=False)
    delay_reason = Column(String(255), nullable=True)
    booking_reference = Column(String(20), nullable=True)

    # Documents
    boarding_pass_url = Column(String(500), nullable=True)
    delay_proof_url = Column(String(500), nullable=True)

    # Lifecycle
    status = Column(String(30), default=ClaimStatus.SUBMITTED.value, nullable=False, index=True)
    submitted_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    validated_at = Column(DateTime, nullable=True)
    documents_prepared_at = Column(DateTime, nullable=True)
    ready_to_file_at = Column(DateTime, nullable=True)
    filed_at = Column(DateTime, nullable=True)
    airline_acknowledged_at = Column(DateTime, nullable=True)
    airline_responded_at = Column(DateTime, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    refunded_at = Column(DateTime, nullable=True)

    # Filing / follow-up
    airline_reference = Column(String(100), nullable=True)
    filing_method = Column(String(20), nullable=True)
    next_follow_up_date = Column(DateTime, nullable=True, index=True)

    # Money (minor units, e.g. cents)
    estimated_compensation = Column(Numeric(12, 2), nullable=True)
    payment_id = Column(String(50), nullable=True)

    refund_reason = Column(String(50), nullable=True)
    rejection_reason = Column(String(500), nullable=True)
    internal_notes = Column(Text, nullable=True)

    # Timeline: list of {status, timestamp, actor, notes}
    timeline = Column(JSON, default=list)

    def __repr__(self) -> str:
        return f"<Claim {self.claim_id} ({self.status})>"

    @property
    def passenger_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_summary(self) -> dict:
        """Compact representation used in alerts and API payloads."""
        return {
            "claim_id": self.claim_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "flight_number": self.flight_number,
            "airline": self.airline,
            "departure_date": self.departure_date,
            "status": self.status,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "next_follow_up_date": (
                self.next_follow_up_date.isoformat() if self.next_follow_up_date else None
            ),
        }
