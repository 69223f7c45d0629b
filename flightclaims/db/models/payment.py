"""
Payment and refund database models
"""
import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, JSON

from flightclaims.db.base import Base


class PaymentStatus(str, PyEnum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Payment(Base):
    """Service-fee payment captured at intake. Immutable once succeeded."""

    __tablename__ = "payments"

    payment_id = Column(String(50), primary_key=True)
    claim_id = Column(String(50), ForeignKey("claims.claim_id"), nullable=False, index=True)
    transaction_id = Column(String(100), nullable=False)  # external payment intent id
    amount = Column(Integer, nullable=False)  # minor units
    currency = Column(String(3), default="eur", nullable=False)
    status = Column(String(20), default=PaymentStatus.SUCCEEDED.value, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Payment {self.payment_id} {self.amount} {self.currency} ({self.status})>"


class RefundRecord(Base):
    """A refund issued against a payment."""

    __tablename__ = "refunds"

    refund_id = Column(String(50), primary_key=True, default=lambda: f"refund-{uuid.uuid4().hex[:12]}")
    claim_id = Column(String(50), ForeignKey("claims.claim_id"), nullable=False, index=True)
    payment_id = Column(String(50), ForeignKey("payments.payment_id"), nullable=False)
    external_refund_id = Column(String(100), nullable=False)
    amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    trigger = Column(String(50), nullable=False)
    reason = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False)
    processed_by = Column(String(100), nullable=False)
    idempotency_key = Column(String(255), nullable=False, unique=True, index=True)
    details = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<RefundRecord {self.refund_id} claim={self.claim_id} ({self.status})>"
