"""
Database models package
"""
from flightclaims.db.models.claim import Claim, ClaimStatus
from flightclaims.db.models.payment import Payment, PaymentStatus, RefundRecord

__all__ = [
    # Claim
    "Claim",
    "ClaimStatus",
    # Payment
    "Payment",
    "PaymentStatus",
    "RefundRecord",
]
