"""
Services package
"""
from flightclaims.services.lifecycle import ClaimStateMachine, can_transition, allowed_targets
from flightclaims.services.store import ClaimStore, SqlClaimStore
from flightclaims.services.notification_queue import NotificationQueue, QueueConfig
from flightclaims.services.filing import FilingProcessor
from flightclaims.services.follow_up import FollowUpService
from flightclaims.services.refunds import RefundProcessor

__all__ = [
    "ClaimStateMachine",
    "can_transition",
    "allowed_targets",
    "ClaimStore",
    "SqlClaimStore",
    "NotificationQueue",
    "QueueConfig",
    "FilingProcessor",
    "FollowUpService",
    "RefundProcessor",
]
