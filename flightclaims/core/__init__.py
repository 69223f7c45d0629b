"""
Core module exports
"""
from datetime import datetime, timezone

from flightclaims.core.config import settings
from flightclaims.core.security import (
    verify_trigger_token,
    require_trigger_secret,
)
from flightclaims.core.logging import logger, get_logger, log_audit_event


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how timestamps are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


__all__ = [
    "settings",
    "verify_trigger_token",
    "require_trigger_secret",
    "logger",
    "get_logger",
    "log_audit_event",
    "utcnow",
]
