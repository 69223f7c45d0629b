"""
Logging for the claim engine.

Log lines routinely carry passenger contact details, booking references and
payment identifiers, so every handler formats through MaskingFormatter.
State changes and refunds additionally go to the `flightclaims.audit`
channel as one key=value line each.
"""
import logging
import re
from typing import Any

from flightclaims.core.config import settings


# (pattern, replacement); applied in order
MASK_PATTERNS = [
    (re.compile(r"""(["'])(email|to|passenger_email)\1:\s*(["'])[^"']*\3""", re.IGNORECASE), r"\1\2\1: \3***@***\3"),
    (re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}"), "***@***"),
    (re.compile(r"""(["'])booking_reference\1:\s*(["'])[^"']*\2""", re.IGNORECASE), r"\1booking_reference\1: \2***\2"),
    (re.compile(r"Bearer\s+[A-Za-z0-9._~+/=-]+", re.IGNORECASE), "Bearer ***"),
    (re.compile(r"\b(sk|rk)_(live|test)_[A-Za-z0-9]+"), r"\1_\2_***"),
    (re.compile(r"\bre_[A-Za-z0-9]{8,}"), "re_***"),
]

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class MaskingFormatter(logging.Formatter):
    """Formatter that redacts passenger contact data and credentials."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for pattern, replacement in MASK_PATTERNS:
            message = pattern.sub(replacement, message)
        return message


def _level() -> int:
    return logging.DEBUG if settings.DEBUG else getattr(logging, settings.LOG_LEVEL)


def setup_logging() -> logging.Logger:
    """Attach one masking console handler to the `flightclaims` logger."""
    logger = logging.getLogger("flightclaims")
    logger.setLevel(_level())

    # Reloads (uvicorn --reload, test collection) must not stack handlers
    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler()
    console_handler.setLevel(_level())
    console_handler.setFormatter(MaskingFormatter(LOG_FORMAT))
    logger.addHandler(console_handler)

    return logger


logger = setup_logging()
audit_logger = logger.getChild("audit")


def get_logger(name: str) -> logging.Logger:
    """Logger under `flightclaims` so it shares the masking handler."""
    if name == "flightclaims" or name.startswith("flightclaims."):
        return logging.getLogger(name)
    return logger.getChild(name)


def log_audit_event(
    event_type: str,
    actor_id: str,
    actor_type: str,
    details: dict[str, Any],
) -> None:
    """
    Record a claim state change or refund on the audit channel.

    The durable history lives in the claim timeline and refund records;
    this line is for log search.
    """
    fields = " ".join(f"{key}={value}" for key, value in sorted(details.items()))
    audit_logger.info(f"{event_type} actor={actor_id} actor_type={actor_type} {fields}")
