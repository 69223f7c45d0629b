"""
Deterministic idempotency keys for side-effecting external calls.

The same (claim, trigger) always produces the same key, so a retried or
overlapping invocation cannot make the payment processor act twice.
"""
import re
from typing import Optional

from flightclaims.core.config import settings

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")
_UNSAFE = re.compile(r"[^A-Za-z0-9_\-]")


def _cap(key: str, max_length: Optional[int]) -> str:
    limit = max_length or settings.IDEMPOTENCY_KEY_MAX_LENGTH
    return key[:limit]


def strip_email(email: str) -> str:
    """'Jane.Doe+x@mail.com' -> 'JaneDoexmailcom'."""
    return _NON_ALNUM.sub("", email or "")


def refund_idempotency_key(claim_id: str, trigger: str, max_length: Optional[int] = None) -> str:
    return _cap(f"refund-{_UNSAFE.sub('', claim_id)}-{trigger}", max_length)


def payment_intent_idempotency_key(
    claim_id: str,
    email: str,
    max_length: Optional[int] = None,
) -> str:
    return _cap(f"intent-{_UNSAFE.sub('', claim_id)}-{strip_email(email)}", max_length)


def filing_idempotency_key(claim_id: str, max_length: Optional[int] = None) -> str:
    return _cap(f"filing-{_UNSAFE.sub('', claim_id)}", max_length)
