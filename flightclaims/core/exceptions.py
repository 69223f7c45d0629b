"""
Error taxonomy for the orchestration engine.

Authorization and configuration errors abort a whole invocation. Every other
error is caught at the per-item boundary of a batch and reported in the
result payload.
"""
from typing import Optional


class FlightClaimsError(Exception):
    """Base class for engine errors."""

    code = "error"

    def __init__(self, message: str, claim_id: Optional[str] = None):
        self.message = message
        self.claim_id = claim_id
        super().__init__(message)


class AuthorizationError(FlightClaimsError):
    """Missing or invalid trigger secret."""

    code = "unauthorized"


class ConfigurationError(FlightClaimsError):
    """Required external credentials or configuration are missing."""

    code = "configuration_error"


class ValidationError(FlightClaimsError):
    """Malformed per-item input."""

    code = "validation_failed"


class ExternalServiceError(FlightClaimsError):
    """Record store, payment, email or airline channel failure (retryable)."""

    code = "external_service_error"

    def __init__(
        self,
        message: str,
        service: str,
        claim_id: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.service = service
        self.original_error = original_error
        super().__init__(message, claim_id)


class IllegalTransition(FlightClaimsError):
    """Target status is not a successor of the current status."""

    code = "illegal_transition"

    def __init__(self, claim_id: str, current: str, target: str, reason: str = ""):
        self.current = current
        self.target = target
        message = f"Claim {claim_id}: cannot transition {current} -> {target}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message, claim_id)


class AlreadyInTargetStateError(FlightClaimsError):
    """Claim is already at the requested status; callers treat this as a no-op."""

    code = "already_in_target_state"

    def __init__(self, claim_id: str, status: str):
        self.status = status
        super().__init__(f"Claim {claim_id} is already {status}", claim_id)
