"""
Security utilities - shared-secret bearer authentication for scheduled triggers
"""
import hmac
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from flightclaims.core.config import settings
from flightclaims.core.exceptions import AuthorizationError
from flightclaims.core.logging import get_logger

logger = get_logger(__name__)

# Bearer scheme; missing headers are handled below so they map to 401 like bad tokens
trigger_security = HTTPBearer(auto_error=False)


def verify_trigger_token(token: Optional[str], secret: Optional[str] = None) -> None:
    """
    Check a presented bearer token against the configured trigger secret.

    Raises AuthorizationError when the secret is not configured or the token
    does not match. Comparison is constant time.
    """
    expected = settings.CRON_SECRET if secret is None else secret
    if not expected:
        logger.error("CRON_SECRET is not configured; rejecting trigger request")
        raise AuthorizationError("Trigger secret not configured")
    if not token or not hmac.compare_digest(token.encode(), expected.encode()):
        raise AuthorizationError("Invalid trigger token")


async def require_trigger_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(trigger_security),
) -> str:
    """Dependency guarding trigger and operator endpoints."""
    token = credentials.credentials if credentials else None
    try:
        verify_trigger_token(token)
    except AuthorizationError as exc:
        logger.warning(f"Rejected trigger request: {exc.message}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return "cron"
