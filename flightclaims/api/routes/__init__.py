"""
API routes package
"""
from flightclaims.api.routes import cron, notifications, claims

__all__ = [
    "cron",
    "notifications",
    "claims",
]
