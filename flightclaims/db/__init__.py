"""
Database package
"""
from flightclaims.db.base import Base
from flightclaims.db.session import engine, SessionLocal, get_db
from flightclaims.db.models import *

__all__ = [
    "Base",
    "engine",
    "SessionLocal",
    "get_db",
]
