"""Database package for EasyPass."""
from .connection import Database, build_engine
from .models import Base, Payment, User, as_utc, utcnow

__all__ = [
    "Base",
    "Database",
    "Payment",
    "User",
    "build_engine",
    "as_utc",
    "utcnow",
]
