"""SQLAlchemy models and pydantic schemas."""

from saimilar.models.base import Base
from saimilar.models.overlay import WatchedEntry, WishlistEntry
from saimilar.models.user import User

__all__ = [
    "Base",
    "User",
    "WishlistEntry",
    "WatchedEntry",
]
