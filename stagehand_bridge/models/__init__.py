"""
All database models. Imported here so Base.metadata sees them for create_all().
"""

from .base import TimestampedBase
from .session import SessionRecord

__all__ = [
    "TimestampedBase",
    "SessionRecord",
]
