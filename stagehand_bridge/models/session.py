"""
Stagehand session metadata.

One row per remote session id. Holds the last known region so later
calls can be routed to the right regional endpoint, plus lifecycle and
audit fields.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from .base import TimestampedBase, utcnow


class SessionRecord(TimestampedBase):
    __tablename__ = "stagehand_sessions"

    session_id: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
    # None = unknown, route with the caller's hint or the default region
    region: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    # active | completed | error
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")
    # extract | act | observe | workflow
    operation: Mapped[str] = mapped_column(String, nullable=False, default="workflow")
    url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "region": self.region,
            "status": self.status,
            "operation": self.operation,
            "url": self.url,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "error": self.error,
        }
