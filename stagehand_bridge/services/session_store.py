"""
Session metadata store: last known region and lifecycle per session id.

Used by:
  - region_routing, to pick the regional endpoint for a session and to
    record corrections learned from region-mismatch errors
  - automation, to record session start/end

Writes are upserts keyed by session_id, last writer wins. The store is a
routing hint, not a source of truth: a stale region is corrected by the
retry in region_routing.
"""

import logging
from dataclasses import dataclass, fields
from datetime import datetime
from functools import lru_cache
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.database import session_scope
from ..core.flags import get_flags
from ..models.base import utcnow
from ..models.session import SessionRecord

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = {"completed", "error"}
_OUTCOME_FIELDS = ("status", "ended_at", "error")


@dataclass
class SessionPatch:
    """Partial session record. None means "leave as is"."""

    session_id: str
    region: Optional[str] = None
    status: Optional[str] = None
    operation: Optional[str] = None
    url: Optional[str] = None
    ended_at: Optional[datetime] = None
    error: Optional[str] = None

    def changes(self) -> dict:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "session_id" and getattr(self, f.name) is not None
        }


def _next_status(current: Optional[str], requested: Optional[str]) -> Optional[str]:
    """Status only moves forward: active -> completed or active -> error, then it is final."""
    if requested is None or current in TERMINAL_STATUSES:
        return current
    return requested


def _apply(record, patch: SessionPatch) -> None:
    changes = patch.changes()
    if record.status in TERMINAL_STATUSES:
        # Outcome fields belong to the first terminal write.
        for name in _OUTCOME_FIELDS:
            changes.pop(name, None)
    for name, value in changes.items():
        if name == "status":
            value = _next_status(record.status, value)
        setattr(record, name, value)


class SessionStore(Protocol):
    async def upsert(self, patch: SessionPatch) -> None: ...

    async def get_region(self, session_id: str) -> Optional[str]: ...

    async def get(self, session_id: str) -> Optional[dict]: ...


@dataclass
class _MemoryRecord:
    session_id: str
    region: Optional[str] = None
    status: str = "active"
    operation: str = "workflow"
    url: str = ""
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    error: Optional[str] = None


class InMemorySessionStore:
    """Process-local store. Used when FF_USE_DATABASE=false."""

    def __init__(self):
        self._records: dict[str, _MemoryRecord] = {}

    async def upsert(self, patch: SessionPatch) -> None:
        record = self._records.get(patch.session_id)
        if record is None:
            record = _MemoryRecord(session_id=patch.session_id, started_at=utcnow())
            self._records[patch.session_id] = record
        _apply(record, patch)

    async def get_region(self, session_id: str) -> Optional[str]:
        record = self._records.get(session_id)
        return record.region if record else None

    async def get(self, session_id: str) -> Optional[dict]:
        record = self._records.get(session_id)
        if record is None:
            return None
        return {f.name: getattr(record, f.name) for f in fields(record)}


class SqlSessionStore:
    """SQLAlchemy-backed store over the stagehand_sessions table."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory

    async def _load(self, db: AsyncSession, session_id: str) -> Optional[SessionRecord]:
        result = await db.execute(
            select(SessionRecord).where(SessionRecord.session_id == session_id).limit(1)
        )
        return result.scalar_one_or_none()

    async def upsert(self, patch: SessionPatch) -> None:
        async with session_scope(self._session_factory) as db:
            record = await self._load(db, patch.session_id)
            if record is None:
                record = SessionRecord(
                    session_id=patch.session_id,
                    status="active",
                    operation="workflow",
                    url="",
                    started_at=utcnow(),
                )
                db.add(record)
            _apply(record, patch)
            await db.flush()
        logger.debug("Upserted session %s: %s", patch.session_id, patch.changes())

    async def get_region(self, session_id: str) -> Optional[str]:
        async with session_scope(self._session_factory) as db:
            record = await self._load(db, session_id)
            return record.region if record else None

    async def get(self, session_id: str) -> Optional[dict]:
        async with session_scope(self._session_factory) as db:
            record = await self._load(db, session_id)
            return record.to_dict() if record else None


@lru_cache
def get_store() -> SessionStore:
    """The configured store: SQL when FF_USE_DATABASE is on, else in-memory."""
    if get_flags().use_database:
        return SqlSessionStore()
    logger.info("FF_USE_DATABASE=false, session metadata kept in memory")
    return InMemorySessionStore()
