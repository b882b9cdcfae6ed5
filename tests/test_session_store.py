import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from stagehand_bridge.core.database import Base
from stagehand_bridge.models.base import utcnow
from stagehand_bridge.services.session_store import (
    InMemorySessionStore,
    SessionPatch,
    SqlSessionStore,
)


@pytest_asyncio.fixture()
async def sql_store():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        from stagehand_bridge.models import session  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    yield SqlSessionStore(factory)

    await engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def any_store(request, sql_store):
    if request.param == "memory":
        return InMemorySessionStore()
    return sql_store


@pytest.mark.asyncio
async def test_upsert_creates_active_record_with_defaults(any_store):
    await any_store.upsert(SessionPatch(session_id="sess-1", region="us-east-1"))

    record = await any_store.get("sess-1")
    assert record["status"] == "active"
    assert record["operation"] == "workflow"
    assert record["url"] == ""
    assert record["started_at"] is not None
    assert await any_store.get_region("sess-1") == "us-east-1"


@pytest.mark.asyncio
async def test_upsert_patches_only_given_fields(any_store):
    await any_store.upsert(SessionPatch(
        session_id="sess-1", region="us-west-2", operation="extract", url="https://example.com",
    ))
    await any_store.upsert(SessionPatch(session_id="sess-1", region="eu-central-1"))

    record = await any_store.get("sess-1")
    assert record["region"] == "eu-central-1"
    assert record["operation"] == "extract"
    assert record["url"] == "https://example.com"


@pytest.mark.asyncio
async def test_terminal_status_never_reverts_to_active(any_store):
    await any_store.upsert(SessionPatch(session_id="sess-1", status="active"))
    await any_store.upsert(SessionPatch(session_id="sess-1", status="completed", ended_at=utcnow()))
    await any_store.upsert(SessionPatch(session_id="sess-1", region="ap-southeast-1", status="active"))

    record = await any_store.get("sess-1")
    assert record["status"] == "completed"
    assert record["region"] == "ap-southeast-1"
    assert record["ended_at"] is not None


@pytest.mark.asyncio
@pytest.mark.parametrize("first,second", [("completed", "error"), ("error", "completed")])
async def test_terminal_status_is_final(any_store, first, second):
    ended = utcnow()
    await any_store.upsert(SessionPatch(
        session_id="sess-1", status=first, ended_at=ended,
        error="boom" if first == "error" else None,
    ))
    await any_store.upsert(SessionPatch(
        session_id="sess-1", region="eu-central-1", status=second, ended_at=utcnow(),
        error="late failure" if second == "error" else None,
    ))

    record = await any_store.get("sess-1")
    assert record["status"] == first
    assert record["error"] == ("boom" if first == "error" else None)
    assert record["ended_at"].replace(tzinfo=None) == ended.replace(tzinfo=None)
    assert record["region"] == "eu-central-1"


@pytest.mark.asyncio
async def test_unknown_session(any_store):
    assert await any_store.get("missing") is None
    assert await any_store.get_region("missing") is None


@pytest.mark.asyncio
async def test_sql_store_keeps_one_row_per_session(sql_store):
    for region in ("us-west-2", "us-east-1", "eu-central-1"):
        await sql_store.upsert(SessionPatch(session_id="sess-1", region=region))
    await sql_store.upsert(SessionPatch(session_id="sess-2"))

    from sqlalchemy import func, select
    from stagehand_bridge.models.session import SessionRecord

    async with sql_store._session_factory() as db:
        count = await db.scalar(select(func.count()).select_from(SessionRecord))
    assert count == 2
    assert await sql_store.get_region("sess-1") == "eu-central-1"
