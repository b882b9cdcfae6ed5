import httpx
import pytest

from stagehand_bridge.services import automation
from stagehand_bridge.services.automation import SessionTargetError, end_session_with_routing
from stagehand_bridge.services.session_store import InMemorySessionStore, SessionPatch
from stagehand_bridge.services.stagehand_api import StagehandAPIError
from tests.utils import ok, region_mismatch

DEFAULT_HOST = "api.stagehand.browserbase.com"
EU_HOST = "api.euc1.stagehand.browserbase.com"
SCHEMA = {"type": "object", "properties": {"title": {"type": "string"}}}


def _deps(config, store, http_client) -> dict:
    return {"config": config, "store": store, "client": http_client}


# ── Session lifecycle ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_start_extract_end_round_trip(fake_service, http_client, config, store):
    fake_service.on("extract", lambda req, body: ok({"result": {"title": "Example"}}))
    statuses = []
    upsert = store.upsert

    async def recording_upsert(patch):
        await upsert(patch)
        statuses.append((await store.get(patch.session_id))["status"])

    store.upsert = recording_upsert

    session = await automation.start_session("https://example.com", **_deps(config, store, http_client))
    result = await automation.extract("get the title", SCHEMA, session_id=session["sessionId"],
                                      **_deps(config, store, http_client))
    ended = await automation.end_session(session["sessionId"], **_deps(config, store, http_client))

    assert session == {"sessionId": "sess-1", "cdpUrl": "wss://cdp/sess-1"}
    assert result == {"title": "Example"}
    assert ended == {"success": True}
    assert statuses[0] == "active"
    assert statuses[-1] == "completed"
    assert "error" not in statuses

    record = await store.get("sess-1")
    assert record["status"] == "completed"
    assert record["ended_at"] is not None
    assert record["operation"] == "workflow"
    assert record["url"] == "https://example.com"


@pytest.mark.asyncio
async def test_session_without_region_routes_to_default_host(fake_service, http_client, config, store):
    fake_service.on("observe", lambda req, body: ok({"result": []}))
    fake_service.on("act", lambda req, body: ok({
        "result": {"success": True, "message": "ok", "actionDescription": "clicked", "actions": []},
    }))
    session = await automation.start_session("https://example.com", **_deps(config, store, http_client))
    await automation.observe("find links", session_id=session["sessionId"], **_deps(config, store, http_client))
    await automation.act("click", session_id=session["sessionId"], **_deps(config, store, http_client))

    assert fake_service.requests
    assert {r.url.host for r in fake_service.requests} == {DEFAULT_HOST}
    assert await store.get_region("sess-1") == "us-west-2"


@pytest.mark.asyncio
async def test_requested_region_is_used_for_the_whole_session(fake_service, http_client, config, store):
    fake_service.on("extract", lambda req, body: ok({"result": {"title": "Example"}}))
    await automation.extract(
        "get the title", SCHEMA,
        url="https://example.com",
        browserbase_session_create_params={"region": "eu-central-1"},
        **_deps(config, store, http_client),
    )

    assert [r.url.host for r in fake_service.requests] == [EU_HOST] * 4
    assert (await store.get("sess-1"))["region"] == "eu-central-1"


@pytest.mark.asyncio
async def test_start_session_closes_session_when_navigation_fails(fake_service, http_client, config, store):
    fake_service.on("navigate", lambda req, body: httpx.Response(500, text="navigation timeout"))

    with pytest.raises(StagehandAPIError, match="navigation timeout"):
        await automation.start_session("https://example.com", **_deps(config, store, http_client))

    assert len(fake_service.calls("end")) == 1
    assert (await store.get("sess-1"))["status"] == "completed"


# ── Ephemeral vs caller-managed sessions ─────────────────────────────

@pytest.mark.asyncio
async def test_ephemeral_extract_runs_full_lifecycle(fake_service, http_client, config, store):
    fake_service.on("extract", lambda req, body: ok({"result": {"title": "Example"}}))

    result = await automation.extract("get the title", SCHEMA, url="https://example.com",
                                      **_deps(config, store, http_client))

    assert result == {"title": "Example"}
    ops = [r.url.path.rsplit("/", 1)[-1] for r in fake_service.requests]
    assert ops == ["start", "navigate", "extract", "end"]
    record = await store.get("sess-1")
    assert record["operation"] == "extract"
    assert record["status"] == "completed"


@pytest.mark.asyncio
async def test_ephemeral_session_closed_when_operation_fails(fake_service, http_client, config, store):
    fake_service.on("act", lambda req, body: httpx.Response(422, text="element not found"))

    with pytest.raises(StagehandAPIError, match="element not found"):
        await automation.act("click the unicorn", url="https://example.com",
                             **_deps(config, store, http_client))

    assert len(fake_service.calls("end")) == 1


@pytest.mark.asyncio
async def test_failed_cleanup_does_not_mask_original_error(fake_service, http_client, config, store):
    fake_service.on("observe", lambda req, body: httpx.Response(500, text="observe exploded"))
    fake_service.on("end", lambda req, body: httpx.Response(500, text="end exploded"))

    with pytest.raises(StagehandAPIError, match="observe exploded"):
        await automation.observe("find", url="https://example.com", **_deps(config, store, http_client))

    record = await store.get("sess-1")
    assert record["status"] == "error"


@pytest.mark.asyncio
async def test_caller_managed_session_is_never_navigated_or_closed(fake_service, http_client, config, store):
    fake_service.on("agentExecute", lambda req, body: ok({
        "result": {"actions": [], "completed": True, "message": "done", "success": True},
    }))

    result = await automation.agent(
        "do the thing", session_id="mine", url="https://ignored.example",
        **_deps(config, store, http_client),
    )

    assert result["completed"] is True
    ops = [r.url.path.rsplit("/", 1)[-1] for r in fake_service.requests]
    assert ops == ["agentExecute"]


@pytest.mark.asyncio
async def test_missing_session_and_url_is_rejected_before_any_call(fake_service, http_client, config, store):
    with pytest.raises(SessionTargetError):
        await automation.extract("x", SCHEMA, **_deps(config, store, http_client))
    with pytest.raises(ValueError):
        await automation.agent("x", **_deps(config, store, http_client))

    assert fake_service.requests == []


# ── Region correction inside operations ──────────────────────────────

@pytest.mark.asyncio
async def test_stale_region_is_corrected_and_remembered(fake_service, http_client, config, store):
    await store.upsert(SessionPatch(session_id="mine", region="us-west-2"))

    def act_handler(req, body):
        if req.url.host != EU_HOST:
            return region_mismatch("eu-central-1")
        return ok({"result": {"success": True, "message": "ok", "actionDescription": "clicked", "actions": []}})

    fake_service.on("act", act_handler)

    first = await automation.act("click", session_id="mine", **_deps(config, store, http_client))
    second = await automation.act("click again", session_id="mine", **_deps(config, store, http_client))

    assert first == {"success": True, "message": "ok", "actionDescription": "clicked"}
    assert second["success"] is True
    assert [r.url.host for r in fake_service.requests] == [DEFAULT_HOST, EU_HOST, EU_HOST]
    assert await store.get_region("mine") == "eu-central-1"


@pytest.mark.asyncio
async def test_ephemeral_session_closes_on_corrected_region(fake_service, http_client, config, store):
    def navigate_handler(req, body):
        if req.url.host != EU_HOST:
            return region_mismatch("eu-central-1")
        return ok({})

    fake_service.on("navigate", navigate_handler)
    fake_service.on("observe", lambda req, body: ok({"result": [
        {"description": "Login", "selector": "#login", "method": "click", "arguments": []},
        {"description": "Logo", "selector": "img.logo"},
    ]}))

    actions = await automation.observe("find", url="https://example.com", **_deps(config, store, http_client))

    assert actions == [
        {"description": "Login", "selector": "#login", "method": "click", "arguments": []},
        {"description": "Logo", "selector": "img.logo"},
    ]
    assert fake_service.calls("observe")[0].url.host == EU_HOST
    assert fake_service.calls("end")[0].url.host == EU_HOST


# ── Termination ──────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_end_session_failing_twice_returns_false_and_records_error(fake_service, http_client, config, store):
    def end_handler(req, body):
        if req.url.host == DEFAULT_HOST:
            return region_mismatch("us-east-1")
        return httpx.Response(503, text="unavailable")

    fake_service.on("end", end_handler)
    await store.upsert(SessionPatch(session_id="sess-9", region="us-west-2"))

    success = await end_session_with_routing(store, "sess-9", config, client=http_client)

    assert success is False
    assert len(fake_service.calls("end")) == 2
    record = await store.get("sess-9")
    assert record["status"] == "error"
    assert record["region"] == "us-east-1"
    assert record["error"]


@pytest.mark.asyncio
async def test_end_session_uses_fallback_region_when_unknown(fake_service, http_client, config, store):
    assert await end_session_with_routing(store, "fresh", config, "ap-southeast-1", client=http_client)

    assert fake_service.requests[0].url.host == "api.apse1.stagehand.browserbase.com"
    assert (await store.get("fresh"))["status"] == "completed"


@pytest.mark.asyncio
async def test_ending_a_completed_session_again_keeps_its_outcome(fake_service, http_client, config, store):
    await store.upsert(SessionPatch(session_id="sess-3", region="us-west-2"))
    assert await end_session_with_routing(store, "sess-3", config, client=http_client)

    fake_service.on("end", lambda req, body: httpx.Response(404, text="session already ended"))
    assert await end_session_with_routing(store, "sess-3", config, client=http_client) is False

    record = await store.get("sess-3")
    assert record["status"] == "completed"
    assert record["error"] is None


class _BrokenOutcomeStore(InMemorySessionStore):
    """Accepts session writes but fails when asked to record an outcome."""

    async def upsert(self, patch: SessionPatch) -> None:
        if patch.status in ("completed", "error"):
            raise RuntimeError("database is locked")
        await super().upsert(patch)


@pytest.mark.asyncio
async def test_store_failure_on_close_does_not_mask_operation_error(fake_service, http_client, config):
    broken = _BrokenOutcomeStore()
    fake_service.on("observe", lambda req, body: httpx.Response(500, text="observe exploded"))

    with pytest.raises(StagehandAPIError, match="observe exploded"):
        await automation.observe("find", url="https://example.com", **_deps(config, broken, http_client))

    assert len(fake_service.calls("end")) == 1
    assert (await broken.get("sess-1"))["status"] == "active"


@pytest.mark.asyncio
async def test_store_failure_after_remote_end_still_reports_success(fake_service, http_client, config):
    broken = _BrokenOutcomeStore()
    await broken.upsert(SessionPatch(session_id="sess-4", region="us-west-2"))

    assert await end_session_with_routing(broken, "sess-4", config, client=http_client) is True
    fake_service.on("end", lambda req, body: httpx.Response(503, text="unavailable"))
    assert await end_session_with_routing(broken, "sess-4", config, client=http_client) is False
