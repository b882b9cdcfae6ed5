"""
Session lifecycle operations: start, end, extract, act, observe, agent.

Every operation either works on a caller-managed session (session_id
given: never navigated, never closed) or on an ephemeral one it creates
itself (url given: start → navigate → operate → end). Ephemeral sessions
are always closed, on the error path too, and a failed close never
masks the original error.

Each remote call goes through run_with_region_retry, so a stale region
is corrected once and remembered for the rest of the operation.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar

import httpx

from . import stagehand_api
from .region_routing import resolve_region, run_with_region_retry
from .regions import Region, requested_region
from .session_store import SessionPatch, SessionStore, get_store
from .stagehand_api import ApiConfig
from ..models.base import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionTargetError(ValueError):
    """Neither a session id nor a URL to open a session on."""


@dataclass
class SessionScope:
    """A session plus the region we currently believe it lives in."""

    session_id: str
    region: Region
    owned: bool
    store: SessionStore
    config: ApiConfig
    client: Optional[httpx.AsyncClient] = None
    cdp_url: Optional[str] = None

    async def _region_resolved(self, region: Region) -> None:
        self.region = region

    async def call(self, run: Callable[[Optional[str]], Awaitable[T]]) -> T:
        """Run a region-scoped call for this session with mismatch recovery."""
        return await run_with_region_retry(
            self.store, self.session_id, self.region, run,
            on_region_resolved=self._region_resolved,
        )

    async def navigate(self, url: str, *, wait_until: Optional[str] = None, timeout: Optional[int] = None):
        return await self.call(
            lambda region: stagehand_api.navigate(
                self.session_id, url, self.config,
                wait_until=wait_until, timeout=timeout,
                region=region, client=self.client,
            )
        )

    async def close(self) -> bool:
        return await end_session_with_routing(
            self.store, self.session_id, self.config,
            fallback_region=self.region, client=self.client,
        )


async def _record_outcome(store: SessionStore, patch: SessionPatch) -> None:
    try:
        await store.upsert(patch)
    except Exception as e:
        logger.warning("Failed to record end of session %s: %s", patch.session_id, e)


async def end_session_with_routing(
    store: SessionStore,
    session_id: str,
    config: ApiConfig,
    fallback_region: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> bool:
    """
    End a session on its regional host and record the outcome.

    Returns False instead of raising when the remote call fails (after
    the one region retry). Store failures while recording the outcome are
    logged, so cleanup never hides an earlier error.
    """
    region = await resolve_region(store, session_id, fallback_region)

    async def _region_resolved(parsed: Region) -> None:
        nonlocal region
        region = parsed

    try:
        await run_with_region_retry(
            store, session_id, region,
            lambda r: stagehand_api.end_session(session_id, config, region=r, client=client),
            on_region_resolved=_region_resolved,
        )
    except Exception as e:
        logger.warning("Failed to end Stagehand session %s: %s", session_id, e)
        await _record_outcome(store, SessionPatch(
            session_id=session_id,
            region=region,
            status="error",
            error=f"Failed to end Stagehand session: {e}",
        ))
        return False

    await _record_outcome(store, SessionPatch(
        session_id=session_id,
        region=region,
        status="completed",
        ended_at=utcnow(),
    ))
    return True


async def _open_session(
    store: SessionStore,
    config: ApiConfig,
    *,
    operation: str,
    url: str,
    create_params: Optional[dict] = None,
    start_options: Optional[dict] = None,
    wait_until: Optional[str] = None,
    timeout: Optional[int] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> SessionScope:
    """Start a session, record it and navigate to url. Closes it again if navigation fails."""
    region = await resolve_region(store, None, requested_region(create_params), new_session=True)
    started = await stagehand_api.start_session(
        config,
        browserbase_session_create_params=create_params,
        client=client,
        **(start_options or {}),
    )
    scope = SessionScope(
        session_id=started["sessionId"],
        region=region,
        owned=True,
        store=store,
        config=config,
        client=client,
        cdp_url=started.get("cdpUrl"),
    )
    try:
        await store.upsert(SessionPatch(
            session_id=scope.session_id,
            region=region,
            status="active",
            operation=operation,
            url=url,
        ))
        await scope.navigate(url, wait_until=wait_until, timeout=timeout)
    except Exception:
        await scope.close()
        raise
    return scope


@asynccontextmanager
async def scoped_session(
    store: SessionStore,
    config: ApiConfig,
    *,
    operation: str,
    session_id: Optional[str] = None,
    url: Optional[str] = None,
    create_params: Optional[dict] = None,
    wait_until: Optional[str] = None,
    timeout: Optional[int] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> AsyncIterator[SessionScope]:
    """
    Acquire a session for one operation.

    session_id given → use it as is (region from the store).
    otherwise        → open an ephemeral session on url and end it on exit.
    """
    if not session_id and not url:
        raise SessionTargetError("Either sessionId or url must be provided")

    if session_id:
        region = await resolve_region(store, session_id, requested_region(create_params))
        yield SessionScope(
            session_id=session_id,
            region=region,
            owned=False,
            store=store,
            config=config,
            client=client,
        )
        return

    scope = await _open_session(
        store, config,
        operation=operation,
        url=url,
        create_params=create_params,
        wait_until=wait_until,
        timeout=timeout,
        client=client,
    )
    try:
        yield scope
    finally:
        await scope.close()


# ── Public operations ────────────────────────────────────────────────

async def start_session(
    url: str,
    *,
    browserbase_session_id: Optional[str] = None,
    browserbase_session_create_params: Optional[dict] = None,
    timeout: Optional[int] = None,
    wait_until: Optional[str] = None,
    dom_settle_timeout_ms: Optional[int] = None,
    self_heal: Optional[bool] = None,
    system_prompt: Optional[str] = None,
    verbose: Optional[int] = None,
    experimental: Optional[bool] = None,
    config: Optional[ApiConfig] = None,
    store: Optional[SessionStore] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> dict:
    """
    Start a caller-managed session and navigate to url.

    Returns: {"sessionId": "...", "cdpUrl": "..."}. cdpUrl allows a direct
    Playwright/Puppeteer connection.
    """
    scope = await _open_session(
        store or get_store(),
        config or ApiConfig.from_settings(),
        operation="workflow",
        url=url,
        create_params=browserbase_session_create_params,
        start_options={
            "browserbase_session_id": browserbase_session_id,
            "dom_settle_timeout_ms": dom_settle_timeout_ms,
            "self_heal": self_heal,
            "system_prompt": system_prompt,
            "verbose": verbose,
            "experimental": experimental,
        },
        wait_until=wait_until,
        timeout=timeout,
        client=client,
    )
    return {"sessionId": scope.session_id, "cdpUrl": scope.cdp_url}


async def end_session(
    session_id: str,
    *,
    config: Optional[ApiConfig] = None,
    store: Optional[SessionStore] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> dict:
    """End a session. Returns {"success": bool}; never raises on remote failure."""
    success = await end_session_with_routing(
        store or get_store(),
        session_id,
        config or ApiConfig.from_settings(),
        client=client,
    )
    return {"success": success}


async def extract(
    instruction: str,
    schema: dict,
    *,
    session_id: Optional[str] = None,
    url: Optional[str] = None,
    browserbase_session_create_params: Optional[dict] = None,
    model: Any = None,
    timeout: Optional[int] = None,
    wait_until: Optional[str] = None,
    selector: Optional[str] = None,
    config: Optional[ApiConfig] = None,
    store: Optional[SessionStore] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Any:
    """Extract data matching a JSON schema. Returns the extracted value."""
    async with scoped_session(
        store or get_store(),
        config or ApiConfig.from_settings(),
        operation="extract",
        session_id=session_id,
        url=url,
        create_params=browserbase_session_create_params,
        wait_until=wait_until,
        timeout=timeout,
        client=client,
    ) as scope:
        data = await scope.call(
            lambda region: stagehand_api.extract(
                scope.session_id, instruction, schema, scope.config,
                model=model, timeout=timeout, selector=selector,
                region=region, client=client,
            )
        )
    return data["result"]


async def act(
    action: str,
    *,
    session_id: Optional[str] = None,
    url: Optional[str] = None,
    browserbase_session_create_params: Optional[dict] = None,
    model: Any = None,
    variables: Optional[dict[str, str]] = None,
    timeout: Optional[int] = None,
    wait_until: Optional[str] = None,
    config: Optional[ApiConfig] = None,
    store: Optional[SessionStore] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> dict:
    """Perform a natural-language action. Returns {success, message, actionDescription}."""
    async with scoped_session(
        store or get_store(),
        config or ApiConfig.from_settings(),
        operation="act",
        session_id=session_id,
        url=url,
        create_params=browserbase_session_create_params,
        wait_until=wait_until,
        timeout=timeout,
        client=client,
    ) as scope:
        data = await scope.call(
            lambda region: stagehand_api.act(
                scope.session_id, action, scope.config,
                model=model, variables=variables, timeout=timeout,
                region=region, client=client,
            )
        )
    result = data["result"]
    return {
        "success": result["success"],
        "message": result["message"],
        "actionDescription": result["actionDescription"],
    }


_OBSERVED_FIELDS = ("description", "selector", "method", "arguments", "backendNodeId")


async def observe(
    instruction: str,
    *,
    session_id: Optional[str] = None,
    url: Optional[str] = None,
    browserbase_session_create_params: Optional[dict] = None,
    model: Any = None,
    timeout: Optional[int] = None,
    wait_until: Optional[str] = None,
    selector: Optional[str] = None,
    config: Optional[ApiConfig] = None,
    store: Optional[SessionStore] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> list[dict]:
    """Find candidate actions on the page matching an instruction."""
    async with scoped_session(
        store or get_store(),
        config or ApiConfig.from_settings(),
        operation="observe",
        session_id=session_id,
        url=url,
        create_params=browserbase_session_create_params,
        wait_until=wait_until,
        timeout=timeout,
        client=client,
    ) as scope:
        data = await scope.call(
            lambda region: stagehand_api.observe(
                scope.session_id, instruction, scope.config,
                model=model, timeout=timeout, selector=selector,
                region=region, client=client,
            )
        )
    return [
        {k: action[k] for k in _OBSERVED_FIELDS if action.get(k) is not None}
        for action in data["result"]
    ]


async def agent(
    instruction: str,
    *,
    session_id: Optional[str] = None,
    url: Optional[str] = None,
    browserbase_session_create_params: Optional[dict] = None,
    model: Any = None,
    cua: Optional[bool] = None,
    mode: Optional[str] = None,
    max_steps: Optional[int] = None,
    system_prompt: Optional[str] = None,
    execution_model: Any = None,
    provider: Optional[str] = None,
    highlight_cursor: Optional[bool] = None,
    should_cache: Optional[bool] = None,
    timeout: Optional[int] = None,
    wait_until: Optional[str] = None,
    config: Optional[ApiConfig] = None,
    store: Optional[SessionStore] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> dict:
    """
    Run an autonomous multi-step agent.

    Returns: {"actions": [...], "completed", "message", "success", "metadata", "usage"}
    """
    agent_config = {
        "cua": cua,
        "mode": mode,
        "model": model,
        "systemPrompt": system_prompt,
        "executionModel": execution_model,
        "provider": provider,
    }
    execute_options = {
        "instruction": instruction,
        "maxSteps": max_steps,
        "highlightCursor": highlight_cursor,
    }
    async with scoped_session(
        store or get_store(),
        config or ApiConfig.from_settings(),
        operation="workflow",
        session_id=session_id,
        url=url,
        create_params=browserbase_session_create_params,
        wait_until=wait_until,
        timeout=timeout,
        client=client,
    ) as scope:
        data = await scope.call(
            lambda region: stagehand_api.agent_execute(
                scope.session_id, agent_config, execute_options, scope.config,
                should_cache=should_cache, region=region, client=client,
            )
        )
    return data["result"]


async def get_session_record(
    session_id: str,
    store: Optional[SessionStore] = None,
) -> Optional[dict]:
    return await (store or get_store()).get(session_id)
