"""
Sessions API.

POST /v1/sessions/start       Start a caller-managed session and navigate
POST /v1/sessions/{id}/end    End a session ({"success": bool}, never 5xx on close failure)
GET  /v1/sessions/{id}        Stored metadata (region, status, timing)
POST /v1/extract              Extract structured data
POST /v1/act                  Perform an action
POST /v1/observe              Find candidate actions
POST /v1/agent                Run a multi-step agent

Session operations take either "sessionId" (caller-managed) or "url"
(ephemeral session, closed after the call). Field names are camelCase
to match the upstream API.
"""

import logging
from datetime import datetime
from typing import Any, Literal, Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..core.dependencies import get_http_client, get_session_store
from ..services import automation
from ..services.session_store import SessionStore
from ..services.stagehand_api import ApiConfig

logger = logging.getLogger(__name__)

sessions_router = APIRouter(tags=["sessions"])

WaitUntil = Literal["load", "domcontentloaded", "networkidle"]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )


class Credentials(CamelModel):
    """Per-request credentials. Anything omitted falls back to settings."""

    browserbase_api_key: Optional[str] = None
    browserbase_project_id: Optional[str] = None
    model_api_key: Optional[str] = None
    model_name: Optional[str] = None

    def api_config(self) -> ApiConfig:
        defaults = ApiConfig.from_settings()
        return ApiConfig(
            browserbase_api_key=self.browserbase_api_key or defaults.browserbase_api_key,
            browserbase_project_id=self.browserbase_project_id or defaults.browserbase_project_id,
            model_api_key=self.model_api_key or defaults.model_api_key,
            model_name=self.model_name or defaults.model_name,
        )


class SessionTarget(Credentials):
    session_id: Optional[str] = None
    url: Optional[str] = None
    browserbase_session_create_params: Optional[dict[str, Any]] = None
    model: Any = None


# ── Request bodies ───────────────────────────────────────────────────

class StartOptions(CamelModel):
    timeout: Optional[int] = None
    wait_until: Optional[WaitUntil] = None
    dom_settle_timeout_ms: Optional[int] = None
    self_heal: Optional[bool] = None
    system_prompt: Optional[str] = None
    verbose: Optional[Literal[0, 1, 2]] = None
    experimental: Optional[bool] = None


class StartSessionRequest(Credentials):
    url: str
    # Upstream spelling: ID, not Id
    browserbase_session_id: Optional[str] = Field(default=None, alias="browserbaseSessionID")
    browserbase_session_create_params: Optional[dict[str, Any]] = None
    options: StartOptions = StartOptions()


class SelectorOptions(CamelModel):
    timeout: Optional[int] = None
    wait_until: Optional[WaitUntil] = None
    selector: Optional[str] = None


class ExtractRequest(SessionTarget):
    instruction: str
    schema_: dict[str, Any] = Field(alias="schema")
    options: SelectorOptions = SelectorOptions()


class ActOptions(CamelModel):
    timeout: Optional[int] = None
    wait_until: Optional[WaitUntil] = None
    variables: Optional[dict[str, str]] = None


class ActRequest(SessionTarget):
    action: str
    options: ActOptions = ActOptions()


class ObserveRequest(SessionTarget):
    instruction: str
    options: SelectorOptions = SelectorOptions()


class AgentOptions(CamelModel):
    cua: Optional[bool] = None
    mode: Optional[str] = None
    max_steps: Optional[int] = None
    system_prompt: Optional[str] = None
    timeout: Optional[int] = None
    wait_until: Optional[WaitUntil] = None
    execution_model: Any = None
    provider: Optional[str] = None
    highlight_cursor: Optional[bool] = None
    should_cache: Optional[bool] = None


class AgentRequest(SessionTarget):
    instruction: str
    options: AgentOptions = AgentOptions()


# ── Responses ────────────────────────────────────────────────────────

class SessionInfo(CamelModel):
    session_id: str
    cdp_url: Optional[str] = None


class EndSessionResponse(BaseModel):
    success: bool


class SessionOut(CamelModel):
    session_id: str
    region: Optional[str] = None
    status: str
    operation: str
    url: str = ""
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    error: Optional[str] = None


class ActOut(CamelModel):
    success: bool
    message: str
    action_description: str


class ObservedActionOut(CamelModel):
    description: str
    selector: str
    method: Optional[str] = None
    arguments: Optional[list[str]] = None
    backend_node_id: Optional[int] = None


def _target(request: SessionTarget) -> dict:
    return {
        "session_id": request.session_id,
        "url": request.url,
        "browserbase_session_create_params": request.browserbase_session_create_params,
        "model": request.model,
    }


# ── Routes ───────────────────────────────────────────────────────────

@sessions_router.post("/sessions/start", response_model=SessionInfo, response_model_by_alias=True)
async def start_session(
    request: StartSessionRequest,
    store: SessionStore = Depends(get_session_store),
    client: Optional[httpx.AsyncClient] = Depends(get_http_client),
):
    """Start a browser session. cdpUrl allows a direct Playwright/Puppeteer connection."""
    opts = request.options
    result = await automation.start_session(
        request.url,
        browserbase_session_id=request.browserbase_session_id,
        browserbase_session_create_params=request.browserbase_session_create_params,
        timeout=opts.timeout,
        wait_until=opts.wait_until,
        dom_settle_timeout_ms=opts.dom_settle_timeout_ms,
        self_heal=opts.self_heal,
        system_prompt=opts.system_prompt,
        verbose=opts.verbose,
        experimental=opts.experimental,
        config=request.api_config(),
        store=store,
        client=client,
    )
    return SessionInfo(session_id=result["sessionId"], cdp_url=result.get("cdpUrl"))


@sessions_router.post("/sessions/{session_id}/end", response_model=EndSessionResponse)
async def end_session(
    session_id: str,
    credentials: Optional[Credentials] = None,
    store: SessionStore = Depends(get_session_store),
    client: Optional[httpx.AsyncClient] = Depends(get_http_client),
):
    result = await automation.end_session(
        session_id,
        config=(credentials or Credentials()).api_config(),
        store=store,
        client=client,
    )
    if not result["success"]:
        logger.warning("End session %s reported failure", session_id)
    return EndSessionResponse(success=result["success"])


@sessions_router.get("/sessions/{session_id}", response_model=SessionOut, response_model_by_alias=True)
async def get_session(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
):
    record = await automation.get_session_record(session_id, store)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return SessionOut(**record)


@sessions_router.post("/extract")
async def extract(
    request: ExtractRequest,
    store: SessionStore = Depends(get_session_store),
    client: Optional[httpx.AsyncClient] = Depends(get_http_client),
) -> Any:
    """Extract data matching the given JSON schema. Returns the extracted value as is."""
    return await automation.extract(
        request.instruction,
        request.schema_,
        **_target(request),
        timeout=request.options.timeout,
        wait_until=request.options.wait_until,
        selector=request.options.selector,
        config=request.api_config(),
        store=store,
        client=client,
    )


@sessions_router.post("/act", response_model=ActOut, response_model_by_alias=True)
async def act(
    request: ActRequest,
    store: SessionStore = Depends(get_session_store),
    client: Optional[httpx.AsyncClient] = Depends(get_http_client),
):
    result = await automation.act(
        request.action,
        **_target(request),
        variables=request.options.variables,
        timeout=request.options.timeout,
        wait_until=request.options.wait_until,
        config=request.api_config(),
        store=store,
        client=client,
    )
    return ActOut(
        success=result["success"],
        message=result["message"],
        action_description=result["actionDescription"],
    )


@sessions_router.post(
    "/observe",
    response_model=list[ObservedActionOut],
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
async def observe(
    request: ObserveRequest,
    store: SessionStore = Depends(get_session_store),
    client: Optional[httpx.AsyncClient] = Depends(get_http_client),
):
    actions = await automation.observe(
        request.instruction,
        **_target(request),
        timeout=request.options.timeout,
        wait_until=request.options.wait_until,
        selector=request.options.selector,
        config=request.api_config(),
        store=store,
        client=client,
    )
    return [ObservedActionOut.model_validate(a) for a in actions]


@sessions_router.post("/agent")
async def agent(
    request: AgentRequest,
    store: SessionStore = Depends(get_session_store),
    client: Optional[httpx.AsyncClient] = Depends(get_http_client),
) -> dict:
    """Autonomous multi-step automation. Returns actions, completion state and usage."""
    opts = request.options
    return await automation.agent(
        request.instruction,
        **_target(request),
        cua=opts.cua,
        mode=opts.mode,
        max_steps=opts.max_steps,
        system_prompt=opts.system_prompt,
        execution_model=opts.execution_model,
        provider=opts.provider,
        highlight_cursor=opts.highlight_cursor,
        should_cache=opts.should_cache,
        timeout=opts.timeout,
        wait_until=opts.wait_until,
        config=request.api_config(),
        store=store,
        client=client,
    )
