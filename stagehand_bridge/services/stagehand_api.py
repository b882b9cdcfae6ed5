"""
Stagehand REST API client.

Stateless translation layer: one POST per call, no retries, no session
bookkeeping. Every response is wrapped as {"success": bool, "data": ...};
a non-2xx status or success != true is a hard failure for that call.

API:  https://api.stagehand.browserbase.com/v1 (one host per region, see regions.py)
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from ..core.config import get_settings
from .regions import get_api_base

logger = logging.getLogger(__name__)

DEFAULT_MODEL_NAME = "openai/gpt-4o"
DEFAULT_WAIT_UNTIL = "networkidle"


class StagehandAPIError(Exception):
    """Non-2xx response, or a 2xx response whose body has success != true."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


@dataclass(frozen=True)
class ApiConfig:
    browserbase_api_key: str
    browserbase_project_id: str
    model_api_key: str
    model_name: Optional[str] = None

    @classmethod
    def from_settings(cls) -> "ApiConfig":
        settings = get_settings()
        return cls(
            browserbase_api_key=settings.browserbase_api_key,
            browserbase_project_id=settings.browserbase_project_id,
            model_api_key=settings.model_api_key,
            model_name=settings.stagehand_model_name,
        )


# ── Shared client (connection pool) ──────────────────────────────────

_client: Optional[httpx.AsyncClient] = None


def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None or _client.is_closed:
        settings = get_settings()
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.http_read_timeout, connect=settings.http_connect_timeout),
        )
    return _client


async def close_client():
    """Close the shared HTTP client. Call on app shutdown."""
    global _client
    if _client and not _client.is_closed:
        await _client.aclose()
        _client = None


def _headers(config: ApiConfig) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "x-bb-api-key": config.browserbase_api_key,
        "x-bb-project-id": config.browserbase_project_id,
        "x-model-api-key": config.model_api_key,
    }


def _compact(fields: dict) -> dict:
    """Drop unset (None) fields so they never reach the wire."""
    return {k: v for k, v in fields.items() if v is not None}


def _options(**fields) -> Optional[dict]:
    """Options object for extract/act/observe, only when at least one is set."""
    options = _compact(fields)
    return options or None


def _raise_for_status(resp: httpx.Response) -> None:
    if resp.is_success:
        return
    body = resp.text
    logger.error("Stagehand API error %d: %s", resp.status_code, body[:500])
    raise StagehandAPIError(
        f"Stagehand API error ({resp.status_code}): {body}",
        status_code=resp.status_code,
        body=body,
    )


def _handle_response(resp: httpx.Response) -> Any:
    _raise_for_status(resp)
    payload = resp.json()
    if not isinstance(payload, dict) or payload.get("success") is not True:
        raise StagehandAPIError(
            "Stagehand API returned success: false",
            status_code=resp.status_code,
            body=resp.text,
        )
    return payload.get("data")


async def _post(
    path: str,
    config: ApiConfig,
    region: Optional[str],
    body: Optional[dict] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> httpx.Response:
    url = f"{get_api_base(region)}{path}"
    client = client or _get_client()
    logger.info("Stagehand: POST %s", url)
    if body is None:
        return await client.post(url, headers=_headers(config))
    return await client.post(url, json=body, headers=_headers(config))


# ── Session lifecycle ────────────────────────────────────────────────

async def start_session(
    config: ApiConfig,
    *,
    browserbase_session_id: Optional[str] = None,
    browserbase_session_create_params: Optional[dict] = None,
    dom_settle_timeout_ms: Optional[int] = None,
    self_heal: Optional[bool] = None,
    system_prompt: Optional[str] = None,
    verbose: Optional[int] = None,
    experimental: Optional[bool] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> dict:
    """
    POST /sessions/start

    The host is picked from browserbase_session_create_params["region"];
    that is the only place a region ever appears in a request body.

    Returns: {"sessionId": "...", "cdpUrl": "...", "available": true}
    """
    region = (browserbase_session_create_params or {}).get("region")
    body = _compact({
        "modelName": config.model_name or DEFAULT_MODEL_NAME,
        "browserbaseSessionID": browserbase_session_id,
        "browserbaseSessionCreateParams": browserbase_session_create_params,
        "domSettleTimeoutMs": dom_settle_timeout_ms,
        "selfHeal": self_heal,
        "systemPrompt": system_prompt,
        "verbose": verbose,
        "experimental": experimental,
    })
    resp = await _post("/sessions/start", config, region, body, client)
    data = _handle_response(resp)
    logger.info("Stagehand session started: %s", data.get("sessionId"))
    return data


async def end_session(
    session_id: str,
    config: ApiConfig,
    *,
    region: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> None:
    """POST /sessions/{id}/end (no body). Response is a bare {"success": bool}."""
    resp = await _post(f"/sessions/{session_id}/end", config, region, client=client)
    _raise_for_status(resp)
    payload = resp.json()
    if not isinstance(payload, dict) or payload.get("success") is not True:
        raise StagehandAPIError(
            "Stagehand API returned success: false",
            status_code=resp.status_code,
            body=resp.text,
        )
    logger.info("Stagehand session ended: %s", session_id)


# ── Session-scoped operations ────────────────────────────────────────

async def navigate(
    session_id: str,
    url: str,
    config: ApiConfig,
    *,
    wait_until: Optional[str] = None,
    timeout: Optional[int] = None,
    referer: Optional[str] = None,
    region: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Any:
    """POST /sessions/{id}/navigate. The result is opaque to us."""
    body = {
        "url": url,
        "options": _compact({
            "waitUntil": wait_until or DEFAULT_WAIT_UNTIL,
            "timeout": timeout,
            "referer": referer,
        }),
    }
    resp = await _post(f"/sessions/{session_id}/navigate", config, region, body, client)
    return _handle_response(resp)


async def extract(
    session_id: str,
    instruction: str,
    schema: Any,
    config: ApiConfig,
    *,
    model: Any = None,
    timeout: Optional[int] = None,
    selector: Optional[str] = None,
    region: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> dict:
    """
    POST /sessions/{id}/extract

    Returns: {"result": <conforms to schema>, "actionId": "..."}
    """
    body: dict[str, Any] = {"instruction": instruction, "schema": schema}
    options = _options(model=model, timeout=timeout, selector=selector)
    if options:
        body["options"] = options
    resp = await _post(f"/sessions/{session_id}/extract", config, region, body, client)
    return _handle_response(resp)


async def act(
    session_id: str,
    action: str,
    config: ApiConfig,
    *,
    model: Any = None,
    variables: Optional[dict[str, str]] = None,
    timeout: Optional[int] = None,
    region: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> dict:
    """
    POST /sessions/{id}/act

    The instruction goes out as "input" (the service rejects "action").

    Returns: {"result": {"success", "message", "actionDescription", "actions": [...]}, "actionId": "..."}
    """
    body: dict[str, Any] = {"input": action}
    options = _options(model=model, variables=variables, timeout=timeout)
    if options:
        body["options"] = options
    resp = await _post(f"/sessions/{session_id}/act", config, region, body, client)
    return _handle_response(resp)


async def observe(
    session_id: str,
    instruction: str,
    config: ApiConfig,
    *,
    model: Any = None,
    timeout: Optional[int] = None,
    selector: Optional[str] = None,
    region: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> dict:
    """
    POST /sessions/{id}/observe

    Returns: {"result": [{"description", "selector", "method", "arguments", "backendNodeId"}], "actionId": "..."}
    """
    body: dict[str, Any] = {"instruction": instruction}
    options = _options(model=model, timeout=timeout, selector=selector)
    if options:
        body["options"] = options
    resp = await _post(f"/sessions/{session_id}/observe", config, region, body, client)
    return _handle_response(resp)


async def agent_execute(
    session_id: str,
    agent_config: dict,
    execute_options: dict,
    config: ApiConfig,
    *,
    should_cache: Optional[bool] = None,
    region: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> dict:
    """
    POST /sessions/{id}/agentExecute

    agent_config:    {cua, mode, model, systemPrompt, executionModel, provider}
    execute_options: {instruction, maxSteps, highlightCursor}

    Returns: {"result": {"actions", "completed", "message", "success", "metadata", "usage"}}
    """
    body = _compact({
        "agentConfig": _compact({
            "cua": agent_config.get("cua"),
            "mode": agent_config.get("mode"),
            "model": agent_config.get("model"),
            "systemPrompt": agent_config.get("systemPrompt"),
            "executionModel": agent_config.get("executionModel"),
            "provider": agent_config.get("provider"),
        }),
        "executeOptions": _compact({
            "instruction": execute_options["instruction"],
            "maxSteps": execute_options.get("maxSteps"),
            "highlightCursor": execute_options.get("highlightCursor"),
        }),
        "shouldCache": should_cache,
    })
    resp = await _post(f"/sessions/{session_id}/agentExecute", config, region, body, client)
    return _handle_response(resp)
