"""
Error payloads for the HTTP surface, and the handlers that map domain errors onto them.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..services.automation import SessionTargetError
from ..services.stagehand_api import StagehandAPIError

logger = logging.getLogger(__name__)


class ErrorResponse(BaseModel):
    """{"error": "upstream_error", "message": "...", "code": 502, "details": {...}}"""

    error: str = Field(..., description="Machine-readable error type")
    message: str = Field(..., description="Human-readable error message")
    code: int = Field(..., description="HTTP status code for this error")
    details: Optional[Dict[str, Any]] = Field(default=None)


def error_response(
    status_code: int,
    *,
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    payload = ErrorResponse(error=error, message=message, code=status_code, details=details)
    return JSONResponse(status_code=status_code, content=payload.model_dump())


async def _session_target_error(request: Request, exc: SessionTargetError) -> JSONResponse:
    return error_response(status.HTTP_400_BAD_REQUEST, error="bad_request", message=str(exc))


async def _stagehand_api_error(request: Request, exc: StagehandAPIError) -> JSONResponse:
    logger.error("Upstream failure on %s: %s", request.url.path, exc)
    return error_response(
        status.HTTP_502_BAD_GATEWAY,
        error="upstream_error",
        message=str(exc),
        details={"upstream_status": exc.status_code, "upstream_body": exc.body[:2000]},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SessionTargetError, _session_target_error)
    app.add_exception_handler(StagehandAPIError, _stagehand_api_error)
