"""
Fake Stagehand service for tests, served through httpx.MockTransport.
"""

import json
from typing import Callable, Optional

import httpx


class FakeStagehand:
    """
    Records every request and answers from per-operation handlers.

    A handler gets (request, body) and returns an httpx.Response. Operations
    without a handler get a plain success envelope.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.handlers: dict[str, Callable[[httpx.Request, Optional[dict]], httpx.Response]] = {}

    def on(self, operation: str, handler) -> None:
        self.handlers[operation] = handler

    def calls(self, operation: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.rsplit("/", 1)[-1] == operation]

    @staticmethod
    def body(request: httpx.Request) -> Optional[dict]:
        return json.loads(request.content) if request.content else None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        operation = request.url.path.rsplit("/", 1)[-1]
        handler = self.handlers.get(operation)
        if handler is not None:
            return handler(request, self.body(request))
        if operation == "start":
            return ok({"sessionId": "sess-1", "cdpUrl": "wss://cdp/sess-1", "available": True})
        if operation == "end":
            return httpx.Response(200, json={"success": True})
        return ok({})


def ok(data) -> httpx.Response:
    return httpx.Response(200, json={"success": True, "data": data})


def region_mismatch(region: str) -> httpx.Response:
    return httpx.Response(
        400,
        json={"success": False, "message": f"Session is in region '{region}'"},
    )
