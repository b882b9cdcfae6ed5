"""
Stagehand client: typed wrapper around the session operations.

Usage:
    stagehand = Stagehand(ApiConfig(
        browserbase_api_key=..., browserbase_project_id=..., model_api_key=...,
    ))

    class Products(BaseModel):
        names: list[str]

    products = await stagehand.extract(
        url="https://example.com",
        instruction="Extract all product names",
        schema=Products,
    )
"""

from typing import Any, Optional, TypeVar, Union, overload

import httpx
from pydantic import BaseModel

from .services import automation
from .services.session_store import SessionStore, get_store
from .services.stagehand_api import ApiConfig

M = TypeVar("M", bound=BaseModel)


class Stagehand:
    def __init__(
        self,
        config: Optional[ApiConfig] = None,
        store: Optional[SessionStore] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or ApiConfig.from_settings()
        self.store = store or get_store()
        self.client = client

    def _common(self) -> dict:
        return {"config": self.config, "store": self.store, "client": self.client}

    async def start_session(self, url: str, **kwargs) -> dict:
        """Start a session you manage yourself. Returns {"sessionId", "cdpUrl"}."""
        return await automation.start_session(url, **kwargs, **self._common())

    async def end_session(self, session_id: str) -> bool:
        result = await automation.end_session(session_id, **self._common())
        return result["success"]

    @overload
    async def extract(self, instruction: str, schema: type[M], **kwargs) -> M: ...

    @overload
    async def extract(self, instruction: str, schema: dict, **kwargs) -> Any: ...

    async def extract(self, instruction: str, schema: Union[type[BaseModel], dict], **kwargs):
        """
        Extract structured data. `schema` is a JSON schema dict or a pydantic
        model class; with a model class the result is validated into it.
        """
        if isinstance(schema, type) and issubclass(schema, BaseModel):
            result = await automation.extract(
                instruction, schema.model_json_schema(), **kwargs, **self._common()
            )
            return schema.model_validate(result)
        return await automation.extract(instruction, schema, **kwargs, **self._common())

    async def act(self, action: str, **kwargs) -> dict:
        return await automation.act(action, **kwargs, **self._common())

    async def observe(self, instruction: str, **kwargs) -> list[dict]:
        return await automation.observe(instruction, **kwargs, **self._common())

    async def agent(self, instruction: str, **kwargs) -> dict:
        return await automation.agent(instruction, **kwargs, **self._common())

    async def session(self, session_id: str) -> Optional[dict]:
        """Stored metadata for a session (region, status, timing)."""
        return await automation.get_session_record(session_id, self.store)
