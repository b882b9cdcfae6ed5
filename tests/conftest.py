"""
Shared pytest configuration.

This file ensures the project root is on sys.path so that
`import stagehand_bridge` works consistently in all tests.
"""

import sys
from pathlib import Path

import httpx
import pytest
import pytest_asyncio


ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from stagehand_bridge.services.session_store import InMemorySessionStore  # noqa: E402
from stagehand_bridge.services.stagehand_api import ApiConfig  # noqa: E402
from tests.utils import FakeStagehand  # noqa: E402


@pytest.fixture()
def fake_service() -> FakeStagehand:
    return FakeStagehand()


@pytest_asyncio.fixture()
async def http_client(fake_service):
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_service)) as client:
        yield client


@pytest.fixture()
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture()
def config() -> ApiConfig:
    return ApiConfig(
        browserbase_api_key="bb-key",  # pragma: allowlist secret
        browserbase_project_id="proj-1",
        model_api_key="model-key",  # pragma: allowlist secret
    )
