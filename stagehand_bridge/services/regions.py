"""
Region directory for the Stagehand API.

Each Browserbase region is served by its own API host. A session is
pinned to the region it was created in, so every session-scoped call
has to go to that region's host.
"""

from typing import Any, Literal, Optional

Region = Literal["us-west-2", "us-east-1", "eu-central-1", "ap-southeast-1"]

REGION_API_URLS: dict[str, str] = {
    "us-west-2": "https://api.stagehand.browserbase.com",
    "us-east-1": "https://api.use1.stagehand.browserbase.com",
    "eu-central-1": "https://api.euc1.stagehand.browserbase.com",
    "ap-southeast-1": "https://api.apse1.stagehand.browserbase.com",
}

REGIONS: tuple[str, ...] = tuple(REGION_API_URLS)

DEFAULT_REGION: Region = "us-west-2"


def is_region(value: Any) -> bool:
    return isinstance(value, str) and value in REGION_API_URLS


def get_api_base(region: Optional[str] = None) -> str:
    """
    Base URL (including /v1) for a region.

    Unknown or garbled values fall back to the default region. Regions are
    often parsed out of error text, so this must never raise.
    """
    base_url = REGION_API_URLS.get(region) if is_region(region) else None
    return f"{base_url or REGION_API_URLS[DEFAULT_REGION]}/v1"


def requested_region(create_params: Optional[dict]) -> Optional[Region]:
    """Region declared in browserbaseSessionCreateParams, if it is a known one."""
    if not isinstance(create_params, dict):
        return None
    region = create_params.get("region")
    return region if is_region(region) else None
