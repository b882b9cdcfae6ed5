"""
FastAPI dependencies. Injected into route handlers.
"""

from typing import Optional

import httpx

from ..services.session_store import SessionStore, get_store


def get_session_store() -> SessionStore:
    """Returns the active session metadata store (SQL or in-memory)."""
    return get_store()


def get_http_client() -> Optional[httpx.AsyncClient]:
    """None → the wire client's shared pooled client."""
    return None
