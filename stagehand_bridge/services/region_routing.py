"""
Region resolution and region-mismatch retry.

A session lives in exactly one region. If a call is sent to the wrong
regional host, the service answers with an error naming the session's
real region ("Session is in region 'eu-central-1'"). We parse that,
record it, and retry the call once against the right host.
"""

import logging
import re
from typing import Awaitable, Callable, Optional, TypeVar

from .regions import DEFAULT_REGION, Region, is_region
from .session_store import SessionPatch, SessionStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Upstream error phrasing. If the service rewords this, mismatches stop
# being retried and surface as ordinary errors.
_REGION_IN_ERROR = re.compile(r"Session is in region '([^']+)'", re.IGNORECASE)


def extract_region_from_error(error: BaseException) -> Optional[Region]:
    """The region named in a region-mismatch error, or None."""
    match = _REGION_IN_ERROR.search(str(error))
    if match and is_region(match.group(1)):
        return match.group(1)
    return None


async def resolve_region(
    store: SessionStore,
    session_id: Optional[str],
    hint: Optional[str] = None,
    *,
    new_session: bool = False,
) -> Region:
    """
    Best known region for a session.

    New session: nothing is stored yet, so the caller's hint wins.
    Existing session: stored region, then hint, then the default.
    Missing information always resolves to the default, never to an error.
    """
    if not is_region(hint):
        hint = None
    if new_session or not session_id:
        return hint or DEFAULT_REGION
    stored = await store.get_region(session_id)
    if is_region(stored):
        return stored
    return hint or DEFAULT_REGION


async def run_with_region_retry(
    store: SessionStore,
    session_id: str,
    initial_region: Optional[str],
    run: Callable[[Optional[str]], Awaitable[T]],
    on_region_resolved: Optional[Callable[[Region], Awaitable[None]]] = None,
) -> T:
    """
    Run a region-scoped call, retrying once if the service says the
    session lives elsewhere.

    The second attempt is final: its result or its error is returned as is.
    """
    try:
        return await run(initial_region)
    except Exception as exc:
        parsed = extract_region_from_error(exc)
        if parsed is None or parsed == initial_region:
            raise

        logger.warning(
            "Session %s is in region %s, not %s; retrying once",
            session_id, parsed, initial_region,
        )
        await store.upsert(SessionPatch(session_id=session_id, region=parsed, status="active"))
        if on_region_resolved is not None:
            await on_region_resolved(parsed)

    return await run(parsed)
