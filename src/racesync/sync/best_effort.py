"""Fire-and-forget wrapper for work whose failure must not abort the caller."""
import logging
from typing import Any, Awaitable, Optional

logger = logging.getLogger(__name__)


async def best_effort(awaitable: Awaitable[Any], what: str) -> Optional[Any]:
    """
    Await `awaitable`; log and suppress any Exception it raises.

    Used for schedule timestamp refreshes, failure notifications and the
    fallback failure log. CancelledError still propagates.

    Returns:
        The awaited value, or None if it raised.
    """
    try:
        return await awaitable
    except Exception:
        logger.exception("Best-effort %s failed", what)
        return None
