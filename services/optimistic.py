"""
Optimistic update with reconciliation.

    apply local change (synchronously, before the first await)
    -> send the request
    -> on failure, replace local state with an authoritative re-fetch

There is no inverse operation: the re-fetch is the rollback.
"""
import logging
from typing import Awaitable, Callable, Optional

from core.errors import ApiError

logger = logging.getLogger(__name__)


async def optimistic_update(apply_local: Callable[[], None],
                            remote: Callable[[], Awaitable[object]],
                            reconcile: Callable[[], Awaitable[object]],
                            label: str = "update") -> Optional[ApiError]:
    """
    Returns None on success, or the ApiError that triggered reconciliation.
    The error is never raised; callers decide whether to show it.
    """
    apply_local()
    try:
        await remote()
        return None
    except ApiError as e:
        logger.warning("Optimistic %s failed (%s); reconciling from server", label, e)
        try:
            await reconcile()
        except ApiError as re:
            logger.warning("Reconciling fetch after failed %s also failed: %s", label, re)
        return e
