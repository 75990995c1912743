# services/poller.py
import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Optional

from core.errors import ApiError, is_auth_failure

logger = logging.getLogger(__name__)


class Poller:
    """
    Runs `fn` every `interval` seconds on the event loop until stopped.
    The first run happens immediately. A failing run is logged and the
    loop keeps going; polling is the implicit retry.
    """

    def __init__(self, fn: Callable[[], Awaitable[object]], interval: float, name: str = "poller"):
        self.fn = fn
        self.interval = interval
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        logger.debug("[%s] polling every %.1fs", self.name, self.interval)
        self._task = asyncio.create_task(self._loop(), name=self.name)

    async def _loop(self):
        while True:
            try:
                await self.fn()
            except ApiError as e:
                if is_auth_failure(e):
                    logger.debug("[%s] auth failure while polling: %s", self.name, e)
                else:
                    logger.warning("[%s] poll failed: %s", self.name, e)
            except Exception:
                logger.exception("[%s] poll crashed", self.name)
            await asyncio.sleep(self.interval)

    def cancel(self):
        """Synchronous stop, usable from session-teardown callbacks."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()

    async def stop(self):
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
