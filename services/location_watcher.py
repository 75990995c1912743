"""
Geolocation watcher for client-role sessions.

Purpose:
- Continuous high-accuracy watch on a PositionSource (device GPS, simulator)
- Keep only the latest accepted fix
- Emit to listeners only when the fix moved more than the threshold
  (|dlat| > 0.0001 or |dlng| > 0.0001, about 11 m) from the last accepted fix
- Surface permission denial / missing support as a terminal error state

Watch options mirror the browser API: enableHighAccuracy, timeout 15 s,
maximumAge 0. Fixes older than the timeout are treated as cached and dropped.
The watch is cancelled on stop() and on session teardown.
"""
import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Set

from config.settings import settings
from core.auth import SessionContext
from models.schemas import GeoPosition

logger = logging.getLogger(__name__)


class PositionError(Exception):
    UNSUPPORTED = 0
    PERMISSION_DENIED = 1
    POSITION_UNAVAILABLE = 2
    TIMEOUT = 3

    def __init__(self, code: int, message: str = ""):
        super().__init__(message or f"position error {code}")
        self.code = code
        self.message = message

    @property
    def terminal(self) -> bool:
        return self.code in (self.UNSUPPORTED, self.PERMISSION_DENIED)


@dataclass
class WatchOptions:
    enable_high_accuracy: bool = True
    timeout: float = 15.0       # seconds
    maximum_age: float = 0.0    # seconds; 0 = never accept a cached fix


PositionCallback = Callable[[GeoPosition], None]
ErrorCallback = Callable[[PositionError], None]


class PositionSource(ABC):
    """Something that produces device fixes, like navigator.geolocation."""

    @property
    def supported(self) -> bool:
        return True

    @abstractmethod
    def watch(self, on_position: PositionCallback, on_error: ErrorCallback, options: WatchOptions) -> int:
        raise NotImplementedError()

    @abstractmethod
    def clear_watch(self, watch_id: int):
        raise NotImplementedError()


class WatcherState(str, Enum):
    IDLE = "IDLE"
    WATCHING = "WATCHING"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    UNSUPPORTED = "UNSUPPORTED"


class LocationWatcher:
    def __init__(self, source: Optional[PositionSource], session: Optional[SessionContext] = None,
                 min_delta_deg: Optional[float] = None, timeout: Optional[float] = None,
                 high_accuracy: Optional[bool] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.source = source
        self.session = session
        self.min_delta_deg = settings.LOCATION_MIN_DELTA_DEG if min_delta_deg is None else min_delta_deg
        self.options = WatchOptions(
            enable_high_accuracy=settings.LOCATION_HIGH_ACCURACY if high_accuracy is None else high_accuracy,
            timeout=settings.LOCATION_TIMEOUT_SEC if timeout is None else timeout,
            maximum_age=0.0,
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.state = WatcherState.IDLE
        self.position: Optional[GeoPosition] = None
        self.last_error: Optional[PositionError] = None
        self._watch_id: Optional[int] = None
        self._listeners: List[Callable] = []
        self._error_listeners: List[Callable] = []
        self._tasks: Set[asyncio.Task] = set()
        self._remove_teardown = None

    @property
    def watching(self) -> bool:
        return self.state == WatcherState.WATCHING

    def add_listener(self, listener: Callable[[GeoPosition], object]) -> Callable[[], None]:
        """listener(position) runs for every accepted fix; coroutines are scheduled as tasks."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def add_error_listener(self, listener: Callable[[PositionError], object]) -> Callable[[], None]:
        self._error_listeners.append(listener)
        return lambda: self._error_listeners.remove(listener) if listener in self._error_listeners else None

    # ---------------- lifecycle ----------------
    def start(self) -> bool:
        if self.watching:
            return True
        if self.session is not None and not self.session.is_client:
            logger.info("Location watching is only used for client sessions")
            return False
        if self.source is None or not self.source.supported:
            self._fail(PositionError(PositionError.UNSUPPORTED, "Geolocation is not supported"))
            return False
        self.state = WatcherState.WATCHING
        self.last_error = None
        watch_id = self.source.watch(self._on_fix, self._on_error, self.options)
        if not self.watching:
            # the source reported a terminal error from inside watch()
            self.source.clear_watch(watch_id)
            return False
        self._watch_id = watch_id
        if self.session is not None and self._remove_teardown is None:
            self._remove_teardown = self.session.on_teardown(self._on_teardown)
        logger.info("Watching position (high_accuracy=%s timeout=%.0fs)",
                    self.options.enable_high_accuracy, self.options.timeout)
        return True

    def stop(self):
        self._clear_watch()
        if self.state == WatcherState.WATCHING:
            self.state = WatcherState.IDLE
        if self._remove_teardown is not None:
            self._remove_teardown()
            self._remove_teardown = None

    def _on_teardown(self, reason: str):
        self._remove_teardown = None
        self._clear_watch()
        self.state = WatcherState.IDLE
        self.position = None
        for task in list(self._tasks):
            task.cancel()

    def _clear_watch(self):
        watch_id, self._watch_id = self._watch_id, None
        if watch_id is not None and self.source is not None:
            self.source.clear_watch(watch_id)
            logger.debug("Cleared position watch %s", watch_id)

    # ---------------- fixes ----------------
    def _is_stale(self, fix: GeoPosition) -> bool:
        if fix.timestamp is None:
            return False
        ts = fix.timestamp if fix.timestamp.tzinfo else fix.timestamp.replace(tzinfo=timezone.utc)
        return (self._clock() - ts).total_seconds() > self.options.timeout

    def moved_enough(self, fix: GeoPosition) -> bool:
        if self.position is None:
            return True
        return (abs(fix.latitude - self.position.latitude) > self.min_delta_deg
                or abs(fix.longitude - self.position.longitude) > self.min_delta_deg)

    def _on_fix(self, fix: GeoPosition):
        if not self.watching:
            return
        if self._is_stale(fix):
            logger.debug("Dropping cached fix from %s", fix.timestamp)
            return
        self.last_error = None
        if not self.moved_enough(fix):
            return
        self.position = fix
        logger.debug("Position %.6f, %.6f", fix.latitude, fix.longitude)
        self._emit(self._listeners, fix)

    def _on_error(self, error: PositionError):
        self.last_error = error
        if error.terminal:
            self._fail(error)
        else:
            logger.warning("Position error %s: %s (still watching)", error.code, error.message)
            self._emit(self._error_listeners, error)

    def _fail(self, error: PositionError):
        self._clear_watch()
        self.last_error = error
        self.state = (WatcherState.PERMISSION_DENIED if error.code == PositionError.PERMISSION_DENIED
                      else WatcherState.UNSUPPORTED)
        logger.error("Location unavailable: %s", error.message or error)
        self._emit(self._error_listeners, error)

    def _emit(self, listeners, value):
        for listener in list(listeners):
            try:
                result = listener(value)
            except Exception:
                logger.exception("Location listener %r failed", listener)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Location listener task failed: %s", task.exception())

    async def settle(self):
        """Wait for listener tasks scheduled so far."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
