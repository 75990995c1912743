# tools/gps_simulator.py
"""Simulated device GPS.

Produces fixes around a base point with a little jitter, the way a phone's
GPS wobbles while parked. Used by the CLI when no real device is present
and by tests (interval=None gives a manual source driven by emit()/fail()).
"""
import asyncio
import itertools
import logging
import random
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from models.schemas import GeoPosition
from services.location_watcher import ErrorCallback, PositionCallback, PositionError, PositionSource, WatchOptions

logger = logging.getLogger(__name__)


class SimulatedPositionSource(PositionSource):
    def __init__(self, lat: float, lon: float, jitter_deg: float = 0.0005,
                 interval: Optional[float] = 5.0, seed: Optional[int] = None,
                 supported: bool = True, deny_permission: bool = False):
        self.lat = lat
        self.lon = lon
        self.jitter_deg = jitter_deg
        self.interval = interval
        self._supported = supported
        self._deny = deny_permission
        self._random = random.Random(seed)
        self._ids = itertools.count(1)
        self._watches: Dict[int, Tuple[PositionCallback, ErrorCallback]] = {}
        self._tasks: Dict[int, asyncio.Task] = {}

    @property
    def supported(self) -> bool:
        return self._supported

    @property
    def active_watches(self) -> int:
        return len(self._watches)

    def watch(self, on_position: PositionCallback, on_error: ErrorCallback, options: WatchOptions) -> int:
        watch_id = next(self._ids)
        self._watches[watch_id] = (on_position, on_error)
        if self._deny:
            on_error(PositionError(PositionError.PERMISSION_DENIED, "User denied Geolocation"))
            return watch_id
        if self.interval is not None:
            self._tasks[watch_id] = asyncio.create_task(self._run(watch_id), name=f"gps-sim-{watch_id}")
        return watch_id

    def clear_watch(self, watch_id: int):
        self._watches.pop(watch_id, None)
        task = self._tasks.pop(watch_id, None)
        if task is not None:
            task.cancel()

    def move_to(self, lat: float, lon: float):
        self.lat = lat
        self.lon = lon

    def sample(self) -> GeoPosition:
        lat = self.lat + self._random.uniform(-self.jitter_deg, self.jitter_deg)
        lon = self.lon + self._random.uniform(-self.jitter_deg, self.jitter_deg)
        return GeoPosition(latitude=round(lat, 6), longitude=round(lon, 6), accuracy=10.0,
                           timestamp=datetime.now(timezone.utc))

    def emit(self, position: Optional[GeoPosition] = None):
        """Deliver one fix (or a fresh sample) to every active watch."""
        fix = position or self.sample()
        for on_position, _ in list(self._watches.values()):
            on_position(fix)

    def fail(self, error: PositionError):
        for _, on_error in list(self._watches.values()):
            on_error(error)

    async def _run(self, watch_id: int):
        while watch_id in self._watches:
            on_position, _ = self._watches[watch_id]
            on_position(self.sample())
            await asyncio.sleep(self.interval)
