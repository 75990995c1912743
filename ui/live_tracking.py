"""
Live tracking of the mechanic assigned to an accepted request.

Subscribes to /topic/location/{requestId}, keeps the mechanic's latest
reported position and derives distance / ETA to the client's location.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from config.settings import settings
from infra.stomp_client import StompClient, location_topic
from models.events import LocationUpdateEvent
from models.schemas import GeoPosition, RepairRequest
from tools.eta_calculator import calculate_eta_seconds, haversine_km

logger = logging.getLogger(__name__)


class LiveTracker:
    def __init__(self, transport: StompClient, request: RepairRequest, default_speed_kmph: Optional[float] = None):
        self.transport = transport
        self.request = request
        self.default_speed_kmph = default_speed_kmph or settings.DEFAULT_SPEED_KMPH
        self.mechanic_position: Optional[GeoPosition] = None
        self.speed_kmph: Optional[float] = None
        self.heading: Optional[float] = None
        self.updated_at: Optional[datetime] = None
        self._listeners: List[Callable[["LiveTracker"], None]] = []

    @property
    def topic(self) -> str:
        return location_topic(self.request.id)

    def add_listener(self, listener: Callable[["LiveTracker"], None]):
        self._listeners.append(listener)

    async def start(self) -> bool:
        return await self.transport.subscribe_to_location(self.request.id, self.on_update)

    async def stop(self):
        await self.transport.unsubscribe(self.topic)

    def on_update(self, update: LocationUpdateEvent):
        if update.request_id != self.request.id:
            return
        self.mechanic_position = update.location
        self.speed_kmph = update.speed
        self.heading = update.heading
        self.updated_at = datetime.now(timezone.utc)
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Tracking listener failed")

    @property
    def distance_km(self) -> Optional[float]:
        client = self.request.client_location.to_position() if self.request.client_location else None
        if client is None or self.mechanic_position is None:
            return None
        return haversine_km(self.mechanic_position.latitude, self.mechanic_position.longitude,
                            client.latitude, client.longitude)

    @property
    def eta_seconds(self) -> Optional[int]:
        client = self.request.client_location.to_position() if self.request.client_location else None
        if client is None or self.mechanic_position is None:
            return None
        speed = self.speed_kmph if self.speed_kmph and self.speed_kmph > 0 else self.default_speed_kmph
        return calculate_eta_seconds(self.mechanic_position.latitude, self.mechanic_position.longitude,
                                     client.latitude, client.longitude, speed_kmph=speed)
