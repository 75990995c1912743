"""
Nearby mechanic-shop directory.

Purpose:
- Query GET /mechanics/nearby around the client's current position
- Re-rank client-side: Haversine distance from the client, radius filter
  (inclusive), available-and-open shops first, then nearest first
- Opening hours check ("HH:MM" pairs, overnight ranges allowed)

The server's own ordering and distance are not trusted for display: the
client position may have moved since the server computed them.
"""
import logging
from datetime import datetime, time
from typing import Iterable, List, Optional, Union

from config.settings import settings
from infra.http_client import ApiClient
from models.schemas import GeoPosition, MechanicShop, RankedShop, VehicleType
from tools.eta_calculator import haversine_km

logger = logging.getLogger(__name__)

# float slack so a shop at exactly radius_km stays in
_RADIUS_EPSILON_KM = 1e-6


def _minutes(value: str) -> Optional[int]:
    try:
        hours, minutes = value.strip().split(":")[:2]
        hours, minutes = int(hours), int(minutes)
    except (AttributeError, ValueError):
        return None
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        return None
    return hours * 60 + minutes


def is_shop_open(open_time: Optional[str], close_time: Optional[str],
                 now: Union[datetime, time, None] = None) -> bool:
    """Missing or unparsable hours count as open. Both ends are inclusive."""
    if not open_time or not close_time:
        return True
    open_m, close_m = _minutes(open_time), _minutes(close_time)
    if open_m is None or close_m is None:
        return True
    now = now or datetime.now()
    current = now.hour * 60 + now.minute
    if close_m < open_m:
        # overnight, e.g. 21:00 -> 09:00
        return current >= open_m or current <= close_m
    return open_m <= current <= close_m


def shop_distance_km(shop: MechanicShop, origin: GeoPosition) -> Optional[float]:
    if shop.location is not None and shop.location.latitude is not None and shop.location.longitude is not None:
        return haversine_km(origin.latitude, origin.longitude, shop.location.latitude, shop.location.longitude)
    if shop.distance is not None:
        return shop.distance / 1000.0
    return None


def rank_shops(shops: Iterable[MechanicShop], origin: GeoPosition, radius_km: float,
               now: Union[datetime, time, None] = None) -> List[RankedShop]:
    ranked = []
    for shop in shops:
        distance = shop_distance_km(shop, origin)
        if distance is None:
            logger.debug("Shop %s has no location; skipped", shop.id)
            continue
        if distance > radius_km + _RADIUS_EPSILON_KM:
            continue
        is_open = is_shop_open(shop.open_time, shop.close_time, now)
        ranked.append(RankedShop(
            shop=shop,
            distance_km=distance,
            is_open=is_open,
            is_effectively_available=bool(shop.is_available and is_open),
        ))
    ranked.sort(key=lambda r: (not r.is_effectively_available, r.distance_km))
    return ranked


class MechanicDirectory:
    def __init__(self, api: ApiClient, radius_km: Optional[float] = None):
        self.api = api
        self.radius_km = radius_km if radius_km is not None else settings.NEARBY_RADIUS_KM
        self.shops: List[RankedShop] = []
        self.origin: Optional[GeoPosition] = None

    async def fetch_nearby(self, position: GeoPosition, vehicle_type: Optional[VehicleType] = None,
                           include_unavailable: bool = True) -> List[MechanicShop]:
        params = {
            "latitude": position.latitude,
            "longitude": position.longitude,
            "radiusKm": self.radius_km,
            "vehicleType": vehicle_type.value if vehicle_type and vehicle_type != VehicleType.UNKNOWN else None,
            "includeUnavailable": str(include_unavailable).lower(),
        }
        data = await self.api.get("/mechanics/nearby", params=params)
        return [MechanicShop.model_validate(item) for item in (data or [])]

    async def refresh(self, position: GeoPosition, vehicle_type: Optional[VehicleType] = None,
                      now: Union[datetime, time, None] = None) -> List[RankedShop]:
        shops = await self.fetch_nearby(position, vehicle_type)
        self.shops = rank_shops(shops, position, self.radius_km, now)
        self.origin = position
        logger.info("Nearby shops: %d within %.1f km (%d available)",
                    len(self.shops), self.radius_km,
                    sum(1 for r in self.shops if r.is_effectively_available))
        return self.shops

    def eligible(self, vehicle_type: VehicleType) -> List[RankedShop]:
        """Shops a broadcast request may go to: available, open, and serving this vehicle type."""
        return [
            r for r in self.shops
            if r.is_effectively_available and vehicle_type.value in r.shop.shop_types
        ]
