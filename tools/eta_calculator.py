# tools/eta_calculator.py
import math

EARTH_RADIUS_M = 6371000.0


def haversine_meters(lat1, lon1, lat2, lon2):
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi/2.0)**2 + math.cos(phi1)*math.cos(phi2)*(math.sin(dlambda/2.0)**2)
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


def haversine_km(lat1, lon1, lat2, lon2):
    return haversine_meters(lat1, lon1, lat2, lon2) / 1000.0


def calculate_eta_seconds(lat1, lon1, lat2, lon2, speed_kmph: float = 20.0, traffic_multiplier: float = 1.0):
    """Straight-line ETA; speeds under ~0.36 km/h are clamped so a parked vehicle doesn't divide by zero."""
    dist_m = haversine_meters(lat1, lon1, lat2, lon2)
    speed_m_s = max(speed_kmph * 1000.0 / 3600.0, 0.1)
    return int(dist_m / speed_m_s * traffic_multiplier)


def format_distance(km: float) -> str:
    if km < 1.0:
        return f"{int(round(km * 1000))} m"
    return f"{km:.1f} km"
