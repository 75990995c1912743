"""
Client settings and environment configuration.

Purpose:
- Centralize backend endpoints (REST base URL, STOMP WebSocket URL)
- Polling intervals, reconnect delay, location thresholds
- Load from environment variables / .env with local-development defaults
"""
import os
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    APP_NAME: str = "Roadside Assist Client"
    APP_VERSION: str = "0.1"
    DEBUG: bool = os.getenv("DEBUG", "False").lower() == "true"

    # REST API: every path in services/*_api.py is relative to this
    # Example: https://roadside.example.com/api/v1
    API_BASE_URL: str = os.getenv("API_BASE_URL", "http://localhost:8080/api/v1")
    HTTP_TIMEOUT_SEC: float = float(os.getenv("HTTP_TIMEOUT_SEC", "10"))

    # STOMP over WebSocket. The backend exposes SockJS at /ws; the raw
    # WebSocket transport of a SockJS endpoint lives under /ws/websocket
    WS_URL: str = os.getenv("WS_URL", "ws://localhost:8080/ws/websocket")
    WS_RECONNECT_DELAY_SEC: float = float(os.getenv("WS_RECONNECT_DELAY_SEC", "5"))

    # Polling (seconds). Push is primary, polling is the backup channel
    NOTIFICATION_POLL_SEC: float = float(os.getenv("NOTIFICATION_POLL_SEC", "30"))
    REQUEST_POLL_SEC: float = float(os.getenv("REQUEST_POLL_SEC", "5"))
    DASHBOARD_POLL_SEC: float = float(os.getenv("DASHBOARD_POLL_SEC", "30"))

    # Geolocation: ~0.0001 deg is about 11 m
    LOCATION_MIN_DELTA_DEG: float = float(os.getenv("LOCATION_MIN_DELTA_DEG", "0.0001"))
    LOCATION_TIMEOUT_SEC: float = float(os.getenv("LOCATION_TIMEOUT_SEC", "15"))
    LOCATION_HIGH_ACCURACY: bool = os.getenv("LOCATION_HIGH_ACCURACY", "True").lower() == "true"

    # Nearby shop search
    NEARBY_RADIUS_KM: float = float(os.getenv("NEARBY_RADIUS_KM", "20"))
    DEFAULT_SPEED_KMPH: float = float(os.getenv("DEFAULT_SPEED_KMPH", "20"))

    # Where a logged-in identity is kept between runs
    SESSION_FILE: str = os.getenv("SESSION_FILE", ".roadside_session.json")

    # Values: DEBUG, INFO, WARNING, ERROR, CRITICAL
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    class Config:
        env_file = ".env"
        extra = "allow"

# Global settings instance
settings = Settings()
