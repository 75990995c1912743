"""
Logging setup and HTTP request logging hooks.

- configure_logging(): process-wide format and level.
- log_request / log_response: httpx event hooks. Each outgoing request gets
  an X-Request-ID (UUID4); the response is logged with method, path, status,
  latency and request-id.
"""
import logging
import time
import uuid

import httpx

from config.settings import settings

logger = logging.getLogger("roadside.http")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | None = None):
    logging.basicConfig(level=(level or settings.LOG_LEVEL).upper(), format=LOG_FORMAT)
    # websockets is chatty at DEBUG (one line per frame)
    if not settings.DEBUG:
        logging.getLogger("websockets").setLevel(logging.INFO)


async def log_request(request: httpx.Request):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.headers["X-Request-ID"] = request_id
    request.extensions["started_at"] = time.perf_counter()


async def log_response(response: httpx.Response):
    request = response.request
    started = request.extensions.get("started_at")
    latency = (time.perf_counter() - started) * 1000.0 if started else 0.0
    logger.info(
        "[request] id=%s method=%s path=%s status=%s latency_ms=%.2f",
        request.headers.get("X-Request-ID"),
        request.method,
        request.url.path,
        response.status_code,
        latency,
    )
