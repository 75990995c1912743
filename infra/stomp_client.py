"""
STOMP-over-WebSocket client for the backend's real-time channel.

Purpose:
- At most one live connection per client instance
- Topic subscription bookkeeping (one subscriber per topic)
- JSON message decoding and handler dispatch
- Automatic reconnection with a fixed delay

Topics:
- /user/{userId}/queue/notifications : per-user push events (typed, see models/events.py)
- /topic/location/{requestId}        : live mechanic position for a request
Application destinations:
- /app/location-update               : mechanic publishes its position

Notes:
- Subscriptions requested before the connection is ready are queued and
  applied FIFO, exactly once, before any on_ready callback runs.
- A second subscribe() on a topic that already has a subscriber is rejected
  (warning + False). The first handler keeps receiving.
- Reconnect uses a fixed delay (no exponential backoff). Registered topics
  are re-subscribed after every reconnect.
"""
import asyncio
import contextlib
import inspect
import itertools
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import websockets
from pydantic import BaseModel, ValidationError
from websockets.exceptions import WebSocketException

from config.settings import settings
from core.auth import SessionContext
from infra.stomp_frames import (
    Frame,
    FrameError,
    connect_frame,
    decode_frames,
    disconnect_frame,
    encode_frame,
    send_frame,
    subscribe_frame,
    unsubscribe_frame,
)
from models.events import LocationUpdateEvent, parse_push_event

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Any]
ReadyCallback = Callable[[], Any]
ConnectionFactory = Callable[[str], Awaitable[Any]]

LOCATION_UPDATE_DESTINATION = "/app/location-update"


class StompConnectError(Exception):
    """The broker answered CONNECT with an ERROR frame."""


@dataclass
class _Subscription:
    id: str
    topic: str
    handler: Handler


async def _default_connection_factory(url: str):
    return await websockets.connect(url, subprotocols=["v12.stomp", "v11.stomp"])


async def _call(fn, *args):
    result = fn(*args)
    if inspect.isawaitable(result):
        await result


class StompClient:
    def __init__(self, url: Optional[str] = None, session: Optional[SessionContext] = None,
                 reconnect_delay: Optional[float] = None,
                 connection_factory: Optional[ConnectionFactory] = None,
                 connect_timeout: float = 10.0):
        self.url = url or settings.WS_URL
        self.session = session
        self.reconnect_delay = settings.WS_RECONNECT_DELAY_SEC if reconnect_delay is None else reconnect_delay
        self.connect_timeout = connect_timeout
        self._connection_factory = connection_factory or _default_connection_factory
        self._ws = None
        self._connected = False
        self._runner: Optional[asyncio.Task] = None
        # topic -> subscription, in registration order
        self._subscriptions: Dict[str, _Subscription] = {}
        self._by_id: Dict[str, _Subscription] = {}
        self._pending: List[Tuple[str, Handler]] = []
        self._ready_callbacks: List[ReadyCallback] = []
        self._ready = asyncio.Event()
        self._ids = itertools.count(1)

    # ---------------- state ----------------
    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def active(self) -> bool:
        return self._runner is not None and not self._runner.done()

    def topics(self) -> List[str]:
        return list(self._subscriptions)

    def pending_topics(self) -> List[str]:
        return [topic for topic, _ in self._pending]

    # ---------------- lifecycle ----------------
    async def connect(self, on_ready: Optional[ReadyCallback] = None):
        """
        Start the connection if it isn't running. Idempotent: with a live
        connection, on_ready runs immediately; with an attempt in flight it
        runs once that attempt succeeds.
        """
        if self.active:
            if on_ready is not None:
                if self._connected:
                    await self._fire_ready(on_ready)
                else:
                    self._ready_callbacks.append(on_ready)
            return
        if on_ready is not None:
            self._ready_callbacks.append(on_ready)
        logger.info("[StompClient] Connecting to %s", self.url)
        self._runner = asyncio.create_task(self._run(), name="stomp-client")

    async def wait_connected(self, timeout: Optional[float] = None) -> bool:
        try:
            await asyncio.wait_for(self._ready.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def disconnect(self):
        """Tear down the connection and forget every subscription. Safe if never connected."""
        if self._connected and self._ws is not None:
            try:
                await self._send(disconnect_frame())
            except (WebSocketException, OSError) as e:
                logger.debug("[StompClient] DISCONNECT not delivered: %s", e)
        runner, self._runner = self._runner, None
        if runner is not None:
            runner.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await runner
        await self._close_socket()
        self._reset()
        logger.info("[StompClient] Disconnected")

    def close_nowait(self, reason: str = ""):
        """Synchronous teardown for session-teardown callbacks; the socket closes as the runner unwinds."""
        runner, self._runner = self._runner, None
        if runner is not None:
            runner.cancel()
        self._reset()
        logger.info("[StompClient] Closed (%s)", reason or "requested")

    def _reset(self):
        self._connected = False
        self._ready.clear()
        self._subscriptions.clear()
        self._by_id.clear()
        self._pending.clear()
        self._ready_callbacks.clear()

    # ---------------- subscriptions ----------------
    async def subscribe(self, topic: str, handler: Handler) -> bool:
        """
        Register `handler` for `topic`. Returns False (and keeps the existing
        handler) if the topic already has a subscriber.
        """
        if topic in self._subscriptions or topic in self.pending_topics():
            logger.warning("[StompClient] %s already has a subscriber; duplicate subscribe ignored", topic)
            return False
        if not self._connected:
            self._pending.append((topic, handler))
            logger.debug("[StompClient] Queued subscription to %s until connected", topic)
            return True
        await self._subscribe_now(topic, handler)
        return True

    async def unsubscribe(self, topic: str) -> bool:
        """Idempotent: unknown or already-removed topics are a no-op."""
        self._pending = [(t, h) for t, h in self._pending if t != topic]
        sub = self._subscriptions.pop(topic, None)
        if sub is None:
            return False
        self._by_id.pop(sub.id, None)
        if self._connected:
            try:
                await self._send(unsubscribe_frame(sub.id))
            except (WebSocketException, OSError) as e:
                logger.debug("[StompClient] UNSUBSCRIBE %s not delivered: %s", topic, e)
        logger.info("[StompClient] Unsubscribed from %s", topic)
        return True

    async def _subscribe_now(self, topic: str, handler: Handler):
        sub = _Subscription(id=f"sub-{next(self._ids)}", topic=topic, handler=handler)
        self._subscriptions[topic] = sub
        self._by_id[sub.id] = sub
        try:
            await self._send(subscribe_frame(sub.id, topic))
            logger.info("[StompClient] Subscribed to %s (%s)", topic, sub.id)
        except (WebSocketException, OSError) as e:
            # stays registered; re-sent after the reconnect
            logger.warning("[StompClient] SUBSCRIBE %s not delivered (%s); will retry on reconnect", topic, e)

    # ---------------- publishing ----------------
    async def publish(self, destination: str, payload: Any) -> bool:
        if not self._connected or self._ws is None:
            logger.warning("[StompClient] Cannot publish to %s: not connected", destination)
            return False
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(by_alias=True, exclude_none=True, mode="json")
        body = json.dumps(payload, default=str)
        try:
            await self._send(send_frame(destination, body))
            return True
        except (WebSocketException, OSError) as e:
            logger.warning("[StompClient] Publish to %s failed: %s", destination, e)
            return False

    # ---------------- typed helpers ----------------
    async def subscribe_to_user_notifications(self, user_id: str, handler: Handler) -> bool:
        """handler receives typed push events (models/events.py)."""
        async def _typed(payload):
            try:
                event = parse_push_event(payload)
            except ValidationError as e:
                logger.error("[StompClient] Dropping malformed push event for %s: %s", user_id, e)
                return
            await _call(handler, event)

        return await self.subscribe(f"/user/{user_id}/queue/notifications", _typed)

    async def subscribe_to_location(self, request_id: str, handler: Handler) -> bool:
        async def _typed(payload):
            try:
                update = LocationUpdateEvent.model_validate(payload)
            except ValidationError as e:
                logger.error("[StompClient] Dropping malformed location update for %s: %s", request_id, e)
                return
            await _call(handler, update)

        return await self.subscribe(location_topic(request_id), _typed)

    async def send_location_update(self, update: LocationUpdateEvent) -> bool:
        return await self.publish(LOCATION_UPDATE_DESTINATION, update)

    # ---------------- connection runner ----------------
    async def _run(self):
        try:
            while True:
                try:
                    await self._open()
                    await self._read_loop()
                except (WebSocketException, OSError, asyncio.TimeoutError, StompConnectError, FrameError) as e:
                    logger.warning("[StompClient] Connection lost: %s", e)
                except Exception:
                    logger.exception("[StompClient] Unexpected error in connection runner")
                finally:
                    self._connected = False
                    self._ready.clear()
                    await self._close_socket()
                logger.info("[StompClient] Reconnecting in %.1fs", self.reconnect_delay)
                await asyncio.sleep(self.reconnect_delay)
        finally:
            await self._close_socket()

    async def _open(self):
        self._ws = await self._connection_factory(self.url)
        host = urlparse(self.url).hostname or "localhost"
        headers = self.session.auth_headers() if self.session else {}
        await self._send(connect_frame(host, headers))

        connected: Optional[Frame] = None
        leftover: List[Frame] = []
        while connected is None:
            raw = await asyncio.wait_for(self._ws.recv(), timeout=self.connect_timeout)
            frames = decode_frames(raw)
            for i, frame in enumerate(frames):
                if frame.command == "ERROR":
                    raise StompConnectError(frame.headers.get("message") or frame.body or "broker error")
                if frame.command == "CONNECTED":
                    connected, leftover = frame, frames[i + 1:]
                    break

        logger.info("[StompClient] Connected (version=%s)", connected.headers.get("version", "1.2"))
        # reconnect: topics registered on the previous connection come back first
        for sub in list(self._subscriptions.values()):
            await self._send(subscribe_frame(sub.id, sub.topic))
        # then everything queued while offline, in request order
        while self._pending:
            topic, handler = self._pending.pop(0)
            await self._subscribe_now(topic, handler)
        self._connected = True
        self._ready.set()

        callbacks, self._ready_callbacks = self._ready_callbacks, []
        for callback in callbacks:
            await self._fire_ready(callback)
        for frame in leftover:
            await self._dispatch(frame)

    async def _read_loop(self):
        while True:
            raw = await self._ws.recv()
            try:
                frames = decode_frames(raw)
            except FrameError as e:
                logger.error("[StompClient] Dropping undecodable frame: %s", e)
                continue
            for frame in frames:
                await self._dispatch(frame)

    async def _dispatch(self, frame: Frame):
        if frame.command == "MESSAGE":
            sub = self._by_id.get(frame.headers.get("subscription", ""))
            if sub is None:
                logger.debug("[StompClient] Message for unknown subscription %s dropped",
                             frame.headers.get("subscription"))
                return
            try:
                payload = json.loads(frame.body) if frame.body else None
            except ValueError as e:
                logger.error("[StompClient] Error parsing message on %s: %s", sub.topic, e)
                return
            try:
                await _call(sub.handler, payload)
            except Exception:
                logger.exception("[StompClient] Handler for %s failed", sub.topic)
        elif frame.command == "ERROR":
            logger.error("[StompClient] Broker reported error: %s %s", frame.headers.get("message"), frame.body)
        else:
            logger.debug("[StompClient] Ignoring %s frame", frame.command)

    async def _fire_ready(self, callback: ReadyCallback):
        try:
            await _call(callback)
        except Exception:
            logger.exception("[StompClient] on_ready callback failed")

    async def _send(self, frame: Frame):
        if self._ws is None:
            raise OSError("no open WebSocket")
        await self._ws.send(encode_frame(frame))

    async def _close_socket(self):
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.close()
        except (WebSocketException, OSError) as e:
            logger.debug("[StompClient] Close failed: %s", e)


def location_topic(request_id: str) -> str:
    return f"/topic/location/{request_id}"
