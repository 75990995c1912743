"""
Notification store: the client's list of notifications and its unread count.

Purpose:
- Hold the latest server snapshot (newest first)
- Optimistic mark-as-read / mark-all-as-read, reconciled by re-fetch on failure
- Background polling while the session is authenticated
- Refresh on any push event addressed to the user

Invariants:
- unread_count is derived from the held list, so it always equals the number
  of held notifications with is_read == False and can't go negative.
- is_read only moves False -> True locally; only a server snapshot can
  bring an unread item back.
- A snapshot whose fetch was issued before a later fetch or local change
  has been applied is discarded (epoch check).
"""
import logging
from typing import Callable, List, Optional

from config.settings import settings
from core.auth import SessionContext
from core.errors import ApiError, is_auth_failure
from models.schemas import Notification, sort_key
from services.notification_api import NotificationApi
from services.optimistic import optimistic_update
from services.poller import Poller

logger = logging.getLogger(__name__)

Listener = Callable[["NotificationStore"], None]


class NotificationStore:
    def __init__(self, api: NotificationApi, session: Optional[SessionContext] = None,
                 poll_interval: Optional[float] = None):
        self.api = api
        self.session = session
        self.notifications: List[Notification] = []
        # what /unread-count said at the last snapshot; display only
        self.server_unread_count = 0
        self._epoch = 0
        self._applied_epoch = 0
        self._listeners: List[Listener] = []
        self._remove_teardown = None
        self._poller = Poller(
            self.fetch_notifications,
            settings.NOTIFICATION_POLL_SEC if poll_interval is None else poll_interval,
            name="notification-poller",
        )

    # ---------------- derived state ----------------
    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.notifications if not n.is_read)

    def get(self, notification_id: str) -> Optional[Notification]:
        return next((n for n in self.notifications if n.id == notification_id), None)

    # ---------------- listeners ----------------
    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return _remove

    def _notify(self):
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Notification listener %r failed", listener)

    def _local_change(self):
        # anything fetched before this point is now stale
        self._epoch += 1
        self._applied_epoch = self._epoch

    # ---------------- server snapshot ----------------
    async def fetch_notifications(self) -> bool:
        """Replace the list from the server. Returns True if the snapshot was applied."""
        if self.session is not None and not self.session.is_authenticated:
            return False
        self._epoch += 1
        issued = self._epoch
        try:
            items = await self.api.list()
            count = await self.api.unread_count()
        except ApiError as e:
            if is_auth_failure(e):
                logger.debug("Notification fetch unauthorized: %s", e)
            else:
                logger.error("Error fetching notifications: %s", e)
            return False
        if issued <= self._applied_epoch:
            logger.debug("Discarding stale notification snapshot (epoch %d <= %d)", issued, self._applied_epoch)
            return False
        self._applied_epoch = issued
        self.notifications = sorted(items, key=lambda n: sort_key(n.created_at), reverse=True)
        self.server_unread_count = count
        self._notify()
        return True

    # ---------------- optimistic mutations ----------------
    async def mark_as_read(self, notification_id: str) -> Optional[ApiError]:
        """
        Flip the read flag locally, then confirm with the server.
        Already-read ids are a no-op. Returns the server error, if any,
        after the reconciling fetch has run.
        """
        existing = self.get(notification_id)
        if existing is not None and existing.is_read:
            return None

        def apply_local():
            if existing is not None:
                self.notifications = [
                    n.model_copy(update={"is_read": True}) if n.id == notification_id else n
                    for n in self.notifications
                ]
                self.server_unread_count = max(0, self.server_unread_count - 1)
            self._local_change()
            self._notify()

        return await optimistic_update(
            apply_local,
            lambda: self.api.mark_read(notification_id),
            self.fetch_notifications,
            label="mark-as-read",
        )

    async def mark_all_as_read(self) -> Optional[ApiError]:
        def apply_local():
            self.notifications = [
                n if n.is_read else n.model_copy(update={"is_read": True})
                for n in self.notifications
            ]
            self.server_unread_count = 0
            self._local_change()
            self._notify()

        return await optimistic_update(
            apply_local,
            self.api.mark_all_read,
            self.fetch_notifications,
            label="mark-all-as-read",
        )

    # ---------------- push + lifecycle ----------------
    async def handle_event(self, event) -> None:
        """Every push to the user queue means a new server-side notification."""
        logger.debug("Push %s received; refreshing notifications", getattr(event, "type", "?"))
        await self.fetch_notifications()

    def start(self):
        if self.session is not None and self._remove_teardown is None:
            self._remove_teardown = self.session.on_teardown(self._on_teardown)
        self._poller.start()

    @property
    def polling(self) -> bool:
        return self._poller.running

    async def stop(self):
        await self._poller.stop()
        if self._remove_teardown is not None:
            self._remove_teardown()
            self._remove_teardown = None

    def _on_teardown(self, reason: str):
        self._poller.cancel()
        self._remove_teardown = None
        self.notifications = []
        self.server_unread_count = 0
        self._local_change()
        self._notify()
