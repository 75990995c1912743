"""
Request list reconciler: the role-specific view of repair requests.

Client view:   my requests (every status), newest first.
Mechanic view: incoming (pending at my shop), active (accepted by me),
               history (rejected / completed / expired involving me).

Sources of change, in order of authority:
1. Full poll snapshots: always replace the lists wholesale.
2. Push events: mechanic NEW_REQUEST / SOS_ALERT prepend to incoming,
   REQUEST_TAKEN removes from incoming; every other event (and every
   client-side event) triggers a full re-fetch.
3. Local patches for the user's own actions, applied before the server
   confirms and superseded by the next snapshot.

Ordering:
- Each fetch is tagged with an issuance epoch. A snapshot is applied only
  if nothing issued or changed after it has been applied already, so a
  slow poll that resolves after a push-triggered re-fetch is dropped.
- Status never moves backwards: a snapshot reporting a lower-rank status
  than one already seen for the same id is treated as stale for that item.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from config.settings import settings
from core.auth import SessionContext
from core.errors import ApiError, is_auth_failure
from models.events import NewRequestEvent, RequestTakenEvent, SosAlertEvent
from models.schemas import RepairRequest, RequestStatus, sort_key
from services.poller import Poller
from services.request_api import ClientRequestApi, MechanicRequestApi

logger = logging.getLogger(__name__)

Listener = Callable[["RequestReconciler"], None]
ErrorCallback = Callable[[ApiError], None]


def newest_first(requests: List[RepairRequest]) -> List[RepairRequest]:
    return sorted(requests, key=lambda r: sort_key(r.created_at), reverse=True)


def recently_accepted_first(requests: List[RepairRequest]) -> List[RepairRequest]:
    return sorted(requests, key=lambda r: sort_key(r.accepted_at or r.created_at), reverse=True)


class RequestReconciler(ABC):
    def __init__(self, session: Optional[SessionContext], poll_interval: float, name: str,
                 on_error: Optional[ErrorCallback] = None):
        self.session = session
        self.on_error = on_error
        self._epoch = 0
        self._applied_epoch = 0
        # highest-rank record seen per id; guards against status regressions
        self._known: Dict[str, RepairRequest] = {}
        self._listeners: List[Listener] = []
        self._remove_teardown = None
        self._poller = Poller(self.refresh, poll_interval, name=name)

    # ---------------- hooks ----------------
    @abstractmethod
    async def _fetch(self):
        raise NotImplementedError()

    @abstractmethod
    def _apply(self, snapshot):
        raise NotImplementedError()

    @abstractmethod
    def _clear(self):
        raise NotImplementedError()

    @abstractmethod
    async def handle_event(self, event):
        raise NotImplementedError()

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
                logger.exception("Request listener %r failed", listener)

    # ---------------- epochs ----------------
    def _local_change(self):
        self._epoch += 1
        self._applied_epoch = self._epoch
        self._notify()

    def _remember(self, request: RepairRequest) -> bool:
        """Record `request`; False if it regresses a status already seen for its id."""
        if not request.id:
            return True
        seen = self._known.get(request.id)
        if seen is not None and request.status.rank < seen.status.rank:
            logger.warning("Ignoring stale status %s for request %s (already %s)",
                           request.status.value, request.id, seen.status.value)
            return False
        self._known[request.id] = request
        return True

    def _forget_missing(self, ids):
        """Drop guard entries for ids the latest snapshot no longer lists."""
        for request_id in [i for i in self._known if i not in ids]:
            del self._known[request_id]

    # ---------------- snapshot ----------------
    async def refresh(self) -> bool:
        """Fetch and apply a full snapshot. Returns True if it was applied."""
        if self.session is not None and not self.session.is_authenticated:
            return False
        self._epoch += 1
        issued = self._epoch
        try:
            snapshot = await self._fetch()
        except ApiError as e:
            if is_auth_failure(e):
                logger.debug("Request fetch unauthorized: %s", e)
            else:
                logger.error("Error fetching requests: %s", e)
                if self.on_error is not None:
                    self.on_error(e)
            return False
        if issued <= self._applied_epoch:
            logger.debug("Discarding stale request snapshot (epoch %d <= %d)", issued, self._applied_epoch)
            return False
        self._applied_epoch = issued
        self._apply(snapshot)
        self._notify()
        return True

    # ---------------- lifecycle ----------------
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
        self._known.clear()
        self._clear()
        self._local_change()


class ClientRequestReconciler(RequestReconciler):
    def __init__(self, api: ClientRequestApi, session: Optional[SessionContext] = None,
                 poll_interval: Optional[float] = None, on_error: Optional[ErrorCallback] = None):
        super().__init__(session,
                         settings.REQUEST_POLL_SEC if poll_interval is None else poll_interval,
                         "client-request-poller", on_error)
        self.api = api
        self.requests: List[RepairRequest] = []

    def get(self, request_id: str) -> Optional[RepairRequest]:
        return next((r for r in self.requests if r.id == request_id), None)

    def with_status(self, *statuses: RequestStatus) -> List[RepairRequest]:
        return [r for r in self.requests if r.status in statuses]

    async def _fetch(self):
        return await self.api.my_requests()

    def _apply(self, snapshot: List[RepairRequest]):
        merged = []
        for request in snapshot:
            if self._remember(request):
                merged.append(request)
            else:
                # keep what we already showed for this id
                merged.append(self._known[request.id])
        self._forget_missing({r.id for r in snapshot})
        self.requests = newest_first(merged)

    def _clear(self):
        self.requests = []

    def add_local(self, request: RepairRequest):
        """Show a just-created request before the next poll picks it up."""
        self._remember(request)
        self.requests = newest_first([request] + [r for r in self.requests if r.id != request.id])
        self._local_change()

    async def handle_event(self, event):
        # client-side payloads are partial; the server list is the truth
        logger.info("Push %s for request %s; refreshing my requests",
                    getattr(event, "type", "?"), getattr(event, "request_id", None))
        await self.refresh()


class MechanicRequestReconciler(RequestReconciler):
    def __init__(self, api: MechanicRequestApi, session: Optional[SessionContext] = None,
                 poll_interval: Optional[float] = None, on_error: Optional[ErrorCallback] = None):
        super().__init__(session,
                         settings.DASHBOARD_POLL_SEC if poll_interval is None else poll_interval,
                         "mechanic-request-poller", on_error)
        self.api = api
        self.incoming: List[RepairRequest] = []
        self.active: List[RepairRequest] = []
        self.history: List[RepairRequest] = []

    def find(self, request_id: str) -> Optional[RepairRequest]:
        for bucket in (self.incoming, self.active, self.history):
            for request in bucket:
                if request.id == request_id:
                    return request
        return None

    async def _fetch(self):
        incoming, active, history = await asyncio.gather(
            self.api.incoming(), self.api.active(), self.api.work_history()
        )
        return incoming, active, history

    def _apply(self, snapshot):
        buckets = {"incoming": [], "active": [], "history": []}
        placed = set()
        for name, records in zip(buckets, snapshot):
            for request in records:
                if request.id and request.id in placed:
                    continue
                if self._remember(request):
                    if name == "incoming" and not request.status.is_pending:
                        continue
                    kept, target = request, name
                else:
                    # a lagging list still has it; show the newer record where it belongs
                    kept = self._known[request.id]
                    target = self._bucket_for(kept.status)
                buckets[target].append(kept)
                placed.add(request.id)
        self._forget_missing({r.id for records in snapshot for r in records})
        self.incoming = newest_first(buckets["incoming"])
        self.active = recently_accepted_first(buckets["active"])
        self.history = newest_first(buckets["history"])

    @staticmethod
    def _bucket_for(status: RequestStatus) -> str:
        if status.is_pending:
            return "incoming"
        if status == RequestStatus.ACCEPTED:
            return "active"
        return "history"

    def _clear(self):
        self.incoming = []
        self.active = []
        self.history = []

    # ---------------- push ----------------
    async def handle_event(self, event):
        if isinstance(event, (NewRequestEvent, SosAlertEvent)):
            self.prepend_incoming(event.data)
        elif isinstance(event, RequestTakenEvent):
            self.remove_incoming(event.request_id)
        else:
            logger.info("Push %s for request %s; refreshing jobs",
                        getattr(event, "type", "?"), getattr(event, "request_id", None))
            await self.refresh()

    def prepend_incoming(self, request: RepairRequest) -> bool:
        if not request.id:
            return False
        if any(r.id == request.id for r in self.incoming):
            logger.debug("Request %s already listed", request.id)
            return False
        if not self._remember(request) or not request.status.is_pending:
            return False
        if request.is_sos:
            logger.warning("SOS request %s received", request.id)
        self.incoming = [request] + self.incoming
        self._local_change()
        return True

    def remove_incoming(self, request_id: Optional[str]) -> bool:
        """Idempotent: an id that isn't listed changes nothing."""
        if not request_id or not any(r.id == request_id for r in self.incoming):
            return False
        self.incoming = [r for r in self.incoming if r.id != request_id]
        self._local_change()
        return True

    # ---------------- local patches for the mechanic's own actions ----------------
    def _move(self, request_id: str, source: str, target: str, status: RequestStatus,
              confirmed: Optional[RepairRequest] = None) -> bool:
        current = next((r for r in getattr(self, source) if r.id == request_id), None)
        if current is None:
            logger.debug("Request %s not in %s; nothing to move", request_id, source)
            return False
        if not current.status.can_transition(status):
            logger.warning("Refusing %s -> %s for request %s", current.status.value, status.value, request_id)
            return False
        # only server records feed the regression guard; a failed action is rolled back by re-fetch
        if confirmed is not None:
            updated = confirmed
            self._remember(confirmed)
        else:
            updated = current.model_copy(update={"status": status})
        setattr(self, source, [r for r in getattr(self, source) if r.id != request_id])
        moved = [updated] + [r for r in getattr(self, target) if r.id != request_id]
        setattr(self, target, recently_accepted_first(moved) if target == "active" else newest_first(moved))
        self._local_change()
        return True

    def mark_accepted(self, request_id: str, confirmed: Optional[RepairRequest] = None) -> bool:
        return self._move(request_id, "incoming", "active", RequestStatus.ACCEPTED, confirmed)

    def mark_rejected(self, request_id: str, confirmed: Optional[RepairRequest] = None) -> bool:
        return self._move(request_id, "incoming", "history", RequestStatus.REJECTED, confirmed)

    def mark_completed(self, request_id: str, confirmed: Optional[RepairRequest] = None) -> bool:
        return self._move(request_id, "active", "history", RequestStatus.COMPLETED, confirmed)

    def confirm(self, request_id: str) -> bool:
        """The server accepted a local patch; guard its status against older snapshots."""
        request = self.find(request_id)
        if request is None:
            return False
        return self._remember(request)
