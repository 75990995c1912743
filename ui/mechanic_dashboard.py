"""
Mechanic dashboard controller.

- MechanicRequestReconciler: incoming / active / history (30 s poll + push)
- NotificationStore
- StompClient user queue: NEW_REQUEST / SOS_ALERT show up at once,
  REQUEST_TAKEN disappears at once, anything else re-fetches
- Accept / reject / complete are optimistic: the job moves between lists
  immediately; a server rejection (e.g. "already taken") re-fetches the
  lists and is shown with the server's message.
"""
import logging
import time
from typing import List, Optional

from core.auth import SessionContext
from core.errors import ApiError, ClientValidationError, is_auth_failure
from infra.http_client import ApiClient
from infra.stomp_client import StompClient
from models.events import LocationUpdateEvent, NewRequestEvent, RequestTakenEvent, SosAlertEvent
from models.schemas import GeoPosition, RepairRequest, RequestStatus
from services.notification_api import NotificationApi
from services.notification_store import NotificationStore
from services.optimistic import optimistic_update
from services.request_api import MechanicRequestApi
from services.request_reconciler import MechanicRequestReconciler
from ui.feedback import Feedback, FeedbackLog, FeedbackSink, Variant, error_feedback

logger = logging.getLogger(__name__)


class MechanicDashboard:
    def __init__(self, session: SessionContext, api: ApiClient, transport: StompClient,
                 feedback: Optional[FeedbackSink] = None, poll_sec: Optional[float] = None,
                 notification_poll_sec: Optional[float] = None):
        self.session = session
        self.transport = transport
        self.feedback = feedback or FeedbackLog()
        self.requests_api = MechanicRequestApi(api)
        self.jobs = MechanicRequestReconciler(self.requests_api, session, poll_sec,
                                              on_error=self._on_fetch_error)
        self.notifications = NotificationStore(NotificationApi(api), session, notification_poll_sec)
        self.available: Optional[bool] = None
        self._started = False

    async def start(self) -> bool:
        if not self.session.is_mechanic:
            logger.warning("MechanicDashboard needs a mechanic session")
            return False
        if self._started:
            return True
        self._started = True
        self.jobs.start()
        self.notifications.start()
        await self.transport.connect()
        await self.transport.subscribe_to_user_notifications(self.session.user_id, self._on_push)
        logger.info("Mechanic dashboard started for %s", self.session.user_id)
        return True

    async def stop(self):
        if not self._started:
            return
        self._started = False
        await self.jobs.stop()
        await self.notifications.stop()
        if self.session.user_id:
            await self.transport.unsubscribe(f"/user/{self.session.user_id}/queue/notifications")

    def _on_fetch_error(self, error: ApiError):
        self.feedback(error_feedback(error, "Failed to load dashboard data"))

    async def _on_push(self, event):
        if isinstance(event, NewRequestEvent):
            vehicle = event.data.vehicle_type.value.replace("_", " ")
            self.feedback(Feedback(title="New Request Received", description=f"New {vehicle} request"))
        elif isinstance(event, SosAlertEvent):
            self.feedback(Feedback(title="SOS Alert!", description="Emergency request received!",
                                   variant=Variant.DESTRUCTIVE))
        elif isinstance(event, RequestTakenEvent) and self.jobs.find(event.request_id or "") is not None:
            self.feedback(Feedback(title="Request Taken",
                                   description="Another mechanic has accepted this request."))
        await self.jobs.handle_event(event)
        await self.notifications.handle_event(event)

    def _report(self, exc: ApiError, fallback: str):
        if not is_auth_failure(exc):
            self.feedback(error_feedback(exc, fallback))

    # ---------------- job actions ----------------
    async def accept(self, request_id: str) -> bool:
        error = await optimistic_update(
            lambda: self.jobs.mark_accepted(request_id),
            lambda: self.requests_api.accept(request_id),
            self.jobs.refresh,
            label="accept",
        )
        if error is not None:
            self._report(error, "Failed to accept request")
            return False
        self.jobs.confirm(request_id)
        self.feedback(Feedback(title="Success", description="Request accepted successfully"))
        return True

    async def reject(self, request_id: str) -> bool:
        error = await optimistic_update(
            lambda: self.jobs.mark_rejected(request_id),
            lambda: self.requests_api.reject(request_id),
            self.jobs.refresh,
            label="reject",
        )
        if error is not None:
            self._report(error, "Failed to reject request")
            return False
        self.jobs.confirm(request_id)
        self.feedback(Feedback(title="Info", description="Request rejected"))
        return True

    async def complete(self, request_id: str) -> bool:
        job = self.jobs.find(request_id)
        if job is None or job.status != RequestStatus.ACCEPTED:
            self._report(ClientValidationError("Only accepted jobs can be completed", field="request_id"),
                         "Failed to complete job")
            return False
        error = await optimistic_update(
            lambda: self.jobs.mark_completed(request_id),
            lambda: self.requests_api.update_status(request_id, RequestStatus.COMPLETED),
            self.jobs.refresh,
            label="complete",
        )
        if error is not None:
            self._report(error, "Failed to complete job")
            return False
        self.jobs.confirm(request_id)
        self.feedback(Feedback(title="Success", description="Job marked as completed"))
        return True

    # ---------------- location + availability ----------------
    async def share_location(self, request_id: str, position: GeoPosition,
                             speed: Optional[float] = None, heading: Optional[float] = None) -> bool:
        """Publish this mechanic's position to the client tracking `request_id`."""
        if not any(job.id == request_id for job in self.jobs.active):
            logger.debug("Not sharing location for %s: not an active job", request_id)
            return False
        update = LocationUpdateEvent(
            request_id=request_id,
            mechanic_user_id=self.session.user_id,
            location=GeoPosition(latitude=position.latitude, longitude=position.longitude),
            speed=speed,
            heading=heading,
            timestamp=int(time.time() * 1000),
        )
        return await self.transport.send_location_update(update)

    async def active_locations(self) -> List[RepairRequest]:
        try:
            return await self.requests_api.active_locations()
        except ApiError as e:
            self._report(e, "Failed to load job locations")
            return []

    async def set_availability(self, available: bool) -> bool:
        try:
            self.available = await self.requests_api.toggle_availability(available)
        except ApiError as e:
            self._report(e, "Failed to update availability")
            return False
        state = "available" if self.available else "unavailable"
        self.feedback(Feedback(title="Availability updated", description=f"You are now {state}"))
        return True
