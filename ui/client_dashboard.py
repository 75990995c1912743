"""
Client (vehicle owner) dashboard controller.

Wires the pieces a client session needs:
- LocationWatcher -> nearby shop refresh on meaningful movement
- ClientRequestReconciler ("my requests", 5 s poll + push re-fetch)
- NotificationStore (30 s poll + push refresh)
- StompClient user queue, fanned out to the reconciler and the store

User actions (request a shop, broadcast to every eligible shop, SOS, rate,
track) report the outcome through the feedback sink and return the created
object or None / False. They never raise ApiError to the caller.
"""
import asyncio
import logging
import uuid
from typing import Dict, List, Optional

from core.auth import SessionContext
from core.errors import ApiError, ClientValidationError, is_auth_failure
from infra.http_client import ApiClient
from infra.stomp_client import StompClient
from models.events import RequestAcceptedEvent, RequestExpiredEvent, RequestRejectedEvent
from models.schemas import Diagnosis, GeoPosition, RankedShop, RepairRequest, RequestStatus, VehicleType
from services.location_watcher import LocationWatcher, PositionError, PositionSource
from services.mechanic_directory import MechanicDirectory
from services.notification_api import NotificationApi
from services.notification_store import NotificationStore
from services.profile_api import ProfileApi
from services.request_api import ClientRequestApi
from services.request_reconciler import ClientRequestReconciler
from ui.feedback import Feedback, FeedbackLog, FeedbackSink, Variant, error_feedback
from ui.live_tracking import LiveTracker

logger = logging.getLogger(__name__)


class ClientDashboard:
    def __init__(self, session: SessionContext, api: ApiClient, transport: StompClient,
                 position_source: Optional[PositionSource], feedback: Optional[FeedbackSink] = None,
                 request_poll_sec: Optional[float] = None, notification_poll_sec: Optional[float] = None):
        self.session = session
        self.transport = transport
        self.feedback = feedback or FeedbackLog()
        self.requests_api = ClientRequestApi(api)
        self.profile_api = ProfileApi(api)
        self.directory = MechanicDirectory(api)
        self.watcher = LocationWatcher(position_source, session)
        self.requests = ClientRequestReconciler(self.requests_api, session, request_poll_sec,
                                                on_error=self._on_fetch_error)
        self.notifications = NotificationStore(NotificationApi(api), session, notification_poll_sec)
        self.trackers: Dict[str, LiveTracker] = {}
        self.vehicle_type: Optional[VehicleType] = None
        self._started = False

    @property
    def position(self) -> Optional[GeoPosition]:
        return self.watcher.position

    @property
    def shops(self) -> List[RankedShop]:
        return self.directory.shops

    # ---------------- lifecycle ----------------
    async def start(self) -> bool:
        if not self.session.is_client:
            logger.warning("ClientDashboard needs a client session")
            return False
        if self._started:
            return True
        self._started = True
        self.watcher.add_listener(self._on_position)
        self.watcher.add_error_listener(self._on_location_error)
        self.watcher.start()
        self.requests.start()
        self.notifications.start()
        await self.transport.connect()
        await self.transport.subscribe_to_user_notifications(self.session.user_id, self._on_push)
        logger.info("Client dashboard started for %s", self.session.user_id)
        return True

    async def stop(self):
        if not self._started:
            return
        self._started = False
        self.watcher.stop()
        await self.requests.stop()
        await self.notifications.stop()
        for tracker in list(self.trackers.values()):
            await tracker.stop()
        self.trackers.clear()
        if self.session.user_id:
            await self.transport.unsubscribe(f"/user/{self.session.user_id}/queue/notifications")

    # ---------------- inputs ----------------
    async def _on_position(self, position: GeoPosition):
        await self.refresh_nearby()

    def _on_location_error(self, error: PositionError):
        if error.code == PositionError.PERMISSION_DENIED:
            self.feedback(Feedback(title="Location Required",
                                   description="Please enable location access",
                                   variant=Variant.DESTRUCTIVE))
        elif error.terminal:
            self.feedback(Feedback(title="Location Unavailable",
                                   description="This device can't share its location",
                                   variant=Variant.DESTRUCTIVE))

    def _on_fetch_error(self, error: ApiError):
        self.feedback(error_feedback(error, "Failed to load your requests"))

    async def _on_push(self, event):
        await self.requests.handle_event(event)
        await self.notifications.handle_event(event)
        request = getattr(event, "data", None)
        shop = request.shop_name if isinstance(request, RepairRequest) and request.shop_name else "The mechanic"
        if isinstance(event, RequestAcceptedEvent):
            self.feedback(Feedback(title="Request Accepted", description=f"{shop} is on the way"))
        elif isinstance(event, RequestRejectedEvent):
            self.feedback(Feedback(title="Request Rejected", description=f"{shop} can't take this job",
                                   variant=Variant.DESTRUCTIVE))
        elif isinstance(event, RequestExpiredEvent):
            self.feedback(Feedback(title="Request Expired", description="No mechanic responded in time",
                                   variant=Variant.DESTRUCTIVE))

    # ---------------- shops ----------------
    async def refresh_nearby(self, vehicle_type: Optional[VehicleType] = None) -> List[RankedShop]:
        if vehicle_type is not None:
            self.vehicle_type = vehicle_type
        if self.position is None:
            return self.directory.shops
        try:
            return await self.directory.refresh(self.position, self.vehicle_type)
        except ApiError as e:
            if not is_auth_failure(e):
                self.feedback(error_feedback(e, "Could not load nearby mechanics"))
            return self.directory.shops

    # ---------------- requests ----------------
    def _report(self, exc: ApiError, fallback: str):
        if is_auth_failure(exc):
            return
        self.feedback(error_feedback(exc, fallback))

    async def request_shop(self, shop_id: str, vehicle_type: VehicleType, problem_description: str = "",
                           ai_suggestion: Optional[str] = None, address: Optional[str] = None) -> Optional[RepairRequest]:
        try:
            created = await self.requests_api.create(
                self.position, vehicle_type, problem_description,
                mechanic_shop_id=shop_id, address=address, ai_suggestion=ai_suggestion,
            )
        except ClientValidationError as e:
            self._report(e, "Missing information")
            return None
        except ApiError as e:
            self._report(e, "Failed to send request")
            await self.requests.refresh()
            return None
        self.requests.add_local(created)
        self.feedback(Feedback(title="Request Sent", description="The mechanic has been notified"))
        return created

    async def broadcast(self, vehicle_type: VehicleType, problem_description: str = "",
                        address: Optional[str] = None) -> List[RepairRequest]:
        """
        Send the same problem to every available, open shop serving this
        vehicle type. The requests share a broadcast id: the first shop to
        accept wins and the server tells the rest the request was taken.
        """
        if self.position is None:
            self._report(ClientValidationError("Location not available yet. Enable location and try again."),
                         "Missing information")
            return []
        shops = self.directory.eligible(vehicle_type)
        if not shops:
            label = vehicle_type.value.lower().replace("_", " ")
            self.feedback(Feedback(title="No Mechanics Found",
                                   description=f"No available {label} mechanics found nearby.",
                                   variant=Variant.DESTRUCTIVE))
            return []
        broadcast_id = str(uuid.uuid4())
        results = await asyncio.gather(*[
            self.requests_api.create(self.position, vehicle_type, problem_description,
                                     mechanic_shop_id=ranked.shop.id, address=address,
                                     broadcast_id=broadcast_id)
            for ranked in shops
        ], return_exceptions=True)

        created = []
        for ranked, result in zip(shops, results):
            if isinstance(result, ApiError):
                logger.warning("Broadcast %s to shop %s failed: %s", broadcast_id, ranked.shop.id, result)
            elif isinstance(result, BaseException):
                raise result
            else:
                created.append(result)
                self.requests.add_local(result)

        if created:
            self.feedback(Feedback(title="Requests Sent",
                                   description=f"Request sent to {len(created)} mechanics"))
        else:
            self.feedback(Feedback(title="Error", description="Failed to send requests",
                                   variant=Variant.DESTRUCTIVE))
            await self.requests.refresh()
        return created

    async def send_sos(self, address: Optional[str] = None) -> Optional[RepairRequest]:
        try:
            created = await self.requests_api.sos(self.position, address)
        except ApiError as e:
            self._report(e, "Failed to send SOS")
            return None
        self.requests.add_local(created)
        self.feedback(Feedback(title="SOS Sent", description="Nearby mechanics have been alerted",
                               variant=Variant.DESTRUCTIVE))
        return created

    async def rate(self, request_id: str, rating: int) -> bool:
        request = self.requests.get(request_id)
        try:
            if request is None or request.status != RequestStatus.COMPLETED:
                raise ClientValidationError("Only completed requests can be rated", field="request_id")
            if not request.mechanic_shop_id:
                raise ClientValidationError("This request has no shop to rate", field="mechanic_shop_id")
            await self.profile_api.submit_rating(self.session.user_id, request.mechanic_shop_id, rating, request_id)
        except ApiError as e:
            self._report(e, "Failed to submit rating")
            return False
        self.feedback(Feedback(title="Rating Submitted", description="Thank you for your feedback!"))
        await self.requests.refresh()
        return True

    async def diagnose(self, issue_description: str, make: Optional[str] = None,
                       model: Optional[str] = None, year: Optional[int] = None) -> Optional[Diagnosis]:
        try:
            return await self.profile_api.diagnose(issue_description, make, model, year)
        except ApiError as e:
            self._report(e, "AI assistant is unavailable")
            return None

    # ---------------- tracking ----------------
    async def track(self, request_id: str) -> Optional[LiveTracker]:
        if request_id in self.trackers:
            return self.trackers[request_id]
        request = self.requests.get(request_id)
        if request is None or request.status != RequestStatus.ACCEPTED:
            self.feedback(Feedback(title="Tracking unavailable",
                                   description="Only accepted requests can be tracked",
                                   variant=Variant.DESTRUCTIVE))
            return None
        tracker = LiveTracker(self.transport, request)
        await tracker.start()
        self.trackers[request_id] = tracker
        return tracker

    async def untrack(self, request_id: str):
        tracker = self.trackers.pop(request_id, None)
        if tracker is not None:
            await tracker.stop()
