"""
Push events delivered over the STOMP channel.

User queue (/user/{userId}/queue/notifications) payloads look like
{"type": "NEW_REQUEST", "data": {...RepairRequest...}, "timestamp": 1700000000000}
and are parsed into a discriminated union keyed by `type`. Types we don't
know about become GenericEvent so handlers can still fall back to a refresh.
"""
import logging
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from models.schemas import ApiModel, GeoPosition, RepairRequest

logger = logging.getLogger(__name__)


class _RequestEvent(BaseModel):
    timestamp: Optional[int] = None
    data: Optional[RepairRequest] = None

    @property
    def request_id(self) -> Optional[str]:
        return self.data.id if self.data else None


class NewRequestEvent(_RequestEvent):
    type: Literal["NEW_REQUEST"]
    data: RepairRequest


class SosAlertEvent(_RequestEvent):
    type: Literal["SOS_ALERT"]
    data: RepairRequest


class RequestTakenEvent(_RequestEvent):
    type: Literal["REQUEST_TAKEN"]


class RequestAcceptedEvent(_RequestEvent):
    type: Literal["REQUEST_ACCEPTED"]


class RequestRejectedEvent(_RequestEvent):
    type: Literal["REQUEST_REJECTED"]


class StatusUpdateEvent(_RequestEvent):
    type: Literal["STATUS_UPDATE"]


class RequestExpiredEvent(_RequestEvent):
    type: Literal["REQUEST_EXPIRED"]


class GenericEvent(BaseModel):
    type: str = "GENERIC"
    timestamp: Optional[int] = None
    data: Any = None

    @property
    def request_id(self) -> Optional[str]:
        if isinstance(self.data, dict):
            return self.data.get("id") or self.data.get("requestId")
        return None


KnownEvent = Annotated[
    Union[
        NewRequestEvent,
        SosAlertEvent,
        RequestTakenEvent,
        RequestAcceptedEvent,
        RequestRejectedEvent,
        StatusUpdateEvent,
        RequestExpiredEvent,
    ],
    Field(discriminator="type"),
]

PushEvent = Union[
    NewRequestEvent,
    SosAlertEvent,
    RequestTakenEvent,
    RequestAcceptedEvent,
    RequestRejectedEvent,
    StatusUpdateEvent,
    RequestExpiredEvent,
    GenericEvent,
]

KNOWN_EVENT_TYPES = {
    "NEW_REQUEST",
    "SOS_ALERT",
    "REQUEST_TAKEN",
    "REQUEST_ACCEPTED",
    "REQUEST_REJECTED",
    "STATUS_UPDATE",
    "REQUEST_EXPIRED",
}

_known_adapter = TypeAdapter(KnownEvent)


def parse_push_event(payload: Any) -> PushEvent:
    """
    Turn a decoded user-queue payload into a typed event.
    Raises pydantic.ValidationError if a known type carries a malformed body.
    """
    if not isinstance(payload, dict):
        return GenericEvent(data=payload)
    if payload.get("type") in KNOWN_EVENT_TYPES:
        return _known_adapter.validate_python(payload)
    return GenericEvent.model_validate(payload)


class LocationUpdateEvent(ApiModel):
    """/topic/location/{requestId} payload: a mechanic's live position."""
    request_id: str
    mechanic_user_id: Optional[str] = None
    location: GeoPosition
    speed: Optional[float] = None     # km/h as reported by the sender
    heading: Optional[float] = None
    timestamp: Optional[int] = None
