"""
Wire models for the roadside backend.

The backend speaks camelCase JSON; fields here are snake_case with camelCase
aliases. Unknown fields are ignored so backend additions don't break parsing.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "ignore"


def sort_key(dt: Optional[datetime]) -> float:
    """Orderable value for an optional timestamp; missing timestamps sort oldest."""
    return dt.timestamp() if dt is not None else float("-inf")


# ---------------- enums ----------------

class VehicleType(str, Enum):
    TWO_WHEELER = "TWO_WHEELER"
    FOUR_WHEELER = "FOUR_WHEELER"
    UNKNOWN = "UNKNOWN"  # SOS requests carry no vehicle type


class RequestType(str, Enum):
    NORMAL = "NORMAL"
    SOS = "SOS"


class RequestStatus(str, Enum):
    PENDING = "PENDING"
    SOS_PENDING = "SOS_PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    COMPLETED = "COMPLETED"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @property
    def is_pending(self) -> bool:
        return self.rank == 0

    @property
    def is_terminal(self) -> bool:
        return self in (RequestStatus.REJECTED, RequestStatus.EXPIRED, RequestStatus.COMPLETED)

    def can_transition(self, to: "RequestStatus") -> bool:
        """pending -> {accepted, rejected, expired}; accepted -> completed. Nothing re-enters pending."""
        return to in _TRANSITIONS[self]


_STATUS_RANK = {
    RequestStatus.PENDING: 0,
    RequestStatus.SOS_PENDING: 0,
    RequestStatus.ACCEPTED: 1,
    RequestStatus.REJECTED: 1,
    RequestStatus.EXPIRED: 1,
    RequestStatus.COMPLETED: 2,
}

_TRANSITIONS = {
    RequestStatus.PENDING: {RequestStatus.ACCEPTED, RequestStatus.REJECTED, RequestStatus.EXPIRED},
    RequestStatus.SOS_PENDING: {RequestStatus.ACCEPTED, RequestStatus.REJECTED, RequestStatus.EXPIRED},
    RequestStatus.ACCEPTED: {RequestStatus.COMPLETED},
    RequestStatus.REJECTED: set(),
    RequestStatus.EXPIRED: set(),
    RequestStatus.COMPLETED: set(),
}


class NotificationType(str, Enum):
    NEW_REQUEST = "NEW_REQUEST"
    SOS_ALERT = "SOS_ALERT"
    REQUEST_TAKEN = "REQUEST_TAKEN"
    REQUEST_ACCEPTED = "REQUEST_ACCEPTED"
    REQUEST_REJECTED = "REQUEST_REJECTED"
    STATUS_UPDATE = "STATUS_UPDATE"
    REQUEST_EXPIRED = "REQUEST_EXPIRED"
    GENERIC = "GENERIC"


# ---------------- geo ----------------

class GeoPosition(ApiModel):
    """A device fix. Only the latest accepted one is kept by the watcher."""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: Optional[float] = None
    timestamp: Optional[datetime] = None

    def as_location(self) -> dict:
        """LocationDTO shape expected by request-creating endpoints."""
        return {"latitude": self.latitude, "longitude": self.longitude}


class GeoPoint(ApiModel):
    """
    Spring's GeoJsonPoint as serialized by the backend.
    Either {"type": "Point", "coordinates": [lng, lat]} or {"x": lng, "y": lat};
    the backend usually sends both.
    """
    type: Optional[str] = "Point"
    coordinates: Optional[List[float]] = None
    x: Optional[float] = None
    y: Optional[float] = None

    @property
    def longitude(self) -> Optional[float]:
        if self.coordinates and len(self.coordinates) >= 2:
            return self.coordinates[0]
        return self.x

    @property
    def latitude(self) -> Optional[float]:
        if self.coordinates and len(self.coordinates) >= 2:
            return self.coordinates[1]
        return self.y

    def to_position(self) -> Optional[GeoPosition]:
        if self.latitude is None or self.longitude is None:
            return None
        return GeoPosition(latitude=self.latitude, longitude=self.longitude)


# ---------------- requests ----------------

class RepairRequest(ApiModel):
    id: Optional[str] = None
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    client_phone: Optional[str] = None
    client_address: Optional[str] = None
    mechanic_shop_id: Optional[str] = None
    mechanic_user_id: Optional[str] = None
    shop_name: Optional[str] = None
    shop_address: Optional[str] = None
    shop_phone: Optional[str] = None
    vehicle_type: VehicleType = VehicleType.UNKNOWN
    problem_description: Optional[str] = None
    ai_suggestion: Optional[str] = None
    type: RequestType = RequestType.NORMAL
    status: RequestStatus = RequestStatus.PENDING
    client_location: Optional[GeoPoint] = None
    broadcast_id: Optional[str] = None
    rejected_by: List[str] = Field(default_factory=list)
    rating: Optional[int] = None
    review: Optional[str] = None
    created_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @field_validator("vehicle_type", mode="before")
    @classmethod
    def _coerce_vehicle_type(cls, v):
        # older records use CAR/BIKE; anything unrecognized is UNKNOWN
        if v in (None, ""):
            return VehicleType.UNKNOWN
        legacy = {"CAR": VehicleType.FOUR_WHEELER, "BIKE": VehicleType.TWO_WHEELER}
        if isinstance(v, str):
            v = legacy.get(v.upper(), v.upper())
            if v not in VehicleType.__members__:
                return VehicleType.UNKNOWN
        return v

    @field_validator("rejected_by", mode="before")
    @classmethod
    def _none_to_list(cls, v):
        return v or []

    @property
    def is_sos(self) -> bool:
        return self.type == RequestType.SOS


class CreateRequestPayload(ApiModel):
    """Body of POST /requests."""
    mechanic_shop_id: Optional[str] = None
    vehicle_type: VehicleType
    problem_description: Optional[str] = None
    type: RequestType = RequestType.NORMAL
    client_location: Optional[dict] = None
    client_address: Optional[str] = None
    ai_suggestion: Optional[str] = None
    broadcast_id: Optional[str] = None


# ---------------- notifications ----------------

class Notification(ApiModel):
    id: str
    user_id: Optional[str] = None
    type: NotificationType = NotificationType.GENERIC
    title: str = ""
    message: str = ""
    request_id: Optional[str] = None
    is_read: bool = False
    created_at: Optional[datetime] = None

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, v):
        if isinstance(v, str) and v in NotificationType.__members__:
            return v
        return NotificationType.GENERIC

    @field_validator("is_read", mode="before")
    @classmethod
    def _none_is_unread(cls, v):
        return bool(v)


# ---------------- shops / profile ----------------

class MechanicShop(ApiModel):
    id: str
    user_id: Optional[str] = None
    shop_name: str = ""
    phone: Optional[str] = None
    address: Optional[str] = None
    location: Optional[GeoPoint] = None
    shop_types: List[str] = Field(default_factory=list)
    open_time: Optional[str] = None
    close_time: Optional[str] = None
    rating: float = 0.0
    total_ratings: int = 0
    is_available: bool = True
    services_offered: Optional[str] = None
    distance: Optional[float] = None  # server-computed, meters

    @field_validator("shop_types", mode="before")
    @classmethod
    def _none_to_list(cls, v):
        return v or []

    @field_validator("rating", "total_ratings", "is_available", mode="before")
    @classmethod
    def _null_defaults(cls, v, info):
        if v is None:
            return {"rating": 0.0, "total_ratings": 0, "is_available": True}[info.field_name]
        return v


class RankedShop(ApiModel):
    """A shop annotated with client-side distance and open/available state."""
    shop: MechanicShop
    distance_km: float
    is_open: bool
    is_effectively_available: bool


class UserProfile(ApiModel):
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None
    profile_picture: Optional[str] = None
    mechanic_shop: Optional[MechanicShop] = None


class Rating(ApiModel):
    id: Optional[str] = None
    user_id: str
    mechanic_shop_id: str
    rating: int = Field(..., ge=1, le=5)
    request_id: Optional[str] = None
    created_at: Optional[datetime] = None


class Diagnosis(ApiModel):
    """Body of /ai/diagnose."""
    diagnosis: Optional[str] = None
    recommended_action: Optional[str] = None
    confidence_score: Optional[float] = None
    clarifying_questions: List[str] = Field(default_factory=list)

    @field_validator("clarifying_questions", mode="before")
    @classmethod
    def _none_to_list(cls, v):
        return v or []
