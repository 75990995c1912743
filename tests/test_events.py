import pytest
from pydantic import ValidationError

from models.events import (
    GenericEvent,
    NewRequestEvent,
    RequestTakenEvent,
    StatusUpdateEvent,
    parse_push_event,
)
from models.schemas import GeoPoint, RepairRequest, RequestStatus, VehicleType


def test_known_types_are_typed():
    event = parse_push_event({"type": "NEW_REQUEST", "timestamp": 1700000000000,
                              "data": {"id": "req-1", "status": "PENDING", "vehicleType": "CAR"}})
    assert isinstance(event, NewRequestEvent)
    assert event.data.vehicle_type == VehicleType.FOUR_WHEELER
    assert event.request_id == "req-1"


def test_request_taken_without_data():
    event = parse_push_event({"type": "REQUEST_TAKEN"})
    assert isinstance(event, RequestTakenEvent)
    assert event.request_id is None


def test_unknown_type_falls_back_to_generic():
    event = parse_push_event({"type": "PROMO", "data": {"requestId": "req-2"}})
    assert isinstance(event, GenericEvent)
    assert event.request_id == "req-2"

    assert isinstance(parse_push_event("ping"), GenericEvent)


def test_known_type_with_broken_body_raises():
    with pytest.raises(ValidationError):
        parse_push_event({"type": "STATUS_UPDATE", "data": {"status": "FLYING"}})
    with pytest.raises(ValidationError):
        parse_push_event({"type": "NEW_REQUEST"})


def test_status_transitions():
    assert RequestStatus.PENDING.can_transition(RequestStatus.ACCEPTED)
    assert RequestStatus.SOS_PENDING.can_transition(RequestStatus.EXPIRED)
    assert RequestStatus.ACCEPTED.can_transition(RequestStatus.COMPLETED)
    assert not RequestStatus.ACCEPTED.can_transition(RequestStatus.PENDING)
    assert not RequestStatus.COMPLETED.can_transition(RequestStatus.ACCEPTED)
    assert RequestStatus.COMPLETED.rank > RequestStatus.ACCEPTED.rank > RequestStatus.PENDING.rank


def test_geo_point_accepts_both_shapes():
    assert GeoPoint(coordinates=[80.27, 13.08]).to_position().latitude == 13.08
    assert GeoPoint(x=80.27, y=13.08).to_position().longitude == 80.27
    assert GeoPoint().to_position() is None


def test_request_tolerates_nulls_and_unknown_fields():
    request = RepairRequest.model_validate({"id": "r", "vehicleType": None, "rejectedBy": None,
                                            "somethingNew": 1, "status": "SOS_PENDING"})
    assert request.vehicle_type == VehicleType.UNKNOWN
    assert request.rejected_by == []
    assert request.status.is_pending
    assert StatusUpdateEvent(type="STATUS_UPDATE", data=request).request_id == "r"
