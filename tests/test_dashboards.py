import json

import pytest
import pytest_asyncio

from fake_backend import CHENNAI
from fake_ws import FakeConnector, wait_for
from infra.stomp_client import StompClient
from models.schemas import GeoPosition, RequestStatus, VehicleType
from tools.gps_simulator import SimulatedPositionSource
from ui.client_dashboard import ClientDashboard
from ui.feedback import FeedbackLog, Variant
from ui.mechanic_dashboard import MechanicDashboard

HERE = GeoPosition(latitude=CHENNAI[0], longitude=CHENNAI[1])


@pytest.fixture()
def connector():
    return FakeConnector()


@pytest.fixture()
def source():
    return SimulatedPositionSource(*CHENNAI, interval=None)


@pytest_asyncio.fixture()
async def client_dash(client_session, client_api, connector, source):
    transport = StompClient(url="ws://broker.test/ws/websocket", session=client_session,
                            reconnect_delay=0, connection_factory=connector)
    dash = ClientDashboard(client_session, client_api, transport, source, feedback=FeedbackLog(),
                           request_poll_sec=60, notification_poll_sec=60)
    yield dash
    await dash.stop()
    await transport.disconnect()


@pytest_asyncio.fixture()
async def mechanic_dash(mechanic_session, mechanic_api, connector):
    transport = StompClient(url="ws://broker.test/ws/websocket", session=mechanic_session,
                            reconnect_delay=0, connection_factory=connector)
    dash = MechanicDashboard(mechanic_session, mechanic_api, transport, feedback=FeedbackLog(),
                             poll_sec=60, notification_poll_sec=60)
    yield dash
    await dash.stop()
    await transport.disconnect()


async def started(dash, connector, user_id):
    assert await dash.start() is True
    topic = f"/user/{user_id}/queue/notifications"
    await wait_for(lambda: connector.sockets and topic in connector.current.subscribed_destinations())
    return connector.current, topic


async def located(dash, source, position=HERE):
    source.emit(position)
    await dash.watcher.settle()


# ---------------- client ----------------

@pytest.mark.asyncio
async def test_request_without_position_is_rejected_locally(backend, client_dash):
    created = await client_dash.request_shop("shop-1", VehicleType.FOUR_WHEELER, "Flat tyre")

    assert created is None
    assert client_dash.feedback.last.title == "Missing information"
    assert client_dash.feedback.last.variant == Variant.DESTRUCTIVE
    assert backend.count("POST /requests") == 0


@pytest.mark.asyncio
async def test_position_fix_loads_nearby_shops(backend, client_dash, connector, source):
    await started(client_dash, connector, "client-1")
    await located(client_dash, source)

    assert [r.shop.id for r in client_dash.shops] == ["shop-1"]
    assert client_dash.shops[0].distance_km == pytest.approx(1.112, abs=0.01)
    assert backend.count("GET /mechanics/nearby") == 1


@pytest.mark.asyncio
async def test_request_shop_shows_up_before_next_poll(backend, client_dash, connector, source):
    await started(client_dash, connector, "client-1")
    await located(client_dash, source)
    polls = backend.count("GET /requests/my-requests")

    created = await client_dash.request_shop("shop-1", VehicleType.FOUR_WHEELER, "Flat tyre")

    assert created.status == RequestStatus.PENDING
    assert client_dash.requests.get(created.id) is not None
    assert client_dash.feedback.last.title == "Request Sent"
    assert backend.count("GET /requests/my-requests") == polls


@pytest.mark.asyncio
async def test_broadcast_shares_one_broadcast_id(backend, client_dash, connector, source):
    backend.add_shop("shop-2", None, "Anna Nagar Garage", CHENNAI[0], CHENNAI[1] + 0.02,
                     shop_types=["FOUR_WHEELER"])
    backend.add_shop("shop-3", None, "Bike Doctor", CHENNAI[0], CHENNAI[1] - 0.02, shop_types=["TWO_WHEELER"])
    await started(client_dash, connector, "client-1")
    await located(client_dash, source)

    created = await client_dash.broadcast(VehicleType.FOUR_WHEELER, "Engine won't start")

    assert {r.mechanic_shop_id for r in created} == {"shop-1", "shop-2"}
    stored = [backend.requests[r.id] for r in created]
    assert len({r["broadcastId"] for r in stored}) == 1
    assert stored[0]["broadcastId"]
    assert client_dash.feedback.last.title == "Requests Sent"
    assert {r.id for r in client_dash.requests.requests} == {r.id for r in created}


@pytest.mark.asyncio
async def test_broadcast_with_no_eligible_shop(backend, client_dash, connector, source):
    backend.shops["shop-1"]["isAvailable"] = False
    await started(client_dash, connector, "client-1")
    await located(client_dash, source)

    assert await client_dash.broadcast(VehicleType.FOUR_WHEELER) == []
    assert client_dash.feedback.last.title == "No Mechanics Found"
    assert backend.count("POST /requests") == 0


@pytest.mark.asyncio
async def test_sos(backend, client_dash, connector, source):
    await started(client_dash, connector, "client-1")
    await located(client_dash, source)

    created = await client_dash.send_sos("Marina Beach Road")
    assert created.is_sos
    assert backend.requests[created.id]["clientAddress"] == "Marina Beach Road"
    assert client_dash.feedback.last.title == "SOS Sent"


@pytest.mark.asyncio
async def test_rate_only_completed_requests(backend, client_dash):
    pending = backend.add_request()
    done = backend.add_request(status="COMPLETED")
    await client_dash.requests.refresh()

    assert await client_dash.rate(pending["id"], 5) is False
    assert client_dash.feedback.last.title == "Missing information"

    assert await client_dash.rate(done["id"], 4) is True
    assert backend.ratings[0]["mechanicShopId"] == "shop-1"
    assert backend.ratings[0]["rating"] == 4
    assert client_dash.feedback.last.title == "Rating Submitted"


@pytest.mark.asyncio
async def test_accepted_push_refreshes_and_notifies(backend, client_dash, connector):
    record = backend.add_request()
    ws, topic = await started(client_dash, connector, "client-1")
    await wait_for(lambda: client_dash.requests.get(record["id"]) is not None)

    record.update(status="ACCEPTED", mechanicUserId="mech-1")
    backend.add_notification("client-1", title="Request accepted", notification_type="REQUEST_ACCEPTED",
                             request_id=record["id"])
    ws.deliver(topic, {"type": "REQUEST_ACCEPTED",
                       "data": {"id": record["id"], "status": "ACCEPTED", "shopName": "Ravi Motors"}})

    await wait_for(lambda: "Request Accepted" in client_dash.feedback.titles())
    assert client_dash.requests.get(record["id"]).status == RequestStatus.ACCEPTED
    assert client_dash.notifications.unread_count == 1
    assert client_dash.feedback.last.description == "Ravi Motors is on the way"


@pytest.mark.asyncio
async def test_track_accepted_request_eta(backend, client_dash, connector):
    pending = backend.add_request()
    accepted = backend.add_request(status="ACCEPTED")
    ws, _ = await started(client_dash, connector, "client-1")
    await client_dash.requests.refresh()

    assert await client_dash.track(pending["id"]) is None
    tracker = await client_dash.track(accepted["id"])
    await wait_for(lambda: tracker.topic in ws.subscribed_destinations())

    ws.deliver(tracker.topic, {"requestId": accepted["id"], "mechanicUserId": "mech-1",
                               "location": {"latitude": CHENNAI[0] + 0.1, "longitude": CHENNAI[1]},
                               "speed": 0})
    await wait_for(lambda: tracker.mechanic_position is not None)

    assert tracker.distance_km == pytest.approx(11.119, abs=0.01)
    # parked mechanic: ETA falls back to the default 20 km/h
    assert tracker.eta_seconds == pytest.approx(2001, abs=2)

    await client_dash.untrack(accepted["id"])
    assert tracker.topic not in client_dash.transport.topics()


# ---------------- mechanic ----------------

@pytest.mark.asyncio
async def test_accept_moves_job_and_confirms(backend, mechanic_dash):
    record = backend.add_request()
    await mechanic_dash.jobs.refresh()

    assert await mechanic_dash.accept(record["id"]) is True
    assert [r.id for r in mechanic_dash.jobs.active] == [record["id"]]
    assert mechanic_dash.jobs.incoming == []
    assert backend.requests[record["id"]]["status"] == "ACCEPTED"
    assert mechanic_dash.feedback.last.title == "Success"


@pytest.mark.asyncio
async def test_accept_already_taken_reconciles_and_shows_server_message(backend, mechanic_dash):
    record = backend.add_request()
    await mechanic_dash.jobs.refresh()
    fetches = backend.count("GET /mechanic/incoming-requests")
    record.update(status="ACCEPTED", mechanicUserId="mech-2")  # another mechanic won

    assert await mechanic_dash.accept(record["id"]) is False

    assert backend.count("GET /mechanic/incoming-requests") == fetches + 1
    assert mechanic_dash.jobs.incoming == []
    assert mechanic_dash.jobs.active == []
    assert mechanic_dash.feedback.last.title == "Error"
    assert mechanic_dash.feedback.last.description == "Request already taken"


@pytest.mark.asyncio
async def test_accept_server_error_restores_pending_job(backend, mechanic_dash):
    record = backend.add_request()
    await mechanic_dash.jobs.refresh()
    backend.fail("POST /mechanic/accept-request", 503, "Service unavailable")

    assert await mechanic_dash.accept(record["id"]) is False

    assert backend.requests[record["id"]]["status"] == "PENDING"
    assert [r.id for r in mechanic_dash.jobs.incoming] == [record["id"]]
    assert mechanic_dash.jobs.active == []
    assert mechanic_dash.feedback.last.description == "Service unavailable"

    # later polls keep showing it, and a retry goes through
    await mechanic_dash.jobs.refresh()
    assert [r.id for r in mechanic_dash.jobs.incoming] == [record["id"]]
    backend.clear_failure("POST /mechanic/accept-request")
    assert await mechanic_dash.accept(record["id"]) is True
    assert [r.id for r in mechanic_dash.jobs.active] == [record["id"]]


@pytest.mark.asyncio
async def test_reject_server_error_restores_pending_job(backend, mechanic_dash):
    record = backend.add_request()
    await mechanic_dash.jobs.refresh()
    backend.fail("POST /mechanic/reject-request", 503)

    assert await mechanic_dash.reject(record["id"]) is False

    assert [r.id for r in mechanic_dash.jobs.incoming] == [record["id"]]
    assert mechanic_dash.jobs.find(record["id"]).status == RequestStatus.PENDING
    await mechanic_dash.jobs.refresh()
    assert [r.id for r in mechanic_dash.jobs.incoming] == [record["id"]]


@pytest.mark.asyncio
async def test_complete_server_error_keeps_job_active(backend, mechanic_dash, caplog):
    accepted = backend.add_request(status="ACCEPTED")
    await mechanic_dash.jobs.refresh()
    backend.fail("POST /mechanic/update-status", 503)

    assert await mechanic_dash.complete(accepted["id"]) is False

    assert backend.requests[accepted["id"]]["status"] == "ACCEPTED"
    assert [r.id for r in mechanic_dash.jobs.active] == [accepted["id"]]
    assert mechanic_dash.jobs.history == []
    await mechanic_dash.jobs.refresh()
    assert [r.id for r in mechanic_dash.jobs.active] == [accepted["id"]]
    assert "Ignoring stale status" not in caplog.text


@pytest.mark.asyncio
async def test_reject(backend, mechanic_dash):
    record = backend.add_request()
    await mechanic_dash.jobs.refresh()

    assert await mechanic_dash.reject(record["id"]) is True
    assert mechanic_dash.jobs.find(record["id"]).status == RequestStatus.REJECTED
    assert mechanic_dash.feedback.last.title == "Info"


@pytest.mark.asyncio
async def test_complete_only_from_accepted(backend, mechanic_dash):
    pending = backend.add_request()
    accepted = backend.add_request(status="ACCEPTED")
    await mechanic_dash.jobs.refresh()

    assert await mechanic_dash.complete(pending["id"]) is False
    assert backend.count("POST /mechanic/update-status") == 0
    assert mechanic_dash.feedback.last.title == "Missing information"

    assert await mechanic_dash.complete(accepted["id"]) is True
    assert backend.requests[accepted["id"]]["status"] == "COMPLETED"
    assert [r.id for r in mechanic_dash.jobs.history] == [accepted["id"]]


@pytest.mark.asyncio
async def test_share_location_only_for_active_jobs(backend, mechanic_dash, connector):
    pending = backend.add_request()
    accepted = backend.add_request(status="ACCEPTED")
    ws, _ = await started(mechanic_dash, connector, "mech-1")
    await mechanic_dash.jobs.refresh()
    here = GeoPosition(latitude=13.09, longitude=80.27, accuracy=5.0)

    assert await mechanic_dash.share_location(pending["id"], here) is False
    assert await mechanic_dash.share_location(accepted["id"], here, speed=32.5, heading=180) is True

    body = json.loads(ws.frames("SEND")[-1].body)
    assert body["requestId"] == accepted["id"]
    assert body["mechanicUserId"] == "mech-1"
    assert body["location"] == {"latitude": 13.09, "longitude": 80.27}
    assert body["speed"] == 32.5
    assert body["timestamp"] > 0


@pytest.mark.asyncio
async def test_push_events_update_lists_and_toast(backend, mechanic_dash, connector):
    existing = backend.add_request()
    ws, topic = await started(mechanic_dash, connector, "mech-1")
    await wait_for(lambda: mechanic_dash.jobs.incoming)

    ws.deliver(topic, {"type": "NEW_REQUEST",
                       "data": {"id": "req-push", "status": "PENDING", "vehicleType": "TWO_WHEELER"}})
    ws.deliver(topic, {"type": "SOS_ALERT", "data": {"id": "req-sos", "status": "PENDING", "type": "SOS"}})
    ws.deliver(topic, {"type": "REQUEST_TAKEN", "data": {"id": existing["id"]}})
    await wait_for(lambda: "Request Taken" in mechanic_dash.feedback.titles())

    assert mechanic_dash.feedback.titles()[-3:] == ["New Request Received", "SOS Alert!", "Request Taken"]
    assert [r.id for r in mechanic_dash.jobs.incoming] == ["req-sos", "req-push"]


@pytest.mark.asyncio
async def test_set_availability(backend, mechanic_dash):
    assert await mechanic_dash.set_availability(False) is True
    assert mechanic_dash.available is False
    assert backend.shops["shop-1"]["isAvailable"] is False
    assert mechanic_dash.feedback.last.description == "You are now unavailable"


@pytest.mark.asyncio
async def test_wrong_role_does_not_start(client_session, client_api, connector):
    transport = StompClient(url="ws://broker.test/ws/websocket", session=client_session,
                            reconnect_delay=0, connection_factory=connector)
    dash = MechanicDashboard(client_session, client_api, transport)
    assert await dash.start() is False
    assert connector.sockets == []
