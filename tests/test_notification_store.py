import asyncio
import logging

import pytest

from core.auth import SessionContext
from core.errors import ServerRejectedError
from fake_ws import wait_for
from models.events import GenericEvent
from models.user import Role
from services.notification_api import NotificationApi
from services.notification_store import NotificationStore


def make_store(api, session, poll_interval=60):
    return NotificationStore(NotificationApi(api), session, poll_interval=poll_interval)


def seed(backend, unread=3, read=1):
    ids = [backend.add_notification("client-1", title=f"n{i}")["id"] for i in range(unread)]
    for i in range(read):
        backend.add_notification("client-1", title=f"old{i}", is_read=True)
    return ids


@pytest.mark.asyncio
async def test_fetch_replaces_list_newest_first(backend, client_api, client_session):
    seed(backend, unread=2, read=1)
    backend.add_notification("mech-1", title="not mine")
    store = make_store(client_api, client_session)

    assert await store.fetch_notifications() is True
    assert len(store.notifications) == 3
    assert store.unread_count == 2
    assert store.server_unread_count == 2
    stamps = [n.created_at for n in store.notifications]
    assert stamps == sorted(stamps, reverse=True)


@pytest.mark.asyncio
async def test_mark_as_read_is_applied_before_server_confirms(backend, client_api, client_session):
    ids = seed(backend, unread=2, read=0)
    store = make_store(client_api, client_session)
    await store.fetch_notifications()

    gate = backend.hold("PUT /notifications/read")
    task = asyncio.create_task(store.mark_as_read(ids[0]))
    await gate.arrived.wait()
    # server hasn't answered yet
    assert store.get(ids[0]).is_read is True
    assert store.unread_count == 1
    gate.release()
    assert await task is None
    assert backend.notifications[ids[0]]["isRead"] is True


@pytest.mark.parametrize("sequence", [
    [0, 1, 2],
    [0, 0, 0],
    [2, 1, 2, 1, 0, 0],
    [1],
    [],
])
@pytest.mark.asyncio
async def test_unread_count_never_negative_under_duplicates(backend, client_api, client_session, sequence):
    ids = seed(backend, unread=3, read=0)
    store = make_store(client_api, client_session)
    await store.fetch_notifications()

    for index in sequence:
        assert await store.mark_as_read(ids[index]) is None
        assert store.unread_count >= 0

    distinct = len(set(sequence))
    assert store.unread_count == max(0, 3 - distinct)
    assert store.unread_count == sum(1 for n in store.notifications if not n.is_read)
    # repeated calls on an id that's already read never reach the server
    assert backend.count("PUT /notifications/read") == distinct


@pytest.mark.asyncio
async def test_mark_as_read_failure_reconciles_from_server(backend, client_api, client_session):
    ids = seed(backend, unread=2, read=0)
    store = make_store(client_api, client_session)
    await store.fetch_notifications()
    fetches = backend.count("GET /notifications")

    backend.fail("PUT /notifications/read", 500, "database down")
    error = await store.mark_as_read(ids[1])

    assert isinstance(error, ServerRejectedError)
    assert error.message == "database down"
    assert backend.count("GET /notifications") == fetches + 1
    assert store.get(ids[1]).is_read is False
    assert store.unread_count == 2


@pytest.mark.asyncio
async def test_mark_all_read_offline_restores_server_truth(backend, client_api, client_session):
    seed(backend, unread=3, read=1)
    store = make_store(client_api, client_session)
    await store.fetch_notifications()
    before = {n.id: n.is_read for n in store.notifications}

    backend.fail("PUT /notifications/read-all", 503, "offline")
    changes = []
    store.add_listener(lambda s: changes.append(s.unread_count))
    error = await store.mark_all_as_read()

    assert error is not None
    # optimistic zero first, then the reconciling fetch put the truth back
    assert changes[0] == 0
    assert store.unread_count == 3
    assert {n.id: n.is_read for n in store.notifications} == before


@pytest.mark.asyncio
async def test_mark_all_read_success(backend, client_api, client_session):
    seed(backend, unread=3, read=0)
    store = make_store(client_api, client_session)
    await store.fetch_notifications()

    assert await store.mark_all_as_read() is None
    assert store.unread_count == 0
    assert store.server_unread_count == 0
    assert all(n["isRead"] for n in backend.notifications.values())


@pytest.mark.asyncio
async def test_snapshot_issued_before_local_change_is_discarded(backend, client_api, client_session):
    ids = seed(backend, unread=2, read=0)
    store = make_store(client_api, client_session)
    await store.fetch_notifications()

    gate = backend.hold("GET /notifications")
    slow = asyncio.create_task(store.fetch_notifications())
    await gate.arrived.wait()
    await store.mark_as_read(ids[0])
    gate.release()

    assert await slow is False
    assert store.get(ids[0]).is_read is True
    assert store.unread_count == 1


@pytest.mark.asyncio
async def test_later_fetch_wins_over_slow_earlier_fetch(backend, client_api, client_session):
    seed(backend, unread=1, read=0)
    store = make_store(client_api, client_session)

    gate = backend.hold("GET /notifications")
    slow = asyncio.create_task(store.fetch_notifications())
    await gate.arrived.wait()
    backend.add_notification("client-1", title="fresh")
    assert await store.fetch_notifications() is True
    gate.release()

    assert await slow is False
    assert store.unread_count == 2


@pytest.mark.asyncio
async def test_unauthorized_fetch_is_quiet_and_tears_down(backend, caplog):
    session = SessionContext(token="expired-token", user_id="client-1", role=Role.CLIENT)
    torn = []
    session.on_teardown(torn.append)
    async with backend.api_for(session) as api:
        store = make_store(api, session)
        with caplog.at_level(logging.DEBUG):
            assert await store.fetch_notifications() is False

    assert torn == ["unauthorized"]
    assert not session.is_authenticated
    assert not [r for r in caplog.records if r.levelno >= logging.ERROR]


@pytest.mark.asyncio
async def test_polling_runs_until_session_teardown(backend, client_api, client_session):
    seed(backend, unread=1, read=0)
    store = make_store(client_api, client_session, poll_interval=0.01)
    store.start()
    await wait_for(lambda: backend.count("GET /notifications") >= 2)
    assert store.unread_count == 1

    client_session.teardown("logout")
    assert not store.polling
    assert store.notifications == []
    calls = backend.count("GET /notifications")
    await asyncio.sleep(0.05)
    assert backend.count("GET /notifications") == calls


@pytest.mark.asyncio
async def test_push_event_triggers_refresh(backend, client_api, client_session):
    store = make_store(client_api, client_session)
    await store.fetch_notifications()
    backend.add_notification("client-1", title="Request accepted", notification_type="REQUEST_ACCEPTED")

    await store.handle_event(GenericEvent(type="REQUEST_ACCEPTED"))
    assert store.unread_count == 1
    assert store.notifications[0].title == "Request accepted"


@pytest.mark.asyncio
async def test_stop_cancels_polling(backend, client_api, client_session):
    store = make_store(client_api, client_session, poll_interval=0.01)
    store.start()
    await wait_for(lambda: backend.count("GET /notifications") >= 1)
    await store.stop()
    assert not store.polling
