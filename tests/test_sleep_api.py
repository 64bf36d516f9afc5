"""Tests for the sleep check, device and push HTTP endpoints"""
from datetime import date, timedelta

import httpx
import pytest
import pytest_asyncio

from conftest import FACILITY_TZ, MORNING, RecordingChannel, make_event

from sleepcheck.main import app
from sleepcheck.services import alert_dispatcher as dispatcher_module
from sleepcheck.services import devices as devices_module
from sleepcheck.services import monitor as monitor_module
from sleepcheck.services import push_service as push_module
from sleepcheck.services.alert_dispatcher import AlertDispatcher, AudioResource
from sleepcheck.services.devices import DeviceAudioPipeline, DeviceRegistry
from sleepcheck.services.event_store import EventStoreError, InMemoryEventLogStore
from sleepcheck.services.monitor import MonitorRegistry
from sleepcheck.services.push_service import PushService

TODAY = date(2024, 3, 4)
STAFF = {"staff_id": "staff-1", "staff_initials": "ab"}
BASE = "/children/child-1/sleep"


class UnavailableStore(InMemoryEventLogStore):
    async def read(self, child_id, day):
        raise EventStoreError("connection refused")


@pytest.fixture
def store():
    return InMemoryEventLogStore(FACILITY_TZ)


@pytest.fixture
def devices(monkeypatch):
    registry = DeviceRegistry()
    monkeypatch.setattr(devices_module, "_device_registry", registry)
    monkeypatch.setattr(dispatcher_module, "_audio_resource", AudioResource(lambda: DeviceAudioPipeline(registry)))
    monkeypatch.setattr(push_module, "_push_service", PushService(registry))
    return registry


@pytest_asyncio.fixture
async def registry(monkeypatch, store, clock, devices):
    registry = MonitorRegistry(store, AlertDispatcher([RecordingChannel()]), clock=clock, tz_name=FACILITY_TZ)
    monkeypatch.setattr(monitor_module, "_monitor_registry", registry)
    yield registry
    await registry.shutdown()


@pytest_asyncio.fixture
async def client(registry):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.mark.asyncio
async def test_full_session_flow(client, clock):
    response = await client.post(f"{BASE}/start", params=STAFF, json={"position": "Back", "breathing": "Normal"})
    assert response.status_code == 201
    assert response.json()["event"]["staff_initials"] == "AB"

    clock.advance(minutes=15)
    response = await client.post(f"{BASE}/check", params=STAFF, json={"position": "Side", "breathing": "Normal"})
    assert response.status_code == 201
    assert response.json()["event"]["interval_since_last_minutes"] == 15

    state = (await client.get(f"{BASE}/state")).json()
    assert state["can_start"] is False
    assert state["can_check"] is True
    assert state["countdown"]["seconds_remaining"] == 900
    assert state["countdown"]["severity"] == "normal"
    assert state["live_minutes"] == 15

    clock.advance(minutes=16)
    await client.post(f"{BASE}/check", params=STAFF, json={"position": "Back", "breathing": "Normal"})
    clock.advance(minutes=14)
    response = await client.post(
        f"{BASE}/stop", params=STAFF, json={"position": "Back", "breathing": "Normal", "mood": "Happy"}
    )
    assert response.status_code == 201

    state = (await client.get(f"{BASE}/state")).json()
    assert state["countdown"] is None
    assert state["can_start"] is True
    assert state["total_sleep_minutes"] == 45
    assert state["compliance"]["late_checks"] == 1
    assert state["sessions"][0]["total_duration_minutes"] == 45


@pytest.mark.asyncio
async def test_start_without_initials_is_forbidden(client):
    response = await client.post(f"{BASE}/start", json={"position": "Back", "breathing": "Normal"})

    assert response.status_code == 403
    assert response.json()["detail"]["message"] == "Please set your initials in your profile first"


@pytest.mark.asyncio
async def test_conflicting_actions(client):
    response = await client.post(f"{BASE}/check", params=STAFF, json={"position": "Back", "breathing": "Normal"})
    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "NoOpenSession"

    await client.post(f"{BASE}/start", params=STAFF, json={"position": "Back", "breathing": "Normal"})
    response = await client.post(f"{BASE}/start", params=STAFF, json={"position": "Back", "breathing": "Normal"})
    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "SessionAlreadyOpen"


@pytest.mark.asyncio
async def test_invalid_input_is_unprocessable(client):
    response = await client.post(f"{BASE}/start", params=STAFF, json={"position": "Seated", "breathing": "Normal"})
    assert response.json()["detail"]["error"] == "InvalidPosition"
    assert response.status_code == 422

    await client.post(f"{BASE}/start", params=STAFF, json={"position": "Back", "breathing": "Normal"})
    response = await client.post(f"{BASE}/stop", params=STAFF, json={"position": "Back", "breathing": "Normal"})
    assert response.status_code == 422
    assert response.json()["detail"]["error"] == "MissingMood"

    response = await client.post(
        f"{BASE}/check", params=STAFF, json={"position": "Back", "breathing": "Normal", "notes": "n" * 501}
    )
    assert response.status_code == 422
    assert response.json()["detail"]["error"] == "NotesTooLong"


@pytest.mark.asyncio
async def test_history_for_past_day_excludes_open_session(client, store):
    yesterday = MORNING - timedelta(days=1)
    await store.append(make_event("start", yesterday, session_id="session_y1"))
    await store.append(make_event("stop", yesterday + timedelta(minutes=50), session_id="session_y1", mood="Happy", interval=50))
    await store.append(make_event("start", yesterday + timedelta(hours=3), session_id="session_y2"))

    response = await client.get(f"{BASE}/history/{TODAY - timedelta(days=1)}")

    data = response.json()
    assert response.status_code == 200
    assert data["total_sleep_minutes"] == 50
    assert data["live_minutes"] == 0
    assert data["open_session_id"] == "session_y2"


@pytest.mark.asyncio
async def test_analytics_week(client, store):
    for days_ago, minutes in ((1, 30), (3, 90)):
        start = MORNING - timedelta(days=days_ago)
        session_id = f"session_{days_ago}"
        await store.append(make_event("start", start, session_id=session_id))
        await store.append(make_event("stop", start + timedelta(minutes=minutes), session_id=session_id, mood="Happy", interval=minutes))

    data = (await client.get(f"{BASE}/analytics")).json()

    assert len(data["days"]) == 7
    assert data["days"][-1]["date"] == str(TODAY)
    assert data["days"][-2]["total_minutes"] == 30
    assert data["average_sleep_minutes"] == 60
    assert data["total_sessions"] == 2
    assert data["active_days"] == 2


@pytest.mark.asyncio
async def test_analytics_rejects_out_of_range_days(client):
    response = await client.get(f"{BASE}/analytics", params={"days": 0})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_unmount_monitor(client, registry):
    await client.post(f"{BASE}/start", params=STAFF, json={"position": "Back", "breathing": "Normal"})
    monitor = registry.get("child-1")
    assert monitor.countdown.is_active

    response = await client.delete(f"{BASE}/monitor")
    assert response.json() == {"child_id": "child-1", "unmounted": True}
    assert monitor.countdown.is_active is False

    response = await client.delete(f"{BASE}/monitor")
    assert response.json()["unmounted"] is False


@pytest.mark.asyncio
async def test_store_outage_is_service_unavailable(monkeypatch, clock, devices):
    registry = MonitorRegistry(UnavailableStore(FACILITY_TZ), AlertDispatcher([]), clock=clock, tz_name=FACILITY_TZ)
    monkeypatch.setattr(monitor_module, "_monitor_registry", registry)

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get(f"{BASE}/state")

    assert response.status_code == 503
    assert response.json()["detail"]["error"] == "EventStoreError"


# ============================================================================
# Devices & push
# ============================================================================

@pytest.mark.asyncio
async def test_device_registration(client, devices):
    response = await client.post("/devices/kiosk-1/capabilities", json={"supports_vibration": True})
    assert response.json()["supports_vibration"] is True

    response = await client.post("/devices/kiosk-1/gesture")
    assert response.json()["audio_unlocked"] is True
    assert dispatcher_module.get_audio_resource().pipeline.state == "running"

    response = await client.post("/devices/kiosk-1/notification-permission", json={"permission": "granted"})
    assert response.json()["notification_permission"] == "granted"

    response = await client.get("/devices/kiosk-1")
    assert response.status_code == 200
    assert response.json()["connected"] is False


@pytest.mark.asyncio
async def test_unknown_device_not_found(client):
    response = await client.get("/devices/nobody")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_push_without_vapid_keys(client):
    key = (await client.get("/push/vapid-key")).json()
    assert key["configured"] is False

    response = await client.post(
        "/push/subscribe",
        params={"device_id": "phone-1"},
        json={"endpoint": "https://push.example/abc", "keys": {"p256dh": "p", "auth": "a"}},
    )
    assert response.status_code == 503

    response = await client.post("/push/unsubscribe", params={"device_id": "phone-1"})
    assert response.json()["message"] == "No subscription found"
