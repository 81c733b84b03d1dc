import pytest
from fastapi.testclient import TestClient

from salonbook.database import get_db
from salonbook.domain.scheduling.notifications import ChangeSignal
from salonbook.domain.scheduling.router import get_bridge, get_cache, get_clock
from salonbook.main import app

from .conftest import ADMIN_KEY, TARGET, RecordingBridge

SESSION = {"X-Booking-Session": "browser-session-1"}
OTHER_SESSION = {"X-Booking-Session": "browser-session-2"}
ADMIN = {"Authorization": f"Bearer {ADMIN_KEY}"}


@pytest.fixture
def client(session_factory, no_cache, bridge, clock, seed):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: no_cache
    app.dependency_overrides[get_bridge] = lambda: bridge
    app.dependency_overrides[get_clock] = lambda: clock
    yield TestClient(app)
    app.dependency_overrides.clear()


def hold_body(seed, time="10:00", **extra):
    return {"staffId": seed.anna_id, "serviceId": seed.haircut_id, "date": TARGET.isoformat(), "time": time, **extra}


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_availability(client, seed):
    response = client.get(
        f"/booking/{seed.slug}/availability",
        params={"date": TARGET.isoformat(), "service_id": seed.haircut_id, "staff_id": seed.anna_id},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["slots"][0] == "09:00"
    assert body["options"][0] == {"time": "09:00", "staffId": seed.anna_id, "staffName": "Anna Berg"}


def test_unknown_tenant(client, seed):
    response = client.get(
        "/booking/nobody/availability", params={"date": TARGET.isoformat(), "service_id": seed.haircut_id}
    )

    assert response.status_code == 404


def test_hold_release_and_race_flow(client, seed):
    created = client.post(f"/booking/{seed.slug}/holds", json=hold_body(seed), headers=SESSION)
    assert created.status_code == 201
    hold = created.json()
    assert hold["time"] == "10:00"
    assert hold["durationMinutes"] == 30
    assert hold["expiresAt"].startswith("2030-01-07T12:05")

    taken = client.post(f"/booking/{seed.slug}/holds", json=hold_body(seed, "10:15"), headers=OTHER_SESSION)
    assert taken.status_code == 409
    assert taken.json() == {"detail": "This time was just taken, please choose another.", "code": "SlotUnavailable"}

    # The holder still sees the slot; others do not
    params = {"date": TARGET.isoformat(), "service_id": seed.haircut_id, "staff_id": seed.anna_id}
    mine = client.get(f"/booking/{seed.slug}/availability", params=params, headers=SESSION).json()
    theirs = client.get(f"/booking/{seed.slug}/availability", params=params, headers=OTHER_SESSION).json()
    assert "10:00" in mine["slots"]
    assert "10:00" not in theirs["slots"]

    assert client.delete(f"/booking/holds/{hold['id']}").status_code == 204
    assert client.delete(f"/booking/holds/{hold['id']}").status_code == 204


def test_hold_requires_session_header(client, seed):
    response = client.post(f"/booking/{seed.slug}/holds", json=hold_body(seed))

    assert response.status_code == 400


def test_hold_outside_hours(client, seed):
    response = client.post(f"/booking/{seed.slug}/holds", json=hold_body(seed, "18:00"), headers=SESSION)

    assert response.status_code == 422
    assert response.json()["code"] == "InvalidWindow"


def test_hold_rejects_malformed_time(client, seed):
    response = client.post(f"/booking/{seed.slug}/holds", json=hold_body(seed, "10h"), headers=SESSION)

    assert response.status_code == 422


def test_confirm_flow(client, seed, clock):
    hold = client.post(f"/booking/{seed.slug}/holds", json=hold_body(seed), headers=SESSION).json()

    confirmed = client.post(
        f"/booking/holds/{hold['id']}/confirm",
        json={"firstName": "Ria", "email": "ria@example.com", "notes": "First visit"},
        headers=SESSION,
    )

    assert confirmed.status_code == 201
    appointment = confirmed.json()
    assert appointment["status"] == "confirmed"
    assert appointment["scheduledAt"] == "2030-01-08T10:00:00"
    assert appointment["isPaid"] is False

    again = client.post(f"/booking/holds/{hold['id']}/confirm", json={}, headers=SESSION)
    assert again.status_code == 404
    assert again.json()["code"] == "HoldNotFound"


def test_confirm_expired(client, seed, clock):
    hold = client.post(f"/booking/{seed.slug}/holds", json=hold_body(seed), headers=SESSION).json()
    clock.advance(minutes=5)

    response = client.post(f"/booking/holds/{hold['id']}/confirm", json={}, headers=SESSION)

    assert response.status_code == 410
    assert response.json()["code"] == "HoldExpired"


def test_confirm_rejects_invalid_email(client, seed):
    hold = client.post(f"/booking/{seed.slug}/holds", json=hold_body(seed), headers=SESSION).json()

    response = client.post(f"/booking/holds/{hold['id']}/confirm", json={"email": "nope"}, headers=SESSION)

    assert response.status_code == 422


def test_layout_endpoint(client):
    items = [
        {"id": "A", "scheduledAt": "2030-01-08T09:00:00", "durationMinutes": 60},
        {"id": "B", "scheduledAt": "2030-01-08T09:30:00", "durationMinutes": 60},
        {"id": "C", "scheduledAt": "2030-01-08T09:15:00", "durationMinutes": 30},
        {"id": "D", "scheduledAt": "2030-01-08T12:00:00", "durationMinutes": 30},
    ]

    response = client.post("/booking/layout", json={"items": items})

    assert response.status_code == 200
    records = {r["id"]: r for r in response.json()}
    assert [records[i]["column"] for i in ("A", "C", "B")] == [0, 1, 2]
    assert records["A"]["totalColumns"] == 3
    assert records["D"]["totalColumns"] == 1
    assert records["D"]["widthPercent"] == 100


def test_day_calendar(client, seed):
    client.post(f"/booking/{seed.slug}/holds", json=hold_body(seed), headers=SESSION)

    response = client.get(f"/booking/{seed.slug}/calendar", params={"date": TARGET.isoformat()})

    assert response.status_code == 200
    lanes = {lane["staffId"]: lane["records"] for lane in response.json()["lanes"]}
    assert [r["kind"] for r in lanes[seed.anna_id]] == ["hold"]
    assert lanes[seed.bram_id] == []


def test_staff_availability(client, seed):
    response = client.get(
        f"/booking/{seed.slug}/staff-availability",
        params={"start_date": TARGET.isoformat(), "end_date": TARGET.isoformat(), "staff_id": seed.bram_id},
    )

    assert response.status_code == 200
    day = response.json()["days"][0]
    assert day["available"] is True
    assert day["staff"][0]["workingWindow"] == {"start": "09:00", "end": "17:00"}


def test_event_stream_relays_signals(client, seed, fake_redis):
    class ScriptedBridge(RecordingBridge):
        def listen(self, tenant_id, target_date=None, poll_timeout=1.0):
            yield None
            yield ChangeSignal(tenant_id=tenant_id, event="hold_created", date=target_date.isoformat())

    app.dependency_overrides[get_bridge] = lambda: ScriptedBridge(fake_redis)

    response = client.get(f"/booking/{seed.slug}/events", params={"date": TARGET.isoformat()})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert ": keep-alive" in response.text
    assert "event: hold_created" in response.text


def test_admin_requires_valid_key(client, seed):
    url = f"/booking/{seed.slug}/staff/{seed.anna_id}/schedule"

    assert client.get(url).status_code in (401, 403)
    assert client.get(url, headers={"Authorization": "Bearer wrong"}).status_code == 401
    assert client.get(url, headers=ADMIN).status_code == 200


def test_admin_schedule_and_exceptions(client, seed):
    week = client.get(f"/booking/{seed.slug}/staff/{seed.anna_id}/schedule", headers=ADMIN).json()
    week["tuesday"] = {"enabled": False, "start": "09:00", "end": "17:00"}
    updated = client.put(f"/booking/{seed.slug}/staff/{seed.anna_id}/schedule", json=week, headers=ADMIN)
    assert updated.status_code == 200
    assert updated.json()["tuesday"]["enabled"] is False

    bad = client.put(
        f"/booking/{seed.slug}/staff/{seed.anna_id}/schedule",
        json={"monday": {"enabled": True, "start": "12:00", "end": "11:00"}},
        headers=ADMIN,
    )
    assert bad.status_code == 422

    created = client.post(
        f"/booking/{seed.slug}/staff/{seed.bram_id}/exceptions",
        json={"date": TARGET.isoformat(), "reason": "sick"},
        headers=ADMIN,
    )
    assert created.status_code == 201
    exception_id = created.json()["id"]

    listed = client.get(f"/booking/{seed.slug}/staff/{seed.bram_id}/exceptions", headers=ADMIN).json()
    assert [e["id"] for e in listed] == [exception_id]

    patched = client.patch(
        f"/booking/{seed.slug}/exceptions/{exception_id}",
        json={"isAvailable": True, "startTime": "13:00", "endTime": "15:00"},
        headers=ADMIN,
    )
    assert patched.json()["startTime"] == "13:00"

    nulled = client.patch(
        f"/booking/{seed.slug}/exceptions/{exception_id}",
        json={"isAvailable": None},
        headers=ADMIN,
    )
    assert nulled.status_code == 200
    assert nulled.json()["isAvailable"] is True

    assert client.delete(f"/booking/{seed.slug}/exceptions/{exception_id}", headers=ADMIN).status_code == 204


def test_admin_appointment_updates(client, seed):
    hold = client.post(f"/booking/{seed.slug}/holds", json=hold_body(seed), headers=SESSION).json()
    appointment = client.post(
        f"/booking/holds/{hold['id']}/confirm", json={"email": "ria@example.com"}, headers=SESSION
    ).json()

    paid = client.post(f"/booking/{seed.slug}/appointments/{appointment['id']}/paid", headers=ADMIN)
    assert paid.json()["isPaid"] is True

    cancelled = client.patch(
        f"/booking/{seed.slug}/appointments/{appointment['id']}/status",
        json={"status": "cancelled"},
        headers=ADMIN,
    )
    assert cancelled.json()["status"] == "cancelled"

    reopened = client.patch(
        f"/booking/{seed.slug}/appointments/{appointment['id']}/status",
        json={"status": "confirmed"},
        headers=ADMIN,
    )
    assert reopened.status_code == 409
    assert reopened.json()["code"] == "InvalidTransition"

    rebooked = client.post(f"/booking/{seed.slug}/holds", json=hold_body(seed), headers=OTHER_SESSION)
    assert rebooked.status_code == 201
