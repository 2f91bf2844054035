"""Tests for the HTTP API."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from familyhub.config import AppConfig
from familyhub.main import create_app
from familyhub.repos.state import MemoryStateStore
from familyhub.services.center import build_center
from familyhub.services.timers import FrozenClock, ManualTimers

_NOW = datetime(2025, 1, 9, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def center():
    clock = FrozenClock(_NOW)
    return build_center(
        AppConfig(), clock=clock, timers=ManualTimers(clock), state_store=MemoryStateStore()
    )


@pytest.fixture()
def client(center):
    return TestClient(create_app(center))


def _parse(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _event_payload(**overrides) -> dict:
    payload = {
        "title": "Swimming",
        "person": "alice",
        "date": "2025-01-10",
        "time": "09:00",
        "duration": 60,
        "type": "sport",
    }
    payload.update(overrides)
    return payload


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


def test_create_event_without_conflicts(client):
    resp = client.post("/events", json=_event_payload())
    assert resp.status_code == 201
    body = resp.json()
    assert body["event"]["title"] == "Swimming"
    assert body["conflicts"] == []

    listed = client.get("/events").json()
    assert [e["id"] for e in listed] == [body["event"]["id"]]


def test_create_event_returns_conflicts(client):
    client.post("/events", json=_event_payload(title="Piano"))
    resp = client.post("/events", json=_event_payload(title="Swimming"))

    categories = [c["category"] for c in resp.json()["conflicts"]]
    assert categories == ["double_booking", "time_overlap"]
    assert resp.json()["conflicts"][0]["priority"] == 10


def test_create_duplicate_id(client):
    client.post("/events", json=_event_payload(id="e1"))
    assert client.post("/events", json=_event_payload(id="e1")).status_code == 409


def test_invalid_event_is_rejected(client):
    assert client.post("/events", json=_event_payload(duration=0)).status_code == 422


def test_update_event_redetects(client):
    client.post("/events", json=_event_payload(title="Piano"))
    created = client.post("/events", json=_event_payload(id="e2")).json()
    assert created["conflicts"]

    resp = client.put("/events/e2", json={"time": "13:00"})

    assert resp.status_code == 200
    assert resp.json()["event"]["time"] == "13:00:00"
    assert resp.json()["conflicts"] == []
    assert client.get("/conflicts").json() == []


def test_update_unknown_event(client):
    assert client.put("/events/missing", json={"time": "13:00"}).status_code == 404


def test_delete_event_cancels_reminders(client):
    client.post("/events", json=_event_payload(id="e1"))
    assert len(client.get("/reminders", params={"event_id": "e1"}).json()) == 2

    assert client.delete("/events/e1").status_code == 204
    assert client.get("/reminders").json() == []
    assert client.get("/events/e1").status_code == 404
    assert client.delete("/events/e1").status_code == 404


def test_suggestions(client):
    client.post("/events", json=_event_payload(id="e1"))
    resp = client.get("/events/e1/suggestions", params={"max_days_out": 1})
    assert resp.status_code == 200
    assert resp.json()[0] == "2025-01-11T09:00:00"
    assert len(resp.json()) == 5


def test_people(client):
    client.post("/people", json={"id": "alice", "name": "Alice", "color": "#f00"})
    assert client.get("/people").json() == [{"id": "alice", "name": "Alice", "color": "#f00"}]


# ---------------------------------------------------------------------------
# Conflicts & rules
# ---------------------------------------------------------------------------


def test_resolve_conflict(client):
    client.post("/events", json=_event_payload(title="Piano"))
    conflict_id = client.post("/events", json=_event_payload()).json()["conflicts"][0]["id"]

    resp = client.post(f"/conflicts/{conflict_id}/resolve")

    assert resp.status_code == 200
    assert resp.json()["resolved"] is True
    assert conflict_id not in [c["id"] for c in client.get("/conflicts").json()]
    assert conflict_id in [
        c["id"] for c in client.get("/conflicts", params={"include_resolved": True}).json()
    ]
    assert client.post("/conflicts/nope/resolve").status_code == 404


def test_disable_rule(client):
    resp = client.patch("/rules/double-booking", json={"enabled": False})
    assert resp.status_code == 200
    assert resp.json()["enabled"] is False

    client.post("/events", json=_event_payload(title="Piano"))
    categories = [c["category"] for c in client.post("/events", json=_event_payload()).json()["conflicts"]]
    assert categories == ["time_overlap"]

    assert client.patch("/rules/nope", json={"enabled": False}).status_code == 404
    assert client.patch("/rules/double-booking", json={"colour": "red"}).status_code == 422


# ---------------------------------------------------------------------------
# Reminders and the simulated clock
# ---------------------------------------------------------------------------


def test_tick_delivers_and_acknowledge(client):
    client.post("/events", json=_event_payload(id="e1"))
    first = client.get("/reminders", params={"event_id": "e1"}).json()[0]

    resp = client.post("/tick", params={"now": first["scheduled_for"]})
    assert resp.json()["timers_fired"] == 1

    sent = client.get("/reminders", params={"status": "sent"}).json()
    assert [r["id"] for r in sent] == [first["id"]]

    ack = client.post(f"/reminders/{first['id']}/acknowledge")
    assert ack.json()["status"] == "acknowledged"
    assert client.get("/notifications/unread-count").json() == {"unread": 1, "total": 1}


def test_acknowledge_pending_reminder_is_400(client):
    client.post("/events", json=_event_payload(id="e1"))
    first = client.get("/reminders").json()[0]
    assert client.post(f"/reminders/{first['id']}/acknowledge").status_code == 400
    assert client.post("/reminders/nope/acknowledge").status_code == 404


def test_reschedule_and_cancel_reminder(client):
    client.post("/events", json=_event_payload(id="e1"))
    first = client.get("/reminders").json()[0]
    new_time = (_NOW + timedelta(hours=2)).isoformat()

    resp = client.post(f"/reminders/{first['id']}/reschedule", json={"scheduled_for": new_time})
    assert resp.status_code == 200
    assert _parse(resp.json()["scheduled_for"]) == _NOW + timedelta(hours=2)

    assert client.delete(f"/reminders/{first['id']}").status_code == 204
    assert client.delete(f"/reminders/{first['id']}").status_code == 204
    assert len(client.get("/reminders").json()) == 1


def test_tick_cannot_move_real_clock():
    client = TestClient(create_app(build_center(AppConfig(), state_store=MemoryStateStore())))
    assert client.post("/tick", params={"now": _NOW.isoformat()}).status_code == 400


# ---------------------------------------------------------------------------
# Notifications and settings
# ---------------------------------------------------------------------------


def test_notification_read_filter_and_delete(client):
    client.post("/events", json=_event_payload(title="Piano"))
    client.post("/events", json=_event_payload())

    notes = client.get("/notifications", params={"type": "conflict"}).json()
    assert len(notes) == 2

    assert client.post(f"/notifications/{notes[0]['id']}/read").status_code == 204
    assert len(client.get("/notifications", params={"read": False}).json()) == 1

    assert client.post("/notifications/read-all").status_code == 204
    assert client.get("/notifications/unread-count").json()["unread"] == 0

    assert client.delete(f"/notifications/{notes[0]['id']}").status_code == 204
    assert client.delete(f"/notifications/{notes[0]['id']}").status_code == 404


def test_snooze_with_natural_language(client):
    client.post("/events", json=_event_payload(title="Piano"))
    client.post("/events", json=_event_payload())
    note = client.get("/notifications").json()[0]

    resp = client.post(f"/notifications/{note['id']}/snooze", json={"until": "in 2 hours"})

    assert resp.status_code == 200
    assert _parse(resp.json()["until"]) == _NOW + timedelta(hours=2)
    assert note["id"] not in [n["id"] for n in client.get("/notifications").json()]

    client.post("/tick", params={"now": (_NOW + timedelta(hours=2)).isoformat()})
    assert client.get("/notifications").json()[0]["id"] == note["id"]


def test_snooze_iso_and_garbage(client):
    client.post("/events", json=_event_payload(title="Piano"))
    client.post("/events", json=_event_payload())
    note = client.get("/notifications").json()[0]

    until = (_NOW + timedelta(minutes=30)).isoformat()
    resp = client.post(f"/notifications/{note['id']}/snooze", json={"until": until})
    assert _parse(resp.json()["until"]) == _NOW + timedelta(minutes=30)

    other = client.get("/notifications").json()[0]
    bad = client.post(f"/notifications/{other['id']}/snooze", json={"until": "banana"})
    assert bad.status_code == 400


def test_settings_patch(client):
    resp = client.patch("/settings", json={"quiet_hours": {"start": "21:30"}})
    assert resp.status_code == 200
    assert resp.json()["quiet_hours"] == {"enabled": True, "start": "21:30", "end": "07:00"}
    assert client.get("/settings").json()["quiet_hours"]["start"] == "21:30"

    assert client.patch("/settings", json={"volume": 3}).status_code == 400
    assert client.patch("/settings", json={"quiet_hours": {"start": "9pm"}}).status_code == 400


def test_daily_digest_not_sent_without_email(client):
    resp = client.post("/email/daily-digest")
    assert resp.json()["sent"] is False
