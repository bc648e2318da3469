"""Tests for the HTTP API and the WebSocket broadcast."""

import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from conftest import FakeMediaController
from media_scheduler.config import Settings
from media_scheduler.scheduler import ActionType
from media_scheduler.main import create_app

API = "/api/scheduler"
FUTURE = "2099-01-01T10:00:00Z"


@pytest.fixture
def media() -> FakeMediaController:
    return FakeMediaController()


@pytest.fixture
def client(tmp_path: Path, media: FakeMediaController):
    app = create_app(Settings(data_dir=tmp_path), media_controller=media)
    with TestClient(app) as test_client:
        yield test_client


def create(client: TestClient, **overrides) -> dict:
    body = {"actionType": "play", "time": "09:00", "isDaily": True, "eventName": "Morning Aarti"}
    body.update(overrides)
    response = client.post(f"{API}/actions", json=body)
    assert response.status_code == 201, response.text
    return response.json()["action"]


class TestActionCrud:
    """Test the action endpoints."""

    def test_create_and_list(self, client):
        action = create(client)

        assert action["time"] == "09:00:00"
        assert action["isDaily"] is True
        assert action["nextRun"] is not None

        data = client.get(f"{API}/actions").json()
        assert data["total"] == 1
        assert data["actions"][0]["id"] == action["id"]

    def test_get_includes_description(self, client):
        action = create(client)
        data = client.get(f"{API}/actions/{action['id']}").json()
        assert data["action"]["eventName"] == "Morning Aarti"
        assert data["schedule"] == "Every day at 09:00:00 (UTC)"

    def test_one_time(self, client):
        action = create(client, actionType="stop", isDaily=False, date=FUTURE, eventName=None)
        assert action["isDaily"] is False
        assert action["nextRun"] == 4070944800

    def test_unknown_action(self, client):
        assert client.get(f"{API}/actions/missing").status_code == 404
        assert client.delete(f"{API}/actions/missing").status_code == 404
        assert client.patch(f"{API}/actions/missing", json={"isActive": False}).status_code == 404
        assert client.post(f"{API}/actions/missing/pause").status_code == 404
        assert client.post(f"{API}/actions/missing/execute").status_code == 404

    def test_put_replaces(self, client):
        action = create(client)
        response = client.put(
            f"{API}/actions/{action['id']}",
            json={"actionType": "pause", "time": "10:30", "isDaily": True},
        )
        assert response.status_code == 200
        replaced = response.json()["action"]
        assert replaced["actionType"] == "pause"
        assert replaced["time"] == "10:30:00"
        assert replaced["eventName"] is None

    def test_patch_changes_only_given_fields(self, client):
        action = create(client)
        response = client.patch(f"{API}/actions/{action['id']}", json={"eventName": "Katha"})
        patched = response.json()["action"]
        assert patched["eventName"] == "Katha"
        assert patched["time"] == "09:00:00"
        assert patched["isActive"] is True

    def test_empty_patch_rejected(self, client):
        action = create(client)
        response = client.patch(f"{API}/actions/{action['id']}", json={})
        assert response.status_code == 400

    def test_delete(self, client):
        action = create(client)
        response = client.delete(f"{API}/actions/{action['id']}")
        assert response.json() == {"status": "deleted", "actionId": action["id"]}
        assert client.get(f"{API}/actions/{action['id']}").status_code == 404


class TestValidation:
    """Bad input is a 400, never a 500."""

    def test_missing_fields(self, client):
        response = client.post(f"{API}/actions", json={"isDaily": True})
        assert response.status_code == 400

    def test_one_time_without_date(self, client):
        response = client.post(f"{API}/actions", json={"actionType": "stop", "time": "09:00"})
        assert response.status_code == 400
        assert "Date is required" in response.json()["detail"]

    def test_bad_action_type(self, client):
        response = client.post(
            f"{API}/actions", json={"actionType": "rewind", "time": "09:00", "isDaily": True}
        )
        assert response.status_code == 400

    def test_bad_time(self, client):
        response = client.post(
            f"{API}/actions", json={"actionType": "stop", "time": "25:61", "isDaily": True}
        )
        assert response.status_code == 400

    def test_duplicate_daily(self, client):
        create(client)
        response = client.post(
            f"{API}/actions", json={"actionType": "play", "time": "09:00:00", "isDaily": True}
        )
        assert response.status_code == 400
        assert "already exists" in response.json()["detail"]


class TestControl:
    """Pause, resume and manual execution."""

    def test_pause_and_resume(self, client):
        action = create(client)

        paused = client.post(f"{API}/actions/{action['id']}/pause").json()["action"]
        assert paused["isActive"] is False
        assert client.get(f"{API}/health").json()["scheduledEntries"] == 0

        resumed = client.post(f"{API}/actions/{action['id']}/resume").json()["action"]
        assert resumed["isActive"] is True
        assert client.get(f"{API}/health").json()["scheduledEntries"] == 1

    def test_execute(self, client, media):
        action = create(client)

        result = client.post(f"{API}/actions/{action['id']}/execute").json()

        assert result["success"] is True
        assert result["target"] == "Morning Aarti"
        assert len(media.calls) == 1
        stored = client.get(f"{API}/actions/{action['id']}").json()["action"]
        assert stored["lastRun"] is not None

    def test_execute_failure_is_reported(self, client, media):
        media.fail = True
        action = create(client)

        result = client.post(f"{API}/actions/{action['id']}/execute").json()

        assert result["success"] is False
        assert result["message"] == "Player unavailable"


class TestMonitoring:
    def test_root_health(self, client):
        data = client.get("/health").json()
        assert data["status"] == "ok"
        assert data["scheduler"]["running"] is True

    def test_scheduler_health(self, client):
        create(client)
        data = client.get(f"{API}/health").json()
        assert data["activeSchedules"] == 1
        assert data["isInitialized"] is True
        assert data["lastError"] is None

    def test_debug(self, client):
        action = create(client)
        data = client.get(f"{API}/debug").json()
        assert data["ghostCount"] == 0
        assert data["schedules"][0]["actionId"] == action["id"]
        assert data["schedules"][0]["scheduleId"] == "daily:play:09:00:00"

    def test_reinitialize(self, client):
        create(client)
        response = client.post(f"{API}/reinitialize")
        assert response.status_code == 200
        assert response.json()["health"]["scheduledEntries"] == 1
        assert response.json()["health"]["isInitialized"] is True

    def test_reinitialize_failure(self, client, monkeypatch):
        create(client)
        scheduler = client.app.state.scheduler

        async def broken_list(*args, **kwargs):
            raise OSError("disk I/O error")

        monkeypatch.setattr(scheduler.store, "list", broken_list)
        response = client.post(f"{API}/reinitialize")
        monkeypatch.undo()

        assert response.status_code == 500
        assert "disk I/O error" in response.json()["detail"]
        health = client.get(f"{API}/health").json()
        assert health["isInitialized"] is False
        assert health["scheduledEntries"] == 1

    def test_not_ready_before_startup(self, tmp_path):
        app = create_app(Settings(data_dir=tmp_path), media_controller=FakeMediaController())
        client = TestClient(app)
        assert client.get(f"{API}/actions").status_code == 503
        assert client.get("/health").json()["status"] == "starting"


class TestWebSocket:
    def test_ping(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"method": "ping"})
            assert ws.receive_json() == {"type": "pong", "connections": 1}

    def test_execution_broadcast(self, client):
        action = create(client)
        with client.websocket_connect("/ws?client_id=test") as ws:
            client.post(f"{API}/actions/{action['id']}/execute")
            event = ws.receive_json()

        assert event["type"] == "executed"
        assert event["action"]["id"] == action["id"]
        assert event["result"]["success"] is True


class TestCalendarEvents:
    """Calendar events feed playlist names to play actions without one."""

    def add(self, client: TestClient, *events: dict) -> list:
        response = client.post("/api/calendar-events", json=list(events))
        assert response.status_code == 201, response.text
        return response.json()["events"]

    def test_import_and_list(self, client):
        created = self.add(
            client,
            {"summary": "Katha", "start": "2099-01-02T10:00:00Z", "end": "2099-01-02T11:00:00Z"},
            {"summary": "Aarti", "start": 4070944800, "end": 4070948400},
        )

        assert all(event["id"] is not None for event in created)
        assert created[0]["start"] == 4071031200
        data = client.get("/api/calendar-events").json()
        assert data["total"] == 2
        assert [e["summary"] for e in data["events"]] == ["Aarti", "Katha"]

    def test_get_replace_delete(self, client):
        event = self.add(client, {"summary": "Katha", "start": 4070944800, "end": 4070948400})[0]
        url = f"/api/calendar-events/{event['id']}"

        assert client.get(url).json()["event"]["summary"] == "Katha"

        response = client.put(
            url, json={"summary": "Sandhya", "start": 4070944800, "end": 4070952000, "location": "Hall"}
        )
        assert response.status_code == 200
        assert response.json()["event"]["summary"] == "Sandhya"
        assert client.get(url).json()["event"]["end"] == 4070952000

        assert client.delete(url).json() == {"status": "deleted", "eventId": event["id"]}
        assert client.get(url).status_code == 404
        assert client.delete(url).status_code == 404

    def test_unknown_event(self, client):
        assert client.get("/api/calendar-events/999").status_code == 404
        response = client.put(
            "/api/calendar-events/999", json={"summary": "x", "start": 0, "end": 1}
        )
        assert response.status_code == 404

    def test_bad_input(self, client):
        assert client.post("/api/calendar-events", json=[]).status_code == 400
        missing_summary = [{"start": 0, "end": 1}]
        assert client.post("/api/calendar-events", json=missing_summary).status_code == 400
        backwards = [{"summary": "x", "start": 4070948400, "end": 4070944800}]
        response = client.post("/api/calendar-events", json=backwards)
        assert response.status_code == 400
        assert response.json()["detail"] == "Event end is before its start"
        unparsable = [{"summary": "x", "start": "soon", "end": "later"}]
        assert client.post("/api/calendar-events", json=unparsable).status_code == 400
        assert client.get("/api/calendar-events").json()["total"] == 0

    def test_play_uses_current_event(self, client, media):
        now = int(time.time())
        self.add(client, {"summary": "12 Sud Punam", "start": now - 3600, "end": now + 3600})
        action = create(client, eventName=None)

        result = client.post(f"{API}/actions/{action['id']}/execute").json()

        assert result["success"] is True
        assert media.calls == [(ActionType.PLAY, "12 Sud Punam")]
