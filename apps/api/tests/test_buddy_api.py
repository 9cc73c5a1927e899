"""
Tests for the /v1 HTTP surface

The app runs with its real clock here, so assertions stick to values that
don't depend on the time of day.
"""
import pytest
from unittest.mock import AsyncMock

from fastapi.testclient import TestClient

from core.exceptions import StorageUnavailable
from main import app
from services.message_policy import SCRIPTED_MESSAGES


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestStatus:
    def test_fresh_install(self, client):
        response = client.get("/v1/status")
        assert response.status_code == 200
        body = response.json()
        assert body["streak"] == 0
        assert body["days_since_last"] is None
        assert body["tone"] == "neutral"
        assert body["next_workout"] is not None
        assert body["next_workout_label"]

    def test_storage_outage_is_503(self, client):
        session = app.state.session
        session.store.query_workouts = AsyncMock(side_effect=StorageUnavailable("query_workouts failed"))

        response = client.get("/v1/status")

        assert response.status_code == 503
        assert response.json()["error_code"] == "STORAGE_UNAVAILABLE"


class TestWorkouts:
    def test_complete(self, client):
        response = client.post("/v1/workouts/complete", json={"activity": "swim"})
        assert response.status_code == 200
        body = response.json()
        assert body["workout"]["status"] == "completed"
        assert body["workout"]["activity"] == "swim"
        assert body["status"]["streak"] == 1
        assert body["status"]["days_since_last"] == 0
        assert body["status"]["phase"] == "idle"
        assert [m["sender"] for m in body["messages"]] == ["user", "assistant"]

    def test_skip(self, client):
        response = client.post("/v1/workouts/skip", json={})
        assert response.status_code == 200
        body = response.json()
        assert body["workout"]["status"] == "skipped"
        assert body["status"]["streak"] == 0

    def test_history_with_stats(self, client):
        client.post("/v1/workouts/complete", json={})
        client.post("/v1/workouts/skip", json={"notes": "rain"})

        response = client.get("/v1/workouts", params={"limit": 10})
        assert response.status_code == 200
        body = response.json()
        assert [w["status"] for w in body["workouts"]] == ["skipped", "completed"]
        assert body["stats"]["completed"] == 1
        assert body["stats"]["skipped"] == 1
        assert body["stats"]["completion_rate"] == 50.0

    def test_history_limit_validated(self, client):
        assert client.get("/v1/workouts", params={"limit": 0}).status_code == 422


class TestMessages:
    def test_opening_message(self, client):
        response = client.get("/v1/messages")
        assert response.status_code == 200
        messages = response.json()
        assert len(messages) == 1
        assert messages[0]["content"] in SCRIPTED_MESSAGES["welcome"]

    def test_chat(self, client):
        response = client.post("/v1/messages", json={"content": "Feeling lazy"})
        assert response.status_code == 200
        user_message, reply = response.json()
        assert user_message["content"] == "Feeling lazy"
        assert reply["sender"] == "assistant"

    def test_empty_chat_rejected(self, client):
        assert client.post("/v1/messages", json={"content": ""}).status_code == 422

    def test_nudge(self, client):
        response = client.post("/v1/nudge", json={"type": "check_in"})
        assert response.status_code == 200
        assert response.json()["content"] in SCRIPTED_MESSAGES["check_in"]

    def test_nudge_rejects_event_types(self, client):
        assert client.post("/v1/nudge", json={"type": "completed"}).status_code == 422


class TestSettings:
    def test_defaults(self, client):
        body = client.get("/v1/settings").json()
        assert body["workout_time"] == "12:00"
        assert body["active_days"] == [0, 1, 4, 6]
        assert body["message_provider"] == "scripted"

    def test_update(self, client):
        response = client.put("/v1/settings", json={"workout_time": "6:45", "active_days": [2, 2, 4]})
        assert response.status_code == 200

        body = client.get("/v1/settings").json()
        assert body["workout_time"] == "06:45"
        assert body["active_days"] == [2, 4]

    def test_no_days_means_nothing_scheduled(self, client):
        response = client.put("/v1/settings", json={"active_days": []})
        assert response.status_code == 200
        assert response.json()["next_workout"] is None
        assert response.json()["next_workout_label"] == "No workouts scheduled"

    @pytest.mark.parametrize(
        "payload",
        [{"workout_time": "25:00"}, {"workout_time": "noon"}, {"active_days": [7]}],
    )
    def test_invalid_settings_rejected(self, client, payload):
        assert client.put("/v1/settings", json=payload).status_code == 422

    def test_enable_notifications(self, client):
        response = client.post("/v1/notifications/enable")
        assert response.status_code == 200
        assert response.json() == {"granted": True}
        assert client.get("/v1/settings").json()["notifications_enabled"] is True


class TestClearData:
    def test_clear(self, client):
        client.post("/v1/workouts/complete", json={})

        response = client.delete("/v1/data")

        assert response.status_code == 200
        assert response.json()["streak"] == 0
        assert client.get("/v1/workouts").json()["workouts"] == []
        assert client.get("/v1/messages").json() == []
