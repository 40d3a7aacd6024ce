"""Tests for the app factory and route mounting."""

from fastapi.testclient import TestClient

from intakebot.api.factory import create_app


class TestHealth:
    def test_health(self):
        client = TestClient(create_app())
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "intakebot"}

    def test_asgi_entry_point(self):
        from intakebot.api.app import app

        assert TestClient(app).get("/health").status_code == 200


class TestRoutes:
    def test_webhooks_and_tools_share_one_app(self):
        client = TestClient(create_app())
        assert client.post("/telegram/webhook", json={}).status_code == 200
        assert client.post("/whatsapp/webhook", data={}).status_code != 404
        assert client.post("/tools/lookup-candidate", json={}).status_code != 404

    def test_app_role_env_ignored(self, monkeypatch):
        monkeypatch.setenv("APP_ROLE", "webhooks")
        client = TestClient(create_app())
        assert client.post("/tools/lookup-candidate", json={}).status_code != 404


class TestCorrelationId:
    def test_generates_correlation_id(self):
        response = TestClient(create_app()).get("/health")
        assert len(response.headers["X-Correlation-ID"]) == 36

    def test_preserves_incoming_correlation_id(self):
        client = TestClient(create_app())
        response = client.get("/health", headers={"X-Correlation-ID": "test-123"})
        assert response.headers["X-Correlation-ID"] == "test-123"
