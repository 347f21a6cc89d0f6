"""
Tests for the authenticated API surface.

Tests cover:
- Bearer authentication (401 missing/malformed, 403 wrong secret)
- GET /status readiness reporting
- POST /send-message validation, readiness gate and provider errors
- GET /metrics
"""

import asyncio

import pytest

from wabridge.errors import StoreOpenError
from wabridge.events import DisconnectedEvent, ReadyEvent
from wabridge.main import create_app
from wabridge.bridge import Bridge


class TestAuthentication:
    """Test the bearer gate applied before route dispatch."""

    @pytest.mark.parametrize("path", ["/status", "/chats", "/contacts", "/chats/x/messages", "/metrics"])
    def test_missing_header_is_401(self, client, path):
        response = client.get(path)

        assert response.status_code == 401
        assert "Unauthorized" in response.json()["detail"]

    def test_non_bearer_header_is_401(self, client):
        response = client.get("/status", headers={"Authorization": "Basic dGVzdDp0ZXN0"})
        assert response.status_code == 401

    def test_wrong_secret_is_403(self, client):
        response = client.get("/status", headers={"Authorization": "Bearer wrong"})

        assert response.status_code == 403
        assert "Forbidden" in response.json()["detail"]

    def test_send_rejected_before_route_logic(self, client, provider):
        """An unauthenticated send never reaches validation or the provider."""
        response = client.post("/send-message", json={})

        assert response.status_code == 401
        assert provider.sent == []

    def test_correct_secret_proceeds(self, client, auth_headers):
        response = client.get("/status", headers=auth_headers)

        assert response.status_code == 200
        assert "X-Request-ID" in response.headers


class TestStatus:
    """Test GET /status."""

    def test_not_ready_at_startup(self, client, auth_headers, provider):
        response = client.get("/status", headers=auth_headers)

        assert response.json() == {
            "status": "running",
            "whatsAppClientReady": False,
            "state": "DISCONNECTED",
        }
        # Lifespan brought the provider up once
        assert provider.initialize_calls == 1

    def test_ready_after_ready_event(self, client, auth_headers, emit):
        emit(ReadyEvent())

        body = client.get("/status", headers=auth_headers).json()
        assert body["whatsAppClientReady"] is True
        assert body["state"] == "READY"

    def test_not_ready_after_block(self, client, auth_headers, emit):
        emit(ReadyEvent(), DisconnectedEvent(reason="TOS_BLOCK"))

        body = client.get("/status", headers=auth_headers).json()
        assert body["whatsAppClientReady"] is False


class TestSendMessage:
    """Test POST /send-message."""

    def test_missing_fields_is_400(self, client, auth_headers, emit):
        emit(ReadyEvent())

        for body in ({}, {"chatId": "123@c.us"}, {"message": "hi"}, {"chatId": "", "message": "hi"}):
            response = client.post("/send-message", json=body, headers=auth_headers)
            assert response.status_code == 400
            assert response.json() == {"success": False, "error": "chatId and message are required."}

    def test_not_ready_fails_without_calling_provider(self, client, auth_headers, provider):
        response = client.post(
            "/send-message",
            json={"chatId": "123@c.us", "message": "hi"},
            headers=auth_headers,
        )

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "WhatsApp client not ready."}
        assert provider.sent == []

    def test_send_success_returns_message_id(self, client, auth_headers, provider, emit):
        emit(ReadyEvent())

        response = client.post(
            "/send-message",
            json={"chatId": "123@c.us", "message": "hi"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "messageId": "sent-1"}
        assert provider.sent == [("123@c.us", "hi")]

    def test_provider_failure_is_500(self, client, auth_headers, provider, emit):
        emit(ReadyEvent())
        provider.send_error = RuntimeError("evaluation failed")

        response = client.post(
            "/send-message",
            json={"chatId": "123@c.us", "message": "hi"},
            headers=auth_headers,
        )

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Failed to send message."}


class TestMetrics:
    def test_metrics_exposed(self, client, auth_headers):
        client.get("/status", headers=auth_headers)

        response = client.get("/metrics", headers=auth_headers)

        assert response.status_code == 200
        assert "http_requests_total" in response.text
        assert "session_state" in response.text


class TestStartup:
    def test_store_open_failure_is_fatal(self, settings, provider, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        broken = settings.model_copy(update={"DATABASE_URL": f"sqlite:///{blocker / 'db.sqlite'}"})
        bridge = Bridge(broken, provider)

        with pytest.raises(StoreOpenError):
            asyncio.run(bridge.start())
        assert provider.initialize_calls == 0

    def test_create_app_requires_provider(self, settings):
        with pytest.raises(RuntimeError):
            create_app(settings=settings)

    def test_create_app_loads_provider_factory(self, settings):
        configured = settings.model_copy(update={
            "PROVIDER_FACTORY": "tests.fakes:FakeProvider",
            "SESSION_DATA_PATH": "/tmp/wa-session",
        })

        app = create_app(settings=configured)

        provider = app.state.bridge.provider
        assert provider.__class__.__name__ == "FakeProvider"
        assert provider.session_data_path == "/tmp/wa-session"

    def test_malformed_provider_factory_rejected(self, settings):
        configured = settings.model_copy(update={"PROVIDER_FACTORY": "tests.fakes"})

        with pytest.raises(ValueError):
            create_app(settings=configured)
