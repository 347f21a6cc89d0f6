"""
Pytest configuration and shared fixtures.

Environment variables are set before any package import so cached settings
never pick up a developer's .env. Each test gets its own SQLite file.
"""

import os

os.environ.setdefault("INTERNAL_API_SECRET", "test-secret")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient

from wabridge.config import Settings, get_settings
from wabridge.events import MediaPayload
from wabridge.main import create_app
from wabridge.storage import Store
from tests.fakes import FakeProvider

# Clear settings cache so the test env vars above are used
get_settings.cache_clear()

TEST_SECRET = "test-secret"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        INTERNAL_API_SECRET=TEST_SECRET,
        DATABASE_URL=f"sqlite:///{tmp_path / 'bridge.db'}",
        LOG_LEVEL="WARNING",
        RECONNECT_DELAY_SECONDS=0.05,
    )


@pytest.fixture
def store(tmp_path) -> Store:
    """An opened store on a fresh database file."""
    s = Store(f"sqlite:///{tmp_path / 'store.db'}")
    s.open()
    yield s
    s.close()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def app(settings, provider):
    return create_app(settings=settings, provider=provider)


@pytest.fixture
def bridge(app):
    return app.state.bridge


@pytest.fixture
def client(app):
    """Test client running the app lifespan (store open, provider initialized)."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers() -> dict:
    return {"Authorization": f"Bearer {TEST_SECRET}"}


@pytest.fixture
def emit(client, bridge):
    """
    Push provider events through the running app and wait until they and
    any session callbacks they triggered are fully handled.
    """
    def _emit(*events):
        for event in events:
            client.portal.call(bridge.submit, event)
        client.portal.call(bridge.join)
        client.portal.call(bridge.session.drain)
        client.portal.call(bridge.bus.drain)

    return _emit


@pytest.fixture
def media_payload() -> MediaPayload:
    return MediaPayload(data="aGVsbG8=", mimetype="image/jpeg")
