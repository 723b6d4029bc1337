"""
Pytest configuration and shared fixtures.

Each test gets its own SQLite database file under tmp_path; fakes for the
gateway and hub record calls for the tests that need to observe them.
"""

import pytest
from fastapi.testclient import TestClient

from relay.config import Settings, get_settings
from relay.main import create_app
from tests.fakes import RecordingGateway, RecordingHub

get_settings.cache_clear()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite:///{tmp_path / 'relay.db'}",
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def hub() -> RecordingHub:
    return RecordingHub()


@pytest.fixture
def client(settings, hub):
    """Test client backed by a real SQLite gateway and a recording hub."""
    app = create_app(settings, hub=hub)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def fake_gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def fake_client(settings, fake_gateway, hub):
    """Test client backed by the in-memory recording gateway."""
    app = create_app(settings, gateway=fake_gateway, hub=hub)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def client_with(settings, hub):
    """Factory for test clients wired to a specific gateway."""
    opened = []

    def factory(gateway) -> TestClient:
        test_client = TestClient(create_app(settings, gateway=gateway, hub=hub))
        test_client.__enter__()
        opened.append(test_client)
        return test_client

    yield factory

    for test_client in opened:
        test_client.__exit__(None, None, None)
