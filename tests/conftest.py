import pytest
from starlette.testclient import TestClient

from backpack.core.auth import create_user
from backpack.core.config import Settings
from backpack.core.store import MemoryStore
from backpack.core.throttle import LoginThrottle
from backpack.gateway.mcp.http_server import create_app


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def throttle():
    return LoginThrottle(max_failures=5, window_seconds=900)


@pytest.fixture
def app(settings, store, throttle):
    return create_app(settings=settings, store=store, throttle=throttle)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def user(store):
    """A registered user with password 'correct-horse'."""
    return create_user(store, "alice@example.com", "correct-horse")
