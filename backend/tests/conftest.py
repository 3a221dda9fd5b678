"""Shared test fixtures and configuration for backend tests."""
import pytest
from fastapi.testclient import TestClient

from app.chat.coordinator import DeliveryCoordinator, set_coordinator
from app.chat.manager import manager
from app.config import AppConfig, set_config
from app.main import app
from app.messages.store import InMemoryMessageStore


@pytest.fixture(autouse=True)
def fresh_messaging_state():
    """Give every test default config, an empty in-memory store and no connections."""
    set_config(AppConfig())
    store = InMemoryMessageStore()
    set_coordinator(DeliveryCoordinator(store, manager))
    manager.clear()
    yield store
    manager.clear()
    set_coordinator(None)


@pytest.fixture
def store(fresh_messaging_state):
    """The in-memory store behind the global coordinator."""
    return fresh_messaging_state


@pytest.fixture
def api_client():
    """Provide a TestClient for the main FastAPI app.

    Named api_client (not client) to avoid shadowing the module-level
    `client = TestClient(app)` pattern used in existing test files.
    """
    return TestClient(app)
