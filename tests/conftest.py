"""
Pytest configuration and shared fixtures.
"""

import pytest


@pytest.fixture(autouse=True, scope="function")
def disable_event_bus(monkeypatch):
    """
    Keep tests off the network.

    EventNotifier() without an explicit URL reads the module-level
    EVENT_BUS_URL; tests that need delivery pass a URL themselves.
    """
    monkeypatch.setattr("src.infra.events.EVENT_BUS_URL", "")
    yield
