"""Pytest configuration and shared fixtures."""

import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


@pytest.fixture(autouse=True)
def reset_config():
    """Reset root config constants after each test."""
    import config

    original_window = config.METRICS_WINDOW_HOURS
    original_step = config.CLI_STEP_MINUTES

    yield

    config.METRICS_WINDOW_HOURS = original_window
    config.CLI_STEP_MINUTES = original_step


@pytest.fixture(autouse=True)
def clear_routing_env(monkeypatch):
    """Keep NOTIFY_* overrides from the host environment out of tests."""
    for name in (
        "NOTIFY_ENABLE_ESCALATION",
        "NOTIFY_LOAD_DEFAULTS",
        "NOTIFY_METRICS_WINDOW_HOURS",
        "NOTIFY_LOG_LEVEL",
        "NOTIFY_LOG_FORMAT",
        "NOTIFY_CORS_ORIGINS",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def clock():
    from src.notification_routing.clock import VirtualClock
    return VirtualClock()


@pytest.fixture
def engine(clock):
    """Engine with the built-in routes and recipients on a virtual clock."""
    from src.notification_routing.engine import NotificationRoutingEngine
    eng = NotificationRoutingEngine(clock=clock)
    yield eng
    eng.shutdown()
