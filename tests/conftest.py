"""Shared test fixtures for the lsc test suite.

Every test runs with an isolated configuration: no user config file, no
environment overrides, and colors off so rendered text can be asserted.
A live Redis is only used by tests marked ``redis``.
"""

import os

import pytest

from lsc.config import settings
from tests.helpers import FakeStore, make_config


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path):
    """Point config loading at package defaults only."""
    for name in ("LSC_CONFIG", "LSC_REDIS_ADDR", "FORCE_COLOR", "LSC_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("NO_COLOR", "1")
    monkeypatch.setattr(settings, "USER_CONFIG_PATH", tmp_path / "home" / ".lsc" / "config.toml")
    settings.load_config.cache_clear()
    yield
    settings.load_config.cache_clear()


@pytest.fixture
def tmp_config():
    """Config with short confirmation timeouts."""
    return make_config()


@pytest.fixture
def store():
    """Empty in-memory store."""
    return FakeStore()


@pytest.fixture
def scooter():
    """In-memory store seeded with a parked scooter and one main battery."""
    return FakeStore(
        hashes={
            "vehicle": {
                "state": "parked",
                "kickstand": "down",
                "brake:left": "off",
                "brake:right": "on",
                "blinker:switch": "off",
                "seatbox:lock": "closed",
            },
            "engine-ecu": {
                "speed": "0",
                "rpm": "0",
                "throttle": "false",
                "odometer": "123456",
                "motor:voltage": "52100",
                "motor:current": "0",
                "temperature": "24",
                "kers": "true",
                "fw-version": "0445400C",
            },
            "battery:0": {
                "present": "true",
                "state": "active",
                "charge": "87",
                "voltage": "53200",
                "current": "-1500",
                "temperature:0": "21",
                "temperature:1": "22",
                "temperature:2": "22",
                "temperature:3": "23",
                "temperature-state": "ideal",
                "cycle-count": "42",
                "state-of-health": "98",
                "serial-number": "BAT0001",
                "manufacturing-date": "2023-04-01",
                "fw-version": "1.2.3",
            },
            "battery:1": {"present": "false"},
            "system": {
                "mdb-version": "v1.4.0",
                "dbc-version": "v1.4.0",
                "nrf-fw-version": "v2.1",
                "environment": "production",
            },
            "alarm": {"status": "disarmed"},
            "settings": {"alarm.enabled": "false", "alarm.duration": "15"},
            "dashboard": {"ready": "false"},
        },
        sets={"vehicle:fault": set(), "battery:0:faults": set()},
    )


def skip_unless_env(var_name):
    """Skip test unless environment variable is set."""
    return pytest.mark.skipif(
        not os.environ.get(var_name),
        reason=f"{var_name} not set",
    )
