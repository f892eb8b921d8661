"""Pytest configuration and fixtures."""

from __future__ import annotations

from typing import Generator

import pytest

from e2e_harness.config import get_settings
from tests.fakes import (
    HA_READY,
    MOSQUITTO_READY,
    FakeComposeEnvironment,
    fast_services,
)


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Generator[None, None, None]:
    """Settings are cached per process; tests tweak the environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fake_environment() -> Generator[FakeComposeEnvironment, None, None]:
    """A compose environment whose services announce readiness at once."""
    environment = FakeComposeEnvironment(
        {
            "homeassistant": [HA_READY],
            "mosquitto": [MOSQUITTO_READY],
            "mosquitto-debug": [],
        }
    )
    yield environment
    # Release any pump threads still blocked on a fake stream
    environment.close_all()


@pytest.fixture
def services():
    return fast_services()
