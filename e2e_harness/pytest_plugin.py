"""
pytest integration - the running stack as an explicit session fixture.

Enable in a conftest.py:
    pytest_plugins = ["e2e_harness.pytest_plugin"]

Tests that need the real Docker stack use the ``stack`` fixture and the
``requires_stack`` marker; they are skipped unless E2E_RUN_STACK=1.

Usage in tests:
    @pytest.mark.requires_stack
    @pytest.mark.asyncio(loop_scope="session")
    async def test_sensors(stack):
        await stack.poll_until(
            lambda: stack.count_registered_entities(r"^sensor\\.rika_"),
            greater_than(10),
        )
"""

from __future__ import annotations

import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from e2e_harness.config import HarnessSettings, get_settings
from e2e_harness.logging import setup_logging
from e2e_harness.platform import StackOrchestrator, build_orchestrator

RUN_STACK_ENV = "E2E_RUN_STACK"


# =============================================================================
# CONFIGURATION
# =============================================================================


@pytest.fixture(scope="session")
def harness_settings() -> HarnessSettings:
    """Load harness settings from the environment."""
    settings = get_settings()
    setup_logging(settings)
    return settings


# =============================================================================
# STACK (Session-scoped)
# =============================================================================


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def stack(
    harness_settings: HarnessSettings,
) -> AsyncGenerator[StackOrchestrator, None]:
    """
    Start the whole environment once per session.

    A failed start (StartupTimeout, ComposeError) has already torn the
    partial stack down, so it is safe to let it fail the session setup.
    """
    orchestrator = build_orchestrator(harness_settings)
    await orchestrator.up()
    try:
        yield orchestrator
    finally:
        await orchestrator.down(remove_volumes=harness_settings.remove_volumes)


# =============================================================================
# PYTEST HOOKS
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "requires_stack: test needs the real Docker Compose stack (set E2E_RUN_STACK=1)",
    )


def pytest_collection_modifyitems(config, items):
    """Skip real-stack tests unless explicitly enabled."""
    if os.getenv(RUN_STACK_ENV, "0") == "1":
        return

    skip = pytest.mark.skip(reason=f"set {RUN_STACK_ENV}=1 to run against the Docker stack")
    for item in items:
        if "requires_stack" in item.keywords:
            item.add_marker(skip)
