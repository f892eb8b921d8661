"""
Stack Smoke Tests - verify every service came up and is observable.

Run with: E2E_RUN_STACK=1 pytest system_tests/smoke/ -v
"""

from __future__ import annotations

import pytest

from e2e_harness.platform import StackOrchestrator
from e2e_harness.polling import contains

pytestmark = [pytest.mark.requires_stack, pytest.mark.asyncio(loop_scope="session")]


class TestStackReady:
    """The environment is up and its logs are being followed."""

    async def test_all_services_running(self, stack: StackOrchestrator):
        """Every service container exists in the compose project."""
        for service in stack.services:
            container = stack.stack.get_container(service.name)
            container.reload()
            assert container.status == "running", f"{service.name}: {container.status}"

    async def test_home_assistant_online_on_broker(self, stack: StackOrchestrator):
        """Home Assistant announces its birth message over MQTT."""
        await stack.poll_until(
            stack.get_mosquitto_messages,
            contains("homeassistant/status online"),
            message="Home Assistant should publish its MQTT birth message",
        )
