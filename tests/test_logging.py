"""
Tests for harness logging and structured errors.
"""

import json
import logging

import pytest

from e2e_harness.config import HarnessSettings
from e2e_harness.exceptions import (
    AlreadyRunning,
    ComposeError,
    ContainerNotFound,
    StartupTimeout,
)
from e2e_harness.logging import (
    ContainerLogEcho,
    StructuredFormatter,
    TextFormatter,
    get_logger,
    setup_logging,
)


@pytest.fixture
def restore_harness_logger():
    """setup_logging() reconfigures a process-wide logger."""
    harness_logger = logging.getLogger("e2e_harness")
    saved = (harness_logger.level, harness_logger.handlers[:], harness_logger.propagate)
    yield harness_logger
    harness_logger.setLevel(saved[0])
    harness_logger.handlers[:] = saved[1]
    harness_logger.propagate = saved[2]


def _record(msg="hello", **extra):
    record = logging.LogRecord("e2e_harness.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# =============================================================================
# Formatter Tests
# =============================================================================


class TestFormatters:
    """Tests for the console formatters."""

    def test_structured_formatter(self):
        payload = json.loads(StructuredFormatter().format(_record(service="mosquitto")))

        assert payload["level"] == "INFO"
        assert payload["logger"] == "e2e_harness.test"
        assert payload["message"] == "hello"
        assert payload["service"] == "mosquitto"
        assert "timestamp" in payload

    def test_text_formatter(self):
        line = TextFormatter().format(_record())
        assert "INFO" in line
        assert line.endswith("e2e_harness.test: hello")


class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_configures_single_handler(self, restore_harness_logger):
        settings = HarnessSettings(log_level="debug", log_format="json")

        setup_logging(settings)
        setup_logging(settings)

        assert restore_harness_logger.level == logging.DEBUG
        assert len(restore_harness_logger.handlers) == 1
        assert isinstance(restore_harness_logger.handlers[0].formatter, StructuredFormatter)
        assert logging.getLogger("docker").level == logging.WARNING

    def test_get_logger_prefix(self):
        assert get_logger("containers.mosquitto").name == "e2e_harness.containers.mosquitto"


class TestContainerLogEcho:
    """Tests for ContainerLogEcho."""

    def test_prefixes_service(self, caplog):
        echo = ContainerLogEcho("rika-firenet-mock")

        with caplog.at_level(logging.INFO, logger="e2e_harness.containers"):
            echo("Rika Firenet mock listening on port 3000\n")

        assert caplog.records[-1].getMessage() == (
            "rika-firenet-mock | Rika Firenet mock listening on port 3000"
        )
        assert caplog.records[-1].service == "rika-firenet-mock"

    def test_percent_signs_kept(self, caplog):
        """Container output is logged verbatim, format characters included."""
        echo = ContainerLogEcho("mosquitto-debug")

        with caplog.at_level(logging.INFO, logger="e2e_harness.containers"):
            echo("rika/stove/humidity 45% %s\n")

        assert caplog.records[-1].getMessage() == "mosquitto-debug | rika/stove/humidity 45% %s"


# =============================================================================
# Exception Tests
# =============================================================================


class TestHarnessErrors:
    """Tests for structured harness errors."""

    def test_startup_timeout(self):
        error = StartupTimeout("homeassistant", elapsed=10.0042, timeout=10)

        assert error.elapsed_ms == 10004
        assert "homeassistant" in str(error)
        assert error.to_dict() == {
            "error": "STARTUP_TIMEOUT",
            "message": error.message,
            "details": {"service": "homeassistant", "elapsed_ms": 10004, "timeout_ms": 10000},
        }

    def test_already_running_message(self):
        error = AlreadyRunning()
        assert "down()" in str(error)
        assert error.to_dict()["error"] == "ALREADY_RUNNING"

    def test_compose_error_details(self):
        error = ComposeError("failed", command=["docker", "compose", "up"], stderr="boom\n")
        assert error.details == {"command": "docker compose up", "stderr": "boom"}
        assert str(error) == "failed\nboom"

    def test_container_not_found(self):
        error = ContainerNotFound("mosquitto", "e2e-abc")
        assert error.error_code == "CONTAINER_NOT_FOUND"
        assert "mosquitto" in str(error) and "e2e-abc" in str(error)
