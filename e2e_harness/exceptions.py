"""Harness exceptions.

Every error carries enough context to act on without re-running the suite:
the implicated service, the failing command, or the last observed value.
"""

from __future__ import annotations

from typing import Any


class HarnessError(Exception):
    """Base harness exception with a structured representation."""

    error_code: str = "HARNESS_ERROR"
    message: str = "Unexpected harness failure"

    def __init__(
        self,
        message: str | None = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dict for reports."""
        return {
            "error": self.error_code,
            "message": self.message,
            **({"details": self.details} if self.details else {}),
        }


class StartupTimeout(HarnessError):
    """A service did not print its readiness line in time."""

    error_code = "STARTUP_TIMEOUT"

    def __init__(
        self,
        service: str,
        elapsed: float,
        timeout: float,
        reason: str | None = None,
    ):
        self.service = service
        self.elapsed = elapsed
        self.timeout = timeout
        self.reason = reason or f"not ready within {timeout:g}s"
        super().__init__(
            f"Service '{service}' failed to start: {self.reason} "
            f"(after {self.elapsed_ms}ms)",
            details={
                "service": service,
                "elapsed_ms": self.elapsed_ms,
                "timeout_ms": int(timeout * 1000),
            },
        )

    @property
    def elapsed_ms(self) -> int:
        return int(self.elapsed * 1000)


class AlreadyRunning(HarnessError):
    """up() was called while an environment is active or starting."""

    error_code = "ALREADY_RUNNING"
    message = "A test environment is already running; call down() first"


class StartupAborted(HarnessError):
    """down() was called while up() was still waiting for readiness."""

    error_code = "STARTUP_ABORTED"
    message = "Environment startup was aborted by down()"


class PollTimeout(HarnessError, AssertionError):
    """An eventual-consistency assertion never became true."""

    error_code = "POLL_TIMEOUT"

    def __init__(
        self,
        message: str | None,
        last_value: Any,
        description: str,
        timeout: float,
    ):
        self.last_value = last_value
        self.description = description
        self.timeout = timeout
        prefix = f"{message}: " if message else ""
        super().__init__(
            f"{prefix}expected value {description} within {timeout:g}s, "
            f"last observed {last_value!r}",
            details={"last_value": repr(last_value), "condition": description},
        )


class ComposeError(HarnessError):
    """A docker compose command or container lookup failed."""

    error_code = "COMPOSE_ERROR"

    def __init__(
        self,
        message: str,
        command: list[str] | None = None,
        stderr: str = "",
    ):
        self.command = command
        self.stderr = stderr
        details: dict[str, Any] = {}
        if command:
            details["command"] = " ".join(command)
        if stderr:
            details["stderr"] = stderr.strip()
        full = f"{message}\n{stderr.strip()}" if stderr.strip() else message
        super().__init__(full, details=details)


class ContainerNotFound(ComposeError):
    """No container exists for a compose service."""

    error_code = "CONTAINER_NOT_FOUND"

    def __init__(self, service: str, project: str):
        self.service = service
        self.project = project
        super().__init__(
            f"No container found for service '{service}' in project '{project}'"
        )
