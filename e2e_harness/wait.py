"""
Readiness Wait Strategies.

A wait strategy is a per-service predicate evaluated line by line against
the service's live output. A ReadinessProbe applies one strategy to one
stream and latches once satisfied.

Usage:
    strategy = Wait.for_log_message(re.compile(r"mosquitto version \\S+ running"))
    strategy = strategy.with_startup_timeout(5.0)

    probe = ReadinessProbe("mosquitto", strategy)
    stream.subscribe(probe.feed)
    stream.subscribe_closed(probe.mark_closed)
    await probe.wait()  # raises StartupTimeout
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, replace
from typing import Union

from e2e_harness.exceptions import StartupTimeout

logger = logging.getLogger(__name__)

LogPattern = Union[str, re.Pattern]

DEFAULT_STARTUP_TIMEOUT = 60.0


@dataclass(frozen=True)
class LogMessageWaitStrategy:
    """
    Wait until a log line matches.

    A plain string matches by substring containment; a compiled regular
    expression is searched within a single line.
    """

    pattern: LogPattern
    startup_timeout: float = DEFAULT_STARTUP_TIMEOUT
    times: int = 1

    def __post_init__(self) -> None:
        if self.times < 1:
            raise ValueError("times must be at least 1")
        if self.startup_timeout <= 0:
            raise ValueError("startup_timeout must be positive")

    def with_startup_timeout(self, seconds: float) -> "LogMessageWaitStrategy":
        """Return a copy with a different startup timeout."""
        return replace(self, startup_timeout=seconds)

    def matches(self, line: str) -> bool:
        if isinstance(self.pattern, str):
            return self.pattern in line
        return self.pattern.search(line) is not None

    def describe(self) -> str:
        if isinstance(self.pattern, str):
            return f"log message {self.pattern!r}"
        return f"log message /{self.pattern.pattern}/"


class Wait:
    """Factory for wait strategies."""

    @staticmethod
    def for_log_message(pattern: LogPattern, times: int = 1) -> LogMessageWaitStrategy:
        return LogMessageWaitStrategy(pattern=pattern, times=times)


class ReadinessProbe:
    """Streaming evaluation of one wait strategy against one service."""

    def __init__(self, service: str, strategy: LogMessageWaitStrategy):
        self.service = service
        self.strategy = strategy
        self._matches = 0
        self._ready = False
        self._closed = False
        self._settled = asyncio.Event()

    @property
    def is_ready(self) -> bool:
        return self._ready

    def feed(self, line: str) -> None:
        """Evaluate one line. Ignored once the probe has latched."""
        if self._ready or self._closed:
            return
        if not self.strategy.matches(line):
            return

        self._matches += 1
        if self._matches >= self.strategy.times:
            self._ready = True
            self._settled.set()
            logger.debug(f"[{self.service}] ready: matched {self.strategy.describe()}")

    def mark_closed(self) -> None:
        """The log stream ended; no further lines can satisfy the probe."""
        if self._ready:
            return
        self._closed = True
        self._settled.set()

    async def wait(self) -> None:
        """
        Wait until the service is ready.

        Raises:
            StartupTimeout: If the timeout expires or the stream closes first.
        """
        loop = asyncio.get_running_loop()
        started = loop.time()
        timeout = self.strategy.startup_timeout

        try:
            await asyncio.wait_for(self._settled.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            raise StartupTimeout(
                self.service,
                elapsed=loop.time() - started,
                timeout=timeout,
                reason=f"{self.strategy.describe()} not seen within {timeout:g}s",
            ) from None

        if not self._ready:
            raise StartupTimeout(
                self.service,
                elapsed=loop.time() - started,
                timeout=timeout,
                reason=f"log stream closed before {self.strategy.describe()} appeared",
            )

        logger.info(
            f"Service '{self.service}' ready after {loop.time() - started:.2f}s"
        )
