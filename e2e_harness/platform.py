"""
Stack Orchestrator - lifecycle of the multi-service test environment.

Architecture:
1. up() - compose up, then for every service open a log stream and
   subscribe its readiness probe and persistent watchers BEFORE the stream
   is pumped, so no line can slip past
2. wait for all probes; the first failing service aborts the start and
   the partial stack is torn down before the error propagates
3. tests read watcher state and poll it until conditions hold
4. down() - abort a startup in progress, close streams, cancel tracked
   polls, compose down, reset state
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Sequence, TypeVar, Union

from e2e_harness.compose import ComposeEnvironment, StartedComposeEnvironment
from e2e_harness.config import HarnessSettings, ServiceDescriptor, default_services
from e2e_harness.exceptions import AlreadyRunning, StartupAborted
from e2e_harness.logging import echo_streams
from e2e_harness.polling import poll_until
from e2e_harness.streams import ContainerLogStream
from e2e_harness.wait import ReadinessProbe
from e2e_harness.watchers import (
    EntityRegistrationRule,
    ExtractionRule,
    LogStreamWatcher,
    MessageLog,
    RawLineRule,
    RegisteredEntitySet,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StackOrchestrator:
    """
    Owns one compose environment and the state scraped from its logs.

    Usage:
        stack = StackOrchestrator(environment, services)
        await stack.up()
        try:
            await stack.poll_until(
                lambda: stack.count_registered_entities(r"^sensor\\.rika_"),
                greater_than(10),
            )
        finally:
            await stack.down()
    """

    def __init__(
        self,
        environment: ComposeEnvironment,
        services: Sequence[ServiceDescriptor],
        entity_service: str | None = "homeassistant",
        message_service: str | None = "mosquitto-debug",
        echo_services: Sequence[str] = (),
        entity_rule: ExtractionRule | None = None,
        message_rule: ExtractionRule | None = None,
        remove_volumes: bool = True,
        poll_interval: float = 0.25,
        poll_timeout: float = 10.0,
    ):
        self.environment = environment
        self.services = list(services)
        self.entity_service = entity_service
        self.message_service = message_service
        self.echo_services = list(echo_services)
        self.remove_volumes = remove_volumes
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout

        self.entities = RegisteredEntitySet()
        self.messages = MessageLog()
        self._entity_watcher = LogStreamWatcher(
            entity_rule or EntityRegistrationRule(), self.entities, name="entity-registry"
        )
        self._message_watcher = LogStreamWatcher(
            message_rule or RawLineRule(), self.messages, name="broker-messages"
        )

        self._stack: StartedComposeEnvironment | None = None
        self._startup: asyncio.Task[None] | None = None
        self._aborted: set[asyncio.Task[None]] = set()
        self._streams: dict[str, ContainerLogStream] = {}
        self._polls: set[asyncio.Task[Any]] = set()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._stack is not None

    @property
    def stack(self) -> StartedComposeEnvironment:
        """The active environment handle."""
        if self._stack is None:
            raise RuntimeError("Test environment not running. Call up() first.")
        return self._stack

    async def up(self) -> None:
        """
        Start every service and wait until all of them are ready.

        Raises:
            AlreadyRunning: If an environment is active or starting.
            StartupTimeout: If a service misses its readiness window.
            StartupAborted: If down() was called before startup finished.
            ComposeError: If compose or a container lookup fails.
        """
        if self._stack is not None or self._startup is not None:
            raise AlreadyRunning()

        startup = self._startup = asyncio.create_task(self._start(), name="stack-startup")
        try:
            await startup
        except asyncio.CancelledError:
            if startup in self._aborted:
                raise StartupAborted() from None
            raise
        finally:
            self._aborted.discard(startup)
            if self._startup is startup:
                self._startup = None

    async def _start(self) -> None:
        stack: StartedComposeEnvironment | None = None
        try:
            stack = await self.environment.up()
            probes = await self._attach(stack)
            for stream in self._streams.values():
                stream.start()
            await self._await_ready(probes)
        except BaseException:
            logger.error("Environment failed to start, tearing it down")
            await self._close_streams()
            if stack is not None:
                await stack.down(remove_volumes=True, ignore_errors=True)
            self._reset_state()
            raise

        self._stack = stack
        logger.info(f"Environment '{stack.project_name}' is up")

    async def _attach(self, stack: StartedComposeEnvironment) -> list[ReadinessProbe]:
        """Open streams and subscribe everything that must see the first line."""
        names = [s.name for s in self.services]
        for extra in (self.entity_service, self.message_service, *self.echo_services):
            if extra and extra not in names:
                names.append(extra)

        for name in names:
            self._streams[name] = await stack.logs(name)

        probes = []
        for service in self.services:
            probe = ReadinessProbe(service.name, service.wait_strategy)
            stream = self._streams[service.name]
            stream.subscribe(probe.feed)
            stream.subscribe_closed(probe.mark_closed)
            probes.append(probe)

        if self.entity_service:
            self._streams[self.entity_service].subscribe(self._entity_watcher)
        if self.message_service:
            self._streams[self.message_service].subscribe(self._message_watcher)

        echo_streams(self._streams.values(), self.echo_services)
        return probes

    async def _await_ready(self, probes: list[ReadinessProbe]) -> None:
        """Wait for all probes; raise the first failure, cancel the rest."""
        tasks = [
            asyncio.create_task(probe.wait(), name=f"ready:{probe.service}")
            for probe in probes
        ]
        if not tasks:
            return

        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        failed = [t for t in done if not t.cancelled() and t.exception() is not None]
        if failed:
            # earliest failure by elapsed time names the service to blame
            errors = [t.exception() for t in failed]
            raise min(errors, key=lambda e: getattr(e, "elapsed", 0.0))

    async def down(self, remove_volumes: bool | None = None) -> None:
        """
        Stop all services and reset accumulated state.

        A startup still in progress is cancelled and its partial stack torn
        down before this returns. A no-op when nothing is running.
        """
        startup = self._startup
        if startup is not None and not startup.done():
            self._aborted.add(startup)
            startup.cancel()
            await asyncio.wait({startup})
            self._startup = None

        if self._stack is None:
            logger.debug("down() called with no running environment")
            return

        stack, self._stack = self._stack, None
        if remove_volumes is None:
            remove_volumes = self.remove_volumes

        try:
            await self._cancel_polls()
            await self._close_streams()
            await stack.down(remove_volumes=remove_volumes)
        finally:
            self._reset_state()
        logger.info(f"Environment '{stack.project_name}' is down")

    async def _close_streams(self) -> None:
        streams, self._streams = list(self._streams.values()), {}
        await asyncio.gather(*(s.close() for s in streams))

    async def _cancel_polls(self) -> None:
        polls, self._polls = list(self._polls), set()
        for task in polls:
            task.cancel()
        await asyncio.gather(*polls, return_exceptions=True)

    def _reset_state(self) -> None:
        self.entities.clear()
        self.messages.clear()

    async def __aenter__(self) -> "StackOrchestrator":
        await self.up()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.down()

    # =========================================================================
    # Consumer API
    # =========================================================================

    @property
    def registered_entities(self) -> list[str]:
        """Copy of the registered entity identifiers, first-seen order."""
        return self.entities.snapshot()

    def count_registered_entities(self, pattern: Union[str, re.Pattern]) -> int:
        return self.entities.count_matching(pattern)

    def get_mosquitto_messages(self) -> list[str]:
        """Copy of the broker messages captured so far."""
        return self.messages.snapshot()

    async def poll_until(
        self,
        producer: Callable[[], Union[T, Awaitable[T]]],
        condition: Callable[[T], bool],
        *,
        interval: float | None = None,
        timeout: float | None = None,
        message: str | None = None,
    ) -> T:
        """
        poll_until() tied to this environment.

        Cancelled by down(), so it never fires against reset state.
        """
        task = asyncio.create_task(
            poll_until(
                producer,
                condition,
                interval=self.poll_interval if interval is None else interval,
                timeout=self.poll_timeout if timeout is None else timeout,
                message=message,
            )
        )
        self._polls.add(task)
        task.add_done_callback(self._polls.discard)
        return await task


def build_orchestrator(settings: HarnessSettings) -> StackOrchestrator:
    """Assemble the default Home Assistant / MQTT bridge stack."""
    environment = ComposeEnvironment(
        project_dir=settings.project_dir,
        compose_file=settings.compose_file,
        project_name=settings.project_name,
        build=settings.build,
        command_timeout=settings.compose_command_timeout,
    )
    return StackOrchestrator(
        environment,
        default_services(settings),
        entity_service=settings.entity_service,
        message_service=settings.message_service,
        echo_services=settings.echo_services if settings.echo_container_logs else (),
        remove_volumes=settings.remove_volumes,
        poll_interval=settings.poll_interval,
        poll_timeout=settings.poll_timeout,
    )
