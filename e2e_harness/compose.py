"""Docker Compose environment driver.

Starts and stops the stack with the ``docker compose`` CLI (run as an
asyncio subprocess) and talks to the resulting containers through the
Docker SDK, which finds them by their compose labels.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Sequence

import docker

from e2e_harness.exceptions import ComposeError, ContainerNotFound
from e2e_harness.streams import ContainerLogStream

if TYPE_CHECKING:
    from docker.models.containers import Container

logger = logging.getLogger(__name__)

PROJECT_LABEL = "com.docker.compose.project"
SERVICE_LABEL = "com.docker.compose.service"

DEFAULT_COMMAND_TIMEOUT = 600.0


class ComposeEnvironment:
    """
    A compose project that can be brought up.

    Each instance gets a random project name unless one is given, so
    concurrent or leftover runs never share containers.
    """

    def __init__(
        self,
        project_dir: str | Path = ".",
        compose_file: str = "docker-compose.yml",
        project_name: str | None = None,
        build: bool = False,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        compose_command: Sequence[str] = ("docker", "compose"),
        client_factory: Callable[[], docker.DockerClient] = docker.from_env,
    ):
        self.project_dir = Path(project_dir)
        self.compose_file = compose_file
        self.project_name = project_name or f"e2e-{uuid.uuid4().hex[:8]}"
        self.build = build
        self.command_timeout = command_timeout
        self.compose_command = list(compose_command)
        self._client_factory = client_factory

    def build_command(self, *args: str) -> list[str]:
        """Build a docker compose command with the project options."""
        cmd = self.compose_command.copy()
        cmd.extend(["-f", self.compose_file, "-p", self.project_name])
        cmd.extend(args)
        return cmd

    async def run(self, *args: str, timeout: float | None = None) -> str:
        """
        Run a docker compose command in the project directory.

        Returns:
            The command's stdout.

        Raises:
            ComposeError: On a non-zero exit, a missing CLI or a timeout.
        """
        cmd = self.build_command(*args)
        timeout = timeout or self.command_timeout
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(self.project_dir),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ComposeError(
                "Docker CLI not found. Please install Docker.", command=cmd
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise ComposeError(
                f"Docker compose command timed out after {timeout:g}s: {' '.join(args)}",
                command=cmd,
            ) from None

        if proc.returncode != 0:
            raise ComposeError(
                f"Docker compose command failed: {' '.join(args)}",
                command=cmd,
                stderr=stderr.decode("utf-8", errors="replace"),
            )
        return stdout.decode("utf-8", errors="replace")

    async def up(self) -> "StartedComposeEnvironment":
        """Start all services detached. Containers are not yet ready."""
        args = ["up", "-d"]
        if self.build:
            args.append("--build")

        logger.info(f"Starting compose project '{self.project_name}'")
        try:
            client = self._client_factory()
        except docker.errors.DockerException as e:
            raise ComposeError(f"Cannot connect to the Docker daemon: {e}") from e

        try:
            await self.run(*args)
        except BaseException:
            # compose may have created some containers before failing
            started = StartedComposeEnvironment(self, client)
            await started.down(remove_volumes=True, ignore_errors=True)
            raise
        return StartedComposeEnvironment(self, client)


class StartedComposeEnvironment:
    """Handle to a running compose project."""

    def __init__(self, environment: ComposeEnvironment, client: docker.DockerClient):
        self.environment = environment
        self.client = client
        self._stopped = False

    @property
    def project_name(self) -> str:
        return self.environment.project_name

    def get_container(self, service: str) -> "Container":
        """Find the container backing a compose service."""
        containers = self.client.containers.list(
            all=True,
            filters={
                "label": [
                    f"{PROJECT_LABEL}={self.project_name}",
                    f"{SERVICE_LABEL}={service}",
                ]
            },
        )
        if not containers:
            raise ContainerNotFound(service, self.project_name)
        return containers[0]

    async def logs(self, service: str) -> ContainerLogStream:
        """A not-yet-started log stream for a service."""
        container = await asyncio.to_thread(self.get_container, service)
        return ContainerLogStream(service, container)

    async def down(self, remove_volumes: bool = True, ignore_errors: bool = False) -> None:
        """Stop and remove the project's containers (and volumes)."""
        if self._stopped:
            return
        self._stopped = True

        args = ["down"]
        if remove_volumes:
            args.append("-v")

        logger.info(f"Stopping compose project '{self.project_name}'")
        try:
            await self.environment.run(*args)
        except ComposeError as e:
            if not ignore_errors:
                raise
            logger.warning(f"Ignoring teardown failure: {e}")
        finally:
            self.client.close()
