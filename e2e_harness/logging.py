"""Harness logging: console formatters and container output echo."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Iterable

if TYPE_CHECKING:
    from e2e_harness.config import HarnessSettings
    from e2e_harness.streams import ContainerLogStream


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        service = getattr(record, "service", None)
        if service:
            log_data["service"] = service

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        base = f"{timestamp} {record.levelname:8} {record.name}: {record.getMessage()}"

        if record.exc_info:
            base += "\n" + self.formatException(record.exc_info)

        return base


def setup_logging(settings: "HarnessSettings") -> None:
    """Configure harness logging on the ``e2e_harness`` logger tree."""
    harness_logger = logging.getLogger("e2e_harness")
    harness_logger.setLevel(getattr(logging, settings.log_level))

    # Remove handlers from a previous call
    for handler in harness_logger.handlers[:]:
        harness_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, settings.log_level))

    if settings.log_format == "json":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(TextFormatter())

    harness_logger.addHandler(handler)
    harness_logger.propagate = False

    # The Docker SDK logs every HTTP request at DEBUG
    logging.getLogger("docker").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the harness prefix."""
    return logging.getLogger(f"e2e_harness.{name}")


class ContainerLogEcho:
    """Mirrors container output into the harness log as ``service | line``."""

    def __init__(self, service: str, level: int = logging.INFO):
        self.service = service
        self.level = level
        self.logger = get_logger(f"containers.{service}")

    def __call__(self, line: str) -> None:
        text = line.rstrip("\r\n")
        self.logger.log(
            self.level,
            f"{self.service} | {text}",
            extra={"service": self.service},
        )


def echo_streams(streams: Iterable["ContainerLogStream"], services: Iterable[str]) -> None:
    """Subscribe an echo to every stream whose service is listed."""
    wanted = set(services)
    for stream in streams:
        if stream.service in wanted:
            stream.subscribe(ContainerLogEcho(stream.service))
