"""
Harness Configuration.

Settings are loaded from environment variables (prefix ``E2E_``) and an
optional ``.env`` file. Service descriptors pair each compose service with
the log line that marks it ready.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from e2e_harness.wait import LogMessageWaitStrategy, Wait


class HarnessSettings(BaseSettings):
    """Harness settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="E2E_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Compose environment
    project_dir: str = Field(default=".", description="Directory holding the compose file")
    compose_file: str = Field(default="docker-compose.yml")
    project_name: Optional[str] = Field(
        default=None, description="Compose project name (random when unset)"
    )
    build: bool = Field(default=False, description="Pass --build to compose up")
    remove_volumes: bool = Field(default=True, description="Pass -v to compose down")
    compose_command_timeout: float = Field(
        default=600.0, gt=0, description="Seconds allowed for compose up/down"
    )

    # Startup timeouts (seconds)
    homeassistant_startup_timeout: float = Field(default=10.0, gt=0)
    mosquitto_startup_timeout: float = Field(default=5.0, gt=0)
    mock_startup_timeout: float = Field(default=5.0, gt=0)
    bridge_startup_timeout: float = Field(default=5.0, gt=0)

    # Watched services
    entity_service: str = Field(default="homeassistant")
    message_service: str = Field(default="mosquitto-debug")
    echo_container_logs: bool = Field(default=True)
    echo_services: List[str] = Field(
        default_factory=lambda: [
            "homeassistant",
            "hass-mqtt-bridge",
            "rika-firenet-mock",
            "somfy-protect-mock",
            "mosquitto-debug",
        ]
    )

    # Polling defaults (seconds)
    poll_interval: float = Field(default=0.25, gt=0)
    poll_timeout: float = Field(default=10.0, gt=0)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="text", description="text or json")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        fmt = v.lower()
        if fmt not in {"text", "json"}:
            raise ValueError("log_format must be 'text' or 'json'")
        return fmt


@dataclass(frozen=True)
class ServiceDescriptor:
    """A compose service and the readiness condition gating it."""

    name: str
    wait_strategy: LogMessageWaitStrategy

    @property
    def startup_timeout(self) -> float:
        return self.wait_strategy.startup_timeout


def default_services(settings: HarnessSettings) -> list[ServiceDescriptor]:
    """Readiness conditions for the Home Assistant / MQTT bridge stack."""
    return [
        ServiceDescriptor(
            "homeassistant",
            Wait.for_log_message(
                "INFO (MainThread) [homeassistant.core] Starting Home Assistant"
            ).with_startup_timeout(settings.homeassistant_startup_timeout),
        ),
        ServiceDescriptor(
            "mosquitto",
            Wait.for_log_message(
                re.compile(r"mosquitto version \S+ running")
            ).with_startup_timeout(settings.mosquitto_startup_timeout),
        ),
        ServiceDescriptor(
            "rika-firenet-mock",
            Wait.for_log_message(
                "Rika Firenet mock listening on port 3000"
            ).with_startup_timeout(settings.mock_startup_timeout),
        ),
        ServiceDescriptor(
            "somfy-protect-mock",
            Wait.for_log_message(
                "Somfy Protect API mock listening on port 3000"
            ).with_startup_timeout(settings.mock_startup_timeout),
        ),
        ServiceDescriptor(
            "hass-mqtt-bridge",
            Wait.for_log_message(
                "Actix runtime found; starting in Actix runtime"
            ).with_startup_timeout(settings.bridge_startup_timeout),
        ),
    ]


@lru_cache
def get_settings() -> HarnessSettings:
    """Get cached settings instance."""
    return HarnessSettings()
