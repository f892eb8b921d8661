"""
End-to-end platform harness.

Brings up the Home Assistant / MQTT bridge stack with Docker Compose,
gates on readiness lines in each service's log, scrapes registered
entities and broker traffic from live output, and lets tests poll that
state until it settles.
"""

from e2e_harness.compose import ComposeEnvironment, StartedComposeEnvironment
from e2e_harness.config import HarnessSettings, ServiceDescriptor, default_services, get_settings
from e2e_harness.exceptions import (
    AlreadyRunning,
    ComposeError,
    ContainerNotFound,
    HarnessError,
    PollTimeout,
    StartupAborted,
    StartupTimeout,
)
from e2e_harness.platform import StackOrchestrator, build_orchestrator
from e2e_harness.polling import (
    Condition,
    at_least,
    contains,
    count_matching,
    equals,
    greater_than,
    matches_count,
    poll_until,
)
from e2e_harness.wait import LogMessageWaitStrategy, ReadinessProbe, Wait
from e2e_harness.watchers import (
    EntityRegistrationRule,
    LogStreamWatcher,
    MessageLog,
    RawLineRule,
    RegisteredEntitySet,
)

__all__ = [
    "AlreadyRunning",
    "ComposeEnvironment",
    "ComposeError",
    "Condition",
    "ContainerNotFound",
    "EntityRegistrationRule",
    "HarnessError",
    "HarnessSettings",
    "LogMessageWaitStrategy",
    "LogStreamWatcher",
    "MessageLog",
    "PollTimeout",
    "RawLineRule",
    "ReadinessProbe",
    "RegisteredEntitySet",
    "ServiceDescriptor",
    "StackOrchestrator",
    "StartedComposeEnvironment",
    "StartupAborted",
    "StartupTimeout",
    "Wait",
    "at_least",
    "build_orchestrator",
    "contains",
    "count_matching",
    "default_services",
    "equals",
    "get_settings",
    "greater_than",
    "matches_count",
    "poll_until",
]
