"""
Log Stream Watchers - extract facts from live container output.

A watcher pairs an extraction rule (the line classifier) with an
accumulator. Rules are the only place that knows the observed services'
log formats; swap a rule if a service moves to structured logging.

Usage:
    entities = RegisteredEntitySet()
    stream.subscribe(LogStreamWatcher(EntityRegistrationRule(), entities))
    ...
    entities.count_matching(r"^sensor\\.rika_")
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Protocol, Union, runtime_checkable

logger = logging.getLogger(__name__)

# Home Assistant entity registry line. Coupled to HA's log format: update it
# together with the platform image.
ENTITY_REGISTRATION_PATTERN = re.compile(
    r"INFO \(MainThread\) \[homeassistant\.helpers\.entity_registry\] "
    r"Registered new (\S+) entity: ([a-zA-Z0-9\-_.]+)"
)

Pattern = Union[str, re.Pattern]


def _compile(pattern: Pattern) -> re.Pattern:
    return pattern if isinstance(pattern, re.Pattern) else re.compile(pattern)


@dataclass(frozen=True)
class RegisteredEntity:
    """An entity announced by the platform's entity registry."""

    kind: str
    entity_id: str


# =============================================================================
# Extraction rules
# =============================================================================


@runtime_checkable
class ExtractionRule(Protocol):
    """Classifies one trimmed line; returns the value to record or None."""

    def extract(self, line: str) -> str | None:
        ...


class EntityRegistrationRule:
    """Extracts the identifier from entity registration lines."""

    def __init__(self, pattern: Pattern = ENTITY_REGISTRATION_PATTERN):
        self.pattern = _compile(pattern)

    def match(self, line: str) -> RegisteredEntity | None:
        found = self.pattern.search(line)
        if not found or not found.group(2):
            return None
        return RegisteredEntity(kind=found.group(1), entity_id=found.group(2))

    def extract(self, line: str) -> str | None:
        entity = self.match(line)
        return entity.entity_id if entity else None


class RawLineRule:
    """Records every line verbatim."""

    def extract(self, line: str) -> str | None:
        return line


# =============================================================================
# Accumulators
# =============================================================================


class RegisteredEntitySet:
    """Unique identifiers in first-seen order."""

    def __init__(self) -> None:
        # dict keeps insertion order and gives O(1) membership
        self._entries: dict[str, None] = {}

    def add(self, entity_id: str) -> bool:
        """Record an identifier. Returns False if it was already known."""
        if entity_id in self._entries:
            return False
        self._entries[entity_id] = None
        return True

    def snapshot(self) -> list[str]:
        return list(self._entries)

    def count_matching(self, pattern: Pattern) -> int:
        """Count identifiers the pattern matches (search semantics)."""
        regex = _compile(pattern)
        return sum(1 for entity_id in self._entries if regex.search(entity_id))

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._entries

    def __repr__(self) -> str:
        return f"RegisteredEntitySet({self.snapshot()!r})"


class MessageLog:
    """Every captured line in arrival order, duplicates included."""

    def __init__(self) -> None:
        self._lines: list[str] = []

    def add(self, line: str) -> bool:
        self._lines.append(line)
        return True

    def snapshot(self) -> list[str]:
        return list(self._lines)

    def clear(self) -> None:
        self._lines.clear()

    def __len__(self) -> int:
        return len(self._lines)

    def __contains__(self, line: object) -> bool:
        return line in self._lines

    def __repr__(self) -> str:
        return f"MessageLog({len(self._lines)} lines)"


class Accumulator(Protocol):
    def add(self, value: str) -> bool:
        ...

    def clear(self) -> None:
        ...


# =============================================================================
# Watcher
# =============================================================================


class LogStreamWatcher:
    """
    Persistent line subscriber: trim, classify, accumulate.

    Called synchronously for each line of one stream; never suspends, so
    each update to the accumulator is applied whole.
    """

    def __init__(self, rule: ExtractionRule, sink: Accumulator, name: str | None = None):
        self.rule = rule
        self.sink = sink
        self.name = name or type(rule).__name__

    def __call__(self, raw_line: str) -> None:
        line = raw_line.rstrip()
        value = self.rule.extract(line)
        if value is None:
            return
        if self.sink.add(value):
            logger.debug(f"[{self.name}] recorded {value!r}")