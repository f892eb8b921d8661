"""Eventual-consistency assertions.

Poll a producer until a condition holds or a timeout elapses.

Example:
    >>> await poll_until(
    ...     count_matching(stack.entities, r"^sensor\\.rika_"),
    ...     greater_than(10),
    ...     interval=0.25,
    ...     timeout=10,
    ...     message="bridge should register the stove sensors",
    ... )
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from collections.abc import Callable, Collection
from typing import Any, Awaitable, TypeVar, Union

from e2e_harness.exceptions import PollTimeout
from e2e_harness.watchers import RegisteredEntitySet

logger = logging.getLogger(__name__)

T = TypeVar("T")

Producer = Callable[[], Union[T, Awaitable[T]]]

DEFAULT_INTERVAL = 0.25
DEFAULT_TIMEOUT = 10.0


class Condition:
    """A predicate with a human readable description for failure messages."""

    def __init__(self, predicate: Callable[[Any], bool], description: str):
        self.predicate = predicate
        self.description = description

    def __call__(self, value: Any) -> bool:
        return bool(self.predicate(value))

    def __repr__(self) -> str:
        return f"Condition({self.description})"


def greater_than(threshold: float) -> Condition:
    return Condition(lambda v: v > threshold, f"> {threshold}")


def at_least(threshold: float) -> Condition:
    return Condition(lambda v: v >= threshold, f">= {threshold}")


def equals(expected: Any) -> Condition:
    return Condition(lambda v: v == expected, f"== {expected!r}")


def contains(item: Any) -> Condition:
    return Condition(lambda v: item in v, f"to contain {item!r}")


def matches_count(pattern: str | re.Pattern, threshold: int) -> Condition:
    """Holds when more than ``threshold`` items of a collection match."""
    regex = pattern if isinstance(pattern, re.Pattern) else re.compile(pattern)

    def predicate(items: Collection[str]) -> bool:
        return sum(1 for item in items if regex.search(item)) > threshold

    return Condition(
        predicate, f"with more than {threshold} items matching /{regex.pattern}/"
    )


def count_matching(
    entities: RegisteredEntitySet, pattern: str | re.Pattern
) -> Callable[[], int]:
    """Producer counting registered identifiers that match ``pattern``."""

    def produce() -> int:
        return entities.count_matching(pattern)

    return produce


def _describe(condition: Callable[[Any], bool]) -> str:
    if isinstance(condition, Condition):
        return condition.description
    return f"satisfying {getattr(condition, '__name__', repr(condition))}"


async def poll_until(
    producer: Producer[T],
    condition: Callable[[T], bool],
    *,
    interval: float = DEFAULT_INTERVAL,
    timeout: float = DEFAULT_TIMEOUT,
    message: str | None = None,
) -> T:
    """
    Wait until ``condition(producer())`` holds.

    The producer runs immediately, then once per ``interval``. The last
    sleep is clamped to the deadline so one final evaluation happens at
    the timeout.

    Args:
        producer: Zero-argument callable; may return an awaitable.
        condition: Predicate over the produced value.
        interval: Seconds between evaluations.
        timeout: Seconds before giving up.
        message: Included in the failure to explain what was expected.

    Returns:
        The first value satisfying the condition.

    Raises:
        PollTimeout: If the condition never held; carries the last value.
    """
    if interval <= 0:
        raise ValueError("interval must be positive")
    if timeout < 0:
        raise ValueError("timeout must not be negative")

    loop = asyncio.get_running_loop()
    started = loop.time()
    deadline = started + timeout
    attempts = 0

    while True:
        value = producer()
        if inspect.isawaitable(value):
            value = await value
        attempts += 1

        if condition(value):
            logger.debug(
                f"Poll satisfied after {attempts} attempt(s), "
                f"{loop.time() - started:.2f}s: {value!r}"
            )
            return value

        remaining = deadline - loop.time()
        if remaining <= 0:
            logger.debug(f"Poll gave up after {attempts} attempt(s): {value!r}")
            raise PollTimeout(message, value, _describe(condition), timeout)

        await asyncio.sleep(min(interval, remaining))
