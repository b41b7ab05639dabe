"""Bounded polling helper."""

import logging
import time
from collections.abc import Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def poll_until(
    fetch: Callable[[], T],
    done: Callable[[T], bool],
    attempts: int = 60,
    interval: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fetch`` until ``done`` accepts its result or attempts run out.

    Each attempt first waits ``interval`` seconds. The last fetched value is
    returned either way; callers decide whether it is acceptable.
    """
    if attempts < 1:
        raise ValueError(f"attempts must be >= 1, got {attempts}")

    value: T
    for attempt in range(1, attempts + 1):
        sleep(interval)
        value = fetch()
        if done(value):
            logger.debug("Polling finished after %d attempt(s)", attempt)
            return value

    logger.debug("Polling gave up after %d attempts", attempts)
    return value
