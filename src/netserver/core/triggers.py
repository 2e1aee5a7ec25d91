"""Pacing functions for client mode.

The client engine calls its trigger before every new session. A value that
fires launches one more session and is handed to the handler; anything else
ends the loop. The string "0" counts as a stop, like the other falsy values.
"""

import random
import time
from collections.abc import Callable
from typing import Any


def fires(value: Any) -> bool:
    """Return True if a trigger value launches a session."""
    if not value:
        return False
    return value != "0"


def fire_once() -> Callable[[], int]:
    """Trigger that fires a single time, then stops."""
    fired = 0

    def trigger() -> int:
        nonlocal fired
        fired += 1
        return 0 if fired > 1 else 1

    return trigger


def fire_times(count: int, value: Any = 1, interval: float = 0.0) -> Callable[[], Any]:
    """Trigger that fires ``count`` times, sleeping ``interval`` seconds before each.

    Args:
        count: Number of sessions to launch
        value: Value passed to each session's handler
        interval: Delay before every firing after the first
    """
    remaining = count
    started = False

    def trigger() -> Any:
        nonlocal remaining, started
        if remaining <= 0:
            return None
        if started and interval > 0:
            time.sleep(interval)
        started = True
        remaining -= 1
        return value

    return trigger


def random_interval(count: int, low: float, high: float) -> Callable[[], int]:
    """Trigger that sleeps a random time in ``[low, high]`` before each of ``count`` firings.

    The handler receives the 1-based number of the session.
    """
    fired = 0

    def trigger() -> int:
        nonlocal fired
        if fired >= count:
            return 0
        time.sleep(random.uniform(low, high))
        fired += 1
        return fired

    return trigger
