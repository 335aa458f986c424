"""Bounded polling shared by every wait loop in MauticDeployer."""

import math
import time
from typing import Callable, Optional


def attempts_for(timeout_seconds: float, interval_seconds: float) -> int:
    if interval_seconds <= 0:
        return 1
    return max(1, math.ceil(timeout_seconds / interval_seconds))


def poll_until(
    check: Callable[[int], bool],
    timeout_seconds: float,
    interval_seconds: float,
    on_miss: Optional[Callable[[int, int], None]] = None,
) -> bool:
    """Call ``check(attempt)`` until it returns True or the budget is spent.

    The budget is ``ceil(timeout / interval)`` attempts with a sleep of
    ``interval_seconds`` after every miss, so a check that never succeeds
    returns False after sleeping for the whole timeout. ``on_miss`` receives
    the attempt number and the seconds elapsed so far, before sleeping.
    """
    max_attempts = attempts_for(timeout_seconds, interval_seconds)

    for attempt in range(1, max_attempts + 1):
        if check(attempt):
            return True

        elapsed = int((attempt - 1) * interval_seconds)
        if on_miss is not None:
            on_miss(attempt, elapsed)
        time.sleep(interval_seconds)

    return False
