"""Deadline-bounded polling.

Every wait in the engine goes through ``poll_until``: it checks a condition,
sleeps on an event (so an operator interrupt wakes it immediately) and gives
up at an explicit deadline. No wait is unbounded.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import TypeVar

from restoreproof.core.errors import PollCancelledError, PollTimeoutError

T = TypeVar("T")


def poll_until(
    probe: Callable[[], T],
    done: Callable[[T], bool],
    *,
    timeout: float,
    interval: float,
    description: str,
    cancel: threading.Event | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """Call ``probe`` until ``done(result)`` holds or the deadline passes.

    Args:
        probe: Produces the value to test.
        done: Predicate on the probed value.
        timeout: Seconds until the wait gives up.
        interval: Seconds between probes.
        description: What is being waited for, used in errors.
        cancel: Optional event that aborts the wait when set.
        clock: Monotonic clock, injectable for tests.

    Returns:
        The first probed value satisfying ``done``.

    Raises:
        PollTimeoutError: If the deadline passes first.
        PollCancelledError: If ``cancel`` is set.
    """
    waiter = cancel or threading.Event()
    deadline = clock() + timeout
    while True:
        if cancel is not None and cancel.is_set():
            raise PollCancelledError(f"Cancelled while waiting for {description}")
        value = probe()
        if done(value):
            return value
        remaining = deadline - clock()
        if remaining <= 0:
            raise PollTimeoutError(f"Timed out after {timeout:.0f}s waiting for {description}")
        if waiter.wait(min(interval, remaining)) and cancel is not None:
            raise PollCancelledError(f"Cancelled while waiting for {description}")
