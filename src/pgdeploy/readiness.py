#!/usr/bin/env python3
"""
Bounded readiness polling.

A service counts as started once docker reports it running, but it may still
refuse connections. wait_until_ready() polls a liveness probe at a fixed
interval and gives up with ReadinessTimeoutError once the time budget is
spent, so a broken dependency ends the run instead of hanging it.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from .console import info, success
from .errors import ReadinessTimeoutError

logger = logging.getLogger(__name__)

Probe = Callable[[], bool]


@dataclass(frozen=True)
class ReadinessPoll:
    attempt: int
    elapsed: float
    ready: bool


def wait_until_ready(
    service: str,
    probe: Probe,
    interval: float = 1.0,
    timeout: float = 60.0,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> ReadinessPoll:
    """
    Poll ``probe`` every ``interval`` seconds until it returns True.

    A probe that raises is treated as "not ready yet". Sleeps are clamped to
    the remaining budget, so the wait never runs past ``timeout`` by more
    than one probe call.

    Args:
        service: Name used in progress output and errors
        probe: Liveness predicate
        interval: Seconds between attempts
        timeout: Total seconds to wait
        sleep: Sleep function (injectable for tests)
        clock: Monotonic clock (injectable for tests)

    Returns:
        The successful poll

    Raises:
        ReadinessTimeoutError: If no probe succeeded within ``timeout``
        ValueError: If interval or timeout is not positive
    """
    if interval <= 0:
        raise ValueError("interval must be greater than 0")
    if timeout <= 0:
        raise ValueError("timeout must be greater than 0")

    info(f"Waiting for {service} to be ready (timeout: {timeout:g}s)...")
    start = clock()
    attempt = 0

    while True:
        attempt += 1
        try:
            ready = bool(probe())
            detail = "ready" if ready else "not ready"
        except Exception as e:
            ready = False
            detail = f"probe error: {e}"
        poll = ReadinessPoll(attempt=attempt, elapsed=clock() - start, ready=ready)
        logger.debug(f"{service} poll {poll.attempt} at {poll.elapsed:.1f}s: {detail}")

        if poll.ready:
            success(f"{service} is ready!", attempts=poll.attempt)
            return poll

        remaining = timeout - poll.elapsed
        if remaining <= 0:
            raise ReadinessTimeoutError(service, timeout, attempt)

        if attempt % 10 == 0:
            info(f"  [{int(poll.elapsed)}s] {service} {detail}, retrying...")
        sleep(min(interval, remaining))
