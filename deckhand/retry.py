"""Bounded exponential backoff with an injectable clock.

Polling loops (health checks, transport retries, drain waits) never call
``asyncio.sleep`` directly: they go through a ``Clock`` so tests can run the
whole state machine without real sleeping.
"""

import asyncio
import time
from dataclasses import dataclass


class Clock:
    """``now`` is monotonic, for intervals inside one run. ``wall`` is epoch
    time, for deadlines that are persisted and read back by another process.
    """

    def now(self) -> float:
        return time.monotonic()

    def wall(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)


@dataclass(frozen=True)
class Backoff:
    """Retry policy: up to ``max_attempts`` tries, delays grow by ``factor``."""

    max_attempts: int
    interval: float
    factor: float = 2.0
    max_interval: float | None = None

    def delay(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        value = self.interval * (self.factor ** (attempt - 1))
        if self.max_interval is not None:
            value = min(value, self.max_interval)
        return value


class RetryState:
    """Explicit retry state machine: attempt counter plus next delay.

    Usage::

        state = RetryState(policy)
        while state.start_attempt():
            ...
            if done:
                break
            await state.wait(clock)
    """

    def __init__(self, policy: Backoff):
        self.policy = policy
        self.attempt = 0

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.policy.max_attempts

    def start_attempt(self) -> bool:
        """Advance to the next attempt. Returns False once attempts are used up."""
        if self.exhausted:
            return False
        self.attempt += 1
        return True

    def next_delay(self) -> float:
        return self.policy.delay(self.attempt)

    async def wait(self, clock: Clock) -> None:
        """Sleep before the next attempt; no-op after the final attempt."""
        if not self.exhausted:
            await clock.sleep(self.next_delay())
