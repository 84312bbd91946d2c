"""Bounded polling shared by every waiting stage.

Every stage that waits on a remote system (build jobs, the migration task,
the container service, the registry) goes through ``poll_until``. There is
no other sleep loop in the package.

Key Concepts:
    Clock: Bundles ``monotonic``, ``sleep`` and ``now`` so tests can drive
        time without waiting. ``SYSTEM_CLOCK`` is the real one.
    PollOutcome: The last observed value, how many checks were made, how
        long it took and whether the bound was hit.

Semantics:
    1. Call ``check()``.
    2. If ``done(value)``, return it.
    3. If elapsed >= timeout, return it flagged ``timed_out``.
    4. Sleep ``min(interval, remaining)`` and go to 1.

    So a sequence ``[IN_PROGRESS, IN_PROGRESS, SUCCEEDED]`` costs exactly
    three checks, and an observation made exactly at the bound still
    counts.

Tags:
    polling, timeout, clock, deployment
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Callable, Generic, TypeVar

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class Clock:
    """Time source used by polling and tag derivation."""

    monotonic: Callable[[], float] = time.monotonic
    sleep: Callable[[float], None] = time.sleep
    now: Callable[[], datetime] = field(default=_utcnow)


SYSTEM_CLOCK = Clock()


@dataclass(frozen=True)
class PollOutcome(Generic[T]):
    """Result of a ``poll_until`` call."""

    value: T
    attempts: int
    elapsed: float
    timed_out: bool

    @property
    def done(self) -> bool:
        return not self.timed_out


def poll_until(
    check: Callable[[], T],
    done: Callable[[T], bool],
    *,
    interval: float,
    timeout: float,
    clock: Clock = SYSTEM_CLOCK,
    on_poll: Callable[[T, int, float], None] | None = None,
) -> PollOutcome[T]:
    """
    Call ``check`` until ``done`` accepts its value or ``timeout`` elapses.

    Args:
        check: Observes the remote system once
        done: True when the observed value is terminal
        interval: Seconds between checks
        timeout: Upper bound in seconds, measured from the first check
        clock: Time source (inject a fake one in tests)
        on_poll: Called with (value, attempt, elapsed) after each
            non-terminal check that will be followed by another one

    Returns:
        PollOutcome with the last observed value

    Raises:
        ValueError: If interval or timeout is not positive
        Exception: Whatever ``check`` raises propagates unchanged
    """
    if interval <= 0:
        raise ValueError(f"interval must be positive, got {interval}")
    if timeout <= 0:
        raise ValueError(f"timeout must be positive, got {timeout}")

    started = clock.monotonic()
    attempts = 0
    while True:
        value = check()
        attempts += 1
        elapsed = clock.monotonic() - started
        if done(value):
            return PollOutcome(value=value, attempts=attempts, elapsed=elapsed, timed_out=False)
        if elapsed >= timeout:
            return PollOutcome(value=value, attempts=attempts, elapsed=elapsed, timed_out=True)
        if on_poll is not None:
            on_poll(value, attempts, elapsed)
        clock.sleep(min(interval, timeout - elapsed))


__all__ = ["Clock", "PollOutcome", "SYSTEM_CLOCK", "poll_until"]
