"""Bounded polling with backoff."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

T = TypeVar("T")

Clock = Callable[[], float]
Sleep = Callable[[float], None]


@dataclass
class Deadline:
    """Absolute point in monotonic time after which work must stop."""

    expires_at: float
    clock: Clock = field(default=time.monotonic, repr=False)

    @classmethod
    def after_ms(cls, milliseconds: int, clock: Clock = time.monotonic) -> "Deadline":
        return cls(clock() + milliseconds / 1000, clock)

    def remaining(self) -> float:
        return max(0.0, self.expires_at - self.clock())

    @property
    def expired(self) -> bool:
        return self.clock() >= self.expires_at

    def earliest(self, other: "Deadline") -> "Deadline":
        return self if self.expires_at <= other.expires_at else other


class PollTimeout(Exception):
    """Raised by :func:`poll_until` when the deadline passes; carries the last value."""

    def __init__(self, last: object) -> None:
        super().__init__("deadline exceeded")
        self.last = last


def poll_until(
    probe: Callable[[], T],
    done: Callable[[T], bool],
    *,
    deadline: Deadline,
    interval: float,
    max_interval: Optional[float] = None,
    backoff: float = 1.0,
    sleep: Sleep = time.sleep,
) -> T:
    """Call ``probe`` until ``done(result)`` holds or ``deadline`` expires.

    The deadline is checked before every probe, only one probe is outstanding
    at a time, and the wait between probes grows by ``backoff`` up to
    ``max_interval`` without ever sleeping past the deadline.
    """

    last: object = None
    wait = interval
    while not deadline.expired:
        result = probe()
        if done(result):
            return result
        last = result
        remaining = deadline.remaining()
        if remaining <= 0:
            break
        sleep(min(wait, remaining))
        wait = wait * backoff
        if max_interval is not None:
            wait = min(wait, max_interval)
    raise PollTimeout(last)
