from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Monotonic time source for the run engine.

    Item timing reads this instead of the wall clock so tests can drive it.
    """

    def now(self) -> float:
        """Return monotonic seconds."""


class RealClock:
    """Production clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()
