"""Escalating wait schedule for CA throttling.

Each interval is used a fixed number of times before escalating::

    10s - 3x
    30s - 2x
    1m  - 5x
    5m  - 2x
    10m - 3x
    30m - 2x
    1h  - unlimited

:meth:`Backoff.resume` returns the state machine to the un-throttled
zero state.  The machine never leaves the schedule on its own; an
interval outside it can only come from a caller-supplied initial state
and is reported as an error.

Usage::

    backoff = Backoff()
    backoff.back_off()
    backoff.wait()      # sleeps 10 seconds
    backoff.resume()
"""

from __future__ import annotations

import logging
import time
from datetime import timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

log = logging.getLogger(__name__)

_ZERO = timedelta(0)

# interval -> (uses allowed at this interval, next interval).  A use
# count of ``None`` marks the terminal interval.
_SCHEDULE: dict[timedelta, tuple[int | None, timedelta | None]] = {
    timedelta(seconds=10): (3, timedelta(seconds=30)),
    timedelta(seconds=30): (2, timedelta(minutes=1)),
    timedelta(minutes=1): (5, timedelta(minutes=5)),
    timedelta(minutes=5): (2, timedelta(minutes=10)),
    timedelta(minutes=10): (3, timedelta(minutes=30)),
    timedelta(minutes=30): (2, timedelta(hours=1)),
    timedelta(hours=1): (None, None),
}

FIRST_INTERVAL = timedelta(seconds=10)
MAX_INTERVAL = timedelta(hours=1)


class Backoff:
    """Bounded backoff state machine.

    Parameters
    ----------
    interval:
        Initial interval.  Normally left at zero (un-throttled).
    count:
        Number of times *interval* has already been used.
    sleep:
        Blocking sleep function taking seconds.  Defaults to
        :func:`time.sleep`.

    """

    def __init__(
        self,
        interval: timedelta = _ZERO,
        count: int = 0,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._interval = interval
        self._count = count
        self._sleep = sleep or time.sleep

    @property
    def interval(self) -> timedelta:
        """How long :meth:`wait` will block."""
        return self._interval

    @property
    def count(self) -> int:
        """How many times the current interval has been used."""
        return self._count

    @property
    def throttled(self) -> bool:
        return self._interval > _ZERO

    def back_off(self) -> None:
        """Throttle one more step along the schedule."""
        if self._interval == _ZERO:
            self._interval = FIRST_INTERVAL
            self._count = 1
            return

        step = _SCHEDULE.get(self._interval)
        if step is None:
            log.error("Unexpected backoff interval: %s", self._interval)
            return

        allowed, next_interval = step
        self._count += 1
        if allowed is not None and self._count > allowed:
            self._interval = next_interval  # type: ignore[assignment]
            self._count = 1

    def wait(self) -> None:
        """Block for the current interval.  There is no way to cancel."""
        self._sleep(self._interval.total_seconds())

    def resume(self) -> None:
        """Reset to the un-throttled state."""
        self._interval = _ZERO
        self._count = 0

    def __repr__(self) -> str:
        return f"<Backoff interval={self._interval} count={self._count}>"
