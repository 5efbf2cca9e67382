"""Execution time tracking for the host runtime budget."""

import time
from collections.abc import Callable


class ScriptClock:
    """Track elapsed execution time of one host invocation.

    The dispatcher asks this clock, not its own retry timer, whether the
    invocation as a whole is about to run out of time. Create one per
    invocation (or call :meth:`restart`) as early as possible.
    """

    def __init__(self, time_func: Callable[[], float] = time.monotonic):
        self._time = time_func
        self._started_at = self._time()

    @property
    def started_at(self) -> float:
        return self._started_at

    def restart(self) -> None:
        """Reset the clock to the current time."""
        self._started_at = self._time()

    def elapsed_seconds(self) -> float:
        """Seconds elapsed since the clock was started."""
        return self._time() - self._started_at

    def exceeds(self, limit_seconds: float) -> bool:
        """True when a positive ``limit_seconds`` has been passed; 0 disables the check."""
        return limit_seconds > 0 and self.elapsed_seconds() > limit_seconds
