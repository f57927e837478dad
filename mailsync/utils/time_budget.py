import time
from typing import Callable


class TimeBudget:
    """Cooperative wall-clock budget shared by every processor in one sync run.

    Nothing is interrupted: callers check `exceeded()` between units of work
    and stop on their own.
    """

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self.seconds = seconds
        self._clock = clock
        self._started_at = clock()

    @property
    def elapsed(self) -> float:
        return self._clock() - self._started_at

    def exceeded(self) -> bool:
        return self.elapsed > self.seconds
