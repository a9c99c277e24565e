"""
Per-spill rate limiting for dispersion runs.

A CooldownTracker remembers when each spill was last simulated and refuses
a new run for the same spill inside the cooldown window, or while a run for
that spill is still in progress. It is injected into the engine so that
tests can drive it with a fake clock.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Set

from dispersion_core.exceptions import RateLimitedError

logger = logging.getLogger(__name__)


class CooldownTracker:
    """
    Thread-safe map of spill id to the time of its last run.

    Args:
        cooldown_seconds: Minimum interval between runs for the same spill
        clock: Callable returning a monotonic time in seconds
    """

    def __init__(self, cooldown_seconds: float = 5.0,
                 clock: Optional[Callable[[], float]] = None):
        if cooldown_seconds < 0:
            raise ValueError(f"Cooldown must be non-negative, got {cooldown_seconds}")
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock or time.monotonic
        self._last_run: Dict[Any, float] = {}
        self._previous: Dict[Any, Optional[float]] = {}
        self._in_flight: Set[Any] = set()
        self._lock = threading.Lock()

    def remaining(self, key: Any) -> float:
        """Seconds until ``key`` may run again (0 when it may run now)."""
        with self._lock:
            return self._remaining(key, self.clock())

    def _remaining(self, key: Any, now: float) -> float:
        last = self._last_run.get(key)
        if last is None:
            return 0.0
        return max(0.0, self.cooldown_seconds - (now - last))

    def try_acquire(self, key: Any) -> None:
        """
        Claim a run slot for ``key``.

        The check and the update happen under one lock, so only one of two
        concurrent requests for the same key can succeed.

        Raises:
            RateLimitedError: If ``key`` is still running or ran less than
                ``cooldown_seconds`` ago
        """
        with self._lock:
            now = self.clock()
            if key in self._in_flight:
                retry_after = max(self._remaining(key, now), 1.0)
                logger.warning(f"Rate limited: spill {key} is already being simulated")
                raise RateLimitedError(key, retry_after)
            retry_after = self._remaining(key, now)
            if retry_after > 0:
                logger.warning(f"Rate limited: spill {key} requested {retry_after:.1f}s too soon")
                raise RateLimitedError(key, retry_after)
            self._previous[key] = self._last_run.get(key)
            self._last_run[key] = now
            self._in_flight.add(key)

    def in_flight(self, key: Any) -> bool:
        with self._lock:
            return key in self._in_flight

    def mark_complete(self, key: Any) -> None:
        """Restart the window for ``key`` from the completion time."""
        with self._lock:
            self._previous.pop(key, None)
            self._in_flight.discard(key)
            self._last_run[key] = self.clock()

    def release(self, key: Any) -> None:
        """Undo an acquisition after a failed or cancelled run."""
        with self._lock:
            self._in_flight.discard(key)
            if key not in self._previous:
                return
            previous = self._previous.pop(key)
            if previous is None:
                self._last_run.pop(key, None)
            else:
                self._last_run[key] = previous

    def reset(self, key: Optional[Any] = None) -> None:
        """Forget one key, or every key when ``key`` is None."""
        with self._lock:
            if key is None:
                self._last_run.clear()
                self._previous.clear()
                self._in_flight.clear()
            else:
                self._last_run.pop(key, None)
                self._previous.pop(key, None)
                self._in_flight.discard(key)
