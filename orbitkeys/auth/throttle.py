"""Failed authentication attempt tracking for brute-force throttling.

Counts recent failures per client address. Once an address reaches
``max_failures`` within ``window_seconds`` it is blocked until the window
started by its first failure has passed. A successful authentication
clears the address.

Counts are approximate under contention; an off-by-one between racing
requests is acceptable.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger("orbitkeys.auth.throttle")


@dataclass
class AttemptRecord:
    """Failure count for one client address."""

    count: int
    first_failure: float

    def is_stale(self, now: float, window_seconds: float) -> bool:
        return now - self.first_failure >= window_seconds


class FailedAttemptTracker:
    """Thread-safe failed attempt counter keyed by client address."""

    def __init__(
        self,
        max_failures: int = 10,
        window_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the tracker.

        Args:
            max_failures: Failures within the window before an address is blocked.
            window_seconds: Length of the counting window.
            clock: Monotonic time source (seconds).
        """
        self.max_failures = max_failures
        self.window_seconds = window_seconds
        self._clock = clock
        self._attempts: dict[str, AttemptRecord] = {}
        self._lock = threading.Lock()

    def _current(self, address: str, now: float) -> AttemptRecord | None:
        """Get the live record for an address (must be called with lock held)."""
        record = self._attempts.get(address)
        if record is not None and record.is_stale(now, self.window_seconds):
            del self._attempts[address]
            return None
        return record

    def is_blocked(self, address: str) -> bool:
        """Check if an address has reached the failure limit."""
        with self._lock:
            record = self._current(address, self._clock())
            return record is not None and record.count >= self.max_failures

    def retry_after(self, address: str) -> int:
        """Seconds until a blocked address may try again (0 if not blocked)."""
        now = self._clock()
        with self._lock:
            record = self._current(address, now)
            if record is None or record.count < self.max_failures:
                return 0
            return max(1, int(self.window_seconds - (now - record.first_failure)) + 1)

    def record_failure(self, address: str) -> int:
        """Count a failed attempt.

        Returns:
            The address's failure count within the current window.
        """
        now = self._clock()
        with self._lock:
            record = self._current(address, now)
            if record is None:
                record = AttemptRecord(count=0, first_failure=now)
                self._attempts[address] = record
            record.count += 1
            count = record.count

        if count == self.max_failures:
            logger.warning(f"Client {address} blocked after {count} failed attempts")
        return count

    def clear(self, address: str) -> None:
        """Forget the failures of an address."""
        with self._lock:
            self._attempts.pop(address, None)

    def reset(self) -> None:
        """Forget all tracked addresses."""
        with self._lock:
            self._attempts.clear()

    def get_stats(self) -> dict[str, Any]:
        """Get tracker statistics."""
        now = self._clock()
        with self._lock:
            live = {
                address: record.count
                for address, record in self._attempts.items()
                if not record.is_stale(now, self.window_seconds)
            }
        return {
            "max_failures": self.max_failures,
            "window_seconds": self.window_seconds,
            "tracked_addresses": len(live),
            "blocked_addresses": sum(1 for c in live.values() if c >= self.max_failures),
        }
