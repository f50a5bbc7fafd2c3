"""
Reconnect bookkeeping for the connection manager.
"""
import threading
from typing import Optional

from diag_agent.core.scheduler import TimerHandle, cancel_timer

DEFAULT_FAIL_THRESHOLD = 3
DEFAULT_LONG_SLEEP_MS = 3600 * 1000


class RetryState:
    """
    Attempt counter and reconnect lock with a two-tier backoff policy.

    ``try_lock`` admits at most one pending reconnect per dead transport. The
    lock is released when the scheduled retry runs, reset when a connection
    opens, and expired by a safety timer armed by the owner in case the retry
    callback is lost. Every lock carries a generation number so that a late
    expiry from an earlier lock never clears a newer one.
    """

    def __init__(self, check_interval_ms: int, fail_threshold: int = DEFAULT_FAIL_THRESHOLD,
                 long_sleep_ms: int = DEFAULT_LONG_SLEEP_MS):
        self.check_interval_ms = check_interval_ms
        self.fail_threshold = fail_threshold
        self.long_sleep_ms = long_sleep_ms

        self._mutex = threading.Lock()
        self._attempt_count = 0
        self._locked = False
        self._generation = 0
        self._expiry: Optional[TimerHandle] = None

    @property
    def attempt_count(self) -> int:
        return self._attempt_count

    @property
    def locked(self) -> bool:
        return self._locked

    @property
    def generation(self) -> int:
        return self._generation

    def try_lock(self) -> bool:
        """
        Take the reconnect lock and count one more failed attempt.

        :return: False if a reconnect is already pending, True otherwise
        :rtype: bool
        """
        with self._mutex:
            if self._locked:
                return False
            self._locked = True
            self._attempt_count += 1
            self._generation += 1
            return True

    def next_delay_ms(self) -> int:
        """
        Delay before the next connection attempt.

        Up to ``fail_threshold`` consecutive failures retry after the check
        interval; one more failure sleeps for ``long_sleep_ms`` and starts the
        count over.
        """
        with self._mutex:
            if self._attempt_count > self.fail_threshold:
                self._attempt_count = 0
                return self.long_sleep_ms
            return self.check_interval_ms

    def arm_expiry(self, handle: TimerHandle) -> None:
        """Attach the safety timer that will call :meth:`expire` for the current lock."""
        with self._mutex:
            previous, self._expiry = self._expiry, handle
        cancel_timer(previous)

    def release(self) -> None:
        """Drop the lock and its safety timer, keeping the attempt count."""
        with self._mutex:
            self._locked = False
            expiry, self._expiry = self._expiry, None
        cancel_timer(expiry)

    def reset(self) -> None:
        """Connection succeeded: drop the lock and forget previous failures."""
        with self._mutex:
            self._locked = False
            self._attempt_count = 0
            expiry, self._expiry = self._expiry, None
        cancel_timer(expiry)

    def expire(self, generation: int) -> bool:
        """
        Safety timer fired for the lock taken at ``generation``.

        Only the lock is dropped. The attempt count is kept, unlike a full
        reset, so an expiry in the middle of a failure streak does not
        postpone the long sleep.

        :return: True if the lock was still held by that generation and is now free
        :rtype: bool
        """
        with self._mutex:
            if not self._locked or generation != self._generation:
                return False
            self._locked = False
            self._expiry = None
            return True
