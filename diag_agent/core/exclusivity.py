"""
Self-expiring mutual exclusion for non-reentrant diagnostics.
"""
import itertools
import threading
from typing import Optional

from diag_agent.core.scheduler import TimerHandle, cancel_timer


class ExclusivityLock:
    """
    A non-blocking lock guarding a global, non-reentrant resource.

    ``acquire`` never waits: it returns a token when the lock was free and
    None when it is held, so callers drop rather than queue. The token must be
    presented to ``release``; a holder whose lock already expired and was
    taken by someone else cannot free the newer holder.
    """

    def __init__(self):
        self._mutex = threading.Lock()
        self._tokens = itertools.count(1)
        self._token: Optional[int] = None
        self._expiry: Optional[TimerHandle] = None

    @property
    def held(self) -> bool:
        return self._token is not None

    def is_holder(self, token: int) -> bool:
        return token == self._token

    def acquire(self) -> Optional[int]:
        with self._mutex:
            if self._token is not None:
                return None
            self._token = next(self._tokens)
            return self._token

    def arm_expiry(self, token: int, handle: TimerHandle) -> None:
        """Attach the safety timer for ``token``; cancelled right away if ``token`` no longer holds."""
        with self._mutex:
            if token != self._token:
                stale = handle
            else:
                stale, self._expiry = self._expiry, handle
        cancel_timer(stale)

    def release(self, token: int) -> bool:
        """
        Free the lock and cancel its safety timer.

        :return: True if ``token`` was the holder
        :rtype: bool
        """
        with self._mutex:
            if token != self._token:
                return False
            self._token = None
            expiry, self._expiry = self._expiry, None
        cancel_timer(expiry)
        return True

    def expire(self, token: int) -> bool:
        """Safety timer for ``token`` fired."""
        with self._mutex:
            if token != self._token:
                return False
            self._token = None
            self._expiry = None
            return True
