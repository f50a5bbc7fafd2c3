"""
Timer and worker-thread abstractions used by the connection manager,
health checker and command handlers.

Everything that happens "later" in the agent goes through a Scheduler and
everything that calls into a slow collaborator goes through a Runner, so the
same code runs on real threads in production and on virtual time in tests.
"""
import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional

from diag_agent.utils import get_logger

logger = get_logger(__name__)


class TimerHandle(ABC):
    """A cancellable reference to a scheduled callback."""

    @abstractmethod
    def cancel(self) -> None:
        """Cancel the callback. Cancelling a fired or cancelled timer is a no-op."""


class Scheduler(ABC):
    """Schedules callbacks to run after a delay."""

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[[], None], name: str = "timer") -> TimerHandle:
        """
        Run ``callback`` once after ``delay`` seconds.

        :param delay: Delay in seconds
        :type delay: float
        :param callback: Zero-argument callable to run
        :type callback: Callable[[], None]
        :param name: Name used for the timer thread and in log messages
        :type name: str
        :return: Handle that cancels the callback
        :rtype: TimerHandle
        """


class Runner(ABC):
    """Runs blocking jobs off the caller's thread."""

    @abstractmethod
    def spawn(self, job: Callable[[], None], name: str = "job") -> None:
        """Start ``job`` and return without waiting for it."""


class _ThreadingTimerHandle(TimerHandle):

    def __init__(self, timer: threading.Timer):
        self._timer = timer

    def cancel(self) -> None:
        self._timer.cancel()


class ThreadingScheduler(Scheduler):
    """
    Scheduler backed by daemon ``threading.Timer`` threads.
    """

    def call_later(self, delay: float, callback: Callable[[], None], name: str = "timer") -> TimerHandle:
        def guarded():
            try:
                callback()
            except Exception as e:
                logger.error(f"Unhandled error in timer callback '{name}': {e}", exc_info=True)

        timer = threading.Timer(max(0.0, delay), guarded)
        timer.name = name
        timer.daemon = True
        timer.start()
        logger.debug(f"Timer '{name}' scheduled in {delay:.3f} seconds.")
        return _ThreadingTimerHandle(timer)


class ThreadRunner(Runner):
    """
    Runner that starts one daemon thread per job.
    """

    def spawn(self, job: Callable[[], None], name: str = "job") -> None:
        def guarded():
            try:
                job()
            except Exception as e:
                logger.error(f"Unhandled error in worker '{name}': {e}", exc_info=True)

        thread = threading.Thread(target=guarded, name=name, daemon=True)
        thread.start()


def cancel_timer(handle: Optional[TimerHandle]) -> None:
    """Cancel ``handle`` if there is one."""
    if handle is not None:
        handle.cancel()
