"""
Periodic connection health check and heartbeat.
"""
import threading
from typing import Optional, TYPE_CHECKING

from diag_agent.command_handlers import close_handle, is_handle_open
from diag_agent.core.scheduler import TimerHandle, cancel_timer
from diag_agent.utils import get_logger

if TYPE_CHECKING:
    from diag_agent.communication.transport import Transport
    from diag_agent.core.command_dispatcher import CommandDispatcher
    from diag_agent.core.scheduler import Scheduler

logger = get_logger(__name__)


class HealthChecker:
    """
    Checks one connection every ``interval_ms`` while it stays open.

    A closed handle is closed again explicitly, which pushes a half-open
    transport through the connection manager's close path, and the loop ends.
    With heartbeat enabled every check also sends a process stat report.
    Starting a new loop ends the previous one.
    """

    def __init__(self, scheduler: 'Scheduler', dispatcher: 'CommandDispatcher'):
        self.scheduler = scheduler
        self.dispatcher = dispatcher
        self._lock = threading.Lock()
        self._generation = 0
        self._timer: Optional[TimerHandle] = None
        self._handle: Optional['Transport'] = None

    @property
    def running(self) -> bool:
        return self._handle is not None

    def start(self, handle: 'Transport', interval_ms: int, with_heartbeat: bool) -> None:
        """
        Run a check now and keep checking every ``interval_ms``.
        An interval of 0 runs a single check.
        """
        with self._lock:
            self._generation += 1
            generation = self._generation
            self._handle = handle
            previous, self._timer = self._timer, None
        cancel_timer(previous)
        logger.debug(f"Health check started (interval {interval_ms} ms, heartbeat {'on' if with_heartbeat else 'off'}).")
        self._check(generation, handle, interval_ms, with_heartbeat)

    def stop(self) -> None:
        with self._lock:
            self._generation += 1
            self._handle = None
            timer, self._timer = self._timer, None
        cancel_timer(timer)

    def _is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation

    def _check(self, generation: int, handle: 'Transport', interval_ms: int, with_heartbeat: bool) -> None:
        if not self._is_current(generation):
            return

        if not is_handle_open(handle):
            logger.info("Health check found the connection not open. Closing it.")
            self._finish(generation)
            close_handle(handle)
            return

        if with_heartbeat:
            self.dispatcher.report_stat(handle)

        if interval_ms <= 0:
            self._finish(generation)
            return

        timer = self.scheduler.call_later(
            interval_ms / 1000.0,
            lambda: self._check(generation, handle, interval_ms, with_heartbeat),
            name="health-check"
        )
        with self._lock:
            if generation == self._generation:
                self._timer = timer
                timer = None
        # stopped while scheduling
        cancel_timer(timer)

    def _finish(self, generation: int) -> None:
        with self._lock:
            if generation == self._generation:
                self._handle = None
                self._timer = None
