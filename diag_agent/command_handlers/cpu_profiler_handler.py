"""
CPU profiler command handler.
"""
import threading
from typing import Any, Optional, TYPE_CHECKING

from diag_agent.command_handlers.base_handler import BaseCommandHandler
from diag_agent.communication.packet import CommandCode, Packet
from diag_agent.core.exclusivity import ExclusivityLock
from diag_agent.core.scheduler import TimerHandle, cancel_timer
from diag_agent.utils import get_logger

if TYPE_CHECKING:
    from diag_agent.communication.transport import Transport
    from diag_agent.config import AgentConfig
    from diag_agent.core.scheduler import Runner, Scheduler
    from diag_agent.monitoring import Profiler

logger = get_logger(__name__)

DURATION_FIELD = 'durationMs'


class CpuProfilerHandler(BaseCommandHandler):
    """
    Runs one CPU profiling session for a requested duration and reports the analysis.

    The profiler is a process-wide, non-reentrant resource, so the handler is
    exclusive: a request arriving while a session is in progress is dropped,
    not queued. The exclusivity lock expires on its own
    ``profiler_lock_window_ms`` after the session was due to end, in case the
    stop never completes. :meth:`shutdown` cancels a running session without reporting it.
    """

    name = 'CPU profiler'

    def __init__(self, config: 'AgentConfig', runner: 'Runner', scheduler: 'Scheduler',
                 profiler: 'Profiler', lock: Optional[ExclusivityLock] = None):
        super().__init__(config, runner)
        self.scheduler = scheduler
        self.profiler = profiler
        self.lock = lock if lock is not None else ExclusivityLock()

        self._session_mutex = threading.Lock()
        self._session_token: Optional[int] = None
        self._stop_timer: Optional[TimerHandle] = None
        self._shut_down = False

    def resolve_duration_ms(self, body: Any) -> int:
        """
        Requested session length, clamped to ``[0, profiler_max_duration_ms]``.

        Missing or non-numeric values fall back to ``profiler_default_duration_ms``.
        """
        default = self.config.profiler_default_duration_ms
        requested = body.get(DURATION_FIELD, default) if isinstance(body, dict) else default
        if isinstance(requested, bool) or not isinstance(requested, (int, float)):
            logger.warning(f"Ignoring invalid {DURATION_FIELD} {requested!r}; using {default} ms.")
            requested = default
        duration = int(requested)
        if duration > self.config.profiler_max_duration_ms:
            logger.warning(f"Requested profiling duration {duration} ms exceeds maximum; "
                           f"clamping to {self.config.profiler_max_duration_ms} ms.")
            duration = self.config.profiler_max_duration_ms
        return max(0, duration)

    def execute(self, packet: Packet, handle: 'Transport') -> None:
        if self._shut_down:
            logger.info("CPU profiler is shut down. Dropping profiler command.")
            return
        token = self.lock.acquire()
        if token is None:
            logger.warning("CPU profiler session already in progress. Dropping profiler command.")
            return

        duration_ms = self.resolve_duration_ms(packet.body)
        window_ms = duration_ms + self.config.profiler_lock_window_ms
        self.lock.arm_expiry(token, self.scheduler.call_later(
            window_ms / 1000.0, lambda: self._on_lock_expired(token), name="cpu-profiler-lock-expiry"))

        logger.info(f"Starting CPU profiler session for {duration_ms} ms.")
        self.runner.spawn(lambda: self._start_session(token, duration_ms, handle), name="cpu-profiler-start")

    def shutdown(self) -> None:
        """
        Stop accepting profiler commands and end the running session, if any,
        without reporting it.
        """
        with self._session_mutex:
            self._shut_down = True
            token, self._session_token = self._session_token, None
            stop_timer, self._stop_timer = self._stop_timer, None
        cancel_timer(stop_timer)
        if token is not None:
            logger.info("Cancelling the running CPU profiler session.")
            self._abort_session(token)

    def _start_session(self, token: int, duration_ms: int, handle: 'Transport') -> None:
        if self._shut_down:
            self.lock.release(token)
            return
        try:
            self.profiler.start_session()
        except Exception as e:
            logger.error(f"Failed to start CPU profiler session: {e}")
            self.lock.release(token)
            return

        def stop_due():
            self.runner.spawn(lambda: self._stop_session(token, handle), name="cpu-profiler-stop")

        stop_timer = self.scheduler.call_later(duration_ms / 1000.0, stop_due, name="cpu-profiler-stop")
        with self._session_mutex:
            cancelled = self._shut_down
            if not cancelled:
                self._session_token = token
                self._stop_timer = stop_timer
        if cancelled:
            # shut down while the session was starting
            cancel_timer(stop_timer)
            self._abort_session(token)

    def _stop_session(self, token: int, handle: 'Transport') -> None:
        if self.lock.held and not self.lock.is_holder(token):
            logger.warning("Stale CPU profiler stop ignored: a newer session owns the profiler.")
            return
        with self._session_mutex:
            if self._session_token != token:
                logger.debug("CPU profiler stop ignored: the session is no longer running.")
                return
            self._session_token = None
            self._stop_timer = None
        try:
            analysis = self.profiler.stop_session()
        except Exception as e:
            logger.error(f"Failed to stop CPU profiler session: {e}")
            self.lock.release(token)
            return

        if not self.lock.release(token):
            logger.warning("CPU profiler session finished after its lock expired; reporting the late result.")
        else:
            logger.info("CPU profiler session finished.")
        self.send_report(handle, CommandCode.REPORT_CPU_PROFILER, analysis)

    def _abort_session(self, token: int) -> None:
        try:
            self.profiler.stop_session()
        except Exception as e:
            logger.error(f"Failed to stop CPU profiler session: {e}")
        self.lock.release(token)

    def _on_lock_expired(self, token: int) -> None:
        if self.lock.expire(token):
            logger.warning("CPU profiler lock expired before the session completed. Profiler is available again.")
