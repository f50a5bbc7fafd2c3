"""
Core Agent module for the diagnostic agent.
"""
import threading
from typing import Optional, TYPE_CHECKING

from diag_agent.core.command_dispatcher import CommandDispatcher
from diag_agent.core.connection_manager import ConnectionManager, TransportFactory
from diag_agent.core.connection_state import ConnectionState
from diag_agent.core.health_checker import HealthChecker
from diag_agent.core.scheduler import Runner, Scheduler, ThreadingScheduler, ThreadRunner
from diag_agent.monitoring import (
    ProcessStatCollector,
    SamplingProfiler,
    TracemallocSnapshotExporter
)
from diag_agent.utils import get_logger

if TYPE_CHECKING:
    from diag_agent.config import AgentConfig
    from diag_agent.monitoring import StatCollector, Profiler, SnapshotExporter

logger = get_logger("diag_agent.agent")


class Agent:
    """
    The main Agent class wiring the diagnostic agent together.

    The agent keeps one connection to the collector open, answers the
    collector's process stat, CPU profiler and heap snapshot commands, and
    optionally sends a process stat heartbeat on every health check. It never
    stops on its own: failed connections are retried forever and failed
    diagnostics are logged and skipped.

    Collaborators, the scheduler, the runner and the transport factory can be
    injected; the defaults use psutil, a sampling profiler, tracemalloc,
    threading timers and a python-socketio client.
    """

    def __init__(self,
                 stat_collector: Optional['StatCollector'] = None,
                 profiler: Optional['Profiler'] = None,
                 snapshot_exporter: Optional['SnapshotExporter'] = None,
                 scheduler: Optional[Scheduler] = None,
                 runner: Optional[Runner] = None,
                 transport_factory: Optional[TransportFactory] = None):
        self.stat_collector = stat_collector
        self.profiler = profiler
        self.snapshot_exporter = snapshot_exporter
        self.scheduler = scheduler or ThreadingScheduler()
        self.runner = runner or ThreadRunner()
        self.transport_factory = transport_factory

        self._start_lock = threading.Lock()
        self._running = threading.Event()
        self._stopped = threading.Event()
        self._config: Optional['AgentConfig'] = None
        self.dispatcher: Optional[CommandDispatcher] = None
        self.health_checker: Optional[HealthChecker] = None
        self.connection_manager: Optional[ConnectionManager] = None

    @property
    def config(self) -> Optional['AgentConfig']:
        return self._config

    @property
    def running(self) -> bool:
        return self._running.is_set()

    @property
    def connection_state(self) -> ConnectionState:
        if self.connection_manager is None:
            return ConnectionState.DISCONNECTED
        return self.connection_manager.state

    def start(self, config: 'AgentConfig') -> None:
        """
        Start the agent with ``config`` and begin connecting.

        Only the first call takes effect. A later call with a different
        configuration is logged and ignored.

        :param config: Agent configuration
        :type config: AgentConfig
        """
        with self._start_lock:
            if self._config is not None:
                if config != self._config:
                    logger.warning("Agent already started with a different configuration. Ignoring the new one.")
                else:
                    logger.warning("Agent start requested but already running.")
                return
            self._config = config

            logger.info("================ Starting Agent ================")
            logger.info(f"Agent Config: {config.to_dict()}")

            self.dispatcher = CommandDispatcher(
                config,
                scheduler=self.scheduler,
                runner=self.runner,
                stat_collector=self.stat_collector or ProcessStatCollector(),
                profiler=self.profiler or SamplingProfiler(),
                snapshot_exporter=self.snapshot_exporter or TracemallocSnapshotExporter(config.heap_snapshot_dir)
            )
            self.health_checker = HealthChecker(self.scheduler, self.dispatcher)
            self.connection_manager = ConnectionManager(
                config,
                dispatcher=self.dispatcher,
                health_checker=self.health_checker,
                scheduler=self.scheduler,
                transport_factory=self.transport_factory
            )
            self._running.set()

        self.connection_manager.start()

    def stop(self) -> None:
        """Disconnect and stop reconnecting."""
        if not self._running.is_set():
            logger.debug("Agent stop called but agent is not running.")
            return
        logger.info("================ Stopping Agent ================")
        self._running.clear()
        self.connection_manager.stop()
        self.dispatcher.shutdown()
        self._stopped.set()
        logger.info("================ Agent Stopped ================")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block while the agent is running.

        :param timeout: Maximum time to wait in seconds, None to wait until stopped
        :return: True if the agent stopped within the timeout
        :rtype: bool
        """
        return self._stopped.wait(timeout)
