"""
Command dispatcher routing inbound packets to diagnostic handlers.
"""
from typing import Any, Dict, Optional, TYPE_CHECKING

from diag_agent.command_handlers import (
    BaseCommandHandler,
    CpuProfilerHandler,
    HeapSnapshotHandler,
    StatHandler
)
from diag_agent.communication.packet import CommandCode, Packet, decode
from diag_agent.core.errors import MalformedFrameError
from diag_agent.utils import get_logger

if TYPE_CHECKING:
    from diag_agent.communication.transport import Transport
    from diag_agent.config import AgentConfig
    from diag_agent.core.exclusivity import ExclusivityLock
    from diag_agent.core.scheduler import Runner, Scheduler
    from diag_agent.monitoring import StatCollector, Profiler, SnapshotExporter

logger = get_logger("diag_agent.command.dispatcher")


class CommandDispatcher:
    """
    Decodes inbound frames and hands each packet to the handler registered for
    its command code.

    The routing table is fixed. Codes without a handler, including report codes
    echoed back by a collector, are ignored so that newer collectors can send
    commands this agent does not know about.
    """

    def __init__(self, config: 'AgentConfig', scheduler: 'Scheduler', runner: 'Runner',
                 stat_collector: 'StatCollector', profiler: 'Profiler',
                 snapshot_exporter: 'SnapshotExporter'):
        """
        :param config: Agent configuration
        :param scheduler: Scheduler for profiler session and lock timers
        :param runner: Runner for collaborator calls
        :param stat_collector: Process stat sampler
        :param profiler: CPU profiler
        :param snapshot_exporter: Heap snapshot exporter
        :raises ValueError: If config is None
        """
        if not config:
            raise ValueError("AgentConfig instance is required for CommandDispatcher.")
        self.config = config

        self.stat_handler = StatHandler(config, runner, stat_collector)
        self.cpu_profiler_handler = CpuProfilerHandler(config, runner, scheduler, profiler)
        self.heap_snapshot_handler = HeapSnapshotHandler(config, runner, snapshot_exporter)

        self._handlers: Dict[int, BaseCommandHandler] = {
            CommandCode.EXEC_SERVER_STAT: self.stat_handler,
            CommandCode.EXEC_CPU_PROFILER: self.cpu_profiler_handler,
            CommandCode.EXEC_HEAP_SNAPSHOT: self.heap_snapshot_handler
        }
        logger.info(f"CommandDispatcher initialized with handlers for codes: "
                    f"{', '.join(str(int(code)) for code in self._handlers)}")

    @property
    def profiler_lock(self) -> 'ExclusivityLock':
        return self.cpu_profiler_handler.lock

    def handle_frame(self, frame: Any, handle: Optional['Transport']) -> None:
        """
        Decode one inbound frame and dispatch it. Malformed frames are dropped.
        """
        try:
            packet = decode(frame)
        except MalformedFrameError as e:
            logger.warning(f"Dropping malformed frame: {e}")
            return
        self.dispatch(packet, handle)

    def dispatch(self, packet: Packet, handle: Optional['Transport']) -> None:
        """
        Route ``packet`` to its handler.

        :param packet: The decoded packet
        :type packet: Packet
        :param handle: Connection the packet arrived on; reports go back on it
        :type handle: Optional[Transport]
        """
        handler = self._handlers.get(packet.type)
        if handler is None:
            logger.debug(f"Ignoring unsupported command code {packet.type}.")
            return

        logger.info(f"Received {handler.name} command (code {packet.type}).")
        try:
            handler.handle(packet, handle)
        except Exception as e:
            logger.error(f"Handler '{handler.name}' raised an exception for code {packet.type}: {e}", exc_info=True)

    def report_stat(self, handle: Optional['Transport']) -> None:
        """Send a process stat report without a request, used as the heartbeat."""
        try:
            self.stat_handler.report(handle)
        except Exception as e:
            logger.error(f"Heartbeat stat report failed: {e}", exc_info=True)

    def shutdown(self) -> None:
        """End a running profiler session and stop accepting profiler commands."""
        self.cpu_profiler_handler.shutdown()
