"""
Process statistics command handler.
"""
import os
from typing import Optional, TYPE_CHECKING

from diag_agent.command_handlers.base_handler import BaseCommandHandler
from diag_agent.communication.packet import CommandCode, Packet
from diag_agent.utils import get_logger

if TYPE_CHECKING:
    from diag_agent.communication.transport import Transport
    from diag_agent.config import AgentConfig
    from diag_agent.core.scheduler import Runner
    from diag_agent.monitoring import StatCollector

logger = get_logger(__name__)


class StatHandler(BaseCommandHandler):
    """
    Samples this process and reports the statistics.

    Also used without a request packet as the heartbeat.
    """

    name = 'process stat'

    def __init__(self, config: 'AgentConfig', runner: 'Runner', collector: 'StatCollector',
                 pid: Optional[int] = None):
        super().__init__(config, runner)
        self.collector = collector
        self.pid = pid if pid is not None else os.getpid()

    def execute(self, packet: Packet, handle: 'Transport') -> None:
        self.runner.spawn(lambda: self._sample_and_report(handle), name="stat-sampler")

    def report(self, handle: 'Transport') -> None:
        """Sample and report without a request packet."""
        self.handle(Packet(CommandCode.EXEC_SERVER_STAT), handle)

    def _sample_and_report(self, handle: 'Transport') -> None:
        try:
            stat = self.collector.sample(self.pid)
        except Exception as e:
            logger.error(f"Process stat sampling failed for pid {self.pid}: {e}")
            return
        self.send_report(handle, CommandCode.REPORT_SERVER_STAT, stat)
