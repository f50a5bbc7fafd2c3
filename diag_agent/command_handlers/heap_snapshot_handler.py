"""
Heap snapshot command handler.
"""
from typing import TYPE_CHECKING

from diag_agent.command_handlers.base_handler import BaseCommandHandler
from diag_agent.communication.packet import CommandCode, Packet
from diag_agent.utils import get_logger

if TYPE_CHECKING:
    from diag_agent.communication.transport import Transport
    from diag_agent.config import AgentConfig
    from diag_agent.core.scheduler import Runner
    from diag_agent.monitoring import SnapshotExporter

logger = get_logger(__name__)


class HeapSnapshotHandler(BaseCommandHandler):
    """
    Exports a heap snapshot and reports it as ``{"data": <snapshot text>}``.
    The export may take arbitrarily long.
    """

    name = 'heap snapshot'

    def __init__(self, config: 'AgentConfig', runner: 'Runner', exporter: 'SnapshotExporter'):
        super().__init__(config, runner)
        self.exporter = exporter

    def execute(self, packet: Packet, handle: 'Transport') -> None:
        self.runner.spawn(lambda: self._export_and_report(handle), name="heap-snapshot")

    def _export_and_report(self, handle: 'Transport') -> None:
        try:
            snapshot = self.exporter.export()
            data = snapshot.decode('utf-8') if isinstance(snapshot, (bytes, bytearray)) else snapshot
        except Exception as e:
            logger.error(f"Heap snapshot export failed: {e}")
            return
        logger.info(f"Heap snapshot exported ({len(data)} characters).")
        self.send_report(handle, CommandCode.REPORT_HEAP_SNAPSHOT, {"data": data})
