"""
Base command handler class providing common functionality for all command handlers.
"""
from typing import Any, Optional, TYPE_CHECKING
from abc import ABC, abstractmethod

from diag_agent.communication.packet import Packet, encode
from diag_agent.core.errors import AgentError
from diag_agent.utils import get_logger

if TYPE_CHECKING:
    from diag_agent.communication.transport import Transport
    from diag_agent.config import AgentConfig
    from diag_agent.core.scheduler import Runner

logger = get_logger(__name__)


def is_handle_open(handle: Optional['Transport']) -> bool:
    """Return True if ``handle`` exists and is open."""
    return handle is not None and handle.is_open


def close_handle(handle: Optional['Transport']) -> None:
    """
    Close ``handle``. A missing or already closed handle is a no-op.
    """
    if handle is None:
        return
    try:
        handle.close()
    except Exception as e:
        logger.error(f"Error closing connection handle: {e}", exc_info=True)


class BaseCommandHandler(ABC):
    """
    Abstract base class for all command handlers.

    A handler runs one diagnostic for one inbound packet and reports the
    result on the connection the packet arrived on. Handlers never raise into
    the dispatcher: collaborator failures are logged and produce no report,
    and the collector is expected to time out its own request.
    """

    #: Human readable name used in log messages
    name = 'command'

    def __init__(self, config: 'AgentConfig', runner: 'Runner'):
        """
        Initialize the base command handler.

        :param config: The agent configuration
        :type config: AgentConfig
        :param runner: Runner used to call collaborators off the event thread
        :type runner: Runner
        :raises ValueError: If config or runner is None
        """
        if not config:
            raise ValueError(f"AgentConfig instance is required for {self.__class__.__name__}.")
        if not runner:
            raise ValueError(f"Runner instance is required for {self.__class__.__name__}.")
        self.config = config
        self.runner = runner
        logger.debug(f"{self.__class__.__name__} initialized.")

    def handle(self, packet: Packet, handle: Optional['Transport']) -> None:
        """
        Run the handler for ``packet`` unless the connection is already gone.

        :param packet: The decoded request packet
        :type packet: Packet
        :param handle: The connection the packet arrived on
        :type handle: Optional[Transport]
        """
        if not is_handle_open(handle):
            logger.info(f"Skipping {self.name} request: connection is no longer open.")
            close_handle(handle)
            return
        self.execute(packet, handle)

    @abstractmethod
    def execute(self, packet: Packet, handle: 'Transport') -> None:
        """
        Start the diagnostic for ``packet``.

        Implementations return as soon as the work has been handed to the
        runner or scheduler and report through :meth:`send_report`.

        :param packet: The decoded request packet
        :type packet: Packet
        :param handle: The open connection to report on
        :type handle: Transport
        """

    def send_report(self, handle: Optional['Transport'], report_type: int, body: Any) -> bool:
        """
        Encode and send a report if the connection is still open.

        A closed connection discards the report and the handle is closed so
        that a half-open connection goes through the normal close path.

        :param handle: Connection the request arrived on
        :type handle: Optional[Transport]
        :param report_type: Report command code
        :type report_type: int
        :param body: JSON-serializable report body
        :type body: Any
        :return: True if the report was sent
        :rtype: bool
        """
        if not is_handle_open(handle):
            logger.info(f"Discarding {self.name} report: connection closed before the result was ready.")
            close_handle(handle)
            return False

        try:
            frame = encode(report_type, body)
        except AgentError as e:
            logger.error(f"Could not encode {self.name} report: {e}")
            return False

        try:
            handle.send(frame)
        except AgentError as e:
            logger.error(f"Failed to send {self.name} report: {e}")
            return False
        except Exception as e:
            logger.error(f"Unexpected error sending {self.name} report: {e}", exc_info=True)
            return False

        logger.debug(f"Sent {self.name} report (type {report_type}).")
        return True
