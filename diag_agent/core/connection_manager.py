"""
Collector connection lifecycle: connect, handshake, reconnect with backoff.
"""
import threading
from typing import Any, Callable, Dict, Optional, TYPE_CHECKING

from diag_agent.communication.transport import SocketIOTransport, Transport
from diag_agent.core.connection_state import ConnectionState
from diag_agent.core.errors import TransportError
from diag_agent.core.retry_state import RetryState
from diag_agent.core.scheduler import TimerHandle, cancel_timer
from diag_agent.utils import get_logger

if TYPE_CHECKING:
    from diag_agent.config import AgentConfig
    from diag_agent.core.command_dispatcher import CommandDispatcher
    from diag_agent.core.health_checker import HealthChecker
    from diag_agent.core.scheduler import Scheduler

logger = get_logger(__name__)

TransportFactory = Callable[[str, Dict[str, str], Dict[str, Any]], Transport]


class ConnectionManager:
    """
    Owns the single active transport and drives it through the connection states.

    ::

        DISCONNECTED --connect()--> CONNECTING
        CONNECTING --open--> OPEN
        CONNECTING/OPEN --error|close--> DISCONNECTED (reconnect scheduled)

    Reconnects are serialized by :class:`RetryState`: redundant error and close
    events for one failure schedule a single retry. Up to
    ``reconnect_fail_threshold`` consecutive failures retry after the check
    interval, the next one waits ``reconnect_long_sleep_ms``. The retry lock
    expires after ``reconnect_lock_window_ms`` even if the retry never runs.
    """

    def __init__(self, config: 'AgentConfig', dispatcher: 'CommandDispatcher',
                 health_checker: 'HealthChecker', scheduler: 'Scheduler',
                 transport_factory: Optional[TransportFactory] = None):
        """
        :param config: Agent configuration
        :param dispatcher: Receives every inbound frame
        :param health_checker: Started on every opened transport
        :param scheduler: Scheduler for retry and lock-expiry timers
        :param transport_factory: Builds a transport from ``(url, headers, auth)``;
            defaults to :class:`SocketIOTransport`
        """
        self.config = config
        self.dispatcher = dispatcher
        self.health_checker = health_checker
        self.scheduler = scheduler
        self.transport_factory: TransportFactory = transport_factory or SocketIOTransport
        self.retry_state = RetryState(
            check_interval_ms=config.check_interval_ms,
            fail_threshold=config.reconnect_fail_threshold,
            long_sleep_ms=config.reconnect_long_sleep_ms
        )

        self._lock = threading.Lock()
        self._state = ConnectionState.DISCONNECTED
        self._transport: Optional[Transport] = None
        self._retry_timer: Optional[TimerHandle] = None
        self._started = False
        self._stopped = False

        logger.info(f"Connection Config: URL={config.url}, Check Interval={config.check_interval_ms}ms, "
                    f"Fail Threshold={config.reconnect_fail_threshold}, "
                    f"Long Sleep={config.reconnect_long_sleep_ms}ms, "
                    f"Lock Window={config.reconnect_lock_window_ms}ms")

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def handle(self) -> Optional[Transport]:
        """The active transport, or None before the first connect."""
        return self._transport

    def _set_state(self, new_state: ConnectionState) -> None:
        if self._state != new_state:
            logger.debug(f"Connection state transition: {self._state.name} -> {new_state.name}")
            self._state = new_state

    def handshake_metadata(self):
        """
        Headers and Socket.IO auth payload identifying this agent to the collector.

        :return: Tuple ``(headers, auth)``
        """
        agent_id = self.config.agent_id
        headers = {
            "name": agent_id,
            "token": self.config.secret,
            "Authorization": f"Bearer {self.config.secret}"
        }
        auth = {"name": agent_id, "token": self.config.secret}
        return headers, auth

    def start(self) -> None:
        """Connect for the first time. Later calls are ignored."""
        with self._lock:
            if self._started:
                logger.warning("Connection manager start requested but already started.")
                return
            self._started = True
        self.connect()

    def stop(self) -> None:
        """Close the connection and stop reconnecting."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            transport = self._transport
            retry_timer, self._retry_timer = self._retry_timer, None
            self._set_state(ConnectionState.CLOSING)
        cancel_timer(retry_timer)
        self.retry_state.reset()
        self.health_checker.stop()
        if transport is not None:
            try:
                transport.close()
            except Exception as e:
                logger.error(f"Error closing transport during stop: {e}", exc_info=True)
        with self._lock:
            self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Connection manager stopped.")

    def connect(self) -> None:
        """
        Open a new transport to the collector, replacing the previous one.
        Failure to open is handled like a transport error event.
        """
        headers, auth = self.handshake_metadata()
        with self._lock:
            if self._stopped:
                return
            previous = self._transport
            transport = self.transport_factory(self.config.url, headers, auth)
            transport.on_open = self._on_open
            transport.on_message = self._on_message
            transport.on_error = self._on_error
            transport.on_close = self._on_close
            self._transport = transport
            self._set_state(ConnectionState.CONNECTING)

        if previous is not None and previous is not transport:
            try:
                previous.close()
            except Exception as e:
                logger.debug(f"Error closing replaced transport: {e}")

        logger.info(f"Connecting to collector at {self.config.url} as '{self.config.agent_id}'...")
        try:
            transport.open()
        except TransportError as e:
            logger.error(f"Connection attempt failed: {e}")
            self._on_transport_failure(transport, str(e))
        except Exception as e:
            logger.critical(f"Unexpected error while connecting: {e}", exc_info=True)
            self._on_transport_failure(transport, str(e))

    def reconnect(self) -> None:
        """
        Schedule the next connection attempt unless one is already pending.
        """
        if self._stopped:
            return
        if not self.retry_state.try_lock():
            logger.debug("Reconnect already scheduled; ignoring redundant request.")
            return

        generation = self.retry_state.generation
        attempt = self.retry_state.attempt_count
        delay_ms = self.retry_state.next_delay_ms()
        if self.retry_state.attempt_count == 0:
            logger.warning(f"Collector unreachable after {attempt} attempts. "
                           f"Sleeping {delay_ms} ms before trying again.")
        else:
            logger.info(f"Reconnect attempt {attempt} scheduled in {delay_ms} ms.")

        self.retry_state.arm_expiry(self.scheduler.call_later(
            self.config.reconnect_lock_window_ms / 1000.0,
            lambda: self._on_retry_lock_expired(generation),
            name="reconnect-lock-expiry"
        ))
        retry_timer = self.scheduler.call_later(delay_ms / 1000.0, self._on_retry_due, name="reconnect")
        with self._lock:
            previous, self._retry_timer = self._retry_timer, retry_timer
        cancel_timer(previous)

    def _on_retry_due(self) -> None:
        with self._lock:
            self._retry_timer = None
        self.retry_state.release()
        self.connect()

    def _on_retry_lock_expired(self, generation: int) -> None:
        if self.retry_state.expire(generation):
            logger.warning("Reconnect lock expired before the retry ran. Reconnects are allowed again.")

    def _is_current(self, transport: Transport) -> bool:
        return transport is self._transport and not self._stopped

    def _on_open(self, transport: Transport) -> None:
        with self._lock:
            if not self._is_current(transport):
                logger.debug("Ignoring open event from a replaced transport.")
                return
            self._set_state(ConnectionState.OPEN)
        logger.info(f"Connected to collector at {self.config.url}.")
        self.retry_state.reset()
        self.health_checker.start(transport, self.config.check_interval_ms, self.config.with_heartbeat)

    def _on_message(self, transport: Transport, data: Any) -> None:
        if not self._is_current(transport):
            logger.debug("Ignoring message from a replaced transport.")
            return
        self.dispatcher.handle_frame(data, transport)

    def _on_error(self, transport: Transport, reason: str) -> None:
        logger.warning(f"Connection error: {reason}")
        self._on_transport_failure(transport, reason)

    def _on_close(self, transport: Transport, reason: str) -> None:
        logger.warning(f"Connection closed: {reason}")
        self._on_transport_failure(transport, reason)

    def _on_transport_failure(self, transport: Transport, reason: str) -> None:
        with self._lock:
            if not self._is_current(transport):
                logger.debug(f"Ignoring failure of a replaced transport: {reason}")
                return
            self._set_state(ConnectionState.DISCONNECTED)
        self.health_checker.stop()
        self.reconnect()
