# -*- coding: utf-8 -*-
"""
Transport layer carrying collector frames.

:class:`Transport` defines the event contract the connection manager relies
on; :class:`SocketIOTransport` implements it on top of a python-socketio
client, with the library's own reconnection disabled so that the agent's
backoff policy is the only one in play.
"""
import threading
from typing import Any, Callable, Dict, Optional

import socketio

from diag_agent.core.connection_state import ConnectionState
from diag_agent.core.errors import TransportError
from diag_agent.utils import get_logger

logger = get_logger(__name__)

PACKET_EVENT = 'packet'
DEFAULT_CONNECT_TIMEOUT_SEC = 10

OpenCallback = Callable[['Transport'], None]
MessageCallback = Callable[['Transport', Any], None]
CloseCallback = Callable[['Transport', str], None]


class Transport:
    """
    One connection attempt to the collector.

    A transport is used once: it is opened, carries frames while OPEN, and is
    discarded after it closes. Subclasses report events through the
    ``_notify_*`` helpers, which keep :attr:`state` consistent and make the
    close notification fire at most once.
    """

    def __init__(self):
        self._state = ConnectionState.DISCONNECTED
        self._state_lock = threading.Lock()
        self._close_notified = False
        self.on_open: Optional[OpenCallback] = None
        self.on_message: Optional[MessageCallback] = None
        self.on_error: Optional[CloseCallback] = None
        self.on_close: Optional[CloseCallback] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == ConnectionState.OPEN

    def open(self) -> None:
        """
        Connect and fire ``on_open`` once the transport can carry frames.

        :raises TransportError: If the connection cannot be established
        """
        raise NotImplementedError

    def send(self, frame: str) -> None:
        """
        Send one frame.

        :raises TransportError: If the transport is not open or the send fails
        """
        raise NotImplementedError

    def close(self) -> None:
        """
        Close the transport. Closing a transport that never opened or is
        already closed is a no-op.
        """
        raise NotImplementedError

    def _set_state(self, state: ConnectionState) -> None:
        with self._state_lock:
            self._state = state

    def _notify_open(self) -> None:
        self._set_state(ConnectionState.OPEN)
        if self.on_open:
            self.on_open(self)

    def _notify_message(self, data: Any) -> None:
        if self.on_message:
            self.on_message(self, data)

    def _notify_error(self, reason: str) -> None:
        with self._state_lock:
            self._state = ConnectionState.DISCONNECTED
        if self.on_error:
            self.on_error(self, reason)

    def _notify_close(self, reason: str) -> None:
        with self._state_lock:
            self._state = ConnectionState.DISCONNECTED
            if self._close_notified:
                return
            self._close_notified = True
        if self.on_close:
            self.on_close(self, reason)


class SocketIOTransport(Transport):
    """
    Transport over a Socket.IO connection. Frames travel as ``packet`` events.
    """

    def __init__(self, url: str, headers: Dict[str, str], auth: Dict[str, Any],
                 connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SEC):
        """
        :param url: Collector URL, e.g. ``http://127.0.0.1:8080``
        :type url: str
        :param headers: Handshake headers presented to the collector
        :type headers: Dict[str, str]
        :param auth: Socket.IO auth payload presented to the collector
        :type auth: Dict[str, Any]
        :param connect_timeout: Seconds to wait for the connection to be accepted
        :type connect_timeout: float
        """
        super().__init__()
        self.url = url
        self.headers = headers
        self.auth = auth
        self.connect_timeout = connect_timeout

        self.sio = socketio.Client(
            reconnection=False,
            logger=False,
            engineio_logger=False
        )
        self.sio.on('connect', self._on_connect)
        self.sio.on('disconnect', self._on_disconnect)
        self.sio.on('connect_error', self._on_connect_error)
        self.sio.on(PACKET_EVENT, self._on_packet)

    @property
    def is_open(self) -> bool:
        return super().is_open and self.sio.connected

    def _on_connect(self):
        # runs inside sio.connect(), before the client counts as connected
        logger.debug(f"Namespace connected on {self.url}. SID: {self.sio.sid}")

    def _on_disconnect(self, *args):
        reason = str(args[0]) if args else 'disconnected'
        logger.warning(f"Transport to {self.url} disconnected: {reason}")
        self._notify_close(reason)

    def _on_connect_error(self, data):
        logger.error(f"Transport connection to {self.url} failed: {data}")
        self._notify_error(str(data))

    def _on_packet(self, data):
        self._notify_message(data)

    def open(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        logger.info(f"Connecting to collector at {self.url}")
        try:
            self.sio.connect(
                url=self.url,
                headers=self.headers,
                auth=self.auth,
                transports=["websocket"],
                wait_timeout=self.connect_timeout
            )
        except socketio.exceptions.ConnectionError as e:
            self._set_state(ConnectionState.DISCONNECTED)
            raise TransportError(f"Could not connect to {self.url}: {e}") from e
        except ValueError as e:
            self._set_state(ConnectionState.DISCONNECTED)
            raise TransportError(f"Invalid connection parameters for {self.url}: {e}") from e

        if not self.sio.connected or self.state != ConnectionState.CONNECTING:
            self.close()
            raise TransportError(f"Connection to {self.url} dropped during the handshake.")
        logger.info(f"Transport connected to {self.url}. SID: {self.sio.sid}")
        self._notify_open()

    def send(self, frame: str) -> None:
        if not self.is_open:
            raise TransportError(f"Cannot send on a transport in state {self.state.name}.")
        try:
            self.sio.emit(PACKET_EVENT, frame)
        except socketio.exceptions.SocketIOError as e:
            raise TransportError(f"Failed to send frame to {self.url}: {e}") from e

    def close(self) -> None:
        if self.sio.connected:
            logger.debug(f"Closing transport to {self.url}")
            self._set_state(ConnectionState.CLOSING)
            try:
                self.sio.disconnect()
            except Exception as e:
                logger.error(f"An error occurred while closing transport to {self.url}: {e}", exc_info=True)
            finally:
                self._notify_close('closed by agent')
        elif self.state != ConnectionState.DISCONNECTED:
            # half-open: socket gone but no close event seen yet
            self._notify_close('closed by agent')
