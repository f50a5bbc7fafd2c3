"""
Defines the possible states of the collector connection.
"""
from enum import Enum, auto


class ConnectionState(Enum):
    """
    Enumeration of transport connection states.

    The connection manager drives a single transport handle through
    DISCONNECTED -> CONNECTING -> OPEN and back to DISCONNECTED on failure.
    There is no terminal state: the agent keeps retrying until it is stopped.

    States:
        DISCONNECTED: No usable transport, a reconnect may be pending
        CONNECTING: A transport has been created and is being opened
        OPEN: The transport is established, commands can be received and reports sent
        CLOSING: The transport is being torn down
    """
    DISCONNECTED = auto()
    CONNECTING = auto()
    OPEN = auto()
    CLOSING = auto()
