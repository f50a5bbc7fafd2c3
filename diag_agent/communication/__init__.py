"""
Communication modules for the diagnostic agent.
"""
from .packet import CommandCode, Packet, encode, decode
from .transport import Transport, SocketIOTransport

__all__ = [
    'CommandCode',
    'Packet',
    'encode',
    'decode',
    'Transport',
    'SocketIOTransport'
]
