"""
Diagnostic Agent

A long-running agent that keeps a connection to a central collector, executes
the collector's diagnostic commands (process stats, CPU profiling, heap
snapshots) and reports the results back on the same connection.

Main components:
- Agent: Wires the components together and owns the lifecycle
- ConnectionManager: Connection state machine with reconnect backoff
- CommandDispatcher: Routes inbound packets to the diagnostic handlers
- AgentConfig / ConfigManager: Agent settings and their JSON file
- encode / decode: The wire packet codec
"""


from .version import __version__, __app_name__


from .core import Agent
from .core import CommandDispatcher
from .core import ConnectionManager
from .core import ConnectionState


from .config import AgentConfig
from .config import ConfigManager


from .communication import CommandCode, Packet, encode, decode

__all__ = [

    '__version__',
    '__app_name__',


    'Agent',
    'CommandDispatcher',
    'ConnectionManager',
    'ConnectionState',


    'AgentConfig',
    'ConfigManager',


    'CommandCode',
    'Packet',
    'encode',
    'decode'
]
