"""
Core functionality for the diagnostic agent.
"""
from diag_agent.core.connection_state import ConnectionState
from diag_agent.core.errors import (
    AgentError,
    CollaboratorError,
    ConfigurationError,
    MalformedFrameError,
    TransportError
)
from diag_agent.core.agent import Agent
from diag_agent.core.command_dispatcher import CommandDispatcher
from diag_agent.core.connection_manager import ConnectionManager

__all__ = [
    'ConnectionState',
    'Agent',
    'CommandDispatcher',
    'ConnectionManager',
    'AgentError',
    'CollaboratorError',
    'ConfigurationError',
    'MalformedFrameError',
    'TransportError'
]
