"""
Exception types raised and handled by the agent.
"""


class AgentError(Exception):
    """Base class for all agent errors."""


class TransportError(AgentError):
    """
    The connection to the collector could not be opened, was refused or reset.
    Never fatal: the connection manager answers it with its reconnect policy.
    """


class MalformedFrameError(AgentError):
    """An inbound frame could not be decoded into a packet."""


class CollaboratorError(AgentError):
    """A diagnostic collaborator (stat sampler, profiler, snapshot exporter) failed."""


class ConfigurationError(AgentError, ValueError):
    """Invalid start parameters. Raised at startup only."""
