"""
Interfaces of the diagnostic collaborators the command handlers call into.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict


class StatCollector(ABC):
    """Samples statistics of one process."""

    @abstractmethod
    def sample(self, pid: int) -> Dict[str, Any]:
        """
        Sample process ``pid``.

        :return: ``{pid, ppid, cpu, ctime, elapsed, timestamp}``
        :rtype: Dict[str, Any]
        :raises CollaboratorError: If the process cannot be sampled
        """


class Profiler(ABC):
    """
    A process-wide CPU profiler. Only one session may be active at a time.
    """

    @abstractmethod
    def start_session(self) -> None:
        """
        :raises CollaboratorError: If a session is already active
        """

    @abstractmethod
    def stop_session(self) -> Dict[str, Any]:
        """
        End the active session and return its analysis.

        :raises CollaboratorError: If no session is active
        """


class SnapshotExporter(ABC):
    """Exports a snapshot of the process heap."""

    @abstractmethod
    def export(self) -> bytes:
        """
        :return: The serialized snapshot
        :rtype: bytes
        :raises CollaboratorError: If the snapshot cannot be taken
        """
