"""
Diagnostic collaborators: process statistics, CPU profiling, heap snapshots.
"""
from diag_agent.monitoring.base import StatCollector, Profiler, SnapshotExporter
from diag_agent.monitoring.process_monitor import ProcessStatCollector
from diag_agent.monitoring.cpu_profiler import SamplingProfiler
from diag_agent.monitoring.heap_snapshot import TracemallocSnapshotExporter

__all__ = [
    'StatCollector',
    'Profiler',
    'SnapshotExporter',
    'ProcessStatCollector',
    'SamplingProfiler',
    'TracemallocSnapshotExporter'
]
