"""
Command handler modules for processing collector commands.

This package provides handlers for the diagnostic command types:
    - BaseCommandHandler: Abstract base class for all handlers
    - StatHandler: Samples process statistics
    - CpuProfilerHandler: Runs an exclusive CPU profiling session
    - HeapSnapshotHandler: Exports a heap snapshot
"""
from .base_handler import BaseCommandHandler, close_handle, is_handle_open
from .stat_handler import StatHandler
from .cpu_profiler_handler import CpuProfilerHandler
from .heap_snapshot_handler import HeapSnapshotHandler

__all__ = [
    'BaseCommandHandler',
    'StatHandler',
    'CpuProfilerHandler',
    'HeapSnapshotHandler',
    'close_handle',
    'is_handle_open'
]
