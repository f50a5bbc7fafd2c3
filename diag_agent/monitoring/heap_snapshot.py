"""
Heap snapshot export backed by tracemalloc.
"""
import json
import os
import time
import tracemalloc
from typing import Optional

from diag_agent.core.errors import CollaboratorError
from diag_agent.monitoring.base import SnapshotExporter
from diag_agent.utils import get_logger

logger = get_logger(__name__)

DEFAULT_TOP_ALLOCATIONS = 50
DEFAULT_TRACEBACK_FRAMES = 1


class TracemallocSnapshotExporter(SnapshotExporter):
    """
    Exports the largest allocation sites as JSON.

    Tracing starts on the first export if nothing enabled it earlier, so the
    first snapshot only covers allocations made from that moment on. When
    ``dump_dir`` is set, every export is also written to
    ``snapshot_<timestamp ms>.json`` there.
    """

    def __init__(self, dump_dir: Optional[str] = None, top: int = DEFAULT_TOP_ALLOCATIONS,
                 frames: int = DEFAULT_TRACEBACK_FRAMES):
        self.dump_dir = dump_dir
        self.top = top
        self.frames = frames

    def export(self) -> bytes:
        if not tracemalloc.is_tracing():
            logger.info("Starting tracemalloc; the first heap snapshot only covers allocations from now on.")
            tracemalloc.start(self.frames)

        try:
            snapshot = tracemalloc.take_snapshot()
        except RuntimeError as e:
            raise CollaboratorError(f"Could not take heap snapshot: {e}") from e

        snapshot = snapshot.filter_traces((
            tracemalloc.Filter(False, tracemalloc.__file__),
            tracemalloc.Filter(False, "<frozen importlib._bootstrap>"),
            tracemalloc.Filter(False, "<unknown>"),
        ))
        stats = snapshot.statistics('lineno')
        current, peak = tracemalloc.get_traced_memory()
        timestamp = int(time.time() * 1000)

        document = {
            "timestamp": timestamp,
            "tracedMemory": {"current": current, "peak": peak},
            "totalSize": sum(stat.size for stat in stats),
            "totalCount": sum(stat.count for stat in stats),
            "top": [
                {
                    "file": stat.traceback[0].filename,
                    "line": stat.traceback[0].lineno,
                    "size": stat.size,
                    "count": stat.count
                }
                for stat in stats[:self.top]
            ]
        }
        data = json.dumps(document).encode('utf-8')

        if self.dump_dir:
            self._dump(data, timestamp)
        return data

    def _dump(self, data: bytes, timestamp: int) -> None:
        path = os.path.join(self.dump_dir, f"snapshot_{timestamp}.json")
        try:
            os.makedirs(self.dump_dir, exist_ok=True)
            with open(path, 'wb') as f:
                f.write(data)
            logger.info(f"Heap snapshot written to {path}")
        except OSError as e:
            logger.error(f"Failed to write heap snapshot to {path}: {e}")
