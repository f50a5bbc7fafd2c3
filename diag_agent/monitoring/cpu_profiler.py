"""
Statistical CPU profiler covering every thread of the process.
"""
import os
import sys
import sysconfig
import threading
import time
from collections import Counter
from typing import Any, Dict, List, Optional, Tuple

from diag_agent.core.errors import CollaboratorError
from diag_agent.monitoring.base import Profiler
from diag_agent.utils import get_logger

logger = get_logger(__name__)

DEFAULT_SAMPLE_INTERVAL_SEC = 0.01
LONG_FUNCTION_THRESHOLD_MS = 500
LONG_FUNCTIONS_LIMIT = 5
TOP_EXECUTING_FUNCTIONS_LIMIT = 5

IGNORED_PATH_PARTS = ('site-packages', 'dist-packages')

FunctionKey = Tuple[str, str, int]


def _library_paths() -> Tuple[str, ...]:
    paths = sysconfig.get_paths()
    return tuple(os.path.normcase(os.path.abspath(paths[key]))
                 for key in ('stdlib', 'platstdlib') if paths.get(key))


class SamplingProfiler(Profiler):
    """
    Samples the stack of every thread at a fixed interval.

    The analysis has the shape the collector expects::

        {
            "durationMs": 5012,
            "samples": 498,
            "topExecutingFunctions": [...],   # most samples on top of the stack
            "longFunctions": [...]            # on the stack for >= 500 ms
        }

    Each entry carries ``functionName``, ``url``, ``lineNumber``, ``selfTime``
    and ``totalTime`` (milliseconds). Frames from the standard library,
    installed packages and pseudo files such as ``<frozen ...>`` are left out
    so the report points at application code.
    """

    def __init__(self, interval: float = DEFAULT_SAMPLE_INTERVAL_SEC,
                 long_function_threshold_ms: int = LONG_FUNCTION_THRESHOLD_MS,
                 long_functions_limit: int = LONG_FUNCTIONS_LIMIT,
                 top_functions_limit: int = TOP_EXECUTING_FUNCTIONS_LIMIT):
        self.interval = interval
        self.long_function_threshold_ms = long_function_threshold_ms
        self.long_functions_limit = long_functions_limit
        self.top_functions_limit = top_functions_limit

        self._session_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._self_samples: Counter = Counter()
        self._total_samples: Counter = Counter()
        self._sample_count = 0
        self._started_at = 0.0
        self._library_paths = _library_paths()

    @property
    def active(self) -> bool:
        return self._thread is not None

    def start_session(self) -> None:
        with self._session_lock:
            if self._thread is not None:
                raise CollaboratorError("A CPU profiling session is already active.")
            self._self_samples = Counter()
            self._total_samples = Counter()
            self._sample_count = 0
            self._stop_event.clear()
            self._started_at = time.monotonic()
            self._thread = threading.Thread(target=self._sample_loop, name="CpuProfilerSampler", daemon=True)
            self._thread.start()
        logger.info(f"CPU profiling session started (interval {self.interval * 1000:.0f} ms).")

    def stop_session(self) -> Dict[str, Any]:
        with self._session_lock:
            thread = self._thread
            if thread is None:
                raise CollaboratorError("No CPU profiling session is active.")
            self._stop_event.set()
            thread.join(timeout=max(1.0, self.interval * 10))
            if thread.is_alive():
                logger.warning("CPU profiler sampler thread did not stop in time.")
            self._thread = None
            duration_ms = int((time.monotonic() - self._started_at) * 1000)
            analysis = self._analyse(duration_ms)
        logger.info(f"CPU profiling session stopped after {duration_ms} ms with {analysis['samples']} samples.")
        return analysis

    def _sample_loop(self) -> None:
        own_id = threading.get_ident()
        while not self._stop_event.wait(self.interval):
            for thread_id, frame in sys._current_frames().items():
                if thread_id == own_id:
                    continue
                self._record_stack(frame)
            self._sample_count += 1

    def _record_stack(self, frame) -> None:
        seen = set()
        leaf = True
        while frame is not None:
            code = frame.f_code
            if self._is_application_file(code.co_filename):
                key: FunctionKey = (code.co_name, code.co_filename, code.co_firstlineno)
                if leaf:
                    self._self_samples[key] += 1
                    leaf = False
                if key not in seen:
                    seen.add(key)
                    self._total_samples[key] += 1
            frame = frame.f_back

    def _is_application_file(self, filename: str) -> bool:
        if not filename or filename.startswith('<'):
            return False
        if any(part in filename for part in IGNORED_PATH_PARTS):
            return False
        path = os.path.normcase(os.path.abspath(filename))
        return not path.startswith(self._library_paths)

    def _entry(self, key: FunctionKey) -> Dict[str, Any]:
        name, filename, lineno = key
        interval_ms = self.interval * 1000
        return {
            "functionName": name,
            "url": filename,
            "lineNumber": lineno,
            "selfTime": round(self._self_samples.get(key, 0) * interval_ms, 1),
            "totalTime": round(self._total_samples.get(key, 0) * interval_ms, 1)
        }

    def _analyse(self, duration_ms: int) -> Dict[str, Any]:
        top: List[Dict[str, Any]] = [
            self._entry(key) for key, _ in self._self_samples.most_common(self.top_functions_limit)
        ]
        long_functions = [entry for entry in (self._entry(key) for key, _ in self._total_samples.most_common())
                          if entry["totalTime"] >= self.long_function_threshold_ms]
        return {
            "durationMs": duration_ms,
            "samples": self._sample_count,
            "topExecutingFunctions": top,
            "longFunctions": long_functions[:self.long_functions_limit]
        }
