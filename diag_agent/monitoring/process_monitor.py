"""
Process statistics sampling backed by psutil.
"""
import time
from typing import Any, Dict

import psutil

from diag_agent.core.errors import CollaboratorError
from diag_agent.monitoring.base import StatCollector
from diag_agent.utils import get_logger

logger = get_logger(__name__)


class ProcessStatCollector(StatCollector):
    """
    Reports the same figures as ``ps -o etime,pid,ppid,pcpu,time``.

    ``cpu`` is the percentage of one core used over the process lifetime,
    ``ctime`` the user plus system CPU time and ``elapsed`` the wall time
    since the process started, both in milliseconds. ``timestamp`` is the
    sampling time in milliseconds since the epoch.
    """

    def sample(self, pid: int) -> Dict[str, Any]:
        try:
            process = psutil.Process(pid)
            with process.oneshot():
                ppid = process.ppid()
                cpu_times = process.cpu_times()
                create_time = process.create_time()
        except psutil.NoSuchProcess as e:
            raise CollaboratorError(f"No matching process found for pid {pid}") from e
        except (psutil.AccessDenied, psutil.ZombieProcess) as e:
            raise CollaboratorError(f"Cannot read statistics of pid {pid}: {e}") from e

        now = time.time()
        cpu_seconds = cpu_times.user + cpu_times.system
        elapsed_seconds = max(now - create_time, 0.0)
        cpu_percent = (cpu_seconds / elapsed_seconds * 100.0) if elapsed_seconds > 0 else 0.0

        stat = {
            "pid": pid,
            "ppid": ppid,
            "cpu": round(cpu_percent, 2),
            "ctime": int(cpu_seconds * 1000),
            "elapsed": int(elapsed_seconds * 1000),
            "timestamp": int(now * 1000)
        }
        logger.debug(f"Process stat sampled: {stat}")
        return stat
