import os
import time
import psutil
import logging
from typing import Any, Dict, Optional

log = logging.getLogger(__name__)

HEALTH_STATES = ("healthy", "degraded", "unhealthy")


def _process_rss(pid: int) -> Optional[int]:
    try:
        return psutil.Process(pid).memory_info().rss
    except psutil.Error:
        return None


def build_health_report(status: str, managed_pid: Optional[int] = None) -> Dict[str, Any]:
    """
    Builds the health report sent to the plugin host.

    :param status: One of 'healthy', 'degraded' or 'unhealthy'.
    :param managed_pid: PID of the supervised Headscale process, if running.
    :return: A report with memory usage, uptime in seconds and the status.
    """
    if status not in HEALTH_STATES:
        raise ValueError(f"Unknown health status '{status}'.")

    proc = psutil.Process(os.getpid())
    with proc.oneshot():
        memory = proc.memory_info()
        uptime = time.time() - proc.create_time()

    memory_usage: Dict[str, Any] = {"rss": memory.rss, "vms": memory.vms}
    if managed_pid is not None:
        managed_rss = _process_rss(managed_pid)
        if managed_rss is not None:
            memory_usage["managedRss"] = managed_rss
        else:
            log.debug(f"Could not read memory usage of managed process {managed_pid}.")

    return {
        "memoryUsage": memory_usage,
        "uptime": round(uptime, 3),
        "status": status,
    }
