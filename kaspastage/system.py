"""Host capacity probe used for resource checks."""

import logging
import os
import shutil
from pathlib import Path

from .orchestrator.models import HostCapacity

_logging = logging.getLogger(__name__)

_GIB = 1024 ** 3
MEMINFO_PATH = Path("/proc/meminfo")


def _read_total_memory_gb(meminfo: Path = MEMINFO_PATH) -> float | None:
    try:
        text = meminfo.read_text()
    except OSError:
        return None
    for line in text.splitlines():
        if line.startswith("MemTotal:"):
            parts = line.split()
            try:
                return int(parts[1]) * 1024 / _GIB
            except (IndexError, ValueError):
                return None
    return None


def probe_host_capacity(path: Path | None = None) -> HostCapacity | None:
    """Return available CPU cores, total memory and free disk (GB) at ``path``.

    Returns None when any figure cannot be determined.
    """
    cpu = os.cpu_count()
    memory = _read_total_memory_gb()
    try:
        disk = shutil.disk_usage(path or Path.home()).free / _GIB
    except OSError as e:
        _logging.debug(f"Disk usage probe failed: {e}")
        disk = None

    if cpu is None or memory is None or disk is None:
        _logging.debug(f"Incomplete host probe: cpu={cpu} memory={memory} disk={disk}")
        return None
    return HostCapacity(cpu=float(cpu), memory=round(memory, 1), disk=round(disk, 1))


__all__ = ["probe_host_capacity"]
