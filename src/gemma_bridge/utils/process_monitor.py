"""
Process metrics for Gemma Bridge

Snapshots resource usage of the gemma child process with psutil.
"""

import time
from dataclasses import dataclass
from typing import Dict, Optional

import psutil

from .logging_setup import get_logger

logger = get_logger('process_monitor')


@dataclass
class ProcessMetrics:
    """Resource usage snapshot of a child process"""
    timestamp: float
    pid: int
    status: str
    cpu_percent: float
    memory_mb: float
    memory_percent: float
    num_threads: int

    def to_dict(self) -> Dict:
        """Convert to dictionary"""
        return {
            'timestamp': self.timestamp,
            'pid': self.pid,
            'status': self.status,
            'cpu_percent': self.cpu_percent,
            'memory_mb': self.memory_mb,
            'memory_percent': self.memory_percent,
            'num_threads': self.num_threads,
        }


def collect_process_metrics(pid: int) -> Optional[ProcessMetrics]:
    """Collect metrics for ``pid``; None if the process is gone or inaccessible"""
    try:
        process = psutil.Process(pid)
        with process.oneshot():
            memory_info = process.memory_info()
            return ProcessMetrics(
                timestamp=time.time(),
                pid=pid,
                status=process.status(),
                cpu_percent=process.cpu_percent(interval=None),
                memory_mb=memory_info.rss / 1024 / 1024,
                memory_percent=process.memory_percent(),
                num_threads=process.num_threads(),
            )
    except (psutil.NoSuchProcess, psutil.ZombieProcess):
        return None
    except psutil.AccessDenied:
        logger.debug(f"Access denied reading metrics for pid {pid}")
        return None
