# pxm_operator/monitor/__init__.py
from .memory_monitor import DEFAULT_MEMORY_THRESHOLD, MemoryMonitor, check_pressure

__all__ = ["DEFAULT_MEMORY_THRESHOLD", "MemoryMonitor", "check_pressure"]
