"""Size- and memory-aware payload loading."""

from .memory import cleanup_memory, process_memory
from .metrics import LoadMethod, MetricsHistory, PerformanceMetrics, PerformanceSummary
from .scheduler import ChunkProgress, LoadScheduler

__all__ = [
    "cleanup_memory",
    "process_memory",
    "LoadMethod",
    "MetricsHistory",
    "PerformanceMetrics",
    "PerformanceSummary",
    "ChunkProgress",
    "LoadScheduler",
]
