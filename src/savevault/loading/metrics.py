from __future__ import annotations

import statistics
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from ..persistence.models import utc_now


class LoadMethod(str, Enum):
    STANDARD = "Standard"
    MEMORY_OPTIMIZED = "MemoryOptimized"
    CHUNKED = "Chunked"


@dataclass
class PerformanceMetrics:
    slot: str
    method: LoadMethod
    file_size: int
    memory_before: int = 0
    memory_after: int = 0
    peak_memory: int = 0
    duration: float = 0.0
    success: bool = False
    fallback_from: Optional[LoadMethod] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    started_at: datetime = field(default_factory=utc_now)

    @property
    def memory_delta(self) -> int:
        return self.memory_after - self.memory_before


@dataclass
class PerformanceSummary:
    total_loads: int = 0
    successful: int = 0
    failed: int = 0
    average_duration: float = 0.0
    median_duration: float = 0.0
    average_memory_delta: float = 0.0
    average_file_size: float = 0.0
    method_distribution: Dict[LoadMethod, int] = field(default_factory=dict)


class MetricsHistory:
    """Append-only record of loads, per slot. Read for reports and recommendations only."""

    def __init__(self) -> None:
        self._by_slot: Dict[str, List[PerformanceMetrics]] = {}

    def record(self, metrics: PerformanceMetrics) -> None:
        self._by_slot.setdefault(metrics.slot, []).append(metrics)

    def for_slot(self, slot: str) -> List[PerformanceMetrics]:
        return list(self._by_slot.get(slot, ()))

    def all(self) -> List[PerformanceMetrics]:
        return [m for entries in self._by_slot.values() for m in entries]

    def clear(self) -> None:
        self._by_slot.clear()

    def summarize(self, slot: Optional[str] = None) -> PerformanceSummary:
        entries = self.for_slot(slot) if slot is not None else self.all()
        if not entries:
            return PerformanceSummary()
        durations = [m.duration for m in entries]
        successful = sum(1 for m in entries if m.success)
        return PerformanceSummary(
            total_loads=len(entries),
            successful=successful,
            failed=len(entries) - successful,
            average_duration=statistics.mean(durations),
            median_duration=statistics.median(durations),
            average_memory_delta=statistics.mean(m.memory_delta for m in entries),
            average_file_size=statistics.mean(m.file_size for m in entries),
            method_distribution=dict(Counter(m.method for m in entries)),
        )
