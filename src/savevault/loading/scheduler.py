from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import time
from dataclasses import dataclass
from typing import Optional

from ..events import LOAD_CHUNK, PERFORMANCE_WARNING, EventBus
from ..persistence.codec import decode_payload
from ..persistence.errors import EmptySaveFileError, SlotNotFoundError
from ..persistence.models import SavePayload
from ..persistence.store import PayloadStore
from .memory import MB, MemoryProbe, aggressive_cleanup, cleanup_memory, process_memory
from .metrics import LoadMethod, MetricsHistory, PerformanceMetrics, PerformanceSummary

logger = logging.getLogger(__name__)

LARGE_FILE_THRESHOLD = 5 * MB
HUGE_FILE_THRESHOLD = 50 * MB
LOW_MEMORY_THRESHOLD = 100 * MB
DEFAULT_CHUNK_SIZE = 1 * MB
CLEANUP_EVERY_CHUNKS = 10
YIELD_EVERY_CHUNKS = 5
SLOW_LOAD_SECONDS = 10.0


@dataclass
class ChunkProgress:
    slot: str
    total_chunks: int
    loaded_chunks: int = 0
    is_reassembling: bool = False
    is_completed: bool = False
    failed: bool = False

    @property
    def progress(self) -> float:
        return self.loaded_chunks / self.total_chunks if self.total_chunks else 0.0

    def as_event(self) -> dict:
        return {
            "slot": self.slot,
            "loaded": self.loaded_chunks,
            "total": self.total_chunks,
            "progress": self.progress,
            "reassembling": self.is_reassembling,
            "completed": self.is_completed,
            "failed": self.failed,
        }


class LoadScheduler:
    """Reads and decodes slot payloads with a method suited to size and memory pressure.

    Small files load in one read. Large ones load after a cleanup pass with
    a memory monitor running, or in chunks when the file is huge or memory is
    already tight. Every load leaves a PerformanceMetrics entry.
    """

    def __init__(
        self,
        store: PayloadStore,
        events: Optional[EventBus] = None,
        memory_probe: MemoryProbe = process_memory,
        large_file_threshold: int = LARGE_FILE_THRESHOLD,
        huge_file_threshold: int = HUGE_FILE_THRESHOLD,
        low_memory_threshold: int = LOW_MEMORY_THRESHOLD,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        cleanup_every: int = CLEANUP_EVERY_CHUNKS,
        yield_every: int = YIELD_EVERY_CHUNKS,
        slow_load_seconds: float = SLOW_LOAD_SECONDS,
        monitor_interval: float = 1.0,
        cleanup_pause: float = 0.0,
        enable_memory_optimization: bool = True,
        enable_chunked_loading: bool = True,
        enable_performance_monitoring: bool = True,
    ) -> None:
        self.store = store
        self.events = events or EventBus()
        self.memory_probe = memory_probe
        self.large_file_threshold = large_file_threshold
        self.huge_file_threshold = huge_file_threshold
        self.low_memory_threshold = low_memory_threshold
        self.chunk_size = chunk_size
        self.cleanup_every = cleanup_every
        self.yield_every = yield_every
        self.slow_load_seconds = slow_load_seconds
        self.monitor_interval = monitor_interval
        self.cleanup_pause = cleanup_pause
        self.enable_memory_optimization = enable_memory_optimization
        self.enable_chunked_loading = enable_chunked_loading
        self.enable_performance_monitoring = enable_performance_monitoring
        self.metrics = MetricsHistory()

    # Method selection

    def select_method(self, file_size: int, memory_in_use: int) -> LoadMethod:
        if file_size <= self.large_file_threshold:
            return LoadMethod.STANDARD
        if file_size > self.huge_file_threshold or memory_in_use > self.low_memory_threshold:
            if self.enable_chunked_loading:
                return LoadMethod.CHUNKED
            logger.warning("Chunked loading disabled for a %d byte file under memory pressure", file_size)
        if self.enable_memory_optimization:
            return LoadMethod.MEMORY_OPTIMIZED
        return LoadMethod.STANDARD

    def recommend_for(self, slot: str, file_size: int, memory_in_use: int) -> LoadMethod:
        """select_method, stepped up to Chunked if a memory-optimized load of this slot ran out of memory."""
        method = self.select_method(file_size, memory_in_use)
        if method is LoadMethod.MEMORY_OPTIMIZED and self.enable_chunked_loading:
            ran_out = any(
                m.error_type == "MemoryError" or m.fallback_from is LoadMethod.MEMORY_OPTIMIZED
                for m in self.metrics.for_slot(slot)
            )
            if ran_out:
                return LoadMethod.CHUNKED
        return method

    def analyze(self, slot: Optional[str] = None) -> PerformanceSummary:
        return self.metrics.summarize(slot)

    # Loading

    async def load(self, slot: str, method: Optional[LoadMethod] = None) -> SavePayload:
        info = await self.store.file_info(slot)
        if info is None:
            raise SlotNotFoundError(f"Save slot not found: {slot}")
        memory_before = self.memory_probe()
        metrics = PerformanceMetrics(
            slot=slot,
            method=method or LoadMethod.STANDARD,
            file_size=info.size,
            memory_before=memory_before,
            peak_memory=memory_before,
        )
        started = time.perf_counter()
        try:
            if (
                self.enable_memory_optimization
                and memory_before > self.low_memory_threshold
                and info.size > self.large_file_threshold
            ):
                self.events.publish(
                    PERFORMANCE_WARNING, {"slot": slot, "reason": "low_memory", "memory": memory_before}
                )
                await self._cleanup()
            metrics.method = method or self.recommend_for(slot, info.size, memory_before)
            logger.debug("Loading %s (%d bytes) with %s", slot, info.size, metrics.method.value)
            if metrics.method is LoadMethod.CHUNKED:
                payload = await self._load_chunked(slot, info.size)
            elif metrics.method is LoadMethod.MEMORY_OPTIMIZED:
                payload = await self._load_memory_optimized(slot, info.size, metrics)
            else:
                payload = await self._load_standard(slot)
            metrics.success = True
            return payload
        except Exception as e:
            metrics.error = str(e)
            metrics.error_type = type(e).__name__
            raise
        finally:
            metrics.duration = time.perf_counter() - started
            metrics.memory_after = self.memory_probe()
            metrics.peak_memory = max(metrics.peak_memory, metrics.memory_after)
            self.metrics.record(metrics)
            if metrics.duration > self.slow_load_seconds:
                logger.warning("Slow load of %s: %.2fs", slot, metrics.duration)
                self.events.publish(PERFORMANCE_WARNING, {"slot": slot, "reason": "slow_load", "duration": metrics.duration})

    async def _cleanup(self, aggressive: bool = False) -> None:
        if aggressive:
            await aggressive_cleanup(self.cleanup_pause)
        else:
            await cleanup_memory(pause=self.cleanup_pause)

    async def _decode(self, raw: bytes) -> SavePayload:
        if len(raw) > self.large_file_threshold:
            return await asyncio.to_thread(decode_payload, raw)
        return decode_payload(raw)

    async def _load_standard(self, slot: str) -> SavePayload:
        return await self._decode(await self.store.load(slot))

    async def _load_memory_optimized(self, slot: str, file_size: int, metrics: PerformanceMetrics) -> SavePayload:
        await self._cleanup()
        monitor = None
        if self.enable_performance_monitoring:
            monitor = asyncio.create_task(self._monitor_memory(slot, metrics))
        try:
            return await self._decode(await self.store.load(slot))
        except MemoryError:
            logger.warning("Out of memory loading %s, falling back to chunked loading", slot)
            await self._cleanup(aggressive=True)
            if not self.enable_chunked_loading:
                raise
            metrics.fallback_from = LoadMethod.MEMORY_OPTIMIZED
            metrics.method = LoadMethod.CHUNKED
            return await self._load_chunked(slot, file_size)
        finally:
            if monitor is not None:
                monitor.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await monitor

    async def _monitor_memory(self, slot: str, metrics: PerformanceMetrics) -> None:
        while True:
            current = self.memory_probe()
            metrics.peak_memory = max(metrics.peak_memory, current)
            if current > self.low_memory_threshold * 1.5:
                self.events.publish(PERFORMANCE_WARNING, {"slot": slot, "reason": "high_memory", "memory": current})
                await self._cleanup()
            await asyncio.sleep(self.monitor_interval)

    async def _load_chunked(self, slot: str, file_size: int) -> SavePayload:
        progress = ChunkProgress(slot=slot, total_chunks=max(1, math.ceil(file_size / self.chunk_size)))
        buffer = bytearray()
        try:
            async for chunk in self.store.iter_chunks(slot, self.chunk_size):
                buffer.extend(chunk)
                progress.loaded_chunks += 1
                self.events.publish(LOAD_CHUNK, progress.as_event())
                if progress.loaded_chunks % self.cleanup_every == 0:
                    await self._cleanup()
                if progress.loaded_chunks % self.yield_every == 0:
                    await asyncio.sleep(0)
            if not buffer:
                raise EmptySaveFileError(f"Save file is empty: {slot}")
            progress.is_reassembling = True
            self.events.publish(LOAD_CHUNK, progress.as_event())
            payload = await self._decode(bytes(buffer))
        except Exception:
            progress.failed = True
            self.events.publish(LOAD_CHUNK, progress.as_event())
            raise
        progress.is_reassembling = False
        progress.is_completed = True
        self.events.publish(LOAD_CHUNK, progress.as_event())
        return payload
