from __future__ import annotations

import asyncio
import gc
import logging
from typing import Callable

import psutil

logger = logging.getLogger(__name__)

MemoryProbe = Callable[[], int]

MB = 1024 * 1024


def process_memory() -> int:
    """Resident set size of this process in bytes."""
    return psutil.Process().memory_info().rss


async def cleanup_memory(passes: int = 1, pause: float = 0.0) -> None:
    """Run the garbage collector and give other tasks a chance to run."""
    collected = 0
    for _ in range(max(1, passes)):
        collected += gc.collect()
        await asyncio.sleep(pause)
    logger.debug("Memory cleanup collected %d objects in %d passes", collected, passes)


async def aggressive_cleanup(pause: float = 0.0) -> None:
    await cleanup_memory(passes=3, pause=pause)
