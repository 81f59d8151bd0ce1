from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Generic, List, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Per-instance key/value cache whose entries expire after ``ttl`` seconds.

    No locking: readers tolerate staleness up to the TTL, and writers invalidate
    the keys they touch.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic, name: str = "cache") -> None:
        self.ttl = float(ttl)
        self.name = name
        self._clock = clock
        self._entries: Dict[str, Tuple[float, V]] = {}

    def get(self, key: str) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at > self.ttl:
            logger.debug("%s entry expired: %s", self.name, key)
            del self._entries[key]
            return None
        return value

    def put(self, key: str, value: V) -> None:
        self._entries[key] = (self._clock(), value)

    def invalidate(self, key: str) -> None:
        if self._entries.pop(key, None) is not None:
            logger.debug("%s entry invalidated: %s", self.name, key)

    def clear(self) -> None:
        self._entries.clear()

    def values(self) -> List[V]:
        """Return all unexpired values."""
        out: List[V] = []
        for key in list(self._entries):
            value = self.get(key)
            if value is not None:
                out.append(value)
        return out

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self.values())
