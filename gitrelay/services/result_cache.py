"""
Small TTL map for derived results (owners, maintainer sets, limits).
"""

from typing import Any, Callable, Dict, Generic, Optional, Tuple, TypeVar
import threading
import time

V = TypeVar('V')


class ResultCache(Generic[V]):
    """Thread-safe key -> value map where values expire after ``ttl`` seconds."""

    def __init__(self, ttl: float, clock: Callable[[], float] = time.time):
        self.ttl = ttl
        self._clock = clock
        self._values: Dict[Any, Tuple[float, V]] = {}
        self._lock = threading.Lock()

    def get(self, key: Any) -> Optional[V]:
        with self._lock:
            item = self._values.get(key)
            if item is None:
                return None
            stored_at, value = item
            if self._clock() - stored_at > self.ttl:
                del self._values[key]
                return None
            return value

    def set(self, key: Any, value: V) -> None:
        with self._lock:
            self._values[key] = (self._clock(), value)

    def invalidate(self, key: Any) -> None:
        with self._lock:
            self._values.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._values.clear()
