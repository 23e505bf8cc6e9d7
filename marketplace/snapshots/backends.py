"""
Backends clé/valeur avec TTL pour les snapshots de checkout.
Interface commune: put(key, value, ttl), get(key), forget(key), has(key).
Les valeurs sont des chaînes JSON.
"""
import threading
import time
from typing import Callable, Dict, Optional, Tuple


class RedisSnapshotBackend:
    name = "redis"

    def __init__(self, redis_factory):
        self.redis_factory = redis_factory

    def put(self, key: str, value: str, ttl: int) -> None:
        self.redis_factory().set(key, value, ex=int(ttl))

    def get(self, key: str) -> Optional[str]:
        return self.redis_factory().get(key)

    def forget(self, key: str) -> bool:
        return bool(self.redis_factory().delete(key))

    def has(self, key: str) -> bool:
        return bool(self.redis_factory().exists(key))


class MemorySnapshotBackend:
    """Backend en mémoire à horloge injectable (dev, mono-process, tests)."""

    name = "memory"

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self.clock = clock or time.time
        self._data: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, deadline = entry
        if self.clock() >= deadline:
            del self._data[key]
            return None
        return value

    def put(self, key: str, value: str, ttl: int) -> None:
        with self._lock:
            self._data[key] = (value, self.clock() + int(ttl))

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._live(key)

    def forget(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def has(self, key: str) -> bool:
        with self._lock:
            return self._live(key) is not None

