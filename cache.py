"""In-process get-or-compute cache for list endpoints.

Only an optimisation: a miss always falls through to the database, and
every write evicts the affected key prefix.
"""
import threading
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple


def cache_key(endpoint: str, user_id, page_number: int, page_size: int) -> str:
    return f"{endpoint}:{user_id}:{page_number}:{page_size}"


class ResponseCache:
    def __init__(self, ttl_seconds: int = 60, clock: Callable[[], float] = time.monotonic,
                 max_entries: int = 1024):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max(1, max_entries)
        self._clock = clock
        self._data: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: Any) -> None:
        if not self.enabled:
            return
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            self._data.pop(key, None)
            while len(self._data) >= self.max_entries:
                # dicts keep insertion order: drop the oldest write
                del self._data[next(iter(self._data))]
            self._data[key] = (now + self.ttl_seconds, value)

    def _purge_expired(self, now: float) -> None:
        for k in [k for k, (expires_at, _) in self._data.items() if now >= expires_at]:
            del self._data[k]

    async def get_or_compute(self, key: str, compute: Callable[[], Awaitable[Any]]) -> Any:
        cached = self.get(key)
        if cached is not None:
            return cached
        value = await compute()
        self.set(key, value)
        return value

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._data if k.startswith(prefix)]
            for k in doomed:
                del self._data[k]
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


def invalidate_tasks(cache: ResponseCache, owner_id) -> None:
    cache.invalidate_prefix("tasks:all:")
    cache.invalidate_prefix(f"tasks:user:{owner_id}:")


def invalidate_users(cache: ResponseCache) -> None:
    # admin task listings embed usernames, and deleting a user drops tasks
    cache.invalidate_prefix("users:")
    cache.invalidate_prefix("tasks:")
