import threading
import time
from collections import OrderedDict
from typing import Any, Optional, Tuple


class TTLCache:
    """
    Thread-safe in-process TTL cache.
    - max_items: bounds growth
    - TTL: seconds, per entry; expired entries are dropped on read or once over capacity
    - LRU: least recently used entries are evicted once over capacity
    """

    def __init__(self, max_items: int = 512, clock=time.time):
        self.max_items = max(16, int(max_items))
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (expires_at, value)
        self._data: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()

    def get(self, key: str) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            item = self._data.get(key)
            if not item:
                return None
            exp, val = item
            if exp <= now:
                del self._data[key]
                return None
            self._data.move_to_end(key, last=True)
            return val

    def set(self, key: str, value: Any, ttl_sec: float) -> None:
        if ttl_sec <= 0:
            return
        now = self._clock()
        with self._lock:
            self._data[key] = (now + ttl_sec, value)
            self._data.move_to_end(key, last=True)

            if len(self._data) <= self.max_items:
                return
            dead = [k for k, (e, _) in self._data.items() if e <= now]
            for k in dead:
                del self._data[k]

            while len(self._data) > self.max_items:
                self._data.popitem(last=False)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._data)
