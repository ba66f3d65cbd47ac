"""Short-lived cache of normalized tool results keyed by caller, tool and inputs."""

import copy
import hashlib
import json
import time

from patientlead.services.ttl_cache import TTLCache


def cache_key(user_id, tool_id, inputs):
    canonical = json.dumps(inputs, sort_keys=True, ensure_ascii=True, default=str)
    raw = f'{user_id}|{tool_id}|{canonical}'.encode('utf-8')
    return hashlib.sha256(raw).hexdigest()


class ResponseCache:
    def __init__(self, ttl_seconds=300, max_items=100, clock=time.time):
        self.ttl_seconds = max(0, int(ttl_seconds))
        self._cache = TTLCache(max_items=max_items, clock=clock)

    @property
    def enabled(self):
        return self.ttl_seconds > 0

    def get(self, user_id, tool_id, inputs):
        if not self.enabled:
            return None
        value = self._cache.get(cache_key(user_id, tool_id, inputs))
        return copy.deepcopy(value) if value is not None else None

    def set(self, user_id, tool_id, inputs, data):
        if not self.enabled:
            return
        self._cache.set(cache_key(user_id, tool_id, inputs), copy.deepcopy(data), ttl_sec=self.ttl_seconds)

    def clear(self):
        self._cache.clear()

    def size(self):
        return self._cache.size()
