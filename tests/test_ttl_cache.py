from patientlead.services.ttl_cache import TTLCache


class _Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_expired_entries_stay_until_read_while_under_capacity():
    clock = _Clock()
    cache = TTLCache(max_items=16, clock=clock)
    cache.set('old', 1, ttl_sec=10)
    clock.now += 20

    cache.set('new', 2, ttl_sec=10)

    assert cache.size() == 2
    assert cache.get('old') is None
    assert cache.size() == 1


def test_over_capacity_drops_expired_before_live_entries():
    clock = _Clock()
    cache = TTLCache(max_items=16, clock=clock)
    cache.set('stale', 'x', ttl_sec=5)
    for i in range(15):
        cache.set(f'live{i}', i, ttl_sec=60)
    clock.now += 10

    cache.set('extra', 'y', ttl_sec=60)

    assert cache.size() == 16
    assert cache.get('live0') == 0
    assert cache.get('extra') == 'y'


def test_lru_eviction_when_every_entry_is_live():
    cache = TTLCache(max_items=16, clock=_Clock())
    for i in range(16):
        cache.set(f'k{i}', i, ttl_sec=60)
    cache.get('k0')

    cache.set('k16', 16, ttl_sec=60)

    assert cache.get('k0') == 0
    assert cache.get('k1') is None
    assert cache.size() == 16
