from patientlead.services.response_cache import ResponseCache, cache_key


class _Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_cache_key_ignores_dict_ordering():
    assert cache_key('u1', 'symptomPro', {'a': 1, 'b': 2}) == cache_key('u1', 'symptomPro', {'b': 2, 'a': 1})
    assert cache_key('u1', 'symptomPro', {'a': 1}) != cache_key('u2', 'symptomPro', {'a': 1})


def test_entries_expire_after_ttl():
    clock = _Clock()
    cache = ResponseCache(ttl_seconds=60, clock=clock)
    cache.set('u1', 'symptomPro', {'a': 1}, {'clinical': 'C'})

    assert cache.get('u1', 'symptomPro', {'a': 1}) == {'clinical': 'C'}
    clock.now += 60
    assert cache.get('u1', 'symptomPro', {'a': 1}) is None


def test_returned_values_are_copies():
    cache = ResponseCache(ttl_seconds=60)
    cache.set('u1', 'trendTrack', {}, {'insights': ['one']})

    cache.get('u1', 'trendTrack', {})['insights'].append('two')

    assert cache.get('u1', 'trendTrack', {}) == {'insights': ['one']}


def test_zero_ttl_disables_cache():
    cache = ResponseCache(ttl_seconds=0)
    cache.set('u1', 'symptomPro', {}, {'clinical': 'C'})

    assert cache.enabled is False
    assert cache.get('u1', 'symptomPro', {}) is None
    assert cache.size() == 0
