from cache import TTLCache


class Clock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def test_entries_expire_after_ttl():
    clock = Clock()
    cache = TTLCache(ttl=60, clock=clock)
    cache.set("k", 1)
    clock.now += 59
    assert cache.get("k") == 1
    clock.now += 1
    assert cache.get("k") is None
    assert cache.last_value("k") == 1


def test_get_or_set_only_loads_once():
    cache = TTLCache(ttl=60, clock=Clock())
    loads = []
    for _ in range(3):
        cache.get_or_set("k", lambda: loads.append(1) or "value")
    assert loads == [1]


def test_cached_falsy_values_are_hits():
    cache = TTLCache(ttl=60, clock=Clock())
    loads = []
    cache.get_or_set("empty", lambda: loads.append(1) or [])
    cache.get_or_set("empty", lambda: loads.append(1) or [])
    assert loads == [1]


def test_clear_drops_fresh_and_stale_entries():
    clock = Clock()
    cache = TTLCache(ttl=60, clock=clock)
    cache.set("a", 1)
    clock.now += 61
    cache.set("b", 2)
    cache.clear()
    assert cache.get("b") is None
    assert cache.last_value("a") is None
