"""TTL result cache and key construction."""
import pytest

from riskengine.cache import TTLCache, build_cache_key


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=300, clock=clock)
    cache.set("k", {"v": 1})

    clock.now += 299
    assert cache.get("k") == {"v": 1}
    clock.now += 1
    assert cache.get("k") is None
    assert len(cache) == 0


def test_missing_key():
    assert TTLCache().get("nope") is None


def test_set_sweeps_expired_entries_never_read_again():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=300, clock=clock)
    for org_id in range(20):
        cache.set(build_cache_key("gap", "analyze", organization_id=org_id), org_id)
    assert len(cache) == 20

    clock.now += 300
    cache.set("gap:analyze:fresh", "fresh")
    assert len(cache) == 1
    assert cache.get("gap:analyze:fresh") == "fresh"


def test_max_entries_evicts_oldest():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=300, max_entries=2, clock=clock)
    cache.set("a", 1)
    clock.now += 1
    cache.set("b", 2)
    clock.now += 1
    cache.set("c", 3)

    assert len(cache) == 2
    assert cache.get("a") is None
    assert (cache.get("b"), cache.get("c")) == (2, 3)


def test_overwriting_a_key_refreshes_its_expiry():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=300, max_entries=2, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)
    clock.now += 200
    cache.set("a", 10)
    cache.set("c", 3)

    # "b" is now the oldest entry
    assert cache.get("b") is None
    clock.now += 150
    assert cache.get("a") == 10


def test_max_entries_must_be_positive():
    with pytest.raises(ValueError):
        TTLCache(max_entries=0)


def test_cache_key_is_deterministic_and_order_sensitive():
    k1 = build_cache_key("gap", "analyze", organization_id=1, framework_ids=[1, 2])
    k2 = build_cache_key("gap", "analyze", framework_ids=[1, 2], organization_id=1)
    k3 = build_cache_key("gap", "analyze", organization_id=1, framework_ids=[2, 1])
    assert k1 == k2
    assert k1 != k3
    assert k1.startswith("gap:analyze:")
