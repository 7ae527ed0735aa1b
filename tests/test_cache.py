"""Tests for the bounded LRU cache."""

import pytest

from notegraph.cache import BoundedCache, content_byte_size, json_byte_size
from notegraph.errors import ConfigurationError


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ─────────────────────────────────────────────────────────────────────────────
# Eviction
# ─────────────────────────────────────────────────────────────────────────────


class TestEviction:
    """Size, count and recency limits."""

    def test_oldest_entry_evicted_when_full(self):
        cache = BoundedCache(max_size=300, max_items=10, ttl=60)
        cache.set("a", "A", 100)
        cache.set("b", "B", 100)
        cache.set("c", "C", 100)
        cache.set("d", "D", 100)

        assert cache.get("a") is None
        assert cache.keys() == ["b", "c", "d"]
        assert cache.current_size == 300

    def test_get_refreshes_recency(self):
        cache = BoundedCache(max_size=300, max_items=10, ttl=60)
        cache.set("a", "A", 100)
        cache.set("b", "B", 100)
        cache.set("c", "C", 100)
        assert cache.get("a") == "A"
        cache.set("d", "D", 100)

        assert cache.has("a")
        assert not cache.has("b")
        assert set(cache.keys()) == {"a", "c", "d"}

    def test_has_does_not_refresh_recency(self):
        cache = BoundedCache(max_size=200, max_items=10, ttl=60)
        cache.set("a", "A", 100)
        cache.set("b", "B", 100)
        assert cache.has("a")
        cache.set("c", "C", 100)

        assert not cache.has("a")
        assert cache.has("b")

    def test_item_limit(self):
        cache = BoundedCache(max_size=1000, max_items=2, ttl=60)
        for key in ("a", "b", "c"):
            cache.set(key, key, 1)

        assert len(cache) == 2
        assert cache.keys() == ["b", "c"]

    def test_one_large_value_evicts_several(self):
        cache = BoundedCache(max_size=300, max_items=10, ttl=60)
        cache.set("a", "A", 100)
        cache.set("b", "B", 100)
        cache.set("c", "C", 100)
        cache.set("big", "X", 250)

        assert cache.keys() == ["big"]
        assert cache.current_size == 250

    def test_replacing_key_refunds_size(self):
        cache = BoundedCache(max_size=300, max_items=10, ttl=60)
        cache.set("a", "A", 200)
        cache.set("a", "A2", 50)

        assert cache.current_size == 50
        assert cache.get("a") == "A2"

    def test_invariants_hold_after_many_sets(self):
        cache = BoundedCache(max_size=500, max_items=7, ttl=60)
        for i in range(200):
            cache.set(f"k{i % 23}", i, (i * 37) % 180)
            assert cache.current_size <= 500
            assert len(cache) <= 7
            assert cache.current_size == cache.get_stats().total_size


# ─────────────────────────────────────────────────────────────────────────────
# Size boundaries
# ─────────────────────────────────────────────────────────────────────────────


class TestSizeBoundaries:
    def test_value_exactly_max_size_is_stored(self):
        cache = BoundedCache(max_size=100, max_items=10, ttl=60)
        assert cache.set("a", "A", 100) is True
        assert cache.current_size == 100

    def test_value_one_byte_over_is_rejected(self):
        cache = BoundedCache(max_size=100, max_items=10, ttl=60)
        cache.set("keep", "K", 10)
        assert cache.set("a", "A", 101) is False

        assert not cache.has("a")
        assert cache.has("keep")

    def test_negative_size_clamped_to_zero(self):
        cache = BoundedCache(max_size=100, max_items=10, ttl=60)
        cache.set("a", "A", -50)

        assert cache.current_size == 0
        assert cache.get("a") == "A"

    def test_zero_max_size_never_stores(self):
        cache = BoundedCache(max_size=0, max_items=10, ttl=60)
        assert cache.set("a", "A", 0) is False
        assert len(cache) == 0

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_size": -1, "max_items": 10, "ttl": 60},
            {"max_size": 100, "max_items": 0, "ttl": 60},
            {"max_size": 100, "max_items": 10, "ttl": 0},
        ],
    )
    def test_invalid_limits_raise(self, kwargs):
        with pytest.raises(ConfigurationError):
            BoundedCache(**kwargs)


# ─────────────────────────────────────────────────────────────────────────────
# Expiry
# ─────────────────────────────────────────────────────────────────────────────


class TestExpiry:
    def test_idle_entry_expires(self, clock):
        cache = BoundedCache(max_size=100, max_items=10, ttl=10, clock=clock)
        cache.set("a", "A", 10)
        clock.advance(10.5)

        assert cache.get("a") is None
        assert len(cache) == 0
        assert cache.current_size == 0

    def test_entry_at_exact_ttl_is_live(self, clock):
        cache = BoundedCache(max_size=100, max_items=10, ttl=10, clock=clock)
        cache.set("a", "A", 10)
        clock.advance(10)

        assert cache.get("a") == "A"

    def test_access_extends_lifetime(self, clock):
        cache = BoundedCache(max_size=100, max_items=10, ttl=10, clock=clock)
        cache.set("a", "A", 10)
        clock.advance(8)
        assert cache.get("a") == "A"
        clock.advance(8)

        assert cache.get("a") == "A"

    def test_has_applies_expiry(self, clock):
        cache = BoundedCache(max_size=100, max_items=10, ttl=10, clock=clock)
        cache.set("a", "A", 10)
        clock.advance(11)

        assert cache.has("a") is False
        assert cache.keys() == []

    def test_expired_entries_purged_before_eviction(self, clock):
        cache = BoundedCache(max_size=300, max_items=10, ttl=10, clock=clock)
        cache.set("old", "O", 100)
        clock.advance(5)
        cache.set("b", "B", 100)
        cache.set("c", "C", 100)
        clock.advance(6)  # "old" idle for 11s, others for 6s
        cache.set("d", "D", 100)

        assert cache.keys() == ["b", "c", "d"]


# ─────────────────────────────────────────────────────────────────────────────
# Bookkeeping
# ─────────────────────────────────────────────────────────────────────────────


class TestBookkeeping:
    def test_delete_and_clear(self):
        cache = BoundedCache(max_size=100, max_items=10, ttl=60)
        cache.set("a", "A", 10)
        cache.set("b", "B", 20)

        assert cache.delete("a") is True
        assert cache.delete("a") is False
        assert cache.current_size == 20

        cache.clear()
        assert len(cache) == 0
        assert cache.current_size == 0

    def test_stats(self):
        cache = BoundedCache(max_size=100, max_items=10, ttl=60)
        cache.set("a", "A", 10)
        cache.set("b", "B", 20)
        cache.get("a")
        cache.get("a")

        stats = cache.get_stats()
        assert stats.item_count == 2
        assert stats.total_size == 30
        assert stats.max_size == 100
        # a: 1 + 2 hits, b: 1
        assert stats.average_access_count == pytest.approx(2.0)

    def test_empty_stats(self):
        stats = BoundedCache(max_size=100, max_items=10, ttl=60).get_stats()
        assert stats.item_count == 0
        assert stats.average_access_count == 0.0


class TestByteSizes:
    def test_content_byte_size_counts_utf8(self):
        assert content_byte_size("abc") == 3
        assert content_byte_size("é") == 2

    def test_json_byte_size(self):
        assert json_byte_size({"a": 1}) == len('{"a": 1}')

    def test_json_byte_size_unserializable(self):
        assert json_byte_size({"a": object()}) is None
