from db.kv_store import MemoryKeyValueStore
from monitor.cache import KeyValueResultCache, MemoryResultCache, node_score_key


class FakeClock:
    def __init__(self, now=500.0):
        self.now = now

    def __call__(self):
        return self.now


class TestMemoryResultCache:
    def test_entries_expire(self):
        clock = FakeClock()
        cache = MemoryResultCache(clock=clock)
        cache.set("key", {"value": 1}, ttl_seconds=30)

        assert cache.get("key") == {"value": 1}
        clock.now += 30
        assert cache.get("key") is None

    def test_delete_and_clear(self):
        cache = MemoryResultCache()
        cache.set("a", 1, 60)
        cache.set("b", 2, 60)

        cache.delete("a")
        assert cache.get("a") is None
        cache.clear()
        assert cache.get("b") is None


class TestKeyValueResultCache:
    def test_round_trips_json_with_prefix(self):
        clock = FakeClock()
        store = MemoryKeyValueStore(clock=clock)
        cache = KeyValueResultCache(store)

        cache.set(node_score_key("abc"), {"score": 91.5}, ttl_seconds=60)

        assert store.get("cache:xandscore:abc") == '{"score": 91.5}'
        assert cache.get("xandscore:abc") == {"score": 91.5}
        clock.now += 61
        assert cache.get("xandscore:abc") is None

    def test_sub_second_ttl_is_at_least_one_second(self):
        store = MemoryKeyValueStore(clock=FakeClock())
        KeyValueResultCache(store).set("leaderboard", [], ttl_seconds=0.2)

        assert store.ttl("cache:leaderboard") == 1

    def test_undecodable_entry_is_dropped(self):
        store = MemoryKeyValueStore()
        store.set("cache:broken", "{not json")
        cache = KeyValueResultCache(store)

        assert cache.get("broken") is None
        assert store.get("cache:broken") is None

    def test_clear_only_touches_prefixed_keys(self):
        store = MemoryKeyValueStore()
        store.zadd("node:metrics:abc", {"m": 1})
        cache = KeyValueResultCache(store)
        cache.set("nodes:all", {"nodes": []}, 30)
        cache.set("leaderboard", [], 30)

        cache.clear()

        assert store.keys() == ["node:metrics:abc"]
