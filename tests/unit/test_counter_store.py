"""Unit tests for the counter store implementations."""

import threading
from datetime import timedelta
from unittest.mock import Mock, patch

import fakeredis
import pytest
import time_machine
from redis import RedisError

from storeguard.adapters.counter_store import (
    LOCK_STRIPES,
    InMemoryCounterStore,
    RedisCounterStore,
    create_counter_store,
)
from storeguard.service_layer.exceptions import StoreUnavailable

WINDOW = timedelta(seconds=60)
EXPIRY = timedelta(seconds=120)


class TestInMemoryValues:
    def test_get_missing_key_returns_none(self):
        assert InMemoryCounterStore().get("nothing") is None

    def test_set_then_get(self):
        store = InMemoryCounterStore()
        store.set("ip:blocked:10.0.0.1", "1", timedelta(minutes=5))

        assert store.get("ip:blocked:10.0.0.1") == "1"

    def test_value_expires_after_ttl(self):
        store = InMemoryCounterStore()
        with time_machine.travel(1_700_000_000, tick=False) as traveller:
            store.set("key", "1", timedelta(minutes=5))
            traveller.shift(timedelta(minutes=5, seconds=1))

            assert store.get("key") is None

    def test_delete_removes_values_and_windows(self):
        store = InMemoryCounterStore()
        store.set("a", "1", timedelta(minutes=5))
        store.sliding_window_hit("b", 5, WINDOW, EXPIRY)

        store.delete("a", "b")

        assert store.get("a") is None
        assert store.window_entries("b", WINDOW) == []

    def test_delete_matching_uses_glob_patterns(self):
        store = InMemoryCounterStore()
        store.sliding_window_hit("ratelimit:10.0.0.1|/login", 5, WINDOW, EXPIRY)
        store.sliding_window_hit("ratelimit:10.0.0.1|/orders", 5, WINDOW, EXPIRY)
        store.sliding_window_hit("ratelimit:10.0.0.2|/login", 5, WINDOW, EXPIRY)

        deleted = store.delete_matching("ratelimit:10.0.0.1|*")

        assert deleted == 2
        assert store.window_entries("ratelimit:10.0.0.2|/login", WINDOW) != []


class TestInMemorySlidingWindow:
    """Tests for InMemoryCounterStore.sliding_window_hit()."""

    def test_admits_up_to_max_requests(self):
        store = InMemoryCounterStore()

        hits = [store.sliding_window_hit("key", 3, WINDOW, EXPIRY, now=1000.0 + i) for i in range(3)]

        assert [hit.allowed for hit in hits] == [True, True, True]
        assert [hit.count for hit in hits] == [1, 2, 3]

    def test_rejects_beyond_max_and_counts_rejections(self):
        store = InMemoryCounterStore()
        for i in range(3):
            store.sliding_window_hit("key", 3, WINDOW, EXPIRY, now=1000.0 + i)

        first = store.sliding_window_hit("key", 3, WINDOW, EXPIRY, now=1010.0)
        second = store.sliding_window_hit("key", 3, WINDOW, EXPIRY, now=1011.0)

        assert not first.allowed
        assert first.count == 3
        assert first.rejected == 1
        assert second.rejected == 2
        assert second.attempts == 5

    def test_rejected_requests_do_not_take_a_slot(self):
        """Once the oldest admitted request leaves the window the next one is admitted again."""
        store = InMemoryCounterStore()
        for i in range(3):
            store.sliding_window_hit("key", 3, WINDOW, EXPIRY, now=1000.0 + i)
        for i in range(5):
            store.sliding_window_hit("key", 3, WINDOW, EXPIRY, now=1010.0 + i)

        hit = store.sliding_window_hit("key", 3, WINDOW, EXPIRY, now=1060.5)

        assert hit.allowed
        assert hit.count == 3

    def test_entries_older_than_window_are_evicted(self):
        store = InMemoryCounterStore()
        for i in range(3):
            store.sliding_window_hit("key", 3, WINDOW, EXPIRY, now=1000.0 + i)

        hit = store.sliding_window_hit("key", 3, WINDOW, EXPIRY, now=1100.0)

        assert hit.allowed
        assert hit.count == 1
        assert hit.rejected == 0

    def test_window_entries_are_sorted_and_bounded(self):
        store = InMemoryCounterStore()
        for stamp in (1000.0, 1030.0, 1050.0):
            store.sliding_window_hit("key", 10, WINDOW, EXPIRY, now=stamp)

        assert store.window_entries("key", WINDOW, now=1070.0) == [1030.0, 1050.0]

    @pytest.mark.slow
    def test_concurrent_hits_never_exceed_max(self):
        store = InMemoryCounterStore()
        results = []
        results_lock = threading.Lock()

        def hit():
            outcome = store.sliding_window_hit("key", 10, WINDOW, EXPIRY)
            with results_lock:
                results.append(outcome.allowed)

        threads = [threading.Thread(target=hit) for _ in range(50)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(True) == 10
        assert results.count(False) == 40


class TestInMemorySweep:
    def test_sweep_evicts_expired_keys_only(self):
        store = InMemoryCounterStore()
        with time_machine.travel(1_700_000_000, tick=False) as traveller:
            store.set("short", "1", timedelta(seconds=10))
            store.set("long", "1", timedelta(hours=1))
            store.sliding_window_hit("window", 5, WINDOW, EXPIRY)
            traveller.shift(timedelta(minutes=5))

            evicted = store.sweep()

            assert evicted == 2
            assert store.get("long") == "1"

    def test_sweeper_thread_sweeps_until_stopped(self):
        store = InMemoryCounterStore()
        swept = threading.Event()

        with patch.object(store, "sweep", side_effect=lambda: swept.set() or 0):
            store.start_sweeper(timedelta(milliseconds=10))
            first_sweeper = store._sweeper
            store.start_sweeper(timedelta(milliseconds=10))

            assert store._sweeper is first_sweeper
            assert swept.wait(2)
            store.stop_sweeper()

        assert store._sweeper is None
        assert not first_sweeper.is_alive()

    def test_stop_sweeper_without_a_thread(self):
        store = InMemoryCounterStore()

        store.stop_sweeper()

        assert store._sweeper is None

    def test_key_locks_do_not_grow_with_keys(self):
        store = InMemoryCounterStore()

        for index in range(1000):
            store.sliding_window_hit(f"ratelimit:10.0.{index // 256}.{index % 256}|/login", 5, WINDOW, EXPIRY)
            with store.lock(f"2fa:user-{index}"):
                pass

        assert len(store._key_locks) == LOCK_STRIPES

    def test_ping(self):
        assert InMemoryCounterStore().ping()

    def test_lock_serialises_holders(self):
        store = InMemoryCounterStore()
        order = []

        def worker(name):
            with store.lock("2fa:user"):
                order.append(f"{name}-in")
                order.append(f"{name}-out")

        threads = [threading.Thread(target=worker, args=(name,)) for name in ("a", "b", "c")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        for index in range(0, len(order), 2):
            assert order[index].endswith("-in")
            assert order[index + 1] == order[index].replace("-in", "-out")


class TestRedisCounterStore:
    """Tests for RedisCounterStore against a mocked Redis client."""

    @pytest.fixture
    def redis_client(self):
        client = Mock()
        client.register_script.return_value = Mock(return_value=[1, 1, 0])
        return client

    def test_registers_sliding_window_script(self, redis_client):
        RedisCounterStore(redis_client)

        redis_client.register_script.assert_called_once()

    def test_get_decodes_bytes(self, redis_client):
        redis_client.get.return_value = b"1"

        assert RedisCounterStore(redis_client).get("key") == "1"

    def test_set_uses_whole_second_expiry(self, redis_client):
        RedisCounterStore(redis_client).set("key", "1", timedelta(milliseconds=1500))

        redis_client.set.assert_called_once_with("key", "1", ex=2)

    def test_sliding_window_hit_maps_script_result(self, redis_client):
        redis_client.register_script.return_value = Mock(return_value=[0, 5, 3])
        store = RedisCounterStore(redis_client)

        hit = store.sliding_window_hit("ratelimit:10.0.0.1|/login", 5, WINDOW, EXPIRY, now=1000.0)

        assert not hit.allowed
        assert hit.count == 5
        assert hit.rejected == 3
        script = redis_client.register_script.return_value
        kwargs = script.call_args.kwargs
        assert kwargs["keys"] == ["ratelimit:10.0.0.1|/login", "ratelimit:10.0.0.1|/login:violations"]
        assert kwargs["args"][:4] == [1000.0, 60.0, 5, 120]

    def test_window_entries_returns_sorted_scores(self, redis_client):
        redis_client.zrangebyscore.return_value = [("b", 1050.0), ("a", 1030.0)]

        entries = RedisCounterStore(redis_client).window_entries("key", WINDOW, now=1070.0)

        assert entries == [1030.0, 1050.0]
        redis_client.zrangebyscore.assert_called_once_with("key", 1010.0, "+inf", withscores=True)

    def test_delete_matching_scans_and_deletes(self, redis_client):
        redis_client.scan_iter.return_value = iter(["ratelimit:1|/a", "ratelimit:1|/b"])
        redis_client.delete.return_value = 1

        assert RedisCounterStore(redis_client).delete_matching("ratelimit:1|*") == 2

    @pytest.mark.parametrize(
        "operation",
        [
            lambda store: store.get("key"),
            lambda store: store.set("key", "1", timedelta(seconds=5)),
            lambda store: store.delete("key"),
            lambda store: store.sliding_window_hit("key", 5, WINDOW, EXPIRY),
            lambda store: store.window_entries("key", WINDOW),
        ],
    )
    def test_redis_errors_become_store_unavailable(self, redis_client, operation):
        redis_client.get.side_effect = RedisError("connection refused")
        redis_client.set.side_effect = RedisError("connection refused")
        redis_client.delete.side_effect = RedisError("connection refused")
        redis_client.zrangebyscore.side_effect = RedisError("connection refused")
        redis_client.register_script.return_value = Mock(side_effect=RedisError("connection refused"))
        store = RedisCounterStore(redis_client)

        with pytest.raises(StoreUnavailable):
            operation(store)

    def test_lock_not_acquired_raises_store_unavailable(self, redis_client):
        redis_client.lock.return_value.acquire.return_value = False

        with pytest.raises(StoreUnavailable), RedisCounterStore(redis_client).lock("2fa:user"):
            pass

    def test_lock_acquires_and_releases(self, redis_client):
        redis_lock = redis_client.lock.return_value
        redis_lock.acquire.return_value = True

        with RedisCounterStore(redis_client).lock("2fa:user"):
            redis_lock.release.assert_not_called()

        redis_lock.release.assert_called_once()
        assert redis_client.lock.call_args.args == ("lock:2fa:user",)

    def test_ping_failure_returns_false(self, redis_client):
        redis_client.ping.side_effect = RedisError("down")

        assert not RedisCounterStore(redis_client).ping()

    def test_sweep_leaves_expiry_to_redis(self, redis_client):
        assert RedisCounterStore(redis_client).sweep() == 0


class TestRedisSlidingWindowScript:
    """Runs the sliding window Lua script against an in-process Redis server."""

    KEY = "ratelimit:10.0.0.1|/login"

    @pytest.fixture
    def redis_client(self):
        return fakeredis.FakeRedis(decode_responses=True)

    @pytest.fixture
    def store(self, redis_client):
        return RedisCounterStore(redis_client)

    def test_admits_up_to_max_requests(self, store):
        hits = [store.sliding_window_hit(self.KEY, 5, WINDOW, EXPIRY, now=1000.0 + i) for i in range(5)]

        assert all(hit.allowed for hit in hits)
        assert [hit.count for hit in hits] == [1, 2, 3, 4, 5]
        assert all(hit.rejected == 0 for hit in hits)

    def test_rejects_and_counts_violations(self, store, redis_client):
        for i in range(5):
            store.sliding_window_hit(self.KEY, 5, WINDOW, EXPIRY, now=1000.0 + i)

        rejections = [store.sliding_window_hit(self.KEY, 5, WINDOW, EXPIRY, now=1010.0 + i) for i in range(3)]

        assert not any(hit.allowed for hit in rejections)
        assert [hit.count for hit in rejections] == [5, 5, 5]
        assert [hit.rejected for hit in rejections] == [1, 2, 3]
        assert redis_client.zcard(self.KEY) == 5
        assert redis_client.zcard(f"{self.KEY}:violations") == 3

    def test_entries_older_than_window_are_evicted(self, store, redis_client):
        for i in range(5):
            store.sliding_window_hit(self.KEY, 5, WINDOW, EXPIRY, now=1000.0 + i)
        store.sliding_window_hit(self.KEY, 5, WINDOW, EXPIRY, now=1010.0)

        hit = store.sliding_window_hit(self.KEY, 5, WINDOW, EXPIRY, now=1062.5)

        assert hit.allowed
        assert hit.count == 3
        assert hit.rejected == 1
        assert redis_client.zcard(self.KEY) == 3

    def test_sets_key_expiry(self, store, redis_client):
        store.sliding_window_hit(self.KEY, 5, WINDOW, EXPIRY, now=1000.0)

        assert 0 < redis_client.ttl(self.KEY) <= 120

    def test_window_entries(self, store):
        for offset in (30.0, 0.0, 50.0):
            store.sliding_window_hit(self.KEY, 5, WINDOW, EXPIRY, now=1000.0 + offset)

        assert store.window_entries(self.KEY, WINDOW, now=1070.0) == [1030.0, 1050.0]

    def test_delete_matching_keeps_longer_ipv6_addresses(self, store, redis_client):
        short = "ratelimit:2001:db8::1|/login"
        longer = "ratelimit:2001:db8::1:5|/login"
        store.sliding_window_hit(short, 5, WINDOW, EXPIRY, now=1000.0)
        store.sliding_window_hit(longer, 5, WINDOW, EXPIRY, now=1000.0)

        deleted = store.delete_matching("ratelimit:2001:db8::1|*")

        assert deleted == 1
        assert not redis_client.exists(short)
        assert redis_client.exists(longer)

    def test_get_set_delete(self, store):
        store.set("ip:10.0.0.1", "blocked", timedelta(minutes=5))

        assert store.get("ip:10.0.0.1") == "blocked"
        store.delete("ip:10.0.0.1")
        assert store.get("ip:10.0.0.1") is None

    def test_lock_is_released(self, store, redis_client):
        with store.lock("2fa:user"):
            assert redis_client.exists("lock:2fa:user")

        assert not redis_client.exists("lock:2fa:user")


class TestCreateCounterStore:
    def test_memory_backend(self):
        assert isinstance(create_counter_store("memory"), InMemoryCounterStore)

    def test_redis_backend(self, temp_env_vars):
        temp_env_vars(REDIS_HOST="localhost", REDIS_PORT="6379")

        assert isinstance(create_counter_store("redis"), RedisCounterStore)
