"""ABOUTME: Shared counter and cache store used for the IP cache, rate-limit windows and per-user locks
ABOUTME: Redis implementation with an atomic Lua sliding window, plus an in-process store for single-process use"""

import abc
import fnmatch
import math
import threading
import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from datetime import timedelta
from typing import TypeVar

import structlog
from redis import Redis, RedisError

from storeguard.config import RedisCfg
from storeguard.domain.rate_limit import WindowHit, violations_key
from storeguard.service_layer.exceptions import StoreUnavailable

logger = structlog.get_logger(__name__)

T = TypeVar("T")

LOCK_STRIPES = 64

# Evicts entries older than the window from both sets, then admits or records a rejection.
# Runs as one script so the check and the insert cannot interleave for a key.
SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
local violations = KEYS[2]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local max_requests = tonumber(ARGV[3])
local expiry = tonumber(ARGV[4])
local member = ARGV[5]
local window_start = now - window

redis.call('ZREMRANGEBYSCORE', key, '-inf', '(' .. window_start)
redis.call('ZREMRANGEBYSCORE', violations, '-inf', '(' .. window_start)
local count = redis.call('ZCARD', key)

if count >= max_requests then
    redis.call('ZADD', violations, now, member)
    redis.call('EXPIRE', violations, expiry)
    return {0, count, redis.call('ZCARD', violations)}
end

redis.call('ZADD', key, now, member)
redis.call('EXPIRE', key, expiry)
return {1, count + 1, redis.call('ZCARD', violations)}
"""


def _seconds(duration: timedelta) -> int:
    return max(1, math.ceil(duration.total_seconds()))


class AbstractCounterStore(abc.ABC):
    """Key-value store with TTLs, atomic sliding windows and named locks."""

    @abc.abstractmethod
    def get(self, key: str) -> str | None:
        raise NotImplementedError

    @abc.abstractmethod
    def set(self, key: str, value: str, ttl: timedelta) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def delete(self, *keys: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def delete_matching(self, pattern: str) -> int:
        """Delete every key matching a glob pattern. Returns how many were deleted."""
        raise NotImplementedError

    @abc.abstractmethod
    def sliding_window_hit(
        self, key: str, max_requests: int, window: timedelta, expiry: timedelta, now: float | None = None
    ) -> WindowHit:
        """Atomically evict old entries, then admit the request if the window has room.

        Admitted requests are recorded under `key`, rejected ones under its violations key.
        Both keys expire `expiry` after their last write.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def window_entries(self, key: str, window: timedelta, now: float | None = None) -> list[float]:
        """Timestamps of admitted requests still inside the window, oldest first. Read only."""
        raise NotImplementedError

    @abc.abstractmethod
    def lock(self, name: str, timeout: timedelta = timedelta(seconds=10)) -> AbstractContextManager[None]:
        """Mutual exclusion across everything sharing this store."""
        raise NotImplementedError

    @abc.abstractmethod
    def sweep(self) -> int:
        """Evict expired keys that nothing has read recently. Returns how many were evicted."""
        raise NotImplementedError

    @abc.abstractmethod
    def ping(self) -> bool:
        raise NotImplementedError


class RedisCounterStore(AbstractCounterStore):
    """Counter store backed by Redis. Every Redis error surfaces as StoreUnavailable."""

    def __init__(self, client: Redis) -> None:
        self.redis = client
        self._sliding_window = client.register_script(SLIDING_WINDOW_SCRIPT)

    @classmethod
    def from_config(cls, redis_cfg: RedisCfg | None = None) -> "RedisCounterStore":
        redis_cfg = redis_cfg or RedisCfg.from_env()
        client = Redis.from_url(redis_cfg.to_url(), decode_responses=True, socket_timeout=2)
        return cls(client)

    def _call(self, operation: Callable[[], T]) -> T:
        try:
            return operation()
        except RedisError as error:
            raise StoreUnavailable("counter store", str(error)) from error

    def get(self, key: str) -> str | None:
        value = self._call(lambda: self.redis.get(key))
        if value is None:
            return None
        return value.decode() if isinstance(value, bytes) else str(value)

    def set(self, key: str, value: str, ttl: timedelta) -> None:
        self._call(lambda: self.redis.set(key, value, ex=_seconds(ttl)))

    def delete(self, *keys: str) -> None:
        if keys:
            self._call(lambda: self.redis.delete(*keys))

    def delete_matching(self, pattern: str) -> int:
        def _delete() -> int:
            deleted = 0
            for key in self.redis.scan_iter(match=pattern, count=500):
                deleted += int(self.redis.delete(key))
            return deleted

        return self._call(_delete)

    def sliding_window_hit(
        self, key: str, max_requests: int, window: timedelta, expiry: timedelta, now: float | None = None
    ) -> WindowHit:
        now = time.time() if now is None else now
        member = f"{now}:{uuid.uuid4().hex}"
        allowed, count, rejected = self._call(
            lambda: self._sliding_window(
                keys=[key, violations_key(key)],
                args=[now, window.total_seconds(), max_requests, _seconds(expiry), member],
            )
        )
        return WindowHit(allowed=bool(allowed), count=int(count), rejected=int(rejected))

    def window_entries(self, key: str, window: timedelta, now: float | None = None) -> list[float]:
        now = time.time() if now is None else now
        entries = self._call(
            lambda: self.redis.zrangebyscore(key, now - window.total_seconds(), "+inf", withscores=True)
        )
        return sorted(float(score) for _, score in entries)

    @contextmanager
    def _redis_lock(self, name: str, timeout: timedelta) -> Iterator[None]:
        redis_lock = self.redis.lock(f"lock:{name}", timeout=timeout.total_seconds(), blocking_timeout=5)
        try:
            acquired = redis_lock.acquire()
        except RedisError as error:
            raise StoreUnavailable("counter store", str(error)) from error
        if not acquired:
            raise StoreUnavailable("counter store", f"could not acquire lock {name}")
        try:
            yield
        finally:
            try:
                redis_lock.release()
            except RedisError:
                # the lock timed out and someone else may hold it now
                logger.warning("Lost counter store lock before release", lock=name)

    def lock(self, name: str, timeout: timedelta = timedelta(seconds=10)) -> AbstractContextManager[None]:
        return self._redis_lock(name, timeout)

    def sweep(self) -> int:
        # Redis expires keys itself
        return 0

    def ping(self) -> bool:
        try:
            return bool(self.redis.ping())
        except RedisError:
            return False


class InMemoryCounterStore(AbstractCounterStore):
    """Counter store for a single process.

    Windows and named locks are guarded by a fixed pool of striped locks, so keys that
    hash to the same stripe serialise but the number of locks never grows.
    """

    def __init__(self, lock_stripes: int = LOCK_STRIPES) -> None:
        self._values: dict[str, tuple[str, float]] = {}
        self._windows: dict[str, tuple[list[float], float]] = {}
        self._guard = threading.Lock()
        self._key_locks = tuple(threading.RLock() for _ in range(lock_stripes))
        self._stop_sweeping = threading.Event()
        self._sweeper: threading.Thread | None = None

    def _key_lock(self, key: str) -> threading.RLock:
        return self._key_locks[hash(key) % len(self._key_locks)]

    def get(self, key: str) -> str | None:
        with self._guard:
            item = self._values.get(key)
            if item is None:
                return None
            value, expires_at = item
            if expires_at <= time.time():
                del self._values[key]
                return None
            return value

    def set(self, key: str, value: str, ttl: timedelta) -> None:
        with self._guard:
            self._values[key] = (value, time.time() + ttl.total_seconds())

    def delete(self, *keys: str) -> None:
        with self._guard:
            for key in keys:
                self._values.pop(key, None)
                self._windows.pop(key, None)

    def delete_matching(self, pattern: str) -> int:
        with self._guard:
            matches = [key for key in (*self._values, *self._windows) if fnmatch.fnmatchcase(key, pattern)]
            for key in matches:
                self._values.pop(key, None)
                self._windows.pop(key, None)
            return len(matches)

    def _live_entries(self, key: str, window_start: float, now: float) -> list[float]:
        entries, expires_at = self._windows.get(key, ([], 0.0))
        if expires_at <= now:
            return []
        return [stamp for stamp in entries if stamp >= window_start]

    def sliding_window_hit(
        self, key: str, max_requests: int, window: timedelta, expiry: timedelta, now: float | None = None
    ) -> WindowHit:
        rejected_key = violations_key(key)
        with self._key_lock(key):
            now = time.time() if now is None else now
            window_start = now - window.total_seconds()
            expires_at = now + expiry.total_seconds()
            with self._guard:
                admitted = self._live_entries(key, window_start, now)
                rejected = self._live_entries(rejected_key, window_start, now)
                if len(admitted) >= max_requests:
                    rejected.append(now)
                    self._windows[rejected_key] = (rejected, expires_at)
                    if admitted:
                        self._windows[key] = (admitted, self._windows[key][1])
                    return WindowHit(allowed=False, count=len(admitted), rejected=len(rejected))
                admitted.append(now)
                self._windows[key] = (admitted, expires_at)
                return WindowHit(allowed=True, count=len(admitted), rejected=len(rejected))

    def window_entries(self, key: str, window: timedelta, now: float | None = None) -> list[float]:
        now = time.time() if now is None else now
        with self._guard:
            return sorted(self._live_entries(key, now - window.total_seconds(), now))

    @contextmanager
    def _thread_lock(self, name: str) -> Iterator[None]:
        with self._key_lock(f"lock:{name}"):
            yield

    def lock(self, name: str, timeout: timedelta = timedelta(seconds=10)) -> AbstractContextManager[None]:
        return self._thread_lock(name)

    def sweep(self) -> int:
        now = time.time()
        with self._guard:
            expired_values = [key for key, (_, expires_at) in self._values.items() if expires_at <= now]
            expired_windows = [key for key, (_, expires_at) in self._windows.items() if expires_at <= now]
            for key in expired_values:
                del self._values[key]
            for key in expired_windows:
                del self._windows[key]
        return len(expired_values) + len(expired_windows)

    def start_sweeper(self, interval: timedelta) -> None:
        """Run sweep() every interval on a daemon thread until stop_sweeper() is called."""
        if self._sweeper is not None:
            return
        self._stop_sweeping.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_periodically,
            args=(interval.total_seconds(),),
            name="counter-store-sweeper",
            daemon=True,
        )
        self._sweeper.start()

    def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._stop_sweeping.set()
        self._sweeper.join()
        self._sweeper = None

    def _sweep_periodically(self, interval_seconds: float) -> None:
        while not self._stop_sweeping.wait(interval_seconds):
            evicted = self.sweep()
            if evicted:
                logger.debug("Swept expired counter store keys", keys=evicted)

    def ping(self) -> bool:
        return True


def create_counter_store(backend: str = "redis") -> AbstractCounterStore:
    if backend == "memory":
        return InMemoryCounterStore()
    return RedisCounterStore.from_config()
