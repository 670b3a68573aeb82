"""TTL cache for analytics payloads, backed by Redis with an in-process fallback."""
import json
import logging
import threading
import time
from typing import Any, Protocol

import redis

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 900


class CacheBackend(Protocol):
    """Store of JSON strings with per-key TTL and prefix invalidation."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def invalidate(self, prefix: str) -> int: ...


class MemoryCache:
    """Single-process cache: one dict guarded by one lock.

    Entries are independent by key, so a single mutex is enough for parallel
    request threads. Expired entries are dropped lazily on read.
    """

    def __init__(self, clock=time.monotonic) -> None:
        self._entries: dict[str, tuple[float, str]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + ttl_seconds, value)

    def invalidate(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for k in doomed:
                del self._entries[k]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RedisCache:
    """Redis-backed cache. Errors propagate as redis.RedisError."""

    def __init__(self, client: "redis.Redis") -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str, timeout: float = 0.5) -> "RedisCache":
        client = redis.Redis.from_url(
            url,
            socket_connect_timeout=timeout,
            socket_timeout=timeout,
            decode_responses=True,
        )
        return cls(client)

    def ping(self) -> bool:
        return bool(self._client.ping())

    def get(self, key: str) -> str | None:
        value = self._client.get(key)
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._client.setex(key, ttl_seconds, value)

    def invalidate(self, prefix: str) -> int:
        keys = list(self._client.scan_iter(match=f"{prefix}*"))
        if not keys:
            return 0
        return int(self._client.delete(*keys))

    def close(self) -> None:
        self._client.close()


class Cache:
    """Facade used by the API: JSON encoding, Redis first, memory on failure.

    A cache failure is never raised to the caller. Redis errors are logged, the
    operation is served by the in-process store, and Redis is skipped for
    ``retry_after`` seconds. Any other failure is logged and reads as a miss.

    Invalidations Redis could not apply are remembered and replayed before it
    serves anything again, so a write made while Redis was down never leaves a
    stale report behind once it recovers.
    """

    def __init__(
        self,
        primary: RedisCache | None = None,
        fallback: CacheBackend | None = None,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        retry_after: float = 30.0,
        clock=time.monotonic,
    ) -> None:
        self.primary = primary
        self.fallback = fallback if fallback is not None else MemoryCache()
        self.ttl_seconds = ttl_seconds
        self.retry_after = retry_after
        self._clock = clock
        self._primary_down_until = 0.0
        # prefixes still to be dropped from redis
        self._pending: set[str] = set()
        self._lock = threading.Lock()

    @property
    def backend_name(self) -> str:
        return "redis" if self._primary_available() else "memory"

    def _primary_available(self) -> bool:
        return self.primary is not None and self._clock() >= self._primary_down_until

    def _primary_failed(self, op: str, exc: Exception) -> None:
        logger.warning("cache %s on redis failed, using memory fallback: %s", op, exc)
        self._primary_down_until = self._clock() + self.retry_after

    def _use_primary(self) -> bool:
        """True if redis may serve the next operation; replays pending invalidations first."""
        if not self._primary_available():
            return False
        with self._lock:
            pending = sorted(self._pending)
        for prefix in pending:
            try:
                self.primary.invalidate(prefix)
            except redis.RedisError as exc:
                self._primary_failed("invalidate", exc)
                return False
            with self._lock:
                self._pending.discard(prefix)
        return True

    def get(self, key: str) -> Any | None:
        """Return the cached value for ``key``, or None on miss, expiry or error."""
        raw = self.get_raw(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.exception("cached value for %s is not valid JSON", key)
            return None

    def get_raw(self, key: str) -> str | None:
        """Return the stored JSON text for ``key`` without decoding it."""
        try:
            return self._get_raw(key)
        except Exception:  # pylint: disable=broad-except
            logger.exception("cache get failed for %s", key)
            return None

    def _get_raw(self, key: str) -> str | None:
        if self._use_primary():
            try:
                return self.primary.get(key)
            except redis.RedisError as exc:
                self._primary_failed("get", exc)
        return self.fallback.get(key)

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> str | None:
        """Store ``value`` as JSON; returns the encoded payload (None on failure)."""
        ttl = ttl_seconds if ttl_seconds is not None else self.ttl_seconds
        try:
            raw = json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError):
            logger.exception("cache value for %s is not JSON serialisable", key)
            return None
        try:
            if self._use_primary():
                try:
                    self.primary.set(key, raw, ttl)
                    return raw
                except redis.RedisError as exc:
                    self._primary_failed("set", exc)
            self.fallback.set(key, raw, ttl)
        except Exception:  # pylint: disable=broad-except
            logger.exception("cache set failed for %s", key)
        return raw

    def invalidate(self, prefix: str) -> None:
        """Drop every key starting with ``prefix`` from both stores.

        Redis is tried even during its cooldown. If it cannot be reached the
        prefix is queued and dropped before redis serves another read.
        """
        if self.primary is not None:
            try:
                self.primary.invalidate(prefix)
            except redis.RedisError as exc:
                with self._lock:
                    self._pending.add(prefix)
                self._primary_failed("invalidate", exc)
            except Exception:  # pylint: disable=broad-except
                with self._lock:
                    self._pending.add(prefix)
                logger.exception("cache invalidation failed for %s", prefix)
        try:
            self.fallback.invalidate(prefix)
        except Exception:  # pylint: disable=broad-except
            logger.exception("cache invalidation failed for %s", prefix)

    def close(self) -> None:
        if self.primary is not None:
            try:
                self.primary.close()
            except redis.RedisError as exc:
                logger.warning("error closing redis client: %s", exc)


def build_cache(redis_url: str, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> Cache:
    """Pick the cache implementation at startup from configuration."""
    if not redis_url:
        logger.info("cache: using in-process memory store")
        return Cache(ttl_seconds=ttl_seconds)
    primary = RedisCache.from_url(redis_url)
    cache = Cache(primary=primary, ttl_seconds=ttl_seconds)
    try:
        primary.ping()
        logger.info("cache: redis connected")
    except redis.RedisError as exc:
        cache._primary_failed("ping", exc)
    return cache
