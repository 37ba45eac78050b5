"""Cache-aside manager over a pluggable key/value store.

The manager never computes values itself: callers look a key up, compute
on a miss and store the result. Store failures and timeouts are absorbed
on the read and write paths (a failed ``get`` is a miss, a failed ``set``
is a no-op) so the cache can only ever make requests faster, never fail
them. Pattern deletion reports failure to its caller through
``CacheUnavailableError`` so the invalidation rules can log it.
"""

from __future__ import annotations

import asyncio
import fnmatch
import heapq
import json
import logging
import threading
import time
import zlib
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Awaitable, Callable, Iterator, Optional, Protocol, Sequence, TypeVar

from pydantic import TypeAdapter
from redis.asyncio import Redis
from redis.exceptions import RedisError

from cache_keys import CacheKey
from errors import CacheUnavailableError
from schemas import CacheEntryInfo, CacheMetrics


logger = logging.getLogger(__name__)

T = TypeVar("T")

_PLAIN = b"j"
_COMPRESSED = b"z"


class CacheStore(Protocol):
    async def get(self, key: str) -> Optional[bytes]: ...

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def scan_keys(self, pattern: str, cursor: int = 0) -> tuple[int, list[str]]:
        """One page of keys matching ``pattern``; a returned cursor of 0 ends the scan."""
        ...

    async def delete_many(self, keys: Sequence[str]) -> int: ...


class InMemoryCacheStore:
    """Process-local store with per-key expiry and glob-style key matching.

    Expired entries are dropped when read, and swept on every write using a
    heap of expiry times, so keys that are never read again do not pile up.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[bytes, float]] = {}
        self._expiries: list[tuple[float, str]] = []

    def _live(self, key: str) -> Optional[bytes]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def _sweep(self) -> None:
        now = self._clock()
        while self._expiries and self._expiries[0][0] <= now:
            expires_at, key = heapq.heappop(self._expiries)
            entry = self._entries.get(key)
            # A newer write for the key carries its own expiry.
            if entry is not None and entry[1] == expires_at:
                del self._entries[key]

    async def get(self, key: str) -> Optional[bytes]:
        return self._live(key)

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        self._sweep()
        expires_at = self._clock() + ttl_seconds
        self._entries[key] = (value, expires_at)
        heapq.heappush(self._expiries, (expires_at, key))

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def scan_keys(self, pattern: str, cursor: int = 0) -> tuple[int, list[str]]:
        keys = [
            key
            for key in list(self._entries)
            if fnmatch.fnmatchcase(key, pattern) and self._live(key) is not None
        ]
        return 0, keys

    async def delete_many(self, keys: Sequence[str]) -> int:
        removed = 0
        for key in keys:
            if self._entries.pop(key, None) is not None:
                removed += 1
        return removed


@contextmanager
def _redis_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except (RedisError, OSError) as exc:
        raise CacheUnavailableError(f"redis {operation} failed: {exc}") from exc


class RedisCacheStore:
    def __init__(self, client: Redis, scan_count: int = 100) -> None:
        self.client = client
        self.scan_count = scan_count

    @classmethod
    def from_url(cls, url: str, scan_count: int = 100) -> "RedisCacheStore":
        return cls(Redis.from_url(url), scan_count=scan_count)

    async def get(self, key: str) -> Optional[bytes]:
        with _redis_errors("get"):
            return await self.client.get(key)

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        with _redis_errors("set"):
            await self.client.set(key, value, ex=ttl_seconds)

    async def delete(self, key: str) -> None:
        with _redis_errors("delete"):
            await self.client.delete(key)

    async def scan_keys(self, pattern: str, cursor: int = 0) -> tuple[int, list[str]]:
        # SCAN rather than KEYS so a large keyspace does not block the server.
        with _redis_errors("scan"):
            next_cursor, keys = await self.client.scan(
                cursor=cursor, match=pattern, count=self.scan_count
            )
        return int(next_cursor), [
            key.decode() if isinstance(key, bytes) else key for key in keys
        ]

    async def delete_many(self, keys: Sequence[str]) -> int:
        if not keys:
            return 0
        with _redis_errors("unlink"):
            return int(await self.client.unlink(*keys))

    async def close(self) -> None:
        await self.client.aclose()


class CacheMetricsRecorder:
    """Process-wide counters. Every update and reset holds one lock."""

    _FIELDS = ("hits", "misses", "sets", "deletes", "errors", "total_requests")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts = dict.fromkeys(self._FIELDS, 0)

    def record(self, **increments: int) -> None:
        with self._lock:
            for name, amount in increments.items():
                self._counts[name] += amount

    def _snapshot_locked(self) -> CacheMetrics:
        counts = dict(self._counts)
        total = counts["total_requests"]
        hit_rate = (counts["hits"] / total * 100) if total else 0.0
        return CacheMetrics(**counts, hit_rate=hit_rate)

    def snapshot(self) -> CacheMetrics:
        with self._lock:
            return self._snapshot_locked()

    def reset(self) -> CacheMetrics:
        """Zero every counter; returns the values from just before the reset."""
        with self._lock:
            previous = self._snapshot_locked()
            self._counts = dict.fromkeys(self._FIELDS, 0)
            return previous


@lru_cache(maxsize=None)
def _adapter(type_: Any) -> TypeAdapter:
    return TypeAdapter(type_)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CacheManager:
    def __init__(
        self,
        store: CacheStore,
        *,
        timeout_secs: float = 0.25,
        delete_batch_size: int = 100,
        compress_min_bytes: int = 1024,
        metrics: Optional[CacheMetricsRecorder] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.timeout_secs = timeout_secs
        self.delete_batch_size = delete_batch_size
        self.compress_min_bytes = compress_min_bytes
        self.metrics = metrics or CacheMetricsRecorder()
        self._clock = clock

    async def _call(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_secs)
        except asyncio.TimeoutError as exc:
            raise CacheUnavailableError(
                f"cache call timed out after {self.timeout_secs}s"
            ) from exc

    def _encode(self, key: CacheKey, payload: Any) -> bytes:
        envelope = {
            "created_at": self._clock().isoformat(),
            "ttl_seconds": key.ttl_seconds,
            "payload": payload,
        }
        body = json.dumps(envelope, separators=(",", ":")).encode("utf-8")
        if key.compressible and len(body) >= self.compress_min_bytes:
            return _COMPRESSED + zlib.compress(body)
        return _PLAIN + body

    @staticmethod
    def _decode(raw: bytes) -> tuple[dict[str, Any], bool]:
        marker, body = raw[:1], raw[1:]
        if marker == _COMPRESSED:
            return json.loads(zlib.decompress(body)), True
        if marker == _PLAIN:
            return json.loads(body), False
        raise ValueError(f"unknown cache entry marker {marker!r}")

    async def get(self, key: CacheKey, type_: Any) -> Optional[Any]:
        """Return the cached value for ``key`` validated as ``type_``, or None."""
        # Each outcome is recorded with its request in one update so a
        # concurrent reset never splits them across windows.
        try:
            raw = await self._call(self.store.get(key.key))
        except CacheUnavailableError as exc:
            self.metrics.record(total_requests=1, errors=1)
            logger.warning(f"cache_get_failed: key={key} error={exc}")
            return None

        if raw is None:
            self.metrics.record(total_requests=1, misses=1)
            return None

        try:
            envelope, _ = self._decode(raw)
            value = _adapter(type_).validate_python(envelope["payload"])
        except (ValueError, KeyError, TypeError, zlib.error) as exc:
            self.metrics.record(total_requests=1, errors=1)
            logger.warning(f"cache_entry_unreadable: key={key} error={exc}")
            await self.delete(key)
            return None

        self.metrics.record(total_requests=1, hits=1)
        return value

    async def set(self, key: CacheKey, value: Any, type_: Any) -> bool:
        """Store ``value`` under ``key`` with the key's TTL, overwriting any entry."""
        payload = _adapter(type_).dump_python(value, mode="json")
        data = self._encode(key, payload)
        try:
            await self._call(self.store.set(key.key, data, key.ttl_seconds))
        except CacheUnavailableError as exc:
            self.metrics.record(errors=1)
            logger.warning(f"cache_set_failed: key={key} error={exc}")
            return False
        self.metrics.record(sets=1)
        return True

    async def delete(self, key: CacheKey | str) -> bool:
        try:
            await self._call(self.store.delete(str(key)))
        except CacheUnavailableError as exc:
            self.metrics.record(errors=1)
            logger.warning(f"cache_delete_failed: key={key} error={exc}")
            return False
        self.metrics.record(deletes=1)
        return True

    async def delete_by_pattern(self, pattern: str) -> int:
        """Delete every key matching ``pattern`` in bounded batches.

        The store is scanned page by page and each page's matches are
        deleted before the next page is fetched. The timeout applies to each
        page and each delete batch, not to the whole scan.

        Returns the number of keys removed. Raises CacheUnavailableError if
        the store fails part way; keys already removed stay removed.
        """
        deleted = 0
        try:
            cursor = 0
            while True:
                cursor, keys = await self._call(self.store.scan_keys(pattern, cursor))
                for start in range(0, len(keys), self.delete_batch_size):
                    batch = keys[start : start + self.delete_batch_size]
                    deleted += await self._call(self.store.delete_many(batch))
                if cursor == 0:
                    break
        except CacheUnavailableError as exc:
            self.metrics.record(errors=1, deletes=deleted)
            logger.warning(
                f"cache_delete_pattern_failed: pattern={pattern} deleted={deleted} error={exc}"
            )
            raise
        self.metrics.record(deletes=deleted)
        logger.info(f"cache_delete_pattern: pattern={pattern} deleted={deleted}")
        return deleted

    async def info(self, key: str) -> CacheEntryInfo:
        """Describe a stored entry without touching the hit/miss counters."""
        try:
            raw = await self._call(self.store.get(key))
        except CacheUnavailableError as exc:
            logger.warning(f"cache_info_failed: key={key} error={exc}")
            return CacheEntryInfo(key=key, exists=False)
        if raw is None:
            return CacheEntryInfo(key=key, exists=False)
        try:
            envelope, compressed = self._decode(raw)
            created_at = datetime.fromisoformat(envelope["created_at"])
            ttl_seconds = int(envelope["ttl_seconds"])
        except (ValueError, KeyError, TypeError, zlib.error):
            return CacheEntryInfo(key=key, exists=True, size=len(raw))
        elapsed = (self._clock() - created_at).total_seconds()
        return CacheEntryInfo(
            key=key,
            exists=True,
            ttl_remaining=max(0, int(ttl_seconds - elapsed)),
            size=len(raw),
            compressed=compressed,
            created_at=created_at,
        )

    def get_metrics(self) -> CacheMetrics:
        return self.metrics.snapshot()

    def reset_metrics(self) -> CacheMetrics:
        return self.metrics.reset()
