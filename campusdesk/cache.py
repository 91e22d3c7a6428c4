from __future__ import annotations

import json
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from campusdesk.config import settings
from campusdesk.core.time_provider import default_time_provider
from campusdesk.metrics import record_cache_event


logger = logging.getLogger(__name__)


def cache_key(prefix: str, *parts: str | int | None) -> str:
    clean = [str(part) for part in parts if part is not None and part != '']
    if not clean:
        return prefix
    return ':'.join([prefix, *clean])


class CacheBackend:
    def get(self, key: str) -> Any | None:
        raise NotImplementedError

    def set(self, key: str, value: Any, ttl: int | None) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def delete_prefix(self, prefix: str) -> int:
        raise NotImplementedError


class MemoryCacheBackend(CacheBackend):
    """Per-process LRU store bounded by `max_entries`.

    A ttl of None or 0 keeps an entry until it is overwritten, invalidated or
    pushed out by newer keys.
    """

    def __init__(self, max_entries: int | None = None) -> None:
        self._lock = threading.Lock()
        self._entries: OrderedDict[str, tuple[datetime | None, Any]] = OrderedDict()
        self.max_entries = max_entries if max_entries is not None else settings.cache_max_entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at is not None and default_time_provider.now() >= expires_at:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return value

    def set(self, key: str, value: Any, ttl: int | None) -> None:
        expires_at = default_time_provider.now() + timedelta(seconds=int(ttl)) if ttl else None
        with self._lock:
            self._entries[key] = (expires_at, value)
            self._entries.move_to_end(key)
            while self.max_entries and len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                record_cache_event('cache_evict')
                logger.debug('cache evict: %s', evicted)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)


class RedisCacheBackend(CacheBackend):
    """Shared store for multi-worker deployments; every key lives under `<namespace>:`."""

    def __init__(self, redis_url: str, namespace: str | None = None) -> None:
        import redis  # type: ignore

        self._client = redis.Redis.from_url(redis_url, decode_responses=True)
        self.namespace = namespace if namespace is not None else settings.cache_namespace

    def _key(self, key: str) -> str:
        return f'{self.namespace}:{key}' if self.namespace else key

    def get(self, key: str) -> Any | None:
        raw = self._client.get(self._key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning('cache_decode_failed key=%s', key)
            return None

    def set(self, key: str, value: Any, ttl: int | None) -> None:
        payload = json.dumps(value, default=str)
        if ttl:
            self._client.setex(self._key(key), int(ttl), payload)
        else:
            self._client.set(self._key(key), payload)

    def delete(self, key: str) -> None:
        self._client.delete(self._key(key))

    def delete_prefix(self, prefix: str) -> int:
        doomed = list(self._client.scan_iter(match=f'{self._key(prefix)}*', count=200))
        if doomed:
            self._client.delete(*doomed)
        return len(doomed)


@dataclass
class CacheManager:
    """Snapshot storage behind the binder; values must be JSON-serialisable."""

    backend: CacheBackend

    def get_cached(self, key: str) -> Any | None:
        value = self.backend.get(key)
        record_cache_event('cache_hit' if value is not None else 'cache_miss')
        return value

    def set_cached(self, key: str, value: Any, ttl: int | None = None) -> None:
        ttl_value = ttl if ttl is not None else settings.binder_ttl_seconds
        self.backend.set(key, value, ttl_value)
        logger.debug('cache set: %s ttl=%s', key, ttl_value or 'none')

    def invalidate(self, key: str) -> None:
        self.backend.delete(key)
        record_cache_event('cache_invalidate')

    def invalidate_prefix(self, prefix: str) -> int:
        removed = self.backend.delete_prefix(prefix)
        record_cache_event('cache_invalidate')
        logger.debug('cache invalidate prefix: %s removed=%s', prefix, removed)
        return removed


def build_cache_backend() -> CacheBackend:
    if settings.cache_backend == 'redis' and settings.cache_redis_url:
        try:
            return RedisCacheBackend(settings.cache_redis_url)
        except ImportError:
            logger.exception('redis_cache_unavailable_using_memory')
    return MemoryCacheBackend()


cache = CacheManager(backend=build_cache_backend())
