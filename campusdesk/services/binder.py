"""Keyed remote-data binder.

Every page reads its backend data through a `Binder`. A key names one resource
(`('sections', school_id, campus_id)`), a fetcher is a zero-argument coroutine
that returns the raw payload, and an optional pydantic `TypeAdapter` turns the
stored JSON back into typed objects on the way out.

Rules kept here:

* a key that is falsy, or a tuple holding `None`/`''`, never fetches;
* concurrent fetches for one key share a single in-flight request;
* each fetch and each local patch takes a sequence number, and a result is
  applied only when its number is newer than the last settled one (applied or
  failed);
* a failed fetch records `error` and leaves `data` untouched.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, TypeVar

from pydantic import TypeAdapter

from campusdesk.cache import CacheManager, cache, cache_key
from campusdesk.config import settings
from campusdesk.metrics import record_binder_event


logger = logging.getLogger(__name__)

T = TypeVar('T')
Fetcher = Callable[[], Awaitable[Any]]
KeyLike = str | tuple | list | None

_MISSING: Any = object()
_ANY = TypeAdapter(Any)


def normalize_key(key: KeyLike) -> str | None:
    """Return the flat string form of `key`, or None when the key means "skip"."""
    if key is None:
        return None
    if isinstance(key, (tuple, list)):
        if not key or any(part is None or part == '' for part in key):
            return None
        return ':'.join(str(part) for part in key)
    key = str(key)
    return key or None


@dataclass(frozen=True)
class BinderSnapshot(Generic[T]):
    key: str | None
    data: T | None = None
    is_loading: bool = False
    error: Exception | None = None

    @property
    def ready(self) -> bool:
        return self.data is not None

    @property
    def error_message(self) -> str | None:
        if self.error is None:
            return None
        return getattr(self.error, 'message', None) or str(self.error) or 'Request failed'


@dataclass
class _KeyState:
    is_loading: bool = False
    error: Exception | None = None
    issued_seq: int = 0
    applied_seq: int = 0
    settled_seq: int = 0
    fetched_once: bool = False
    inflight: asyncio.Future | None = None
    inflight_seq: int = 0

    def next_seq(self) -> int:
        self.issued_seq += 1
        return self.issued_seq


class Binder:
    def __init__(self, store: CacheManager | None = None, *, namespace: str = 'binder') -> None:
        self._store = store or cache
        self._namespace = namespace
        self._states: dict[str, _KeyState] = {}

    def _storage_key(self, key: str) -> str:
        return cache_key(self._namespace, key)

    def _state(self, key: str) -> _KeyState:
        state = self._states.get(key)
        if state is None:
            state = _KeyState()
            self._states[key] = state
        return state

    def _load(self, key: str, adapter: TypeAdapter | None) -> Any:
        raw = self._store.get_cached(self._storage_key(key))
        if raw is None or adapter is None:
            return raw
        return adapter.validate_python(raw)

    def _apply(self, key: str, state: _KeyState, seq: int, value: Any, adapter: TypeAdapter | None) -> None:
        if adapter is not None:
            raw = adapter.dump_python(adapter.validate_python(value), mode='json')
        else:
            raw = _ANY.dump_python(value, mode='json')
        state.applied_seq = seq
        state.settled_seq = max(state.settled_seq, seq)
        state.error = None
        self._store.set_cached(self._storage_key(key), raw, ttl=settings.binder_ttl_seconds)

    def _snapshot(self, key: str, adapter: TypeAdapter | None) -> BinderSnapshot:
        state = self._state(key)
        return BinderSnapshot(
            key=key,
            data=self._load(key, adapter),
            is_loading=state.is_loading,
            error=state.error,
        )

    def peek(self, key: KeyLike, *, adapter: TypeAdapter | None = None) -> BinderSnapshot:
        normalized = normalize_key(key)
        if normalized is None:
            return BinderSnapshot(key=None)
        return self._snapshot(normalized, adapter)

    async def read(
        self,
        key: KeyLike,
        fetcher: Fetcher,
        *,
        adapter: TypeAdapter | None = None,
        revalidate: bool = True,
        raise_errors: bool = False,
    ) -> BinderSnapshot:
        """Return the snapshot for `key`, fetching when nothing is stored or `revalidate` is set."""
        normalized = normalize_key(key)
        if normalized is None:
            record_binder_event('binder_skip')
            return BinderSnapshot(key=None)
        if not revalidate and self._store.get_cached(self._storage_key(normalized)) is not None:
            return self._snapshot(normalized, adapter)
        return await self._fetch(normalized, fetcher, adapter=adapter, dedupe=True, raise_errors=raise_errors)

    async def mutate(
        self,
        key: KeyLike,
        fetcher: Fetcher | None = None,
        *,
        data: Any = _MISSING,
        adapter: TypeAdapter | None = None,
        dedupe: bool = True,
        raise_errors: bool = False,
    ) -> BinderSnapshot:
        """Refetch `key`, or with `data=` replace the stored value without a network call.

        `data` may be a callable receiving the current (typed) value. Pass
        `dedupe=False` after a write so the refetch is not satisfied by a request
        that was issued before the write landed.
        """
        normalized = normalize_key(key)
        if normalized is None:
            record_binder_event('binder_skip')
            return BinderSnapshot(key=None)

        state = self._state(normalized)
        if data is not _MISSING:
            if callable(data):
                data = data(self._load(normalized, adapter))
            seq = state.next_seq()
            self._apply(normalized, state, seq, data, adapter)
            record_binder_event('binder_patch')
            logger.debug('binder_patch key=%s seq=%s', normalized, seq)
            return self._snapshot(normalized, adapter)

        if fetcher is None:
            raise ValueError('mutate() needs a fetcher or data')
        return await self._fetch(normalized, fetcher, adapter=adapter, dedupe=dedupe, raise_errors=raise_errors)

    def invalidate(self, key: KeyLike) -> None:
        normalized = normalize_key(key)
        if normalized is None:
            return
        self._store.invalidate(self._storage_key(normalized))
        state = self._states.get(normalized)
        if state is not None:
            state.error = None

    def invalidate_prefix(self, prefix: str) -> None:
        self._store.invalidate_prefix(self._storage_key(prefix))
        for key, state in self._states.items():
            if key.startswith(prefix):
                state.error = None

    def bind(self, key: KeyLike, fetcher: Fetcher, adapter: TypeAdapter | None = None) -> 'BoundResource':
        return BoundResource(self, key, fetcher, adapter)

    async def _fetch(
        self,
        key: str,
        fetcher: Fetcher,
        *,
        adapter: TypeAdapter | None,
        dedupe: bool,
        raise_errors: bool,
    ) -> BinderSnapshot:
        state = self._state(key)
        inflight = state.inflight
        if dedupe and inflight is not None and not inflight.done():
            record_binder_event('binder_coalesced')
            logger.debug('binder_coalesced key=%s seq=%s', key, state.inflight_seq)
        else:
            seq = state.next_seq()
            inflight = asyncio.ensure_future(self._run(key, state, seq, fetcher, adapter))
            state.inflight = inflight
            state.inflight_seq = seq

        try:
            await asyncio.shield(inflight)
        except Exception:
            if raise_errors:
                raise
        return self._snapshot(key, adapter)

    async def _run(self, key: str, state: _KeyState, seq: int, fetcher: Fetcher, adapter: TypeAdapter | None) -> None:
        if not state.fetched_once and self._store.get_cached(self._storage_key(key)) is None:
            state.is_loading = True
        record_binder_event('binder_fetch')
        try:
            value = await fetcher()
            if seq > state.settled_seq:
                self._apply(key, state, seq, value, adapter)
            else:
                record_binder_event('binder_stale_dropped')
                logger.info('binder_stale_dropped key=%s seq=%s settled_seq=%s', key, seq, state.settled_seq)
        except Exception as exc:
            record_binder_event('binder_error')
            logger.warning('binder_fetch_failed key=%s seq=%s error=%s', key, seq, exc)
            if seq > state.settled_seq:
                state.error = exc
                state.settled_seq = seq
            raise
        finally:
            state.fetched_once = True
            # an older request finishing must not hide a newer one still running
            if state.inflight_seq == seq:
                state.is_loading = False
                state.inflight = None


@dataclass
class BoundResource:
    binder: Binder
    key: KeyLike
    fetcher: Fetcher
    adapter: TypeAdapter | None = field(default=None)

    async def read(self, **kwargs: Any) -> BinderSnapshot:
        return await self.binder.read(self.key, self.fetcher, adapter=self.adapter, **kwargs)

    async def mutate(self, **kwargs: Any) -> BinderSnapshot:
        return await self.binder.mutate(self.key, self.fetcher, adapter=self.adapter, **kwargs)

    def peek(self) -> BinderSnapshot:
        return self.binder.peek(self.key, adapter=self.adapter)
