from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Awaitable, Callable, TypeVar

from campusdesk.config import settings
from campusdesk.core.time_provider import default_time_provider


logger = logging.getLogger('campusdesk.metrics')

T = TypeVar('T')


class MetricsExporter:
    def export_minute(self, *, family: str, minute_start: datetime, counts: dict[str, int]) -> None:
        raise NotImplementedError


class LogMetricsExporter(MetricsExporter):
    def export_minute(self, *, family: str, minute_start: datetime, counts: dict[str, int]) -> None:
        rendered = ' '.join(f'{key}={counts[key]}' for key in sorted(counts))
        logger.info('%s_metrics minute=%s %s', family, minute_start.isoformat(), rendered)


_exporter: MetricsExporter = LogMetricsExporter()


def set_metrics_exporter(exporter: MetricsExporter) -> None:
    global _exporter
    _exporter = exporter


class _MinuteCounter:
    def __init__(self, family: str) -> None:
        self._family = family
        self._lock = threading.Lock()
        self._minute_start_epoch: int | None = None
        self._counts: dict[str, int] = {}

    def _minute_epoch(self, ts: float) -> int:
        return int(ts // 60) * 60

    def _flush_locked(self, minute_epoch: int) -> None:
        if not self._counts:
            return
        minute_start = datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=minute_epoch)
        try:
            _exporter.export_minute(family=self._family, minute_start=minute_start, counts=dict(self._counts))
        except Exception:
            logger.exception('metrics_export_failed family=%s minute=%s', self._family, minute_start.isoformat())
        self._counts.clear()

    def record(self, key: str) -> None:
        now = default_time_provider.now().timestamp()
        minute_epoch = self._minute_epoch(now)
        with self._lock:
            if self._minute_start_epoch is None:
                self._minute_start_epoch = minute_epoch
            if minute_epoch != self._minute_start_epoch:
                self._flush_locked(self._minute_start_epoch)
                self._minute_start_epoch = minute_epoch
            self._counts[key] = self._counts.get(key, 0) + 1

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def flush(self) -> None:
        with self._lock:
            if self._minute_start_epoch is None:
                return
            self._flush_locked(self._minute_start_epoch)


_cache_counter = _MinuteCounter('cache')
_binder_counter = _MinuteCounter('binder')
_dispatch_counter = _MinuteCounter('dispatch')


def record_cache_event(event: str) -> None:
    _cache_counter.record(event)


def record_binder_event(event: str) -> None:
    _binder_counter.record(event)


def record_dispatch_event(event: str) -> None:
    _dispatch_counter.record(event)


def binder_counts() -> dict[str, int]:
    return _binder_counter.snapshot()


def dispatch_counts() -> dict[str, int]:
    return _dispatch_counter.snapshot()


def flush_metrics() -> None:
    _cache_counter.flush()
    _binder_counter.flush()
    _dispatch_counter.flush()


def timed_backend(label: str, *, threshold_ms: int | None = None) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Log awaited backend calls that take longer than `threshold_ms`."""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        threshold_value = threshold_ms if threshold_ms is not None else settings.metrics_slow_ms

        @wraps(func)
        async def wrapper(*args: object, **kwargs: object) -> T:
            started = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                duration_ms = (time.perf_counter() - started) * 1000.0
                if duration_ms >= threshold_value:
                    logger.info('backend_slow label=%s duration_ms=%.2f', label, duration_ms)

        return wrapper

    return decorator
