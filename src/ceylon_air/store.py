"""Durable storage: key-value backends and the caches built on them."""

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional, Protocol

import redis.asyncio as redis
from pydantic import TypeAdapter, ValidationError

from ceylon_air.config import (
    ALERT_HISTORY_LIMIT, CACHE_MAX_AGE_MS, CACHE_PREFIX, DEFAULT_AQI_THRESHOLD,
    DEFAULT_UV_THRESHOLD, FETCH_INTERVAL_MS, HISTORY_RETENTION_MS, REDIS_URL
)
from ceylon_air.airquality.models import (
    AlertEvent, AlertRecord, CachedSnapshot, FetchState, FusedSnapshot,
    HistoryEntry, ThresholdConfig
)

logger = logging.getLogger(__name__)

LATEST_KEY = "weather_data_cache"
HISTORY_KEY = "weather_history"
THRESHOLDS_KEY = "notification_thresholds"
LAST_FETCH_KEY = "last_fetch_time"
INTERVAL_KEY = "fetch_interval"
ALERT_HISTORY_KEY = "notification_history"

_history_adapter = TypeAdapter(List[HistoryEntry])
_alert_history_adapter = TypeAdapter(List[AlertRecord])


def now_ms() -> int:
    return int(time.time() * 1000)


class CacheError(Exception):
    """Base class for store failures."""
    pass


class CacheReadError(CacheError):
    """Raised when the store cannot be read."""
    pass


class CacheWriteError(CacheError):
    """Raised when the store rejects a write."""
    pass



class KeyValueStore(Protocol):
    """String key-value storage that survives process restarts."""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str) -> None:
        ...


class RedisKeyValueStore:
    """Key-value store backed by Redis, with all keys under one prefix."""

    def __init__(self, redis_client: Optional[redis.Redis] = None, prefix: str = CACHE_PREFIX):
        """Initialize the Redis store.

        Args:
            redis_client: Optional Redis client. If None, creates new client.
            prefix: Prefix prepended to every key
        """
        self.redis_client = redis_client or redis.from_url(REDIS_URL, decode_responses=True)
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def get(self, key: str) -> Optional[str]:
        value = await self.redis_client.get(self._key(key))
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str) -> None:
        await self.redis_client.set(self._key(key), value)

    async def close(self):
        """Close Redis connection."""
        if self.redis_client:
            await self.redis_client.aclose()


class InMemoryKeyValueStore:
    """Process-local store, for tests and running without Redis."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value


async def _read(store: KeyValueStore, key: str) -> Optional[str]:
    try:
        return await store.get(key)
    except Exception as e:
        logger.error(f"Failed to read '{key}': {e}")
        raise CacheReadError(f"Failed to read '{key}': {e}") from e


async def _write(
store: KeyValueStore, key: str, value: str) -> None:
    try:
        await store.set(key, value)
    except Exception as e:
        logger.error(f"Failed to write '{key}': {e}")
        raise CacheWriteError(f"Failed to write '{key}': {e}") from e


class PersistentCache:
    """Latest fused snapshot plus a rolling history.

    The latest snapshot expires after ``max_age_ms``; history entries
    older than ``retention_ms`` are pruned on every read and append.
    """

    def __init__(
        self,
        store: KeyValueStore,
        clock: Callable[[], int] = now_ms,
        max_age_ms: int = CACHE_MAX_AGE_MS,
        retention_ms: int = HISTORY_RETENTION_MS
    ):
        self.store = store
        self.clock = clock
        self.max_age_ms = max_age_ms
        self.retention_ms = retention_ms
        self._history_lock = asyncio.Lock()

    async def get_latest(self) -> Optional[FusedSnapshot]:
        """Latest snapshot, or None if nothing is stored or it is too old."""
        raw = await _read(self.store, LATEST_KEY)
        if not raw:
            return None

        try:
            cached = CachedSnapshot.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable cached snapshot: {e}")
            return None

        age = self.clock() - cached.cached_at
        if age > self.max_age_ms:
            logger.info(f"Cached snapshot is too old ({age / 60000:.0f} min), ignoring it")
            return None
        return cached.snapshot

    async def set_latest(self, snapshot: FusedSnapshot) -> None:
        cached = CachedSnapshot(snapshot=snapshot, cached_at=self.clock())
        await _write(self.store, LATEST_KEY, cached.model_dump_json())
        logger.info("Latest snapshot cached")

    async def append_history(self, entry: HistoryEntry) -> None:
        """Append an entry and drop everything older than the retention window."""
        async with self._history_lock:
            history = await self._load_history()
            history.append(entry)
            history = self._prune(history, self.clock())
            await _write(self.store, HISTORY_KEY, _history_adapter.dump_json(history).decode("utf-8"))
        logger.debug(f"History now holds {len(history)} entries")

    async def get_history(self, since_ms: Optional[int] = None) -> List[HistoryEntry]:
        """Chronological history, optionally only entries at or after ``since_ms``."""
        history = self._prune(await self._load_history(), self.clock())
        if since_ms is not None:
            history = [entry for entry in history if entry.timestamp_ms >= since_ms]
        return history

    def _prune(self, history: List[HistoryEntry], reference_ms: int) -> List[HistoryEntry]:
        cutoff = reference_ms - self.retention_ms
        return [entry for entry in history if entry.timestamp_ms >= cutoff]

    async def _load_history(self) -> List[HistoryEntry]:
        raw = await _read(self.store, HISTORY_KEY)
        if not raw:
            return []
        try:
            return _history_adapter.validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable history: {e}")
            return []


class ThresholdStore:
    """User alert thresholds."""

    def __init__(self, store: KeyValueStore, defaults: Optional[ThresholdConfig] = None):
        self.store = store
        self.defaults = defaults or ThresholdConfig(aqi=DEFAULT_AQI_THRESHOLD, uv=DEFAULT_UV_THRESHOLD)

    async def get(self) -> ThresholdConfig:
        try:
            raw = await self.store.get(THRESHOLDS_KEY)
        except Exception as e:
            logger.error(f"Error reading notification thresholds: {e}")
            return self.defaults
        if not raw:
            return self.defaults
        try:
            return ThresholdConfig.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Invalid stored thresholds, using defaults: {e}")
            return self.defaults

    async def set(self, thresholds: ThresholdConfig) -> None:
        await _write(self.store, THRESHOLDS_KEY, thresholds.model_dump_json())
        logger.info(f"Notification thresholds updated: aqi={thresholds.aqi}, uv={thresholds.uv}")


class FetchStateStore:
    """Last fetch time and fetch interval, kept under separate keys."""

    def __init__(self, store: KeyValueStore, default_interval_ms: int = FETCH_INTERVAL_MS):
        self.store = store
        self.default_interval_ms = default_interval_ms

    async def load(self) -> FetchState:
        last_fetch = await self._read_int(LAST_FETCH_KEY)
        interval = await self._read_int(INTERVAL_KEY)
        if interval is None or interval <= 0:
            interval = self.default_interval_ms
        return FetchState(last_fetch_time_ms=last_fetch, fetch_interval_ms=interval)

    async def save_last_fetch(self, timestamp_ms: int) -> None:
        await _write(self.store, LAST_FETCH_KEY, str(timestamp_ms))

    async def save_interval(self, interval_ms: int) -> None:
        await _write(self.store, INTERVAL_KEY, str(interval_ms))

    async def _read_int(self, key: str) -> Optional[int]:
        raw = await _read(self.store, key)
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            logger.warning(f"Ignoring non-integer value for '{key}': {raw!r}")
            return None


class AlertHistory:
    """Alerts that were sent, newest first, capped at ``limit`` records."""

    def __init__(self, store: KeyValueStore, clock: Callable[[], int] = now_ms, limit: int = ALERT_HISTORY_LIMIT):
        self.store = store
        self.clock = clock
        self.limit = limit
        self._lock = asyncio.Lock()

    async def get_all(self) -> List[AlertRecord]:
        raw = await _read(self.store, ALERT_HISTORY_KEY)
        if not raw:
            return []
        try:
            return _alert_history_adapter.validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable alert history: {e}")
            return []

    async def record(self, event: AlertEvent) -> AlertRecord:
        record = AlertRecord(**event.model_dump(), timestamp_ms=self.clock())
        async with self._lock:
            records = [record] + await self.get_all()
            records = records[:self.limit]
            await _write(self.store, ALERT_HISTORY_KEY, _alert_history_adapter.dump_json(records).decode("utf-8"))
        return record
