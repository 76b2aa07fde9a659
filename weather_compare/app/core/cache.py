"""
Temporal cache: time-bounded key/value layer in front of the fetchers.

Provides:
    • Keys built from (location rounded to a fixed precision, data kind)
    • TTL-aware get/set with a self-describing JSON envelope
    • Range-scoped entries that hit only when the stored range covers the request
    • Expiry sweeps, per-location, per-kind and global invalidation, statistics
    • Pluggable backing store (in-process dict or Redis)

The cache is an optimisation, never a correctness requirement: store errors
and corrupt entries are logged and treated as a miss.

Usage:
    from weather_compare.app.core.cache import TemporalCache, MemoryStore

    cache = TemporalCache(MemoryStore())
    cache.set(51.5074, -0.1278, "historical", series, ttl=24 * 3600)
    cached = cache.get(51.5074, -0.1278, "historical")
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple, Union

import redis

from weather_compare.app.core.clock import SystemClock
from weather_compare.app.core.config import Settings, settings as default_settings
from weather_compare.app.core.logging_config import fetch_extra

logger = logging.getLogger(__name__)


class DataKind(str, Enum):
    """Data kinds stored in the cache; each has its own volatility."""
    HISTORICAL = "historical"
    HISTORICAL_RAW = "historical_raw"
    COMPREHENSIVE = "comprehensive"
    CURRENT_YEAR = "current_year"
    CURRENT_WEATHER = "current_weather"
    TEMPERATURE_HISTORICAL = "temperature_historical"
    WIND_HISTORICAL = "wind_historical"
    SOLAR_HISTORICAL = "solar_historical"
    WEATHER_WARNINGS = "weather_warnings"
    WEATHER_NEWS = "weather_news"


KindLike = Union[DataKind, str]
DateLike = Union[date, str]


# ═══════════════════════════════════════════════════════════════════════════
# Backing stores
# ═══════════════════════════════════════════════════════════════════════════

class CacheStore(Protocol):
    """Synchronous key → string store."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def keys(self) -> List[str]: ...


class MemoryStore:
    """Process-local dict store. Default backend and the one tests use."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data.keys())

    def __len__(self) -> int:
        return len(self._data)


class RedisStore:
    """
    Redis-backed store (synchronous client).

    Expiry is decided by the envelope, not by Redis TTLs, so entries that
    outlive their window are still visible to sweeps and statistics.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        client: Optional[redis.Redis] = None,
        match: str = "*",
    ) -> None:
        self._client = client or redis.Redis.from_url(
            url or default_settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
        self._match = match

    def get(self, key: str) -> Optional[str]:
        return self._client.get(key)

    def set(self, key: str, value: str) -> None:
        self._client.set(key, value)

    def remove(self, key: str) -> None:
        self._client.delete(key)

    def keys(self) -> List[str]:
        return [str(k) for k in self._client.scan_iter(match=self._match)]

    def ping(self) -> bool:
        return bool(self._client.ping())


def build_store(config: Optional[Settings] = None) -> CacheStore:
    """Pick the backing store named by CACHE_BACKEND."""
    config = config or default_settings
    backend = config.CACHE_BACKEND.lower()
    if backend == "redis":
        logger.info("Cache backend: redis (%s)", config.REDIS_URL.split("@")[-1])
        return RedisStore(config.REDIS_URL, match=f"{config.CACHE_KEY_PREFIX}*")
    if backend != "memory":
        logger.warning("Unknown CACHE_BACKEND %r, using in-memory store", backend)
    return MemoryStore()


# ═══════════════════════════════════════════════════════════════════════════
# Statistics
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class CacheStats:
    total_entries: int = 0
    total_size: int = 0  # characters of serialised envelopes
    oldest_entry: Optional[datetime] = None
    by_kind: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_entries": self.total_entries,
            "total_size": self.total_size,
            "oldest_entry": self.oldest_entry.isoformat() if self.oldest_entry else None,
            "by_kind": dict(self.by_kind),
        }


# ═══════════════════════════════════════════════════════════════════════════
# Cache
# ═══════════════════════════════════════════════════════════════════════════

def _kind_name(kind: KindLike) -> str:
    return kind.value if isinstance(kind, DataKind) else str(kind)


def _as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


class TemporalCache:
    """
    TTL cache keyed by (location, kind).

    Entries are whole JSON envelopes ``{data, created_at, expires_at, kind,
    range?}`` and are replaced atomically; an entry is valid while
    ``now <= expires_at``.
    """

    def __init__(
        self,
        store: Optional[CacheStore] = None,
        *,
        clock: Optional[SystemClock] = None,
        default_ttl: Optional[float] = None,
        prefix: Optional[str] = None,
        precision: Optional[int] = None,
    ) -> None:
        self._store = store if store is not None else MemoryStore()
        self._clock = clock or SystemClock()
        self.default_ttl = default_ttl if default_ttl is not None else default_settings.CACHE_DEFAULT_TTL
        self.prefix = prefix if prefix is not None else default_settings.CACHE_KEY_PREFIX
        self.precision = precision if precision is not None else default_settings.CACHE_COORD_PRECISION
        self._lock = threading.RLock()

    @property
    def store(self) -> CacheStore:
        return self._store

    # ── Keys ──

    def _location_suffix(self, lat: float, lon: float) -> str:
        p = self.precision
        # + 0.0 folds -0.0 into 0.0 so both spellings share a key
        return f"{round(lat, p) + 0.0:.{p}f}_{round(lon, p) + 0.0:.{p}f}"

    def make_key(self, lat: float, lon: float, kind: KindLike) -> str:
        return f"{self.prefix}{_kind_name(kind)}_{self._location_suffix(lat, lon)}"

    def _own_keys(self) -> List[str]:
        return [k for k in self._store.keys() if k.startswith(self.prefix)]

    # ── Low-level envelope I/O ──

    def _safe_remove(self, key: str) -> None:
        try:
            self._store.remove(key)
        except Exception as e:
            logger.warning("Cache REMOVE error for %s: %s", key, e)

    def _write(
        self,
        key: str,
        kind: KindLike,
        payload: Any,
        ttl: Optional[float],
        date_range: Optional[Tuple[date, date]] = None,
    ) -> bool:
        if payload is None:
            logger.debug("Refusing to cache empty payload for %s", key)
            return False
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            logger.warning("Ignoring cache SET for %s with non-positive ttl=%s", key, ttl)
            return False

        now = self._clock.now()
        envelope: Dict[str, Any] = {
            "data": payload,
            "created_at": now,
            "expires_at": now + ttl,
            "kind": _kind_name(kind),
        }
        if date_range is not None:
            envelope["range"] = {
                "start": date_range[0].isoformat(),
                "end": date_range[1].isoformat(),
            }

        try:
            serialised = json.dumps(envelope, default=str)
            self._store.set(key, serialised)
        except Exception as e:
            logger.warning("Cache SET error for %s: %s", key, e)
            return False

        logger.debug(
            "Cached %s (expires in %.1f hours)", key, ttl / 3600,
            extra=fetch_extra(kind=_kind_name(kind)),
        )
        return True

    def _read(self, key: str) -> Optional[Dict[str, Any]]:
        """Return a live envelope, deleting it if expired or unreadable."""
        with self._lock:
            try:
                raw = self._store.get(key)
            except Exception as e:
                logger.warning("Cache GET error for %s: %s", key, e)
                return None
            if raw is None:
                return None

            try:
                entry = json.loads(raw)
                expires_at = float(entry["expires_at"])
                created_at = float(entry["created_at"])
                entry["data"]
            except (ValueError, KeyError, TypeError) as e:
                logger.warning("Removing corrupt cache entry %s: %s", key, e)
                self._safe_remove(key)
                return None

            now = self._clock.now()
            if now > expires_at:
                self._safe_remove(key)
                logger.info("Cache expired for %s", key)
                return None

        logger.debug(
            "Cache HIT: %s (%.1f hours old)", key, (now - created_at) / 3600,
        )
        return entry

    # ── Plain entries ──

    def set(
        self,
        lat: float,
        lon: float,
        kind: KindLike,
        payload: Any,
        ttl: Optional[float] = None,
    ) -> bool:
        """Store payload with ``expires_at = now + ttl`` (default TTL if omitted)."""
        return self._write(self.make_key(lat, lon, kind), kind, payload, ttl)

    def get(self, lat: float, lon: float, kind: KindLike) -> Optional[Any]:
        """Payload if present and unexpired, else None."""
        entry = self.get_entry(lat, lon, kind)
        return entry["data"] if entry is not None else None

    def get_entry(self, lat: float, lon: float, kind: KindLike) -> Optional[Dict[str, Any]]:
        """Whole live envelope, so callers can report ``created_at``."""
        return self._read(self.make_key(lat, lon, kind))

    def has(self, lat: float, lon: float, kind: KindLike) -> bool:
        return self.get(lat, lon, kind) is not None

    def remove(self, lat: float, lon: float, kind: KindLike) -> bool:
        key = self.make_key(lat, lon, kind)
        with self._lock:
            try:
                existed = self._store.get(key) is not None
                self._store.remove(key)
            except Exception as e:
                logger.warning("Cache REMOVE error for %s: %s", key, e)
                return False
        return existed

    # ── Range-scoped entries ──

    def set_with_range(
        self,
        lat: float,
        lon: float,
        kind: KindLike,
        start: DateLike,
        end: DateLike,
        payload: Any,
        ttl: Optional[float] = None,
    ) -> bool:
        """Store payload covering ``[start, end]``, replacing any earlier range."""
        start_d, end_d = _as_date(start), _as_date(end)
        if start_d > end_d:
            logger.warning("Ignoring cache SET with inverted range %s > %s", start_d, end_d)
            return False
        return self._write(
            self.make_key(lat, lon, kind), kind, payload, ttl, (start_d, end_d),
        )

    def get_with_range(
        self,
        lat: float,
        lon: float,
        kind: KindLike,
        start: DateLike,
        end: DateLike,
    ) -> Optional[Any]:
        """
        Payload only if the stored range fully covers ``[start, end]``.

        Partial overlap is a miss; the caller re-fetches and overwrites.
        """
        key = self.make_key(lat, lon, kind)
        entry = self._read(key)
        if entry is None:
            return None

        stored = entry.get("range")
        if not isinstance(stored, dict):
            return None
        try:
            stored_start = _as_date(stored["start"])
            stored_end = _as_date(stored["end"])
        except (KeyError, ValueError) as e:
            logger.warning("Removing cache entry %s with unreadable range: %s", key, e)
            self._safe_remove(key)
            return None

        if stored_start <= _as_date(start) and stored_end >= _as_date(end):
            return entry["data"]

        logger.debug(
            "Cache range MISS for %s: stored %s..%s does not cover %s..%s",
            key, stored_start, stored_end, start, end,
        )
        return None

    # ── Invalidation ──

    def clear_location(self, lat: float, lon: float) -> int:
        """Remove every kind cached for this location."""
        suffix = "_" + self._location_suffix(lat, lon)
        removed = 0
        with self._lock:
            try:
                keys = [k for k in self._own_keys() if k.endswith(suffix)]
            except Exception as e:
                logger.warning("Cache scan error while clearing location: %s", e)
                return 0
            for key in keys:
                self._safe_remove(key)
                removed += 1
        logger.info("Cleared %d cached entries for %s", removed, suffix.lstrip("_"))
        return removed

    def clear_expired(self) -> int:
        """Sweep expired and corrupt entries. Returns how many were removed."""
        now = self._clock.now()
        to_remove: List[str] = []
        with self._lock:
            try:
                keys = self._own_keys()
            except Exception as e:
                logger.warning("Failed to clear expired cache: %s", e)
                return 0

            for key in keys:
                try:
                    raw = self._store.get(key)
                except Exception as e:
                    logger.warning("Cache GET error for %s: %s", key, e)
                    continue
                if raw is None:
                    continue
                try:
                    if now > float(json.loads(raw)["expires_at"]):
                        to_remove.append(key)
                except (ValueError, KeyError, TypeError):
                    to_remove.append(key)

            for key in to_remove:
                self._safe_remove(key)

        if to_remove:
            logger.info("Cleared %d expired cache entries", len(to_remove))
        return len(to_remove)

    def clear_all(self) -> int:
        """Remove every entry regardless of kind or expiry."""
        with self._lock:
            try:
                keys = self._own_keys()
            except Exception as e:
                logger.warning("Failed to clear cache: %s", e)
                return 0
            for key in keys:
                self._safe_remove(key)
        logger.info("Cleared all %d cache entries", len(keys))
        return len(keys)

    # ── Introspection ──

    def stats(self) -> CacheStats:
        result = CacheStats()
        oldest: Optional[float] = None
        try:
            keys = self._own_keys()
        except Exception as e:
            logger.warning("Failed to get cache stats: %s", e)
            return result

        for key in keys:
            try:
                raw = self._store.get(key)
            except Exception as e:
                logger.warning("Cache GET error for %s: %s", key, e)
                continue
            if raw is None:
                continue
            result.total_entries += 1
            result.total_size += len(raw)
            try:
                entry = json.loads(raw)
                created = float(entry["created_at"])
                kind = str(entry.get("kind", "unknown"))
            except (ValueError, KeyError, TypeError):
                kind = "corrupt"
            else:
                if oldest is None or created < oldest:
                    oldest = created
            result.by_kind[kind] = result.by_kind.get(kind, 0) + 1

        if oldest is not None:
            result.oldest_entry = datetime.fromtimestamp(oldest, tz=timezone.utc)
        return result

    def keys_for_kinds(self, kinds: Iterable[KindLike]) -> List[str]:
        names = {_kind_name(k) for k in kinds}
        # key = prefix + kind + "_" + lat + "_" + lon
        return [
            k for k in self._own_keys()
            if k[len(self.prefix):].rsplit("_", 2)[0] in names
        ]

    def clear_kinds(self, kinds: Iterable[KindLike]) -> int:
        """Remove every entry of the given kinds, across all locations."""
        with self._lock:
            try:
                keys = self.keys_for_kinds(kinds)
            except Exception as e:
                logger.warning("Cache scan error while clearing kinds: %s", e)
                return 0
            for key in keys:
                self._safe_remove(key)
        logger.info("Cleared %d cache entries by kind", len(keys))
        return len(keys)
