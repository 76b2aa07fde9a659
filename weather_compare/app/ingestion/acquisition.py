"""
Acquisition: composes the request throttle, the temporal cache and the
archive client into the series the analytics layer consumes.

═══════════════════════════════════════════════════════════════════════════
FETCH STRATEGY
═══════════════════════════════════════════════════════════════════════════

Ten-year series are requested per domain (rainfall, temperature, wind,
solar). Each domain has its own 24 h cache entry. On a miss:

    1. PRIMARY:  one comprehensive fetch of every daily variable
                 (range-cached as ``comprehensive``, so the other three
                 domains are served from the same response).
    2. FALLBACK: only if the primary raised FetchFailureError: a narrower
                 fetch of just that domain's variables.

The result is a tagged ``FetchOutcome``: success, fallback_used or failure.
A failed fetch never writes to the cache.

Side feeds (warnings, news) are cached at location (0, 0) and guarded by a
hard per-minute ``QuotaLimiter`` instead of the waiting throttle.

═══════════════════════════════════════════════════════════════════════════
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

from weather_compare.app.analytics.models import (
    Observation,
    normalise_series,
    series_from_payload,
    series_to_payload,
)
from weather_compare.app.core.cache import DataKind, TemporalCache
from weather_compare.app.core.clock import SystemClock
from weather_compare.app.core.config import Settings, settings as default_settings
from weather_compare.app.core.errors import FetchFailureError
from weather_compare.app.core.logging_config import fetch_extra

from .archive_client import (
    ALL_DAILY_FIELDS,
    DAILY_FIELD_MAP,
    RAINFALL_DAILY_FIELDS,
    SOLAR_DAILY_FIELDS,
    TEMPERATURE_DAILY_FIELDS,
    WIND_DAILY_FIELDS,
)
from .throttle import QuotaLimiter, RequestThrottle

logger = logging.getLogger(__name__)

SERVICE_LABEL = "acquisition"


class WeatherFetcher(Protocol):
    async def fetch_daily(
        self, latitude: float, longitude: float, start: date, end: date,
        fields: Sequence[str] = ALL_DAILY_FIELDS,
    ) -> List[Observation]: ...

    async def fetch_current(self, latitude: float, longitude: float) -> Dict[str, Any]: ...

    async def aclose(self) -> None: ...


class Domain(str, Enum):
    RAINFALL = "rainfall"
    TEMPERATURE = "temperature"
    WIND = "wind"
    SOLAR = "solar"


class FetchStatus(str, Enum):
    SUCCESS = "success"
    FALLBACK_USED = "fallback_used"
    FAILURE = "failure"


DOMAIN_DAILY_FIELDS: Dict[Domain, Sequence[str]] = {
    Domain.RAINFALL: RAINFALL_DAILY_FIELDS,
    Domain.TEMPERATURE: TEMPERATURE_DAILY_FIELDS,
    Domain.WIND: WIND_DAILY_FIELDS,
    Domain.SOLAR: SOLAR_DAILY_FIELDS,
}

DOMAIN_CACHE_KIND: Dict[Domain, DataKind] = {
    Domain.RAINFALL: DataKind.HISTORICAL,
    Domain.TEMPERATURE: DataKind.TEMPERATURE_HISTORICAL,
    Domain.WIND: DataKind.WIND_HISTORICAL,
    Domain.SOLAR: DataKind.SOLAR_HISTORICAL,
}

# Field sets whose raw fetches are range-cached, and under which kind
RANGE_CACHE_KINDS = {
    frozenset(ALL_DAILY_FIELDS): DataKind.COMPREHENSIVE,
    frozenset(RAINFALL_DAILY_FIELDS): DataKind.HISTORICAL_RAW,
}

SIDE_FEED_TTLS = {
    DataKind.WEATHER_WARNINGS.value: "CACHE_WARNINGS_TTL",
    DataKind.WEATHER_NEWS.value: "CACHE_NEWS_TTL",
}


@dataclass
class FetchOutcome:
    status: FetchStatus
    observations: List[Observation] = field(default_factory=list)
    error: Optional[str] = None
    from_cache: bool = False
    cached_at: Optional[float] = None
    exception: Optional[FetchFailureError] = field(default=None, repr=False, compare=False)

    @property
    def ok(self) -> bool:
        return self.status != FetchStatus.FAILURE

    def raise_for_failure(self) -> "FetchOutcome":
        if self.exception is not None:
            raise self.exception
        if self.status == FetchStatus.FAILURE:
            raise FetchFailureError(SERVICE_LABEL, self.error or "fetch failed")
        return self


def project(observations: Sequence[Observation], domain: Domain) -> List[Observation]:
    """Keep only the domain's fields, and only days that carry any of them."""
    keep = {DAILY_FIELD_MAP[f] for f in DOMAIN_DAILY_FIELDS[domain]}
    projected = []
    for obs in observations:
        values = {name: getattr(obs, name) for name in keep}
        if any(v is not None for v in values.values()):
            projected.append(Observation(date=obs.date, **values))
    return projected


def merge_series(*series: Sequence[Observation]) -> List[Observation]:
    """Union by date; later series fill fields the earlier ones left as None."""
    by_date: Dict[date, Observation] = {}
    for s in series:
        for obs in s:
            existing = by_date.get(obs.date)
            if existing is None:
                by_date[obs.date] = obs
                continue
            updates = {
                name: value
                for name, value in obs.to_dict().items()
                if name != "date" and value is not None and getattr(existing, name) is None
            }
            if updates:
                by_date[obs.date] = replace(existing, **updates)
    return [by_date[d] for d in sorted(by_date)]


def clip(observations: Sequence[Observation], start: date, end: date) -> List[Observation]:
    return [o for o in observations if start <= o.date <= end]


class WeatherAcquisitionService:
    """
    Cache-first, throttled access to archive series for one process.

    Usage:
        service = WeatherAcquisitionService(OpenMeteoArchiveClient(), throttle, cache)
        outcome = await service.get_ten_year_series(51.5074, -0.1278, Domain.RAINFALL)
    """

    def __init__(
        self,
        fetcher: WeatherFetcher,
        throttle: RequestThrottle,
        cache: TemporalCache,
        config: Optional[Settings] = None,
        clock: Optional[SystemClock] = None,
    ) -> None:
        self.fetcher = fetcher
        self.throttle = throttle
        self.cache = cache
        self.config = config or default_settings
        self.clock = clock or SystemClock()
        self._limiters: Dict[str, QuotaLimiter] = {}

    def _decode(
        self, lat: float, lon: float, kind: DataKind, payload: Any,
    ) -> Optional[List[Observation]]:
        """Cached payload as observations; an undecodable entry is evicted."""
        try:
            return series_from_payload(payload)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(
                "Discarding undecodable %s cache entry: %s", kind.value, e,
                extra=fetch_extra(lat, lon, kind),
            )
            self.cache.remove(lat, lon, kind)
            return None

    # ── Date ranges ──

    def ten_year_range(self) -> tuple:
        today = self.clock.today()
        return date(today.year - self.config.HISTORY_YEARS, 1, 1), today

    def current_year_range(self) -> tuple:
        today = self.clock.today()
        return date(today.year, 1, 1), today

    # ── Throttled fetches ──

    async def _fetch_daily(
        self, lat: float, lon: float, start: date, end: date, fields: Sequence[str],
    ) -> List[Observation]:
        try:
            return await self.throttle.submit(
                lambda: self.fetcher.fetch_daily(lat, lon, start, end, fields)
            )
        except FetchFailureError:
            raise
        except Exception as e:
            raise FetchFailureError(
                SERVICE_LABEL, f"{type(e).__name__}: {e}",
                latitude=lat, longitude=lon, start=start.isoformat(),
                end=end.isoformat(), kind=",".join(fields),
            ) from e

    async def get_historical_series(
        self,
        lat: float,
        lon: float,
        start: date,
        end: date,
        fields: Sequence[str] = ALL_DAILY_FIELDS,
    ) -> List[Observation]:
        """
        Daily series for ``[start, end]``, served from the range cache when a
        stored range covers it. Raises FetchFailureError on a failed fetch.
        """
        if start > end:
            raise ValueError(f"start {start} is after end {end}")

        kind = RANGE_CACHE_KINDS.get(frozenset(fields))
        if kind is not None:
            cached = self.cache.get_with_range(lat, lon, kind, start, end)
            series = None if cached is None else self._decode(lat, lon, kind, cached)
            if series is not None:
                logger.debug(
                    "Range cache hit for %s", kind.value,
                    extra=fetch_extra(lat, lon, kind, start, end),
                )
                return clip(series, start, end)

        series = normalise_series(await self._fetch_daily(lat, lon, start, end, fields))

        if kind is not None:
            self.cache.set_with_range(
                lat, lon, kind, start, end, series_to_payload(series),
                ttl=self.config.CACHE_HISTORICAL_TTL,
            )
        return clip(series, start, end)

    async def get_ten_year_series(self, lat: float, lon: float, domain: Domain) -> FetchOutcome:
        domain = Domain(domain)
        kind = DOMAIN_CACHE_KIND[domain]

        entry = self.cache.get_entry(lat, lon, kind)
        if entry is not None:
            cached = self._decode(lat, lon, kind, entry["data"])
            if cached is not None:
                return FetchOutcome(
                    FetchStatus.SUCCESS, cached,
                    from_cache=True, cached_at=float(entry["created_at"]),
                )

        start, end = self.ten_year_range()
        status = FetchStatus.SUCCESS
        try:
            series = await self.get_historical_series(lat, lon, start, end)
        except FetchFailureError as primary:
            logger.warning(
                "Comprehensive fetch failed, falling back to %s-only: %s",
                domain.value, primary.message,
                extra=fetch_extra(lat, lon, kind),
            )
            try:
                series = await self.get_historical_series(
                    lat, lon, start, end, fields=DOMAIN_DAILY_FIELDS[domain],
                )
            except FetchFailureError as e:
                logger.error(
                    "%s fetch failed after fallback: %s", domain.value, e.message,
                    extra=fetch_extra(lat, lon, kind),
                )
                return FetchOutcome(FetchStatus.FAILURE, error=e.message, exception=e)
            status = FetchStatus.FALLBACK_USED

        series = project(series, domain)
        self.cache.set(
            lat, lon, kind, series_to_payload(series), ttl=self.config.CACHE_HISTORICAL_TTL,
        )
        return FetchOutcome(status, series)

    async def get_combined_series(
        self,
        lat: float,
        lon: float,
        domains: Sequence[Domain] = tuple(Domain),
    ) -> FetchOutcome:
        """All requested domains merged by date. Fails if any domain fails."""
        outcomes = [await self.get_ten_year_series(lat, lon, d) for d in domains]
        failed = next((o for o in outcomes if not o.ok), None)
        if failed is not None:
            return failed

        status = (
            FetchStatus.FALLBACK_USED
            if any(o.status == FetchStatus.FALLBACK_USED for o in outcomes)
            else FetchStatus.SUCCESS
        )
        # oldest cached piece bounds the age of the merged series
        ages = [o.cached_at for o in outcomes if o.cached_at is not None]
        return FetchOutcome(
            status,
            merge_series(*(o.observations for o in outcomes)),
            from_cache=all(o.from_cache for o in outcomes),
            cached_at=min(ages) if ages else None,
        )

    async def get_current_year_series(self, lat: float, lon: float) -> List[Observation]:
        cached = self.cache.get(lat, lon, DataKind.CURRENT_YEAR)
        series = None if cached is None else self._decode(lat, lon, DataKind.CURRENT_YEAR, cached)
        if series is not None:
            return series

        start, end = self.current_year_range()
        series = await self.get_historical_series(lat, lon, start, end, fields=RAINFALL_DAILY_FIELDS)
        self.cache.set(
            lat, lon, DataKind.CURRENT_YEAR, series_to_payload(series),
            ttl=self.config.CACHE_CURRENT_YEAR_TTL,
        )
        return series

    async def get_current_conditions(self, lat: float, lon: float) -> Dict[str, Any]:
        cached = self.cache.get(lat, lon, DataKind.CURRENT_WEATHER)
        if cached is not None:
            return cached

        try:
            data = await self.throttle.submit(lambda: self.fetcher.fetch_current(lat, lon))
        except FetchFailureError:
            raise
        except Exception as e:
            raise FetchFailureError(
                SERVICE_LABEL, f"{type(e).__name__}: {e}",
                latitude=lat, longitude=lon, kind=DataKind.CURRENT_WEATHER.value,
            ) from e

        self.cache.set(
            lat, lon, DataKind.CURRENT_WEATHER, data,
            ttl=self.config.CACHE_CURRENT_WEATHER_TTL,
        )
        return data

    # ── Side feeds ──

    def limiter_for(self, name: str) -> QuotaLimiter:
        limiter = self._limiters.get(name)
        if limiter is None:
            limiter = QuotaLimiter(
                name,
                max_calls=self.config.SIDE_FEED_MAX_CALLS,
                window_seconds=self.config.THROTTLE_WINDOW_SECONDS,
                clock=self.clock,
            )
            self._limiters[name] = limiter
        return limiter

    async def get_side_feed(
        self,
        name: str,
        task: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
    ) -> Any:
        """
        Cached, hard-limited side feed. Raises QuotaExceededError when the
        feed's per-minute budget is spent and nothing is cached.
        """
        cached = self.cache.get(0, 0, name)
        if cached is not None:
            return cached

        data = await self.limiter_for(name).run(task)
        if ttl is None:
            setting = SIDE_FEED_TTLS.get(name)
            ttl = getattr(self.config, setting) if setting else self.config.CACHE_DEFAULT_TTL
        self.cache.set(0, 0, name, data, ttl=ttl)
        return data

    # ── Lifecycle ──

    def invalidate_location(self, lat: float, lon: float) -> int:
        return self.cache.clear_location(lat, lon)

    def invalidate_kind(
        self, kind: DataKind, lat: Optional[float] = None, lon: Optional[float] = None,
    ) -> int:
        """Drop one kind at one location, or everywhere when no location is given."""
        if lat is None or lon is None:
            return self.cache.clear_kinds([kind])
        return int(self.cache.remove(lat, lon, kind))

    async def aclose(self) -> None:
        await self.throttle.shutdown()
        await self.fetcher.aclose()
