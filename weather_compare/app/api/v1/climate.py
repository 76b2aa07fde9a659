"""
FastAPI routes: Climate comparison: ten-year statistics for a location.

Provides endpoints to:
    - Compare years, one month across years, and seasons
    - Get rain-day percentiles, extreme events and trends
    - Get the full statistics bundle for a location
    - Inspect and invalidate the cache, inspect the request throttle

Every analytics response carries ``meta.status`` (success | fallback_used)
and ``meta.from_cache`` so the caller can tell how the data was obtained;
cached data also carries ``meta.cached_at``.
A fetch that fails even after the fallback surfaces as HTTP 502.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from fastapi import APIRouter, Depends, Query

from weather_compare.app.analytics import aggregation as agg
from weather_compare.app.analytics import events as ev
from weather_compare.app.analytics import trends as tr
from weather_compare.app.analytics.models import Observation
from weather_compare.app.analytics.summary import build_summary
from weather_compare.app.api.schemas import (
    CacheClearOut,
    CacheStatsOut,
    ComparisonResponse,
    ExtremesResponse,
    LocationOut,
    PercentilesOut,
    PercentilesResponse,
    RecentResponse,
    SeasonalResponse,
    SeriesMeta,
    SummaryResponse,
    ThrottleStatsOut,
    TrendsResponse,
)
from weather_compare.app.core.cache import DataKind, TemporalCache, build_store
from weather_compare.app.core.config import settings
from weather_compare.app.core.errors import InvalidInputError
from weather_compare.app.ingestion.acquisition import Domain, FetchOutcome, WeatherAcquisitionService
from weather_compare.app.ingestion.archive_client import OpenMeteoArchiveClient
from weather_compare.app.ingestion.throttle import RequestThrottle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/climate", tags=["climate"])

DOMAIN_RULES: Dict[Domain, Sequence[ev.StreakRule]] = {
    Domain.RAINFALL: (ev.DROUGHT,),
    Domain.TEMPERATURE: (ev.HEAT_WAVE, ev.COLD_SNAP),
    Domain.WIND: (ev.STRONG_WIND, ev.CALM_PERIOD),
    Domain.SOLAR: (ev.SOLAR_PEAK, ev.LOW_SOLAR),
}

# ═══════════════════════════════════════════════════════════════════════════
# Shared Services (singleton pattern)
# ═══════════════════════════════════════════════════════════════════════════

_acquisition_service: Optional[WeatherAcquisitionService] = None


def get_acquisition_service() -> WeatherAcquisitionService:
    global _acquisition_service
    if _acquisition_service is None:
        cache = TemporalCache(
            build_store(settings),
            default_ttl=settings.CACHE_DEFAULT_TTL,
            prefix=settings.CACHE_KEY_PREFIX,
            precision=settings.CACHE_COORD_PRECISION,
        )
        throttle = RequestThrottle(
            quota=settings.THROTTLE_QUOTA,
            window_seconds=settings.THROTTLE_WINDOW_SECONDS,
        )
        _acquisition_service = WeatherAcquisitionService(
            OpenMeteoArchiveClient(config=settings), throttle, cache, settings,
        )
    return _acquisition_service


async def shutdown_acquisition_service() -> None:
    global _acquisition_service
    if _acquisition_service is not None:
        await _acquisition_service.aclose()
        _acquisition_service = None


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

LatQuery = Query(..., ge=-90, le=90, description="Latitude")
LonQuery = Query(..., ge=-180, le=180, description="Longitude")


def _meta(outcome: FetchOutcome, lat: float, lon: float, domain: Optional[Domain]) -> SeriesMeta:
    return SeriesMeta(
        status=outcome.status.value,
        from_cache=outcome.from_cache,
        cached_at=(
            datetime.fromtimestamp(outcome.cached_at, tz=timezone.utc)
            if outcome.cached_at is not None else None
        ),
        location=LocationOut(latitude=lat, longitude=lon),
        domain=domain.value if domain else None,
        days=len(outcome.observations),
    )


async def _load(
    service: WeatherAcquisitionService, lat: float, lon: float, domain: Optional[Domain],
) -> FetchOutcome:
    if domain is None:
        outcome = await service.get_combined_series(lat, lon)
    else:
        outcome = await service.get_ten_year_series(lat, lon, domain)
    return outcome.raise_for_failure()


def _records(items) -> List[dict]:
    return [i.to_dict() for i in items]


# ═══════════════════════════════════════════════════════════════════════════
# Analytics endpoints
# ═══════════════════════════════════════════════════════════════════════════

@router.get(
    "/yearly",
    response_model=ComparisonResponse,
    summary="Year-by-year comparison",
)
async def yearly_comparison(
    lat: float = LatQuery,
    lon: float = LonQuery,
    domain: Domain = Query(Domain.RAINFALL, description="rainfall | temperature | wind | solar"),
    service: WeatherAcquisitionService = Depends(get_acquisition_service),
):
    """Rainfall years carry the year's temperatures alongside."""
    outcome = await _load(service, lat, lon, domain)
    series = outcome.observations
    builders = {
        Domain.RAINFALL: agg.enhanced_yearly_comparison,
        Domain.TEMPERATURE: agg.yearly_temperature_comparison,
        Domain.WIND: agg.yearly_wind_comparison,
        Domain.SOLAR: agg.yearly_solar_comparison,
    }
    return ComparisonResponse(
        meta=_meta(outcome, lat, lon, domain),
        records=_records(builders[domain](series)),
    )


@router.get(
    "/monthly",
    response_model=ComparisonResponse,
    summary="One calendar month compared across years",
)
async def monthly_comparison(
    lat: float = LatQuery,
    lon: float = LonQuery,
    month: int = Query(..., ge=1, le=12, description="Month (1-12)"),
    domain: Domain = Query(Domain.RAINFALL, description="rainfall | temperature"),
    service: WeatherAcquisitionService = Depends(get_acquisition_service),
):
    if domain not in (Domain.RAINFALL, Domain.TEMPERATURE):
        raise InvalidInputError(
            "Monthly comparison is available for rainfall and temperature only",
            field="domain", value=domain.value,
        )
    outcome = await _load(service, lat, lon, domain)
    if domain == Domain.RAINFALL:
        records = agg.enhanced_monthly_comparison(outcome.observations, month)
    else:
        records = agg.monthly_temperature_comparison(outcome.observations, month)
    return ComparisonResponse(
        meta=_meta(outcome, lat, lon, domain), month=month, records=_records(records),
    )


@router.get(
    "/seasonal",
    response_model=SeasonalResponse,
    summary="Season-by-season statistics per year",
)
async def seasonal_statistics(
    lat: float = LatQuery,
    lon: float = LonQuery,
    domain: Domain = Query(Domain.RAINFALL, description="rainfall | temperature"),
    service: WeatherAcquisitionService = Depends(get_acquisition_service),
):
    if domain not in (Domain.RAINFALL, Domain.TEMPERATURE):
        raise InvalidInputError(
            "Seasonal statistics are available for rainfall and temperature only",
            field="domain", value=domain.value,
        )
    outcome = await _load(service, lat, lon, domain)
    if domain == Domain.RAINFALL:
        seasons = agg.seasonal_rainfall_stats(outcome.observations)
    else:
        seasons = agg.seasonal_temperature_stats(outcome.observations)
    return SeasonalResponse(
        meta=_meta(outcome, lat, lon, domain),
        seasons={s.value: _records(v) for s, v in seasons.items()},
    )


@router.get(
    "/percentiles",
    response_model=PercentilesResponse,
    summary="Rain-day rainfall percentiles",
    description="Nearest-rank percentiles over days with rain; dry days are excluded.",
)
async def rainfall_percentiles(
    lat: float = LatQuery,
    lon: float = LonQuery,
    service: WeatherAcquisitionService = Depends(get_acquisition_service),
):
    outcome = await _load(service, lat, lon, Domain.RAINFALL)
    bands = agg.rainfall_percentiles(outcome.observations)
    return PercentilesResponse(
        meta=_meta(outcome, lat, lon, Domain.RAINFALL),
        percentiles=PercentilesOut(**bands.to_dict()),
    )


@router.get(
    "/extremes",
    response_model=ExtremesResponse,
    summary="Streak-based extreme events",
)
async def extreme_events(
    lat: float = LatQuery,
    lon: float = LonQuery,
    domain: Optional[Domain] = Query(None, description="Omit for every event kind"),
    service: WeatherAcquisitionService = Depends(get_acquisition_service),
):
    outcome = await _load(service, lat, lon, domain)
    rules = DOMAIN_RULES[domain] if domain else ev.ALL_RULES
    found = ev.detect_all_events(outcome.observations, rules)
    return ExtremesResponse(
        meta=_meta(outcome, lat, lon, domain),
        events={
            kind.value: [
                {"kind": e.kind.value, "start": e.start.isoformat(), "end": e.end.isoformat(),
                 "duration": e.duration, "values": e.values}
                for e in items
            ]
            for kind, items in found.items()
        },
    )


@router.get(
    "/trends",
    response_model=TrendsResponse,
    summary="Linear trends per metric",
    description="Null for a metric with fewer than three years of data.",
)
async def climate_trends(
    lat: float = LatQuery,
    lon: float = LonQuery,
    service: WeatherAcquisitionService = Depends(get_acquisition_service),
):
    outcome = await _load(service, lat, lon, None)
    series = outcome.observations
    trends = {
        "rainfall": tr.rainfall_trend(agg.yearly_rainfall_comparison(series)),
        "temperature": tr.temperature_trend(agg.yearly_temperature_comparison(series)),
        "wind": tr.wind_trend(agg.yearly_wind_comparison(series)),
        "solar": tr.solar_trend(agg.yearly_solar_comparison(series)),
    }
    return TrendsResponse(
        meta=_meta(outcome, lat, lon, None),
        trends={k: (t.to_dict() if t else None) for k, t in trends.items()},
    )


@router.get(
    "/recent",
    response_model=RecentResponse,
    summary="Most recent daily observations",
)
async def recent(
    lat: float = LatQuery,
    lon: float = LonQuery,
    days: int = Query(30, ge=1, le=366),
    domain: Domain = Query(Domain.RAINFALL),
    service: WeatherAcquisitionService = Depends(get_acquisition_service),
):
    outcome = await _load(service, lat, lon, domain)
    latest: List[Observation] = agg.recent_observations(outcome.observations, days)
    return RecentResponse(
        meta=_meta(outcome, lat, lon, domain),
        observations=[o.to_dict() for o in latest],
    )


@router.get(
    "/summary",
    response_model=SummaryResponse,
    summary="Full statistics bundle",
)
async def climate_summary(
    lat: float = LatQuery,
    lon: float = LonQuery,
    service: WeatherAcquisitionService = Depends(get_acquisition_service),
):
    outcome = await _load(service, lat, lon, None)
    return SummaryResponse(
        meta=_meta(outcome, lat, lon, None),
        summary=build_summary(outcome.observations).to_dict(),
    )


@router.get("/current", summary="Current conditions (1 h cache)")
async def current_conditions(
    lat: float = LatQuery,
    lon: float = LonQuery,
    service: WeatherAcquisitionService = Depends(get_acquisition_service),
):
    return await service.get_current_conditions(lat, lon)


# ═══════════════════════════════════════════════════════════════════════════
# Cache & throttle endpoints
# ═══════════════════════════════════════════════════════════════════════════

@router.get("/cache/stats", response_model=CacheStatsOut, summary="Cache statistics")
async def cache_stats(service: WeatherAcquisitionService = Depends(get_acquisition_service)):
    return CacheStatsOut(**service.cache.stats().to_dict())


@router.delete("/cache", response_model=CacheClearOut, summary="Invalidate cached data")
async def clear_cache(
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lon: Optional[float] = Query(None, ge=-180, le=180),
    kind: Optional[DataKind] = Query(None, description="Only this data kind"),
    service: WeatherAcquisitionService = Depends(get_acquisition_service),
):
    """
    With ``lat`` and ``lon``, clears that location only; without both, clears
    everything. ``kind`` narrows either scope to one data kind.
    """
    if (lat is None) != (lon is None):
        raise InvalidInputError("Pass both lat and lon, or neither", field="lat" if lat is None else "lon")
    if kind is not None:
        removed = service.invalidate_kind(kind, lat, lon)
        where = "all" if lat is None else f"{lat:.4f},{lon:.4f}"
        return CacheClearOut(removed=removed, scope=f"{where}:{kind.value}")
    if lat is None:
        return CacheClearOut(removed=service.cache.clear_all(), scope="all")
    removed = service.invalidate_location(lat, lon)
    return CacheClearOut(removed=removed, scope=f"{lat:.4f},{lon:.4f}")


@router.post("/cache/sweep", response_model=CacheClearOut, summary="Remove expired entries")
async def sweep_cache(service: WeatherAcquisitionService = Depends(get_acquisition_service)):
    return CacheClearOut(removed=service.cache.clear_expired(), scope="expired")


@router.get("/throttle/stats", response_model=ThrottleStatsOut, summary="Request throttle state")
async def throttle_stats(service: WeatherAcquisitionService = Depends(get_acquisition_service)):
    return ThrottleStatsOut(**service.throttle.stats().to_dict())
