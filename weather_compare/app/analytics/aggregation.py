"""
Series aggregation: buckets daily observations and computes comparison records.

Every function here is pure: same series in, same records out. Values are
rounded to one decimal once, after the whole bucket has been reduced, so
derived figures (e.g. the monthly average inside a yearly record) are
computed from unrounded totals.

Bucketing rules:
    • A bucket is reported only if at least one observation in it carries
      data for the domain being aggregated (rainfall, temperature, wind,
      solar). A bucket with readings but no threshold crossings gives a
      zero-valued count, never a missing record.
    • ``None`` fields are skipped, never treated as 0. Means divide by the
      number of readings actually present.

Thresholds (strict comparisons):
    wet day        rainfall > 0.1 mm
    warm day       max temperature > 20 °C
    frost day      min temperature < 0 °C
    heat-wave day  max temperature > 25 °C
    windy day      gusts > 60 km/h
    calm day       mean wind speed < 10 km/h
    sunny day      radiation > 18 MJ/m²
"""

from __future__ import annotations

import math
from collections import defaultdict
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional, Sequence, TypeVar

import numpy as np

from .models import (
    MONTH_NAMES,
    EnhancedYearlyComparison,
    MonthlyRainfall,
    Observation,
    PercentileBands,
    Season,
    SeasonalRainfallStat,
    SeasonalTemperatureStat,
    SolarComparison,
    TemperatureComparison,
    TemperatureStats,
    WindComparison,
    YearlyRainfall,
)

T = TypeVar("T")

WET_DAY_MM = 0.1
WARM_DAY_C = 20.0
FROST_DAY_C = 0.0
HEATWAVE_DAY_C = 25.0
WINDY_GUST_KMH = 60.0
CALM_SPEED_KMH = 10.0
SUNNY_RADIATION_MJ = 18.0

RAINFALL_FIELDS = ("rainfall",)
TEMPERATURE_FIELDS = ("temperature_mean", "temperature_min", "temperature_max")
WIND_FIELDS = ("wind_speed", "wind_gusts", "wind_direction")
SOLAR_FIELDS = ("solar_radiation_sum", "sunshine_duration")

SEASON_ORDER = (Season.SPRING, Season.SUMMER, Season.AUTUMN, Season.WINTER)


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

def round1(value: float) -> float:
    """Round half up to one decimal place."""
    return math.floor(value * 10 + 0.5) / 10


def _values(observations: Iterable[Observation], name: str) -> List[float]:
    return [v for v in (getattr(o, name) for o in observations) if v is not None]


def _has_any(observations: Iterable[Observation], names: Sequence[str]) -> bool:
    return any(getattr(o, n) is not None for o in observations for n in names)


def _mean(values: Sequence[float]) -> float:
    return math.fsum(values) / len(values) if values else 0.0


def _count(values: Iterable[float], predicate: Callable[[float], bool]) -> int:
    return sum(1 for v in values if predicate(v))


def _check_month(month: int) -> None:
    if not 1 <= month <= 12:
        raise ValueError(f"month must be in 1..12, got {month}")


# ═══════════════════════════════════════════════════════════════════════════
# Grouping
# ═══════════════════════════════════════════════════════════════════════════

def group_by_year(observations: Iterable[Observation]) -> Dict[int, List[Observation]]:
    groups: Dict[int, List[Observation]] = defaultdict(list)
    for obs in observations:
        groups[obs.date.year].append(obs)
    return {year: groups[year] for year in sorted(groups)}


def group_by_month(observations: Iterable[Observation]) -> Dict[str, List[Observation]]:
    """Bucket by ``"YYYY-MM"``; keys come back in chronological order."""
    groups: Dict[str, List[Observation]] = defaultdict(list)
    for obs in observations:
        groups[f"{obs.date.year:04d}-{obs.date.month:02d}"].append(obs)
    return {key: groups[key] for key in sorted(groups)}


def get_season(day: date) -> Season:
    month = day.month
    if 3 <= month <= 5:
        return Season.SPRING
    if 6 <= month <= 8:
        return Season.SUMMER
    if 9 <= month <= 11:
        return Season.AUTUMN
    return Season.WINTER


def group_by_season(
    observations: Iterable[Observation],
) -> Dict[Season, Dict[int, List[Observation]]]:
    """
    Season → year → observations.

    Winter is keyed by calendar year, so December and the following
    January/February fall into different winter buckets.
    """
    groups: Dict[Season, Dict[int, List[Observation]]] = {}
    for obs in observations:
        season_groups = groups.setdefault(get_season(obs.date), {})
        season_groups.setdefault(obs.date.year, []).append(obs)
    return {
        season: {year: groups[season][year] for year in sorted(groups[season])}
        for season in SEASON_ORDER
        if season in groups
    }


def recent_observations(observations: Sequence[Observation], days: int = 30) -> List[Observation]:
    """Last ``days`` entries of the series (entries, not calendar days)."""
    if days <= 0:
        return []
    return list(observations[-days:])


def top_n(
    items: Iterable[T],
    key: Callable[[T], Optional[float]],
    n: int = 5,
    ascending: bool = False,
) -> List[T]:
    """Largest (or smallest) ``n`` items by ``key``; items whose key is None are skipped."""
    keyed = [item for item in items if key(item) is not None]
    return sorted(keyed, key=key, reverse=not ascending)[:max(n, 0)]


# ═══════════════════════════════════════════════════════════════════════════
# Percentiles
# ═══════════════════════════════════════════════════════════════════════════

def percentile(values: Iterable[float], p: float) -> float:
    """
    Nearest-rank percentile: the value at 1-based rank ``ceil(p·n/100)``.

    Returns 0.0 for an empty input. A single value is every percentile.
    """
    arr = np.sort(np.asarray(list(values), dtype=float))
    n = arr.size
    if n == 0:
        return 0.0
    if not 0 <= p <= 100:
        raise ValueError(f"percentile rank must be in 0..100, got {p}")
    rank = max(1, math.ceil(p * n / 100))
    return float(arr[rank - 1])


def rainfall_percentiles(observations: Iterable[Observation]) -> PercentileBands:
    """Percentiles of rain on days when it rained (zero-rain days excluded)."""
    wet = [v for v in _values(observations, "rainfall") if v > 0]
    if not wet:
        return PercentileBands()
    return PercentileBands(
        p10=round1(percentile(wet, 10)),
        p25=round1(percentile(wet, 25)),
        p50=round1(percentile(wet, 50)),
        p75=round1(percentile(wet, 75)),
        p90=round1(percentile(wet, 90)),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Rainfall
# ═══════════════════════════════════════════════════════════════════════════

def _month_parts(key: str) -> tuple:
    year, month = key.split("-")
    return int(year), int(month)


def monthly_rainfall_stats(observations: Iterable[Observation]) -> List[MonthlyRainfall]:
    """One record per calendar month with rainfall readings, oldest first."""
    records = []
    for key, bucket in group_by_month(observations).items():
        rain = _values(bucket, "rainfall")
        if not rain:
            continue
        year, month = _month_parts(key)
        total = math.fsum(rain)
        records.append(MonthlyRainfall(
            year=year,
            month=month,
            month_name=MONTH_NAMES[month - 1],
            total=round1(total),
            average=round1(total / len(rain)),
            days_with_rain=_count(rain, lambda v: v > WET_DAY_MM),
        ))
    return records


def _yearly_rainfall_record(year: int, bucket: List[Observation]) -> YearlyRainfall:
    rain = _values(bucket, "rainfall")
    monthly_totals: Dict[int, float] = defaultdict(float)
    for obs in bucket:
        if obs.rainfall is not None:
            monthly_totals[obs.date.month] += obs.rainfall
    return YearlyRainfall(
        year=year,
        total_rainfall=round1(math.fsum(rain)),
        average_monthly=round1(_mean(list(monthly_totals.values()))),
        wet_days=_count(rain, lambda v: v > WET_DAY_MM),
    )


def yearly_rainfall_comparison(observations: Iterable[Observation]) -> List[YearlyRainfall]:
    """
    Per-year rainfall: total, wet days, and the mean of that year's monthly
    totals (over months with readings).
    """
    return [
        _yearly_rainfall_record(year, bucket)
        for year, bucket in group_by_year(observations).items()
        if _has_any(bucket, RAINFALL_FIELDS)
    ]


def monthly_rainfall_comparison(
    observations: Iterable[Observation], month: int,
) -> List[YearlyRainfall]:
    """
    One calendar month (1–12) compared across years.

    ``average_monthly`` here is the daily mean for that month. A year with
    readings for the month is included even if it stayed completely dry.
    """
    _check_month(month)
    records = []
    for year, bucket in group_by_year(observations).items():
        rain = _values((o for o in bucket if o.date.month == month), "rainfall")
        if not rain:
            continue
        total = math.fsum(rain)
        records.append(YearlyRainfall(
            year=year,
            total_rainfall=round1(total),
            average_monthly=round1(total / len(rain)),
            wet_days=_count(rain, lambda v: v > WET_DAY_MM),
        ))
    return records


def seasonal_rainfall_stats(
    observations: Iterable[Observation],
) -> Dict[Season, List[SeasonalRainfallStat]]:
    result: Dict[Season, List[SeasonalRainfallStat]] = {}
    for season, by_year in group_by_season(observations).items():
        stats = []
        for year, bucket in by_year.items():
            rain = _values(bucket, "rainfall")
            if not rain:
                continue
            total = math.fsum(rain)
            stats.append(SeasonalRainfallStat(
                year=year,
                season=season,
                total_rainfall=round1(total),
                wet_days=_count(rain, lambda v: v > WET_DAY_MM),
                average_daily_rainfall=round1(total / len(rain)),
                max_daily_rainfall=round1(max(rain)),
            ))
        if stats:
            result[season] = stats
    return result


# ═══════════════════════════════════════════════════════════════════════════
# Temperature
# ═══════════════════════════════════════════════════════════════════════════

def temperature_stats(observations: Iterable[Observation]) -> TemperatureStats:
    """Overall mean / lowest min / highest max; zeros for an empty series."""
    observations = list(observations)
    means = _values(observations, "temperature_mean")
    mins = _values(observations, "temperature_min")
    maxes = _values(observations, "temperature_max")
    low = min(mins) if mins else 0.0
    high = max(maxes) if maxes else 0.0
    return TemperatureStats(
        mean=round1(_mean(means)),
        min=round1(low),
        max=round1(high),
        range=round1(high - low) if mins and maxes else 0.0,
    )


def _temperature_record(year: int, bucket: Sequence[Observation]) -> TemperatureComparison:
    stats = temperature_stats(bucket)
    maxes = _values(bucket, "temperature_max")
    mins = _values(bucket, "temperature_min")
    return TemperatureComparison(
        year=year,
        mean_temperature=stats.mean,
        min_temperature=stats.min,
        max_temperature=stats.max,
        warm_days=_count(maxes, lambda v: v > WARM_DAY_C),
        frost_days=_count(mins, lambda v: v < FROST_DAY_C),
        heatwave_days=_count(maxes, lambda v: v > HEATWAVE_DAY_C),
    )


def yearly_temperature_comparison(
    observations: Iterable[Observation],
) -> List[TemperatureComparison]:
    return [
        _temperature_record(year, bucket)
        for year, bucket in group_by_year(observations).items()
        if _has_any(bucket, TEMPERATURE_FIELDS)
    ]


def monthly_temperature_comparison(
    observations: Iterable[Observation], month: int,
) -> List[TemperatureComparison]:
    _check_month(month)
    records = []
    for year, bucket in group_by_year(observations).items():
        in_month = [o for o in bucket if o.date.month == month]
        if _has_any(in_month, TEMPERATURE_FIELDS):
            records.append(_temperature_record(year, in_month))
    return records


def seasonal_temperature_stats(
    observations: Iterable[Observation],
) -> Dict[Season, List[SeasonalTemperatureStat]]:
    result: Dict[Season, List[SeasonalTemperatureStat]] = {}
    for season, by_year in group_by_season(observations).items():
        stats = []
        for year, bucket in by_year.items():
            if not _has_any(bucket, TEMPERATURE_FIELDS):
                continue
            record = _temperature_record(year, bucket)
            stats.append(SeasonalTemperatureStat(
                year=year,
                season=season,
                average_temperature=record.mean_temperature,
                min_temperature=record.min_temperature,
                max_temperature=record.max_temperature,
                frost_days=record.frost_days,
                warm_days=record.warm_days,
            ))
        if stats:
            result[season] = stats
    return result


# ═══════════════════════════════════════════════════════════════════════════
# Wind & solar
# ═══════════════════════════════════════════════════════════════════════════

def dominant_direction(directions: Sequence[float]) -> Optional[int]:
    """
    Circular mean of compass bearings, in whole degrees 0–359.

    None when there are no readings or the bearings cancel out.
    """
    if not directions:
        return None
    radians = np.deg2rad(np.asarray(directions, dtype=float))
    s, c = float(np.sin(radians).sum()), float(np.cos(radians).sum())
    if math.isclose(s, 0.0, abs_tol=1e-9) and math.isclose(c, 0.0, abs_tol=1e-9):
        return None
    return int(round(math.degrees(math.atan2(s, c)))) % 360


def yearly_wind_comparison(observations: Iterable[Observation]) -> List[WindComparison]:
    records = []
    for year, bucket in group_by_year(observations).items():
        if not _has_any(bucket, WIND_FIELDS):
            continue
        speeds = _values(bucket, "wind_speed")
        gusts = _values(bucket, "wind_gusts")
        records.append(WindComparison(
            year=year,
            mean_speed=round1(_mean(speeds)),
            max_gust=round1(max(gusts)) if gusts else 0.0,
            windy_days=_count(gusts, lambda v: v > WINDY_GUST_KMH),
            calm_days=_count(speeds, lambda v: v < CALM_SPEED_KMH),
            dominant_direction=dominant_direction(_values(bucket, "wind_direction")),
        ))
    return records


def yearly_solar_comparison(observations: Iterable[Observation]) -> List[SolarComparison]:
    records = []
    for year, bucket in group_by_year(observations).items():
        if not _has_any(bucket, SOLAR_FIELDS):
            continue
        radiation = _values(bucket, "solar_radiation_sum")
        sunshine = _values(bucket, "sunshine_duration")
        records.append(SolarComparison(
            year=year,
            total_radiation=round1(math.fsum(radiation)),
            mean_daily_radiation=round1(_mean(radiation)),
            sunshine_hours=round1(math.fsum(sunshine) / 3600),
            sunny_days=_count(radiation, lambda v: v > SUNNY_RADIATION_MJ),
        ))
    return records


# ═══════════════════════════════════════════════════════════════════════════
# Combined
# ═══════════════════════════════════════════════════════════════════════════

def _merge(
    rainfall: List[YearlyRainfall],
    temperature: List[TemperatureComparison],
) -> List[EnhancedYearlyComparison]:
    by_year = {t.year: t for t in temperature}
    merged = []
    for r in rainfall:
        t = by_year.get(r.year)
        merged.append(EnhancedYearlyComparison(
            year=r.year,
            total_rainfall=r.total_rainfall,
            average_monthly=r.average_monthly,
            wet_days=r.wet_days,
            average_temperature=t.mean_temperature if t else None,
            min_temperature=t.min_temperature if t else None,
            max_temperature=t.max_temperature if t else None,
        ))
    return merged


def enhanced_yearly_comparison(
    observations: Iterable[Observation],
) -> List[EnhancedYearlyComparison]:
    """Yearly rainfall records annotated with that year's temperatures."""
    observations = list(observations)
    return _merge(
        yearly_rainfall_comparison(observations),
        yearly_temperature_comparison(observations),
    )


def enhanced_monthly_comparison(
    observations: Iterable[Observation], month: int,
) -> List[EnhancedYearlyComparison]:
    observations = list(observations)
    return _merge(
        monthly_rainfall_comparison(observations, month),
        monthly_temperature_comparison(observations, month),
    )
