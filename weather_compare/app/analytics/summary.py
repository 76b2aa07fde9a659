"""
Enhanced statistics bundle: everything the comparison views need for one
location, computed in a single pass over the series.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from . import aggregation as agg
from .events import detect_all_events
from .models import (
    EventKind,
    ExtremeEvent,
    MonthlyRainfall,
    Observation,
    PercentileBands,
    Season,
    SeasonalRainfallStat,
    SeasonalTemperatureStat,
    SolarComparison,
    TemperatureComparison,
    Trend,
    WindComparison,
    YearlyRainfall,
)
from .trends import rainfall_trend, solar_trend, temperature_trend, wind_trend

TOP_N = 5


def _day(obs: Observation, name: str) -> Dict[str, Any]:
    return {"date": obs.date.isoformat(), name: getattr(obs, name)}


def _dicts(items: Sequence[Any]) -> List[Dict[str, Any]]:
    return [i.to_dict() for i in items]


def _trend_dict(trend: Optional[Trend]) -> Optional[Dict[str, Any]]:
    return trend.to_dict() if trend is not None else None


@dataclass
class ClimateSummary:
    first_date: Optional[str] = None
    last_date: Optional[str] = None
    days: int = 0

    yearly_rainfall: List[YearlyRainfall] = field(default_factory=list)
    yearly_temperature: List[TemperatureComparison] = field(default_factory=list)
    yearly_wind: List[WindComparison] = field(default_factory=list)
    yearly_solar: List[SolarComparison] = field(default_factory=list)
    percentiles: PercentileBands = field(default_factory=PercentileBands)

    seasonal_rainfall: Dict[Season, List[SeasonalRainfallStat]] = field(default_factory=dict)
    seasonal_temperature: Dict[Season, List[SeasonalTemperatureStat]] = field(default_factory=dict)

    wettest_days: List[Observation] = field(default_factory=list)
    driest_days: List[Observation] = field(default_factory=list)  # driest of the days with rain
    wettest_months: List[MonthlyRainfall] = field(default_factory=list)
    driest_months: List[MonthlyRainfall] = field(default_factory=list)
    hottest_days: List[Observation] = field(default_factory=list)
    coldest_days: List[Observation] = field(default_factory=list)

    events: Dict[EventKind, List[ExtremeEvent]] = field(default_factory=dict)

    rainfall_trend: Optional[Trend] = None
    temperature_trend: Optional[Trend] = None
    wind_trend: Optional[Trend] = None
    solar_trend: Optional[Trend] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": {"start": self.first_date, "end": self.last_date, "days": self.days},
            "yearly": {
                "rainfall": _dicts(self.yearly_rainfall),
                "temperature": _dicts(self.yearly_temperature),
                "wind": _dicts(self.yearly_wind),
                "solar": _dicts(self.yearly_solar),
            },
            "percentiles": self.percentiles.to_dict(),
            "seasonal": {
                "rainfall": {s.value: _dicts(v) for s, v in self.seasonal_rainfall.items()},
                "temperature": {s.value: _dicts(v) for s, v in self.seasonal_temperature.items()},
            },
            "top": {
                "wettest_days": [_day(o, "rainfall") for o in self.wettest_days],
                "driest_days": [_day(o, "rainfall") for o in self.driest_days],
                "wettest_months": _dicts(self.wettest_months),
                "driest_months": _dicts(self.driest_months),
                "hottest_days": [_day(o, "temperature_max") for o in self.hottest_days],
                "coldest_days": [_day(o, "temperature_min") for o in self.coldest_days],
            },
            "events": {k.value: _dicts(v) for k, v in self.events.items()},
            "trends": {
                "rainfall": _trend_dict(self.rainfall_trend),
                "temperature": _trend_dict(self.temperature_trend),
                "wind": _trend_dict(self.wind_trend),
                "solar": _trend_dict(self.solar_trend),
            },
        }


def build_summary(observations: Sequence[Observation], top_n: int = TOP_N) -> ClimateSummary:
    """All comparison records, extremes, events and trends for a series."""
    series = list(observations)
    summary = ClimateSummary(days=len(series))
    if not series:
        return summary

    summary.first_date = series[0].date.isoformat()
    summary.last_date = series[-1].date.isoformat()

    summary.yearly_rainfall = agg.yearly_rainfall_comparison(series)
    summary.yearly_temperature = agg.yearly_temperature_comparison(series)
    summary.yearly_wind = agg.yearly_wind_comparison(series)
    summary.yearly_solar = agg.yearly_solar_comparison(series)
    summary.percentiles = agg.rainfall_percentiles(series)

    summary.seasonal_rainfall = agg.seasonal_rainfall_stats(series)
    summary.seasonal_temperature = agg.seasonal_temperature_stats(series)

    summary.wettest_days = agg.top_n(series, lambda o: o.rainfall, top_n)
    summary.driest_days = agg.top_n(
        [o for o in series if o.rainfall is not None and o.rainfall > 0],
        lambda o: o.rainfall, top_n, ascending=True,
    )
    months = agg.monthly_rainfall_stats(series)
    summary.wettest_months = agg.top_n(months, lambda m: m.total, top_n)
    summary.driest_months = agg.top_n(months, lambda m: m.total, top_n, ascending=True)
    summary.hottest_days = agg.top_n(series, lambda o: o.temperature_max, top_n)
    summary.coldest_days = agg.top_n(series, lambda o: o.temperature_min, top_n, ascending=True)

    summary.events = detect_all_events(series)

    summary.rainfall_trend = rainfall_trend(summary.yearly_rainfall)
    summary.temperature_trend = temperature_trend(summary.yearly_temperature)
    summary.wind_trend = wind_trend(summary.yearly_wind)
    summary.solar_trend = solar_trend(summary.yearly_solar)
    return summary
