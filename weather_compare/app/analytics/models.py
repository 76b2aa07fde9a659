"""
Analytics data models: observations in, comparison records out.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields
from datetime import date
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


class Season(str, Enum):
    SPRING = "Spring"  # Mar–May
    SUMMER = "Summer"  # Jun–Aug
    AUTUMN = "Autumn"  # Sep–Nov
    WINTER = "Winter"  # Dec–Feb


class EventKind(str, Enum):
    DROUGHT = "drought"
    HEAT_WAVE = "heat_wave"
    COLD_SNAP = "cold_snap"
    STRONG_WIND = "strong_wind"
    CALM_PERIOD = "calm_period"
    SOLAR_PEAK = "solar_peak"
    LOW_SOLAR = "low_solar"


# ═══════════════════════════════════════════════════════════════════════════
# Observations
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Observation:
    """
    One calendar day at one location.

    Every measurement is optional: a value the archive returned as null is
    ``None`` and is skipped by aggregation, never counted as zero.
    """
    date: date
    rainfall: Optional[float] = None              # mm
    temperature_mean: Optional[float] = None      # °C
    temperature_min: Optional[float] = None
    temperature_max: Optional[float] = None
    wind_speed: Optional[float] = None            # km/h
    wind_gusts: Optional[float] = None            # km/h
    wind_direction: Optional[float] = None        # degrees, 0–359
    solar_radiation_sum: Optional[float] = None   # MJ/m²/day
    sunshine_duration: Optional[float] = None     # seconds

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["date"] = self.date.isoformat()
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Observation":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known and k != "date"}
        raw_date = data["date"]
        day = raw_date if isinstance(raw_date, date) else date.fromisoformat(str(raw_date))
        return cls(date=day, **{k: (None if v is None else float(v)) for k, v in values.items()})


MEASUREMENT_FIELDS = tuple(f.name for f in fields(Observation) if f.name != "date")


def normalise_series(observations: Iterable[Observation]) -> List[Observation]:
    """Sort by date and drop duplicate dates (first occurrence wins)."""
    seen: Dict[date, Observation] = {}
    duplicates = 0
    for obs in observations:
        if obs.date in seen:
            duplicates += 1
            continue
        seen[obs.date] = obs
    if duplicates:
        logger.warning("Dropped %d duplicate observation dates", duplicates)
    return [seen[d] for d in sorted(seen)]


def series_to_payload(observations: Iterable[Observation]) -> List[Dict[str, Any]]:
    return [o.to_dict() for o in observations]


def series_from_payload(payload: Iterable[Dict[str, Any]]) -> List[Observation]:
    return normalise_series(Observation.from_dict(item) for item in payload)


# ═══════════════════════════════════════════════════════════════════════════
# Comparison records
# ═══════════════════════════════════════════════════════════════════════════

class _Record:
    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        for key, value in d.items():
            if isinstance(value, Enum):
                d[key] = value.value
            elif isinstance(value, date):
                d[key] = value.isoformat()
        return d


@dataclass
class MonthlyRainfall(_Record):
    year: int
    month: int
    month_name: str
    total: float = 0.0
    average: float = 0.0  # mm per observed day
    days_with_rain: int = 0


@dataclass
class YearlyRainfall(_Record):
    year: int
    total_rainfall: float = 0.0
    average_monthly: float = 0.0
    wet_days: int = 0


@dataclass
class TemperatureStats(_Record):
    mean: float = 0.0
    min: float = 0.0
    max: float = 0.0
    range: float = 0.0


@dataclass
class TemperatureComparison(_Record):
    year: int
    mean_temperature: float = 0.0
    min_temperature: float = 0.0
    max_temperature: float = 0.0
    warm_days: int = 0
    frost_days: int = 0
    heatwave_days: int = 0


@dataclass
class SeasonalRainfallStat(_Record):
    year: int
    season: Season
    total_rainfall: float = 0.0
    wet_days: int = 0
    average_daily_rainfall: float = 0.0
    max_daily_rainfall: float = 0.0


@dataclass
class SeasonalTemperatureStat(_Record):
    year: int
    season: Season
    average_temperature: float = 0.0
    min_temperature: float = 0.0
    max_temperature: float = 0.0
    frost_days: int = 0
    warm_days: int = 0


@dataclass
class WindComparison(_Record):
    year: int
    mean_speed: float = 0.0
    max_gust: float = 0.0
    windy_days: int = 0
    calm_days: int = 0
    dominant_direction: Optional[int] = None


@dataclass
class SolarComparison(_Record):
    year: int
    total_radiation: float = 0.0
    mean_daily_radiation: float = 0.0
    sunshine_hours: float = 0.0
    sunny_days: int = 0


@dataclass
class PercentileBands(_Record):
    p10: float = 0.0
    p25: float = 0.0
    p50: float = 0.0
    p75: float = 0.0
    p90: float = 0.0


@dataclass
class EnhancedYearlyComparison(_Record):
    """Rainfall record for a period with the matching temperature fields, if any."""
    year: int
    total_rainfall: float = 0.0
    average_monthly: float = 0.0
    wet_days: int = 0
    average_temperature: Optional[float] = None
    min_temperature: Optional[float] = None
    max_temperature: Optional[float] = None


# ═══════════════════════════════════════════════════════════════════════════
# Events & trends
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ExtremeEvent:
    kind: EventKind
    start: date
    end: date
    duration: int
    values: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "duration": self.duration,
            **self.values,
        }


@dataclass(frozen=True)
class Trend:
    slope: float
    intercept: float
    r_squared: float
    description: str  # Increasing | Decreasing | Stable
    n_points: int = 0
    unit: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
