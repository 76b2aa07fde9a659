"""
Linear trend estimation over (year, metric) pairs.

Ordinary least squares from raw sums:

    slope     = (nΣxy − ΣxΣy) / (nΣx² − (Σx)²)
    intercept = (Σy − slope·Σx) / n
    R²        = ((nΣxy − ΣxΣy) / √((nΣx² − (Σx)²)(nΣy² − (Σy)²)))²

A line needs two points with distinct x. A label needs more: below
``min_points`` (3 by default) no trend is reported at all.

Slope thresholds are in the metric's own unit per year:

    rainfall        total mm / year
    temperature     mean °C / year
    wind            mean km/h / year
    solar           total MJ/m² / year
"""

from __future__ import annotations

import math
from typing import Dict, Iterable, Optional, Sequence, Tuple

import numpy as np

from .models import SolarComparison, TemperatureComparison, Trend, WindComparison, YearlyRainfall

INCREASING = "Increasing"
DECREASING = "Decreasing"
STABLE = "Stable"

DEFAULT_MIN_POINTS = 3

# metric → (slope threshold, unit)
TREND_THRESHOLDS: Dict[str, Tuple[float, str]] = {
    "rainfall": (0.05, "mm/year"),
    "temperature": (0.05, "°C/year"),
    "wind": (0.05, "km/h/year"),
    "solar": (0.05, "MJ/m²/year"),
}

Point = Tuple[float, float]


def classify_slope(slope: float, threshold: float = 0.05) -> str:
    if slope > threshold:
        return INCREASING
    if slope < -threshold:
        return DECREASING
    return STABLE


def linear_trend(
    points: Iterable[Point],
    threshold: float = 0.05,
    unit: str = "",
) -> Optional[Trend]:
    """Fit y = slope·x + intercept. None for < 2 points or a single distinct x."""
    data = np.asarray(list(points), dtype=float)
    if data.ndim != 2 or data.shape[0] < 2:
        return None

    x, y = data[:, 0], data[:, 1]
    n = float(x.size)
    sx, sy = x.sum(), y.sum()
    sxy, sxx, syy = (x * y).sum(), (x * x).sum(), (y * y).sum()

    x_var = n * sxx - sx * sx
    # Years are ~2000, so Σx² is ~4e7·n; compare against that scale
    if math.isclose(x_var, 0.0, abs_tol=1e-9 * max(1.0, n * sxx)):
        return None

    numerator = n * sxy - sx * sy
    slope = numerator / x_var
    intercept = (sy - slope * sx) / n

    y_var = n * syy - sy * sy
    if y_var <= 1e-9 * max(1.0, n * syy):
        r_squared = 0.0
    else:
        r_squared = min(1.0, max(0.0, numerator ** 2 / (x_var * y_var)))

    return Trend(
        slope=float(slope),
        intercept=float(intercept),
        r_squared=float(r_squared),
        description=classify_slope(float(slope), threshold),
        n_points=int(n),
        unit=unit,
    )


def estimate_trend(
    points: Sequence[Point],
    min_points: int = DEFAULT_MIN_POINTS,
    threshold: float = 0.05,
    unit: str = "",
) -> Optional[Trend]:
    """``linear_trend`` gated on a minimum sample size."""
    if len(points) < min_points:
        return None
    return linear_trend(points, threshold=threshold, unit=unit)


def _metric_trend(metric: str, points: Sequence[Point], min_points: int) -> Optional[Trend]:
    threshold, unit = TREND_THRESHOLDS[metric]
    return estimate_trend(points, min_points=min_points, threshold=threshold, unit=unit)


def rainfall_trend(
    records: Sequence[YearlyRainfall], min_points: int = DEFAULT_MIN_POINTS,
) -> Optional[Trend]:
    return _metric_trend("rainfall", [(r.year, r.total_rainfall) for r in records], min_points)


def temperature_trend(
    records: Sequence[TemperatureComparison], min_points: int = DEFAULT_MIN_POINTS,
) -> Optional[Trend]:
    return _metric_trend("temperature", [(r.year, r.mean_temperature) for r in records], min_points)


def wind_trend(
    records: Sequence[WindComparison], min_points: int = DEFAULT_MIN_POINTS,
) -> Optional[Trend]:
    return _metric_trend("wind", [(r.year, r.mean_speed) for r in records], min_points)


def solar_trend(
    records: Sequence[SolarComparison], min_points: int = DEFAULT_MIN_POINTS,
) -> Optional[Trend]:
    return _metric_trend("solar", [(r.year, r.total_radiation) for r in records], min_points)
