"""
Streak-based extreme event detection.

A streak rule names an observation field, a predicate over its value and a
minimum run length. ``detect_streaks`` makes one forward pass and emits an
``ExtremeEvent`` for every maximal run of consecutive qualifying days that
is at least that long.

A run ends when:
    • the predicate fails,
    • the field is missing (``None``) on that day, or
    • the calendar skips a day (a gap in the series is "no observation",
      so it cannot extend a streak).

``end`` is the last qualifying date, never the date that broke the run. A
run still open when the series ends is flushed with the final date.

Event rules:
    drought       rainfall < 1.0 mm        ≥ 7 days   max_rainfall
    heat wave     max temp > 25 °C         ≥ 3 days   max_temperature
    cold snap     min temp < −2 °C         ≥ 3 days   min_temperature
    strong wind   gusts > 60 km/h          ≥ 3 days   max_gust, max_speed
    calm period   wind speed < 10 km/h     ≥ 5 days   mean_speed
    solar peak    radiation > 18 MJ/m²     ≥ 3 days   max_radiation
    low solar     radiation < 7 MJ/m²      ≥ 5 days   min_radiation
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .models import EventKind, ExtremeEvent, Observation

logger = logging.getLogger(__name__)

REDUCERS = ("max", "min", "mean")


@dataclass(frozen=True)
class Tracker:
    """Reduce ``field`` over a run with max, min or mean; reported as ``name``."""
    name: str
    field: str
    reduce: str = "max"

    def __post_init__(self):
        if self.reduce not in REDUCERS:
            raise ValueError(f"Unknown reducer {self.reduce!r}, expected one of {REDUCERS}")


@dataclass(frozen=True)
class StreakRule:
    kind: EventKind
    field: str
    predicate: Callable[[float], bool]
    min_length: int
    trackers: Tuple[Tracker, ...] = ()

    def __post_init__(self):
        if self.min_length < 1:
            raise ValueError("min_length must be at least 1")


class _Run:
    """Open streak: bounds, length and the running tracker state."""

    __slots__ = ("start", "end", "length", "_acc")

    def __init__(self, obs: Observation, trackers: Sequence[Tracker]):
        self.start = obs.date
        self.end = obs.date
        self.length = 0
        # max/min keep the extreme so far; mean keeps [sum, count]
        self._acc: Dict[str, List[float]] = {}
        self.extend(obs, trackers)

    def extend(self, obs: Observation, trackers: Sequence[Tracker]) -> None:
        self.end = obs.date
        self.length += 1
        for t in trackers:
            value = getattr(obs, t.field)
            if value is None:
                continue
            acc = self._acc.get(t.name)
            if acc is None:
                self._acc[t.name] = [value, 1]
            elif t.reduce == "max":
                acc[0] = max(acc[0], value)
            elif t.reduce == "min":
                acc[0] = min(acc[0], value)
            else:
                acc[0] += value
                acc[1] += 1

    def values(self, trackers: Sequence[Tracker]) -> Dict[str, float]:
        out: Dict[str, float] = {}
        for t in trackers:
            acc = self._acc.get(t.name)
            if acc is None:
                continue
            out[t.name] = acc[0] / acc[1] if t.reduce == "mean" else acc[0]
        return out


def detect_streaks(series: Iterable[Observation], rule: StreakRule) -> List[ExtremeEvent]:
    """Every maximal qualifying run of at least ``rule.min_length`` days."""
    events: List[ExtremeEvent] = []
    run: Optional[_Run] = None

    def flush() -> None:
        if run is not None and run.length >= rule.min_length:
            events.append(ExtremeEvent(
                kind=rule.kind,
                start=run.start,
                end=run.end,
                duration=run.length,
                values=run.values(rule.trackers),
            ))

    for obs in series:
        value = getattr(obs, rule.field)
        qualifies = value is not None and rule.predicate(value)

        if not qualifies:
            flush()
            run = None
        elif run is not None and obs.date == run.end + timedelta(days=1):
            run.extend(obs, rule.trackers)
        else:
            flush()
            run = _Run(obs, rule.trackers)

    flush()
    return events


# ═══════════════════════════════════════════════════════════════════════════
# Rules
# ═══════════════════════════════════════════════════════════════════════════

DROUGHT = StreakRule(
    kind=EventKind.DROUGHT,
    field="rainfall",
    predicate=lambda v: v < 1.0,
    min_length=7,
    trackers=(Tracker("max_rainfall", "rainfall", "max"),),
)

HEAT_WAVE = StreakRule(
    kind=EventKind.HEAT_WAVE,
    field="temperature_max",
    predicate=lambda v: v > 25.0,
    min_length=3,
    trackers=(Tracker("max_temperature", "temperature_max", "max"),),
)

COLD_SNAP = StreakRule(
    kind=EventKind.COLD_SNAP,
    field="temperature_min",
    predicate=lambda v: v < -2.0,
    min_length=3,
    trackers=(Tracker("min_temperature", "temperature_min", "min"),),
)

STRONG_WIND = StreakRule(
    kind=EventKind.STRONG_WIND,
    field="wind_gusts",
    predicate=lambda v: v > 60.0,
    min_length=3,
    trackers=(
        Tracker("max_gust", "wind_gusts", "max"),
        Tracker("max_speed", "wind_speed", "max"),
    ),
)

CALM_PERIOD = StreakRule(
    kind=EventKind.CALM_PERIOD,
    field="wind_speed",
    predicate=lambda v: v < 10.0,
    min_length=5,
    trackers=(Tracker("mean_speed", "wind_speed", "mean"),),
)

SOLAR_PEAK = StreakRule(
    kind=EventKind.SOLAR_PEAK,
    field="solar_radiation_sum",
    predicate=lambda v: v > 18.0,
    min_length=3,
    trackers=(Tracker("max_radiation", "solar_radiation_sum", "max"),),
)

LOW_SOLAR = StreakRule(
    kind=EventKind.LOW_SOLAR,
    field="solar_radiation_sum",
    predicate=lambda v: v < 7.0,
    min_length=5,
    trackers=(Tracker("min_radiation", "solar_radiation_sum", "min"),),
)

ALL_RULES: Tuple[StreakRule, ...] = (
    DROUGHT, HEAT_WAVE, COLD_SNAP, STRONG_WIND, CALM_PERIOD, SOLAR_PEAK, LOW_SOLAR,
)


def detect_droughts(series: Iterable[Observation]) -> List[ExtremeEvent]:
    return detect_streaks(series, DROUGHT)


def detect_heat_waves(series: Iterable[Observation]) -> List[ExtremeEvent]:
    return detect_streaks(series, HEAT_WAVE)


def detect_cold_snaps(series: Iterable[Observation]) -> List[ExtremeEvent]:
    return detect_streaks(series, COLD_SNAP)


def detect_strong_wind(series: Iterable[Observation]) -> List[ExtremeEvent]:
    return detect_streaks(series, STRONG_WIND)


def detect_calm_periods(series: Iterable[Observation]) -> List[ExtremeEvent]:
    return detect_streaks(series, CALM_PERIOD)


def detect_solar_peaks(series: Iterable[Observation]) -> List[ExtremeEvent]:
    return detect_streaks(series, SOLAR_PEAK)


def detect_low_solar(series: Iterable[Observation]) -> List[ExtremeEvent]:
    return detect_streaks(series, LOW_SOLAR)


def detect_all_events(
    series: Sequence[Observation],
    rules: Sequence[StreakRule] = ALL_RULES,
) -> Dict[EventKind, List[ExtremeEvent]]:
    """Run every rule over the series; kinds with no events map to []."""
    result = {rule.kind: detect_streaks(series, rule) for rule in rules}
    logger.debug(
        "Detected events over %d days: %s",
        len(series), {k.value: len(v) for k, v in result.items() if v},
    )
    return result
