"""
Tests for streak-based extreme event detection.

Covers:
    • Drought runs (whole series, broken run, below-minimum tail)
    • Heat-wave runs broken by a single cool day
    • Minimum length boundary (min − 1 not emitted, min emitted)
    • Tracked extremes cover exactly the run, not the whole series
    • Runs break on nulls and on calendar gaps
    • A run still open at the end of the series is emitted
    • Wind, calm and solar rules
"""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from weather_compare.app.analytics import events as ev
from weather_compare.app.analytics.models import EventKind, Observation

START = date(2023, 7, 1)


# ═══════════════════════════════════════════════════════════════════════════
# Drought
# ═══════════════════════════════════════════════════════════════════════════

class TestDrought:
    def test_ten_dry_days_is_one_event(self, make_series):
        events = ev.detect_droughts(make_series(START, "rainfall", [0.5] * 10))
        assert len(events) == 1
        assert events[0].kind == EventKind.DROUGHT
        assert events[0].duration == 10
        assert events[0].start == START
        assert events[0].end == START + timedelta(days=9)

    def test_wet_day_splits_run(self, make_series):
        values = [0.5] * 10
        values[7] = 2.0
        events = ev.detect_droughts(make_series(START, "rainfall", values))
        # days 1-7 qualify; days 9-10 are too short to report
        assert [e.duration for e in events] == [7]
        assert events[0].end == START + timedelta(days=6)

    def test_one_short_of_minimum(self, make_series):
        assert ev.detect_droughts(make_series(START, "rainfall", [0.0] * 6)) == []

    def test_threshold_is_strict(self, make_series):
        assert ev.detect_droughts(make_series(START, "rainfall", [1.0] * 10)) == []

    def test_max_rainfall_tracked_for_run_only(self, make_series):
        values = [30.0] + [0.2, 0.9, 0.1, 0.0, 0.4, 0.3, 0.5] + [25.0]
        events = ev.detect_droughts(make_series(START, "rainfall", values))
        assert len(events) == 1
        assert events[0].values == {"max_rainfall": pytest.approx(0.9)}

    def test_two_separate_droughts(self, make_series):
        values = [0.0] * 8 + [5.0] + [0.0] * 7
        events = ev.detect_droughts(make_series(START, "rainfall", values))
        assert [e.duration for e in events] == [8, 7]


# ═══════════════════════════════════════════════════════════════════════════
# Heat and cold
# ═══════════════════════════════════════════════════════════════════════════

class TestHeatWave:
    def test_cool_day_breaks_run(self, make_series):
        series = make_series(START, "temperature_max", [26.0, 27.0, 24.0, 28.0])
        # runs of 2 and 1 are both below the three-day minimum
        assert ev.detect_heat_waves(series) == []

    def test_cool_day_with_two_day_minimum(self, make_series):
        rule = ev.StreakRule(
            kind=EventKind.HEAT_WAVE,
            field="temperature_max",
            predicate=lambda v: v > 25.0,
            min_length=2,
            trackers=(ev.Tracker("max_temperature", "temperature_max"),),
        )
        series = make_series(START, "temperature_max", [26.0, 27.0, 24.0, 28.0])
        events = ev.detect_streaks(series, rule)
        assert len(events) == 1
        assert events[0].start == START
        assert events[0].duration == 2
        assert events[0].values["max_temperature"] == 27.0

    def test_three_hot_days(self, make_series):
        series = make_series(START, "temperature_max", [20.0, 26.0, 31.5, 27.0, 22.0])
        events = ev.detect_heat_waves(series)
        assert len(events) == 1
        assert events[0].duration == 3
        assert events[0].values["max_temperature"] == 31.5


class TestColdSnap:
    def test_min_temperature_tracked(self, make_series):
        series = make_series(date(2021, 1, 5), "temperature_min", [-3.0, -7.5, -2.5, -1.0])
        events = ev.detect_cold_snaps(series)
        assert len(events) == 1
        assert events[0].values == {"min_temperature": -7.5}

    def test_exactly_minus_two_does_not_qualify(self, make_series):
        series = make_series(date(2021, 1, 5), "temperature_min", [-2.0, -2.0, -2.0])
        assert ev.detect_cold_snaps(series) == []


# ═══════════════════════════════════════════════════════════════════════════
# Run boundaries
# ═══════════════════════════════════════════════════════════════════════════

class TestRunBoundaries:
    def test_null_reading_breaks_run(self, make_series):
        values = [0.0, 0.0, 0.0, 0.0, None, 0.0, 0.0, 0.0, 0.0]
        assert ev.detect_droughts(make_series(START, "rainfall", values)) == []

    def test_calendar_gap_breaks_run(self):
        series = [Observation(date=START + timedelta(days=i), rainfall=0.0) for i in range(4)]
        series += [Observation(date=START + timedelta(days=i), rainfall=0.0) for i in range(5, 9)]
        assert ev.detect_droughts(series) == []

    def test_open_run_flushed_at_end(self, make_series):
        values = [5.0, 5.0] + [0.0] * 7
        events = ev.detect_droughts(make_series(START, "rainfall", values))
        assert len(events) == 1
        assert events[0].end == START + timedelta(days=8)

    def test_empty_series(self):
        assert ev.detect_droughts([]) == []

    def test_event_to_dict_flattens_values(self, make_series):
        event = ev.detect_droughts(make_series(START, "rainfall", [0.0] * 7))[0]
        d = event.to_dict()
        assert d["kind"] == "drought"
        assert d["start"] == "2023-07-01"
        assert d["end"] == "2023-07-07"
        assert d["duration"] == 7
        assert d["max_rainfall"] == 0.0


# ═══════════════════════════════════════════════════════════════════════════
# Wind & solar
# ═══════════════════════════════════════════════════════════════════════════

class TestWindEvents:
    def test_strong_wind_tracks_gust_and_speed(self):
        series = [
            Observation(date=START + timedelta(days=i), wind_gusts=g, wind_speed=s)
            for i, (g, s) in enumerate([(65.0, 30.0), (80.0, 25.0), (62.0, 41.0)])
        ]
        events = ev.detect_strong_wind(series)
        assert len(events) == 1
        assert events[0].values == {"max_gust": 80.0, "max_speed": 41.0}

    def test_calm_period_mean_speed(self, make_series):
        series = make_series(START, "wind_speed", [2.0, 4.0, 6.0, 8.0, 5.0])
        events = ev.detect_calm_periods(series)
        assert len(events) == 1
        assert events[0].values["mean_speed"] == pytest.approx(5.0)

    def test_tracker_without_readings_is_omitted(self, make_series):
        series = make_series(START, "wind_gusts", [70.0, 70.0, 70.0])
        assert ev.detect_strong_wind(series)[0].values == {"max_gust": 70.0}


class TestSolarEvents:
    def test_solar_peak(self, make_series):
        series = make_series(START, "solar_radiation_sum", [19.0, 22.5, 18.5])
        events = ev.detect_solar_peaks(series)
        assert events[0].values == {"max_radiation": 22.5}

    def test_low_solar(self, make_series):
        series = make_series(date(2022, 12, 1), "solar_radiation_sum", [1.2, 0.8, 2.0, 3.1, 6.9])
        events = ev.detect_low_solar(series)
        assert events[0].duration == 5
        assert events[0].values == {"min_radiation": 0.8}


class TestDetectAll:
    def test_every_kind_present(self, make_series):
        result = ev.detect_all_events(make_series(START, "rainfall", [0.0] * 7))
        assert set(result) == set(EventKind)
        assert len(result[EventKind.DROUGHT]) == 1
        assert result[EventKind.HEAT_WAVE] == []

    def test_subset_of_rules(self, make_series):
        result = ev.detect_all_events(make_series(START, "rainfall", [0.0] * 7), (ev.DROUGHT,))
        assert list(result) == [EventKind.DROUGHT]


class TestRuleValidation:
    def test_unknown_reducer(self):
        with pytest.raises(ValueError):
            ev.Tracker("x", "rainfall", "median")

    def test_min_length_must_be_positive(self):
        with pytest.raises(ValueError):
            ev.StreakRule(EventKind.DROUGHT, "rainfall", lambda v: True, 0)
