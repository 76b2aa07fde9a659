"""
Tests for series aggregation.

Covers:
    • Half-up rounding applied once, after aggregation
    • Grouping by year, month and season (winter keyed by calendar year)
    • Monthly / yearly / single-month / seasonal rainfall
    • Nearest-rank percentiles (monotone, single value, empty)
    • Temperature, wind and solar yearly comparisons
    • Null readings are skipped, never counted as zero
    • Totals conserved across grouping levels
"""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from weather_compare.app.analytics import aggregation as agg
from weather_compare.app.analytics.models import Observation, Season


def _rain(day, mm):
    return Observation(date=day, rainfall=mm)


def _year_of_rain(year, mm_for_day):
    start = date(year, 1, 1)
    days = (date(year + 1, 1, 1) - start).days
    return [_rain(start + timedelta(days=i), mm_for_day(i)) for i in range(days)]


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

class TestRound1:
    @pytest.mark.parametrize("value, expected", [
        (0.25, 0.3),
        (0.24, 0.2),
        (-0.25, -0.2),
        (12.0, 12.0),
        (0.0, 0.0),
    ])
    def test_half_up(self, value, expected):
        assert agg.round1(value) == pytest.approx(expected)

    def test_rounds_once_after_summing(self):
        # rounding each 0.04 first would give 0.0
        series = [_rain(date(2020, 1, d), 0.04) for d in range(1, 11)]
        assert agg.yearly_rainfall_comparison(series)[0].total_rainfall == pytest.approx(0.4)


class TestTopN:
    def test_largest_first(self):
        assert agg.top_n([3, 1, 2, 5], key=lambda v: v, n=2) == [5, 3]

    def test_ascending(self):
        assert agg.top_n([3, 1, 2, 5], key=lambda v: v, n=2, ascending=True) == [1, 2]

    def test_none_keys_skipped(self):
        series = [_rain(date(2020, 1, 1), None), _rain(date(2020, 1, 2), 1.0)]
        assert agg.top_n(series, key=lambda o: o.rainfall) == [series[1]]


class TestRecent:
    def test_last_entries(self, make_series):
        series = make_series(date(2020, 1, 1), "rainfall", [float(i) for i in range(40)])
        recent = agg.recent_observations(series, 5)
        assert [o.rainfall for o in recent] == [35.0, 36.0, 37.0, 38.0, 39.0]

    def test_non_positive_days(self, make_series):
        series = make_series(date(2020, 1, 1), "rainfall", [1.0])
        assert agg.recent_observations(series, 0) == []


# ═══════════════════════════════════════════════════════════════════════════
# Grouping
# ═══════════════════════════════════════════════════════════════════════════

class TestGrouping:
    def test_group_by_month_keys(self):
        series = [_rain(date(2021, 2, 1), 1), _rain(date(2020, 12, 5), 2), _rain(date(2021, 2, 3), 3)]
        groups = agg.group_by_month(series)
        assert list(groups) == ["2020-12", "2021-02"]
        assert len(groups["2021-02"]) == 2

    def test_group_by_year_sorted(self):
        series = [_rain(date(2022, 1, 1), 1), _rain(date(2020, 1, 1), 1)]
        assert list(agg.group_by_year(series)) == [2020, 2022]

    @pytest.mark.parametrize("month, season", [
        (1, Season.WINTER), (2, Season.WINTER), (3, Season.SPRING), (5, Season.SPRING),
        (6, Season.SUMMER), (8, Season.SUMMER), (9, Season.AUTUMN), (11, Season.AUTUMN),
        (12, Season.WINTER),
    ])
    def test_get_season(self, month, season):
        assert agg.get_season(date(2020, month, 15)) == season

    def test_december_and_january_in_different_winters(self):
        series = [_rain(date(2020, 12, 20), 5.0), _rain(date(2021, 1, 10), 3.0)]
        winters = agg.group_by_season(series)[Season.WINTER]
        assert sorted(winters) == [2020, 2021]


# ═══════════════════════════════════════════════════════════════════════════
# Rainfall
# ═══════════════════════════════════════════════════════════════════════════

class TestMonthlyRainfall:
    def test_month_record(self):
        series = [
            _rain(date(2020, 3, 1), 0.1),   # not a wet day: threshold is strict
            _rain(date(2020, 3, 2), 2.0),
            _rain(date(2020, 3, 3), 4.0),
        ]
        record = agg.monthly_rainfall_stats(series)[0]
        assert (record.year, record.month, record.month_name) == (2020, 3, "March")
        assert record.total == pytest.approx(6.1)
        assert record.average == pytest.approx(2.0)
        assert record.days_with_rain == 2

    def test_month_without_readings_omitted(self):
        series = [_rain(date(2020, 3, 1), None), _rain(date(2020, 4, 1), 1.0)]
        assert [r.month for r in agg.monthly_rainfall_stats(series)] == [4]

    def test_null_days_do_not_dilute_average(self):
        series = [_rain(date(2020, 3, 1), 4.0), _rain(date(2020, 3, 2), None)]
        assert agg.monthly_rainfall_stats(series)[0].average == pytest.approx(4.0)


class TestYearlyRainfall:
    def test_totals_and_monthly_average(self):
        series = _year_of_rain(2021, lambda i: 1.0)
        record = agg.yearly_rainfall_comparison(series)[0]
        assert record.year == 2021
        assert record.total_rainfall == pytest.approx(365.0)
        assert record.wet_days == 365
        assert record.average_monthly == pytest.approx(round(365 / 12, 1))

    def test_conservation_across_levels(self):
        series = _year_of_rain(2020, lambda i: (i % 7) * 0.37) + _year_of_rain(2021, lambda i: (i % 5) * 1.13)
        raw = sum(o.rainfall for o in series)
        yearly = sum(r.total_rainfall for r in agg.yearly_rainfall_comparison(series))
        monthly = sum(r.total for r in agg.monthly_rainfall_stats(series))
        assert yearly == pytest.approx(raw, abs=0.05 * 2)
        assert monthly == pytest.approx(raw, abs=0.05 * 24)

    def test_year_without_rain_readings_omitted(self):
        series = [Observation(date=date(2020, 6, 1), temperature_mean=20.0), _rain(date(2021, 6, 1), 1.0)]
        assert [r.year for r in agg.yearly_rainfall_comparison(series)] == [2021]

    def test_empty(self):
        assert agg.yearly_rainfall_comparison([]) == []


class TestMonthlyComparison:
    def test_same_month_across_years(self):
        series = (
            [_rain(date(2020, 7, d), 2.0) for d in range(1, 32)]
            + [_rain(date(2021, 7, d), 0.0) for d in range(1, 32)]
            + [_rain(date(2021, 8, 1), 50.0)]
        )
        records = agg.monthly_rainfall_comparison(series, 7)
        assert [r.year for r in records] == [2020, 2021]
        assert records[0].total_rainfall == pytest.approx(62.0)
        assert records[0].average_monthly == pytest.approx(2.0)
        # a completely dry July is still a year with data
        assert records[1].total_rainfall == 0.0
        assert records[1].wet_days == 0

    @pytest.mark.parametrize("month", [0, 13, -1])
    def test_month_out_of_range(self, month):
        with pytest.raises(ValueError):
            agg.monthly_rainfall_comparison([], month)


class TestSeasonalRainfall:
    def test_season_records(self):
        series = [
            _rain(date(2020, 6, 1), 10.0),
            _rain(date(2020, 6, 2), 0.0),
            _rain(date(2020, 7, 1), 4.0),
            _rain(date(2020, 12, 1), 1.0),
        ]
        seasons = agg.seasonal_rainfall_stats(series)
        assert list(seasons) == [Season.SUMMER, Season.WINTER]
        summer = seasons[Season.SUMMER][0]
        assert summer.total_rainfall == pytest.approx(14.0)
        assert summer.wet_days == 2
        assert summer.max_daily_rainfall == pytest.approx(10.0)
        assert summer.average_daily_rainfall == pytest.approx(4.7)
        assert summer.to_dict()["season"] == "Summer"


class TestPercentiles:
    def test_nearest_rank(self):
        values = list(range(1, 11))
        assert agg.percentile(values, 10) == 1
        assert agg.percentile(values, 25) == 3
        assert agg.percentile(values, 50) == 5
        assert agg.percentile(values, 90) == 9
        assert agg.percentile(values, 100) == 10
        assert agg.percentile(values, 0) == 1

    def test_order_of_input_irrelevant(self):
        assert agg.percentile([5, 1, 4, 2, 3], 50) == 3

    def test_single_value_is_every_percentile(self):
        assert {agg.percentile([7.5], p) for p in (10, 25, 50, 75, 90)} == {7.5}

    def test_empty_is_zero(self):
        assert agg.percentile([], 50) == 0.0

    def test_monotone(self):
        values = [0.2, 5.1, 1.1, 9.4, 3.3, 0.7, 12.8, 2.2, 4.0]
        ranked = [agg.percentile(values, p) for p in (10, 25, 50, 75, 90)]
        assert ranked == sorted(ranked)

    def test_rank_out_of_range(self):
        with pytest.raises(ValueError):
            agg.percentile([1, 2], 101)

    def test_rainfall_percentiles_exclude_dry_days(self):
        series = [_rain(date(2020, 1, d), v) for d, v in enumerate([0.0, 0.0, 0.0, 2.0, 4.0], start=1)]
        bands = agg.rainfall_percentiles(series)
        assert bands.p10 == pytest.approx(2.0)
        assert bands.p90 == pytest.approx(4.0)

    def test_rainfall_percentiles_all_dry(self):
        series = [_rain(date(2020, 1, 1), 0.0)]
        assert agg.rainfall_percentiles(series).to_dict() == {
            "p10": 0.0, "p25": 0.0, "p50": 0.0, "p75": 0.0, "p90": 0.0,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Temperature
# ═══════════════════════════════════════════════════════════════════════════

def _temp(day, mean, low, high):
    return Observation(date=day, temperature_mean=mean, temperature_min=low, temperature_max=high)


class TestTemperature:
    def test_stats(self):
        series = [_temp(date(2020, 1, 1), 4.0, -3.0, 8.0), _temp(date(2020, 1, 2), 6.0, 1.0, 11.0)]
        stats = agg.temperature_stats(series)
        assert stats.mean == pytest.approx(5.0)
        assert stats.min == pytest.approx(-3.0)
        assert stats.max == pytest.approx(11.0)
        assert stats.range == pytest.approx(14.0)

    def test_stats_empty(self):
        assert agg.temperature_stats([]).to_dict() == {"mean": 0.0, "min": 0.0, "max": 0.0, "range": 0.0}

    def test_yearly_day_counts(self):
        series = [
            _temp(date(2020, 7, 1), 22.0, 15.0, 26.0),   # warm + heatwave
            _temp(date(2020, 7, 2), 19.0, 14.0, 21.0),   # warm
            _temp(date(2020, 1, 3), -1.0, -4.0, 2.0),    # frost
            _temp(date(2020, 1, 4), 3.0, 0.0, 5.0),      # 0.0 is not a frost
        ]
        record = agg.yearly_temperature_comparison(series)[0]
        assert record.warm_days == 2
        assert record.heatwave_days == 1
        assert record.frost_days == 1

    def test_monthly_temperature(self):
        series = [_temp(date(2020, 1, 1), 2.0, -1.0, 5.0), _temp(date(2021, 1, 1), 4.0, 1.0, 7.0)]
        records = agg.monthly_temperature_comparison(series, 1)
        assert [r.mean_temperature for r in records] == [2.0, 4.0]

    def test_seasonal_temperature(self):
        series = [_temp(date(2020, 1, 1), 2.0, -1.0, 5.0), _temp(date(2020, 7, 1), 20.0, 14.0, 24.0)]
        seasons = agg.seasonal_temperature_stats(series)
        assert seasons[Season.WINTER][0].frost_days == 1
        assert seasons[Season.SUMMER][0].warm_days == 1

    def test_enhanced_yearly_merges_temperature(self):
        series = [
            Observation(date=date(2020, 5, 1), rainfall=3.0, temperature_mean=12.0,
                        temperature_min=8.0, temperature_max=16.0),
            Observation(date=date(2021, 5, 1), rainfall=1.0),
        ]
        records = agg.enhanced_yearly_comparison(series)
        assert records[0].average_temperature == pytest.approx(12.0)
        assert records[1].average_temperature is None
        assert records[1].to_dict()["max_temperature"] is None

    def test_enhanced_monthly(self):
        series = [
            Observation(date=date(2020, 5, 1), rainfall=3.0, temperature_mean=12.0),
            Observation(date=date(2020, 6, 1), rainfall=9.0, temperature_mean=18.0),
        ]
        records = agg.enhanced_monthly_comparison(series, 5)
        assert len(records) == 1
        assert records[0].total_rainfall == pytest.approx(3.0)
        assert records[0].average_temperature == pytest.approx(12.0)


# ═══════════════════════════════════════════════════════════════════════════
# Wind & solar
# ═══════════════════════════════════════════════════════════════════════════

class TestWind:
    def test_dominant_direction_wraps_north(self):
        assert agg.dominant_direction([350.0, 10.0]) == 0

    def test_dominant_direction_simple(self):
        assert agg.dominant_direction([80.0, 90.0, 100.0]) == 90

    def test_dominant_direction_cancels(self):
        assert agg.dominant_direction([0.0, 180.0]) is None
        assert agg.dominant_direction([]) is None

    def test_yearly_wind(self):
        series = [
            Observation(date=date(2020, 1, 1), wind_speed=8.0, wind_gusts=70.0, wind_direction=270.0),
            Observation(date=date(2020, 1, 2), wind_speed=20.0, wind_gusts=40.0, wind_direction=250.0),
        ]
        record = agg.yearly_wind_comparison(series)[0]
        assert record.mean_speed == pytest.approx(14.0)
        assert record.max_gust == pytest.approx(70.0)
        assert record.windy_days == 1
        assert record.calm_days == 1
        assert record.dominant_direction == 260

    def test_year_without_wind_omitted(self):
        assert agg.yearly_wind_comparison([_rain(date(2020, 1, 1), 1.0)]) == []


class TestSolar:
    def test_yearly_solar(self):
        series = [
            Observation(date=date(2020, 6, 1), solar_radiation_sum=20.0, sunshine_duration=36000.0),
            Observation(date=date(2020, 6, 2), solar_radiation_sum=10.0, sunshine_duration=18000.0),
            Observation(date=date(2020, 6, 3), solar_radiation_sum=None, sunshine_duration=None),
        ]
        record = agg.yearly_solar_comparison(series)[0]
        assert record.total_radiation == pytest.approx(30.0)
        assert record.mean_daily_radiation == pytest.approx(15.0)
        assert record.sunshine_hours == pytest.approx(15.0)
        assert record.sunny_days == 1
