"""
Tests for the metric aligner.

Covers: clock-time parsing, labels, master date index, absent markers,
sparse-series dropping, structural errors, and frame/snapshot views.
"""
import sys
import os
from datetime import date, datetime

import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from metric_aligner import (
    AlignedMetrics,
    RecordSetError,
    align_records,
    format_metric_label,
    is_time_metric,
    parse_clock_time,
)


# ─── parse_clock_time ─────────────────────────────────────────


class TestParseClockTime:

    def test_hh_mm(self):
        assert parse_clock_time("14:45") == pytest.approx(14.75)

    def test_hh_mm_ss(self):
        assert parse_clock_time("07:30:36") == pytest.approx(7.51)

    def test_midnight_is_valid(self):
        assert parse_clock_time("00:00") == 0.0
        assert parse_clock_time(0) == 0.0

    def test_decimal_string_and_number(self):
        assert parse_clock_time("7.5") == 7.5
        assert parse_clock_time(22) == 22.0

    @pytest.mark.parametrize("raw", ["", "abc", "12:75", "1:2:3:4", "-1:30", None, True, [], "nan"])
    def test_unparseable_returns_none(self, raw):
        assert parse_clock_time(raw) is None

    def test_time_metric_detection(self):
        assert is_time_metric("caffeine_last_time")
        assert is_time_metric("bedtime")
        assert not is_time_metric("steps")


# ─── format_metric_label ──────────────────────────────────────


class TestFormatMetricLabel:

    def test_unit_suffix(self):
        assert format_metric_label("hrv_ms") == "HRV(ms)"

    def test_multiword_with_unit(self):
        assert format_metric_label("deep_sleep_hours") == "Deep Sleep(hours)"

    def test_no_unit(self):
        assert format_metric_label("stress_level") == "Stress Level"

    def test_empty(self):
        assert format_metric_label("") == ""


# ─── align_records ────────────────────────────────────────────


class TestAlignRecords:

    def test_master_index_is_sorted_union(self, series_records, days):
        sleep = series_records({"sleep_hours": [7, 7.5, 8, 6.5, 7, 7.2]})
        activity = series_records({"steps": [9000] * 6}, start=date(2024, 1, 3))
        aligned = align_records({"activity": activity, "sleep": sleep})
        assert aligned.dates == days(8)
        assert len(aligned) == 8

    def test_absent_days_are_none_not_zero(self, series_records):
        sleep = series_records({"sleep_hours": [7, 7.5, 8, 6.5, 7, 7.2]})
        activity = series_records({"steps": [9000] * 6}, start=date(2024, 1, 3))
        aligned = align_records({"sleep": sleep, "activity": activity})
        steps = aligned.get("steps")
        assert steps.values[:2] == [None, None]
        assert steps.valid_count() == 6
        assert np.isnan(steps.as_array()[0])

    def test_values_are_aligned_by_date(self, series_records):
        sleep = series_records({"sleep_hours": [7, 7.5, 8, 6.5, 7, 7.2]})
        aligned = align_records({"sleep": sleep})
        assert aligned.valid_points("sleep_hours")[2] == (date(2024, 1, 3), 8.0)

    def test_sparse_series_dropped(self, series_records):
        sleep = series_records({
            "sleep_hours": [7, 7.5, 8, 6.5, 7, 7.2],
            "naps": [1, None, None, 1, None, None],
        })
        aligned = align_records({"sleep": sleep})
        assert aligned.names == ["sleep_hours"]

    def test_exactly_min_points_is_dropped(self, series_records):
        sleep = series_records({"sleep_hours": [7, 7.5, 8, 6.5, 7]})
        assert align_records({"sleep": sleep}).series == []

    def test_non_numeric_field_ignored(self, series_records):
        wellness = series_records({
            "mood": [5, 6, 7, 6, 5, 6],
            "notes": ["ok"] * 6,
        })
        aligned = align_records({"wellness": wellness})
        assert aligned.names == ["mood"]

    def test_booleans_are_not_numbers(self, series_records):
        wellness = series_records({"meditated": [True, False] * 3})
        assert align_records({"wellness": wellness}).series == []

    def test_clock_time_fields_parsed(self, series_records):
        nutrition = series_records({
            "caffeine_last_time": ["14:45", "09:00", "16:30", "bad", "12:00", "13:15", "10:00"],
        })
        aligned = align_records({"nutrition": nutrition})
        s = aligned.get("caffeine_last_time")
        assert s.values[0] == pytest.approx(14.75)
        assert s.values[3] is None
        assert s.label == "Caffeine Last Time"

    def test_invalid_values_become_absent(self, series_records):
        sleep = series_records({"sleep_hours": [7, "n/a", 8, 6.5, 7, 7.2, 7.1, float("nan")]})
        s = align_records({"sleep": sleep}).get("sleep_hours")
        assert s.values[1] is None
        assert s.values[7] is None

    def test_canonical_category_order(self, series_records):
        rs = {
            "wellness": series_records({"mood": [5] * 6}),
            "sleep": series_records({"sleep_hours": [7] * 6}),
            "custom": series_records({"weight_kg": [70] * 6}),
        }
        aligned = align_records(rs)
        assert [s.category for s in aligned.series] == ["sleep", "wellness", "custom"]

    def test_duplicate_date_last_wins(self, series_records):
        sleep = series_records({"sleep_hours": [7, 7.5, 8, 6.5, 7, 7.2]})
        sleep.append({"date": "2024-01-01", "sleep_hours": 9.0})
        s = align_records({"sleep": sleep}).get("sleep_hours")
        assert s.values[0] == 9.0

    def test_date_objects_accepted(self):
        recs = [{"date": datetime(2024, 1, i, 8, 0), "steps": 1000 * i} for i in range(1, 8)]
        aligned = align_records({"activity": recs})
        assert aligned.dates[0] == date(2024, 1, 1)

    def test_none_category_is_empty(self, series_records):
        aligned = align_records({"sleep": series_records({"sleep_hours": [7] * 6}), "vitals": None})
        assert aligned.names == ["sleep_hours"]

    def test_empty_record_set(self):
        aligned = align_records({})
        assert aligned.dates == []
        assert aligned.series == []


class TestAlignRecordsErrors:

    def test_record_set_not_mapping(self):
        with pytest.raises(RecordSetError):
            align_records([{"date": "2024-01-01"}])

    def test_category_not_list(self):
        with pytest.raises(RecordSetError, match="sleep"):
            align_records({"sleep": {"date": "2024-01-01"}})

    def test_record_not_mapping(self):
        with pytest.raises(RecordSetError):
            align_records({"sleep": ["2024-01-01"]})

    def test_missing_date(self):
        with pytest.raises(RecordSetError, match="missing 'date'"):
            align_records({"sleep": [{"sleep_hours": 7}]})

    def test_unparseable_date(self):
        with pytest.raises(RecordSetError, match="unparseable"):
            align_records({"sleep": [{"date": "yesterday", "sleep_hours": 7}]})

    def test_is_value_error(self):
        assert issubclass(RecordSetError, ValueError)


# ─── AlignedMetrics views ─────────────────────────────────────


class TestAlignedViews:

    @pytest.fixture
    def aligned(self, series_records):
        sleep = series_records({"sleep_hours": [7, 7.5, 8, 6.5, 7, 7.2]})
        # Gap on 2024-01-04
        activity = [r for r in series_records({"steps": [1, 2, 3, 4, 5, 6, 7]})
                    if r["date"] != "2024-01-04"]
        return align_records({"sleep": sleep, "activity": activity})

    def test_to_frame_columns_and_index(self, aligned):
        frame = aligned.to_frame()
        assert list(frame.columns) == ["sleep.sleep_hours", "activity.steps"]
        assert frame.index.name == "date"
        assert len(frame) == 7

    def test_daily_frame_fills_calendar(self, aligned):
        frame = aligned.daily_frame()
        assert len(frame) == 7
        assert frame.index.freqstr == "D"

    def test_snapshot(self, aligned):
        snap = aligned.snapshot(date(2024, 1, 3))
        assert snap == {"sleep": {"sleep_hours": 8.0}, "activity": {"steps": 3.0}}

    def test_snapshot_unknown_date(self, aligned):
        assert aligned.snapshot(date(2030, 1, 1)) == {}

    def test_get_unknown(self, aligned):
        assert aligned.get("nope") is None
        assert aligned.valid_points("nope") == []

    def test_empty_frame(self):
        assert AlignedMetrics(dates=[]).daily_frame().empty
