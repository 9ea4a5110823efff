"""
Tests for the personal-baseline anomaly detector.

Covers: baseline / rolling math, z-score determinism, practical thresholds,
run-length rules with the severe single-day escape, exclusions, ranking
tie-breaks, and alert formatting.
"""
import sys
import os
import math
from datetime import date, timedelta

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from anomaly_detector import (
    AnomalyDetector,
    AnomalyEvent,
    AnomalyFinding,
    anomaly_statistics,
    check_clinical_thresholds,
    format_anomaly_alert,
    group_consecutive,
    is_tracked,
    min_consecutive_days,
    personal_baseline,
    practical_threshold,
    rolling_baselines,
    severity_for,
    z_score,
)
from metric_aligner import align_records


def _jitter(center, spread, n=14):
    """Alternating center ± spread: mean == center, population std == spread."""
    return [center + spread if i % 2 else center - spread for i in range(n)]


def _detector(series_records, **categories):
    return AnomalyDetector(align_records(
        {cat: series_records(cols) for cat, cols in categories.items()}
    ))


def _event(metric="resting_heart_rate", d=date(2024, 1, 15), z=3.2, severity="high"):
    return AnomalyEvent(metric=metric, date=d, value=70.0, mean=60.0, std_dev=3.0,
                        z_score=z, deviation=10.0, severity=severity,
                        practically_significant=True)


def _finding(category, metric, d=date(2024, 1, 15), z=3.2, days=1):
    events = [_event(metric, d - timedelta(days=days - 1 - i), z) for i in range(days)]
    return AnomalyFinding(metric=metric, category=category, label=metric,
                          occurrences=events, consecutive_days=days,
                          baseline_mean=60.0, baseline_std_dev=3.0)


# ─── Baseline math ────────────────────────────────────────────


class TestBaselineMath:

    def test_personal_baseline_population_std(self):
        b = personal_baseline([1, 3] * 5, baseline_days=14)
        assert b.mean == pytest.approx(2.0)
        assert b.std_dev == pytest.approx(1.0)
        assert b.valid_count == 10

    def test_value_at_two_sigma_is_z_two(self):
        b = personal_baseline([1, 3] * 5)
        assert z_score(b.mean + 2 * b.std_dev, b) == pytest.approx(2.0)

    def test_needs_ten_points(self):
        assert personal_baseline([1, 2, 3, 4, 5, 6, 7, 8, 9]) is None

    def test_uses_only_first_window(self):
        b = personal_baseline(_jitter(7.0, 0.1) + [100.0], baseline_days=14)
        assert b.mean == pytest.approx(7.0)

    def test_degenerate_baseline_has_no_z(self):
        b = personal_baseline([5.0] * 12)
        assert b.is_degenerate
        assert z_score(9.0, b) is None
        assert z_score(9.0, None) is None

    def test_rolling_excludes_current_value(self):
        bs = rolling_baselines([1, 3, 1, 3, 10, 3], window=4)
        assert bs[:4] == [None] * 4
        assert bs[4].mean == pytest.approx(2.0)
        assert bs[4].std_dev == pytest.approx(1.0)
        # Position 5 window is [3, 1, 3, 10]
        assert bs[5].mean == pytest.approx(4.25)


# ─── Per-metric rules ─────────────────────────────────────────


class TestMetricRules:

    def test_excluded_metrics(self):
        assert not is_tracked("caffeine_cups")
        assert not is_tracked("bedtime")
        assert is_tracked("resting_heart_rate")

    def test_practical_threshold_exact_and_substring(self):
        assert practical_threshold("steps") == 3000
        assert practical_threshold("avg_resting_heart_rate") == 5
        assert math.isinf(practical_threshold("mystery_metric"))

    @pytest.mark.parametrize("name,expected", [
        ("resting_heart_rate", 2), ("stress_level", 2), ("hrv_ms", 2),
        ("weight_kg", 7), ("body_fat_percent", 7), ("steps", 3),
    ])
    def test_min_run_length(self, name, expected):
        assert min_consecutive_days(name) == expected

    @pytest.mark.parametrize("z,expected", [
        (3.01, "high"), (3.0, "medium"), (2.6, "medium"), (2.5, "low"), (1.9, "low"),
    ])
    def test_severity(self, z, expected):
        assert severity_for(z) == expected

    def test_clinical_thresholds(self):
        c = check_clinical_thresholds("sleep_duration_hours", 3.0)
        assert c["is_out_of_range"] and c["is_critical"]
        c = check_clinical_thresholds("sleep_duration_hours", 7.0)
        assert not c["is_out_of_range"] and not c["is_critical"]
        assert check_clinical_thresholds("mystery", 1.0) is None

    def test_group_consecutive(self):
        d = date(2024, 1, 10)
        events = [_event(d=d + timedelta(days=k)) for k in (0, 1, 3, 5, 6, 7)]
        runs = group_consecutive(events)
        assert [len(r) for r in runs] == [2, 1, 3]
        assert [len(r) for r in group_consecutive(events, min_length=2)] == [2, 3]


# ─── detect_all_anomalies ─────────────────────────────────────


class TestDetectAllAnomalies:

    def test_sudden_sleep_crash_reported_as_single_day(self, series_records):
        det = _detector(series_records,
                        sleep={"sleep_duration_hours": _jitter(7.0, 0.1) + [3.0]})
        findings = det.detect_all_anomalies()
        assert len(findings) == 1
        f = findings[0]
        assert f.metric == "sleep_duration_hours"
        assert f.consecutive_days == 1
        assert f.first.severity == "high"
        assert f.first.date == date(2024, 1, 15)
        assert f.first.deviation < 0

    def test_fast_metric_two_day_run(self, series_records):
        det = _detector(series_records,
                        vitals={"resting_heart_rate": _jitter(61, 1) + [70, 71]})
        f = det.detect_all_anomalies()[0]
        assert f.consecutive_days == 2
        assert [e.date for e in f.occurrences] == [date(2024, 1, 15), date(2024, 1, 16)]
        assert f.baseline_mean == pytest.approx(61.0)

    def test_short_mild_run_dropped(self, series_records):
        # z = 1.95 with a practically significant deviation, but not severe
        det = _detector(series_records, activity={"steps": _jitter(9000, 2000) + [12900]})
        assert det.detect_all_anomalies() == []

    def test_below_practical_threshold_ignored(self, series_records):
        # z = 2.5 but deviation 1250 < 3000 steps
        det = _detector(series_records, activity={"steps": _jitter(9000, 500) + [10250]})
        assert det.detect_all_anomalies() == []

    def test_extreme_z_ignores_practical_threshold(self, series_records):
        det = _detector(series_records, activity={"steps": _jitter(9000, 100) + [9500]})
        f = det.detect_all_anomalies()[0]
        assert f.first.z_score == pytest.approx(5.0)
        assert not f.first.practically_significant

    def test_excluded_metric_never_reported(self, series_records):
        det = _detector(series_records,
                        nutrition={"caffeine_cups": _jitter(2, 1) + [15, 16, 17]})
        assert det.detect_all_anomalies() == []

    def test_zero_variance_baseline_skipped(self, series_records):
        det = _detector(series_records, sleep={"sleep_duration_hours": [7.0] * 14 + [3.0]})
        assert det.detect_all_anomalies() == []

    def test_short_history_skipped(self, series_records):
        det = _detector(series_records, sleep={"sleep_duration_hours": _jitter(7.0, 0.1, n=10) + [3.0]})
        assert det.detect_all_anomalies() == []

    def test_one_finding_per_category(self, series_records):
        det = _detector(series_records, vitals={
            "resting_heart_rate": _jitter(61, 1) + [75],
            "blood_pressure_systolic": _jitter(120, 2) + [150],
        })
        findings = det.detect_all_anomalies()
        assert len(findings) == 1
        assert findings[0].category == "vitals"

    def test_rolling_mode(self, series_records):
        det = _detector(series_records,
                        sleep={"sleep_duration_hours": _jitter(7.0, 0.1) + [3.0]})
        findings = det.detect_all_anomalies(mode="rolling")
        assert findings[0].first.date == date(2024, 1, 15)
        events = det.detect_anomalies_rolling("sleep_duration_hours")
        assert [e.date for e in events] == [date(2024, 1, 15)]

    def test_unknown_mode(self, series_records):
        det = _detector(series_records, sleep={"sleep_duration_hours": _jitter(7.0, 0.1)})
        with pytest.raises(ValueError):
            det.detect_all_anomalies(mode="weekly")

    def test_unknown_metric(self, series_records):
        det = _detector(series_records, sleep={"sleep_duration_hours": _jitter(7.0, 0.1)})
        assert det.detect_anomalies_baseline("nope") == []
        assert det.detect_anomalies_rolling("nope") == []


# ─── Ranking ──────────────────────────────────────────────────


class TestRanking:

    def test_category_priority_breaks_ties(self):
        findings = [
            _finding("activity", "steps"),
            _finding("wellness", "stress_level"),
            _finding("vitals", "resting_heart_rate"),
            _finding("sleep", "sleep_duration_hours"),
        ]
        ranked = AnomalyDetector.rank_findings(findings)
        assert [f.category for f in ranked] == ["vitals", "sleep", "wellness"]

    def test_recency_breaks_remaining_ties(self):
        older = _finding("custom_a", "x", d=date(2024, 1, 10))
        newer = _finding("custom_b", "y", d=date(2024, 1, 12))
        ranked = AnomalyDetector.rank_findings([older, newer])
        assert [f.metric for f in ranked] == ["y", "x"]

    def test_higher_z_wins(self):
        low = _finding("vitals", "resting_heart_rate", z=3.1)
        high = _finding("activity", "steps", z=9.0)
        ranked = AnomalyDetector.rank_findings([low, high])
        assert ranked[0].metric == "steps"
        assert ranked[0].rank_score > ranked[1].rank_score

    def test_limit(self):
        findings = [_finding(f"cat{i}", f"m{i}") for i in range(6)]
        assert len(AnomalyDetector.rank_findings(findings)) == 3


# ─── Views & formatting ───────────────────────────────────────


class TestViews:

    def test_current_anomalies_trims_old_occurrences(self, series_records):
        det = _detector(series_records, vitals={"resting_heart_rate": _jitter(61, 1) + [70] * 10})
        findings = [_finding("vitals", "resting_heart_rate", d=date(2024, 1, 24), days=10)]
        current = det.current_anomalies(findings, days=3)
        assert current[0].consecutive_days == 4
        assert current[0].first.date == date(2024, 1, 21)

    def test_current_anomalies_empty(self):
        assert AnomalyDetector(align_records({})).current_anomalies([]) == []

    def test_statistics(self):
        findings = [_finding("vitals", "resting_heart_rate", days=2),
                    _finding("sleep", "sleep_duration_hours", z=2.7)]
        stats = anomaly_statistics(findings)
        assert stats["total"] == 3
        assert stats["by_metric"] == {"resting_heart_rate": 2, "sleep_duration_hours": 1}
        assert stats["consecutive_trends"] == 1
        assert stats["by_severity"]["high"] == 3

    def test_alert_format(self):
        ev = AnomalyEvent(metric="sleep_duration_hours", date=date(2024, 1, 15),
                          value=3.0, mean=7.0, std_dev=0.1, z_score=40.0,
                          deviation=-4.0, severity="high", practically_significant=True)
        alert = format_anomaly_alert(ev, {"wellness": {"energy_level": 3}})
        assert alert["id"] == "sleep_duration_hours-2024-01-15"
        assert alert["message"].startswith("Sleep Duration(hours) is low (-57.1% from baseline)")
        assert alert["suggestions"]
        assert alert["related_metrics"] == [{"metric": "energy_level", "value": 3}]
        assert alert["clinical"]["is_critical"]

    def test_finding_to_dict_is_json_friendly(self):
        d = _finding("vitals", "resting_heart_rate").to_dict()
        assert d["occurrences"][0]["date"] == "2024-01-15"
