"""
Tests for the summary builder module.

Covers: build_insight_digest sections and build_concise_summary bullets,
for both dataclass results and plain-dict results.
"""
import sys
import os
from datetime import date

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from anomaly_detector import AnomalyEvent, AnomalyFinding
from pipeline.recommenders import Recommendation
from pipeline.summary_builder import build_concise_summary, build_insight_digest


def _result(**overrides):
    event = AnomalyEvent(metric="resting_heart_rate", date=date(2024, 1, 30), value=78.0,
                         mean=62.0, std_dev=1.0, z_score=16.0, deviation=16.0,
                         severity="high", practically_significant=True)
    base = {
        "analysis_status": "success",
        "degraded_reasons": [],
        "n_days": 30,
        "n_metrics": 9,
        "correlations": [{
            "metric1": "sleep_duration_hours", "metric2": "energy_level",
            "label1": "Sleep Duration(hours)", "label2": "Energy Level",
            "correlation": 0.93, "lag": 0, "strength": "strong",
        }],
        "hero_insight": {
            "metric1": "caffeine_last_time", "metric2": "sleep_quality_score",
            "label1": "Caffeine Last Time", "label2": "Sleep Quality Score",
            "correlation": -0.61, "lag": 1, "strength": "moderate",
        },
        "anomalies": [AnomalyFinding(
            metric="resting_heart_rate", category="vitals", label="Resting Heart Rate",
            occurrences=[event], consecutive_days=1, baseline_mean=62.0, baseline_std_dev=1.0,
        )],
        "cascades": [{"description": "sleep_duration_hours → sugar_g → steps", "strength": 0.7}],
        "health_score": {"score": 72, "breakdown": {"sleep": {"score": 80.0}},
                         "insights": [{"message": "High sugar intake may be affecting sleep quality"}]},
        "recommendations": [Recommendation("activity", "steps", "Add 3000 steps",
                                           "walk after dinner", 6.0, "high")],
    }
    base.update(overrides)
    return base


# ─── build_insight_digest ─────────────────────────────────────


class TestBuildInsightDigest:

    def test_sections_present(self):
        text = build_insight_digest(_result())
        assert "HEALTH INSIGHTS  (30 days, 9 metrics)" in text
        assert "Health score: 72/100" in text
        assert "High sugar intake" in text
        assert "Top insight:" in text
        assert "Caffeine Last Time -> Sleep Quality Score: r=-0.61 (moderate, 1 day later)" in text
        assert "Sleep Duration(hours) -> Energy Level: r=+0.93 (strong, same day)" in text
        assert "Resting Heart Rate: 78 (above baseline 62.0, z=+16.0, 1 day, high)" in text
        assert "sleep_duration_hours → sugar_g → steps (strength 0.70)" in text
        assert "1. Add 3000 steps (+6.0 pts)" in text

    def test_success_has_no_status_line(self):
        assert "Status:" not in build_insight_digest(_result())

    def test_degraded_status_line(self):
        text = build_insight_digest(_result(analysis_status="degraded",
                                            degraded_reasons=["anomaly_failed"]))
        assert "Status: DEGRADED (anomaly_failed)" in text

    def test_empty_result(self):
        text = build_insight_digest({})
        assert "Health score: n/a" in text
        assert "None above threshold." in text
        assert "Nothing unusual." in text
        assert "Recommendations:" not in text

    def test_only_top_five_correlations(self):
        edge = _result()["correlations"][0]
        text = build_insight_digest(_result(correlations=[edge] * 8))
        assert "Correlations (8):" in text
        assert text.count("Energy Level: r=+0.93") == 5


# ─── build_concise_summary ────────────────────────────────────


class TestBuildConciseSummary:

    def test_empty_input_returns_defaults(self):
        result = build_concise_summary({})
        assert "What changed" in result
        assert "Why it matters" in result
        assert "Next 24-48h" in result
        assert "Insufficient data" in result

    def test_none_input_returns_defaults(self):
        assert "Insufficient data" in build_concise_summary(None)

    def test_three_bullets_from_result(self):
        lines = build_concise_summary(_result()).strip().split("\n")
        assert len(lines) == 3
        assert lines[0].startswith("- What changed: Resting Heart Rate: 78")
        assert lines[1].startswith("- Why it matters: Caffeine Last Time -> Sleep Quality Score")
        assert lines[2] == "- Next 24-48h: Add 3000 steps"

    def test_fallback_sentences(self):
        text = build_concise_summary(_result(anomalies=[], recommendations=[]))
        assert "No metric moved outside its personal baseline." in text
        assert "at or above target" in text

    def test_truncation_of_long_lines(self):
        rec = Recommendation("sleep", "duration", "Sleep " + "x" * 500, None, 1.0, "high")
        result = build_concise_summary(_result(recommendations=[rec]))
        for line in result.split("\n"):
            assert len(line) <= 280
        assert result.endswith("...")
