"""
Health Insight Pipeline
=======================
Runs every analysis over one record-set and reports explicit health status.

Steps:
  1. Align records (contract violations propagate as RecordSetError)
  2. Correlations + hero insight
  3. Anomalies
  4. Cascades
  5. Health score + recommendations

A failing step is logged and marks the run ``degraded``; the remaining
steps still report.  If every step fails the run is ``failed``.

Usage:
    python -m pipeline.insight_pipeline records.json
    python -m pipeline.insight_pipeline records.json --target 90 --json
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date
from typing import Any, Callable, Dict, List, Mapping, Optional

from analytics.insight_scoring import select_hero_insight
from analytics.pattern_layer import PatternAnalyzer
from anomaly_detector import AnomalyDetector
from correlation_engine import CorrelationEngine
from health_score import HealthScoreCalculator
from metric_aligner import RecordSetError, align_records
from pipeline.recommenders import GeminiRecommender, RuleBasedRecommender
from pipeline.summary_builder import build_concise_summary, build_insight_digest

log = logging.getLogger("insight_pipeline")

MIN_DAYS = 5


class HealthInsightPipeline:
    """One-shot analysis of a record-set with success/degraded/failed status."""

    def __init__(self, record_set: Mapping, recommender=None,
                 min_correlation: float = 0.3, max_lag: int = 3):
        self.record_set = record_set
        self.recommender = recommender or RuleBasedRecommender()
        self.min_correlation = min_correlation
        self.max_lag = max_lag

    def run(self, target_score: int = 85, on_date: Optional[date] = None) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "analysis_status": "success",
            "degraded_reasons": [],
            "n_days": 0,
            "n_metrics": 0,
            "correlations": [],
            "hero_insight": None,
            "anomalies": [],
            "cascades": [],
            "health_score": None,
            "recommendations": [],
        }

        log.info("Step 1/5: Aligning records...")
        aligned = align_records(self.record_set)
        result["n_days"] = len(aligned.dates)
        result["n_metrics"] = len(aligned.series)
        if len(aligned.dates) < MIN_DAYS:
            log.info("   Not enough data for pattern analysis (need >= %d days).", MIN_DAYS)
            result["analysis_status"] = "degraded"
            result["degraded_reasons"].append("insufficient_daily_rows")

        engine = CorrelationEngine(aligned)
        attempted = 0
        failed = 0

        def step(label: str, reason: str, fn: Callable[[], Any]) -> Any:
            nonlocal attempted, failed
            attempted += 1
            log.info(label)
            try:
                return fn()
            except Exception as e:
                failed += 1
                log.exception("%s failed; continuing in degraded mode: %s", label.strip("."), e)
                result["analysis_status"] = "degraded"
                result["degraded_reasons"].append(reason)
                return None

        edges = step("Step 2/5: Computing correlations...", "correlation_failed",
                     lambda: engine.compute_correlations(self.min_correlation, self.max_lag))
        if edges is not None:
            result["correlations"] = edges
            result["hero_insight"] = select_hero_insight(edges, aligned)

        findings = step("Step 3/5: Detecting anomalies...", "anomaly_failed",
                        lambda: AnomalyDetector(aligned).detect_all_anomalies())
        if findings is not None:
            result["anomalies"] = findings

        cascades = step("Step 4/5: Searching cascades...", "cascade_failed",
                        lambda: PatternAnalyzer(aligned, engine).find_cascades())
        if cascades is not None:
            result["cascades"] = cascades

        scored = step("Step 5/5: Scoring health...", "score_failed",
                      lambda: self._score(target_score, on_date))
        if scored is not None:
            result["health_score"], result["recommendations"] = scored

        if attempted and failed == attempted:
            result["analysis_status"] = "failed"

        log.info(
            "\n   PIPELINE DIGEST (%d days, %d metrics)\n"
            "   Correlations : %d\n"
            "   Anomalies    : %d\n"
            "   Cascades     : %d\n"
            "   Score        : %s\n"
            "   Status       : %s",
            result["n_days"], result["n_metrics"],
            len(result["correlations"]), len(result["anomalies"]),
            len(result["cascades"]),
            result["health_score"].score if result["health_score"] else "n/a",
            result["analysis_status"],
        )
        return result

    def _score(self, target_score: int, on_date: Optional[date]):
        calc = HealthScoreCalculator(self.record_set)
        score = calc.calculate(on_date)
        recs = self.recommender.generate(
            score.score, target_score, score.breakdown, calc.snapshot(score.date)
        )
        return score, recs


def to_json_safe(result: Mapping[str, Any]) -> Dict[str, Any]:
    """Pipeline result with every dataclass flattened via to_dict()."""
    def conv(value):
        if hasattr(value, "to_dict"):
            return value.to_dict()
        if isinstance(value, list):
            return [conv(v) for v in value]
        if isinstance(value, dict):
            return {k: conv(v) for k, v in value.items()}
        if isinstance(value, date):
            return value.isoformat()
        return value

    return {k: conv(v) for k, v in result.items()}


def load_record_set(path: str) -> Dict[str, List[Dict[str, Any]]]:
    if path == "-":
        return json.load(sys.stdin)
    with open(path, "r", encoding="utf-8") as fh:
        return json.load(fh)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Health insight analysis")
    parser.add_argument("records", help="JSON record-set file ('-' for stdin)")
    parser.add_argument("--target", type=int, default=85,
                        help="Target health score (default: 85)")
    parser.add_argument("--date", type=date.fromisoformat, default=None,
                        help="Score this date (YYYY-MM-DD) instead of the latest")
    parser.add_argument("--json", action="store_true",
                        help="Print the full result as JSON")
    parser.add_argument("--ai", action="store_true",
                        help="Use the Gemini recommender (falls back to rules)")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    recommender = GeminiRecommender() if args.ai else RuleBasedRecommender()
    try:
        record_set = load_record_set(args.records)
        result = HealthInsightPipeline(record_set, recommender=recommender).run(
            target_score=args.target, on_date=args.date
        )
    except (OSError, json.JSONDecodeError, RecordSetError) as e:
        log.error("Cannot analyse %s: %s", args.records, e)
        return 2

    if args.json:
        print(json.dumps(to_json_safe(result), indent=2, ensure_ascii=False))
    else:
        print(build_insight_digest(result))
        print()
        print(build_concise_summary(result))
    return 1 if result["analysis_status"] == "failed" else 0


if __name__ == "__main__":
    sys.exit(main())
