"""
Anomaly Detector
================
Personal-baseline anomaly detection per metric.

Pipeline per metric:
  1. Skip metrics whose natural day-to-day variance makes flags meaningless.
  2. Baseline mean / population std from the first N valid values
     (or a trailing rolling window in "rolling" mode).
  3. z = |x − μ| / σ.  Candidate when z > threshold AND (z ≥ 3.5 OR the raw
     deviation clears a metric-specific practical minimum).
  4. Group candidates into consecutive-day runs and keep the most recent
     run if it is long enough for its metric class, or its most recent
     severe day as a single-day finding.
  5. Rank across metrics, keep one finding per category, return the top 3.

Degenerate baselines (σ = 0) and sparse metrics are skipped, never raised.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, replace
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from constants import (
    ANOMALY_EXCLUDED_METRICS,
    CATEGORY_PRIORITY,
    CLINICAL_THRESHOLDS,
    EXTREME_Z,
    FAST_CHANGING_MARKERS,
    MAX_ANOMALY_FINDINGS,
    MIN_BASELINE_POINTS,
    MIN_RUN_DEFAULT,
    MIN_RUN_FAST,
    MIN_RUN_SLOW,
    PRACTICAL_THRESHOLDS,
    SEVERE_PRACTICAL_Z,
    SEVERE_SINGLE_DAY_Z,
    SEVERITY_HIGH_Z,
    SEVERITY_MEDIUM_Z,
    SEVERITY_WEIGHT,
    SLOW_CHANGING_MARKERS,
)
from metric_aligner import AlignedMetrics, MetricSeries, format_metric_label

log = logging.getLogger("anomaly_detector")

BASELINE_MODE = "baseline"
ROLLING_MODE = "rolling"


@dataclass
class Baseline:
    mean: float
    std_dev: float
    window: int
    valid_count: int

    @property
    def is_degenerate(self) -> bool:
        return not self.std_dev > 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AnomalyEvent:
    metric: str
    date: date
    value: float
    mean: float
    std_dev: float
    z_score: float
    deviation: float
    severity: str
    practically_significant: bool = False

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["date"] = self.date.isoformat()
        return d


@dataclass
class AnomalyFinding:
    metric: str
    category: str
    label: str
    occurrences: List[AnomalyEvent]
    consecutive_days: int
    baseline_mean: float
    baseline_std_dev: float
    rank_score: float = 0.0

    @property
    def first(self) -> AnomalyEvent:
        return self.occurrences[0]

    @property
    def last_date(self) -> date:
        return self.occurrences[-1].date

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["occurrences"] = [e.to_dict() for e in self.occurrences]
        return d


# ─── Per-metric rules ─────────────────────────────────────────


def is_tracked(name: str) -> bool:
    return not any(marker in name for marker in ANOMALY_EXCLUDED_METRICS)


def practical_threshold(name: str) -> float:
    """Minimum |deviation| that matters for this metric (inf if unknown)."""
    if name in PRACTICAL_THRESHOLDS:
        return float(PRACTICAL_THRESHOLDS[name])
    for key, value in PRACTICAL_THRESHOLDS.items():
        if key in name:
            return float(value)
    return math.inf


def is_practically_significant(name: str, deviation: float) -> bool:
    return abs(deviation) >= practical_threshold(name)


def min_consecutive_days(name: str) -> int:
    if any(m in name for m in FAST_CHANGING_MARKERS):
        return MIN_RUN_FAST
    if any(m in name for m in SLOW_CHANGING_MARKERS):
        return MIN_RUN_SLOW
    return MIN_RUN_DEFAULT


def severity_for(z: float) -> str:
    if z > SEVERITY_HIGH_Z:
        return "high"
    if z > SEVERITY_MEDIUM_Z:
        return "medium"
    return "low"


def is_severe(event: AnomalyEvent) -> bool:
    return event.z_score > SEVERE_SINGLE_DAY_Z or (
        event.z_score > SEVERE_PRACTICAL_Z and event.practically_significant
    )


def check_clinical_thresholds(name: str, value: float) -> Optional[Dict[str, Any]]:
    """Compare a value to the clinical reference range, None if unknown."""
    ref = CLINICAL_THRESHOLDS.get(name)
    if ref is None:
        return None
    lo, hi, crit_lo, crit_hi = ref
    return {
        "metric": name,
        "value": value,
        "is_out_of_range": value < lo or value > hi,
        "is_critical": value < crit_lo or value > crit_hi,
        "range": (lo, hi),
        "critical_range": (crit_lo, crit_hi),
    }


# ─── Baseline math ────────────────────────────────────────────


def personal_baseline(values: Sequence[float],
                      baseline_days: int = 14) -> Optional[Baseline]:
    """Mean and population std of the first ``baseline_days`` valid values.

    None when fewer than 10 valid points are available.
    """
    window = [v for v in values[:baseline_days] if v is not None and math.isfinite(v)]
    if len(window) < MIN_BASELINE_POINTS:
        return None
    arr = np.asarray(window, dtype=np.float64)
    return Baseline(
        mean=float(arr.mean()),
        std_dev=float(arr.std(ddof=0)),
        window=baseline_days,
        valid_count=len(window),
    )


def rolling_baselines(values: Sequence[float],
                      window: int = 7) -> List[Optional[Baseline]]:
    """Trailing baseline for each position, built from the prior ``window`` values.

    Position i uses values[i-window:i] (the current value is excluded).
    The first ``window`` positions have no baseline.
    """
    s = pd.Series(values, dtype="float64")
    roll = s.rolling(window, min_periods=window)
    means = roll.mean().shift(1)
    stds = roll.std(ddof=0).shift(1)
    out: List[Optional[Baseline]] = []
    for m, sd in zip(means, stds):
        if pd.isna(m) or pd.isna(sd):
            out.append(None)
        else:
            out.append(Baseline(mean=float(m), std_dev=float(sd),
                                window=window, valid_count=window))
    return out


def z_score(value: float, baseline: Optional[Baseline]) -> Optional[float]:
    """|value − mean| / std, or None for a missing or degenerate baseline."""
    if baseline is None or baseline.is_degenerate:
        return None
    return abs(value - baseline.mean) / baseline.std_dev


def _event(name: str, d: date, value: float, baseline: Baseline,
           z: float) -> AnomalyEvent:
    deviation = value - baseline.mean
    return AnomalyEvent(
        metric=name,
        date=d,
        value=value,
        mean=baseline.mean,
        std_dev=baseline.std_dev,
        z_score=z,
        deviation=deviation,
        severity=severity_for(z),
        practically_significant=is_practically_significant(name, deviation),
    )


def _is_candidate(event: AnomalyEvent, threshold: float) -> bool:
    if event.z_score <= threshold:
        return False
    return event.z_score >= EXTREME_Z or event.practically_significant


def group_consecutive(events: Sequence[AnomalyEvent],
                      min_length: int = 1) -> List[List[AnomalyEvent]]:
    """Split date-ordered events into runs of consecutive calendar days."""
    runs: List[List[AnomalyEvent]] = []
    current: List[AnomalyEvent] = []
    for e in sorted(events, key=lambda ev: ev.date):
        if current and (e.date - current[-1].date).days == 1:
            current.append(e)
        else:
            if current:
                runs.append(current)
            current = [e]
    if current:
        runs.append(current)
    return [r for r in runs if len(r) >= min_length]


def rank_score(finding: AnomalyFinding) -> float:
    first = finding.first
    return (
        3 * SEVERITY_WEIGHT.get(first.severity, 1)
        + 2 * first.z_score
        + finding.consecutive_days
        + CATEGORY_PRIORITY.get(finding.category, 0)
    )


# ─── Detector ─────────────────────────────────────────────────


class AnomalyDetector:
    """Personal-baseline anomaly detection over one AlignedMetrics snapshot."""

    def __init__(self, aligned: AlignedMetrics):
        self.aligned = aligned

    def _points(self, series: MetricSeries) -> Tuple[List[date], List[float]]:
        pairs = [(d, v) for d, v in zip(self.aligned.dates, series.values)
                 if v is not None]
        return [d for d, _ in pairs], [v for _, v in pairs]

    # ─── Raw per-metric events ────────────────────────────────

    def _baseline_events(self, series: MetricSeries, baseline_days: int,
                         threshold: float) -> Tuple[Optional[Baseline], List[AnomalyEvent]]:
        dates, values = self._points(series)
        if len(values) < baseline_days + 1:
            return None, []
        baseline = personal_baseline(values, baseline_days)
        if baseline is None or baseline.is_degenerate:
            return baseline, []
        events = []
        for d, v in zip(dates[baseline_days:], values[baseline_days:]):
            z = z_score(v, baseline)
            ev = _event(series.name, d, v, baseline, z)
            if _is_candidate(ev, threshold):
                events.append(ev)
        return baseline, events

    def _rolling_events(self, series: MetricSeries, window: int,
                        threshold: float) -> List[AnomalyEvent]:
        dates, values = self._points(series)
        events = []
        for d, v, b in zip(dates, values, rolling_baselines(values, window)):
            z = z_score(v, b)
            if z is None:
                continue
            ev = _event(series.name, d, v, b, z)
            if _is_candidate(ev, threshold):
                events.append(ev)
        return events

    def detect_anomalies_baseline(self, name: str, baseline_days: int = 14,
                                  threshold: float = 1.8) -> List[AnomalyEvent]:
        series = self.aligned.get(name)
        if series is None:
            return []
        return self._baseline_events(series, baseline_days, threshold)[1]

    def detect_anomalies_rolling(self, name: str, window: int = 7,
                                 threshold: float = 1.8) -> List[AnomalyEvent]:
        series = self.aligned.get(name)
        if series is None:
            return []
        return self._rolling_events(series, window, threshold)

    # ─── MAIN ENTRY ───────────────────────────────────────────

    def detect_all_anomalies(self, baseline_days: int = 14,
                             rolling_window: int = 7,
                             threshold: float = 1.8,
                             min_consecutive: int = 2,
                             mode: str = BASELINE_MODE) -> List[AnomalyFinding]:
        """Ranked findings (at most 3, one per category)."""
        if mode not in (BASELINE_MODE, ROLLING_MODE):
            raise ValueError(f"unknown anomaly mode {mode!r}")
        log.info("   Layer 2: anomaly detection (%s mode)...", mode)

        findings: List[AnomalyFinding] = []
        for series in self.aligned.series:
            if not is_tracked(series.name):
                continue
            if mode == BASELINE_MODE:
                _, events = self._baseline_events(series, baseline_days, threshold)
            else:
                if series.valid_count() < baseline_days + 1:
                    continue
                events = self._rolling_events(series, rolling_window, threshold)
            if not events:
                continue
            finding = self._finding_from_events(series, events, min_consecutive)
            if finding is not None:
                findings.append(finding)

        ranked = self.rank_findings(findings)
        log.info("   Layer 2: %d metrics flagged, %d reported", len(findings), len(ranked))
        return ranked

    @staticmethod
    def _finding_from_events(series: MetricSeries, events: List[AnomalyEvent],
                             min_consecutive: int) -> Optional[AnomalyFinding]:
        runs = group_consecutive(events)
        latest = runs[-1]
        required = max(min_consecutive_days(series.name), min_consecutive)
        if len(latest) >= required:
            occurrences = latest
        else:
            severe = [e for e in latest if is_severe(e)]
            if not severe:
                return None
            occurrences = [severe[-1]]
        return AnomalyFinding(
            metric=series.name,
            category=series.category,
            label=series.label,
            occurrences=list(occurrences),
            consecutive_days=len(occurrences),
            baseline_mean=occurrences[0].mean,
            baseline_std_dev=occurrences[0].std_dev,
        )

    @staticmethod
    def rank_findings(findings: Sequence[AnomalyFinding],
                      limit: int = MAX_ANOMALY_FINDINGS) -> List[AnomalyFinding]:
        """Score, sort (ties -> most recent), keep one per category, top ``limit``."""
        scored = [replace(f, rank_score=rank_score(f)) for f in findings]
        scored.sort(key=lambda f: (-round(f.rank_score, 9), -f.last_date.toordinal()))
        out: List[AnomalyFinding] = []
        seen = set()
        for f in scored:
            if f.category in seen:
                continue
            seen.add(f.category)
            out.append(f)
            if len(out) >= limit:
                break
        return out

    # ─── Views over findings ──────────────────────────────────

    def current_anomalies(self, findings: Sequence[AnomalyFinding], days: int = 7,
                          reference_date: Optional[date] = None) -> List[AnomalyFinding]:
        """Findings trimmed to occurrences in the last ``days`` days.

        The reference date defaults to the latest aligned date so results
        stay reproducible.
        """
        ref = reference_date or (self.aligned.dates[-1] if self.aligned.dates else None)
        if ref is None:
            return []
        cutoff = ref - timedelta(days=days)
        current = []
        for f in findings:
            recent = [e for e in f.occurrences if e.date >= cutoff]
            if recent:
                current.append(replace(f, occurrences=recent,
                                       consecutive_days=len(recent)))
        return current


def anomaly_statistics(findings: Sequence[AnomalyFinding]) -> Dict[str, Any]:
    stats: Dict[str, Any] = {
        "total": 0,
        "by_severity": {"low": 0, "medium": 0, "high": 0},
        "by_metric": {},
        "consecutive_trends": 0,
    }
    for f in findings:
        stats["total"] += len(f.occurrences)
        stats["by_metric"][f.metric] = len(f.occurrences)
        if f.consecutive_days > 1:
            stats["consecutive_trends"] += 1
        for e in f.occurrences:
            stats["by_severity"][e.severity] = stats["by_severity"].get(e.severity, 0) + 1
    return stats


def _context_suggestions(event: AnomalyEvent) -> List[str]:
    suggestions = []
    if event.metric == "sleep_duration_hours" and event.value < 6:
        suggestions.append("Low sleep duration may affect next-day energy and sugar cravings")
    if event.metric == "resting_heart_rate" and event.value > 75:
        suggestions.append("Elevated resting heart rate may indicate stress or illness")
    if event.metric == "sugar_g" and event.value > 80:
        suggestions.append("High sugar intake may lead to energy crashes and affect sleep quality")
    if event.metric == "blood_pressure_systolic" and event.value > 140:
        suggestions.append("Elevated blood pressure - consider consulting a healthcare professional")
    return suggestions


def format_anomaly_alert(event: AnomalyEvent,
                         context: Optional[Dict[str, Dict[str, float]]] = None) -> Dict[str, Any]:
    """Display-ready alert: "Sleep Duration(hours) is low (-57.1% from baseline)".

    ``context`` is an optional same-day snapshot ({category: {metric: value}})
    used to attach related readings.
    """
    direction = "elevated" if event.value > event.mean else "low"
    message = f"{format_metric_label(event.metric)} is {direction}"
    if event.mean:
        pct = event.deviation / event.mean * 100
        message += f" ({'+' if pct > 0 else ''}{pct:.1f}% from baseline)"
    suggestions = _context_suggestions(event)
    if suggestions:
        message += f". {suggestions[0]}"

    related = []
    wellness = (context or {}).get("wellness", {})
    if event.metric == "sleep_duration_hours" and "energy_level" in wellness:
        related.append({"metric": "energy_level", "value": wellness["energy_level"]})
    if event.metric == "resting_heart_rate" and "stress_level" in wellness:
        related.append({"metric": "stress_level", "value": wellness["stress_level"]})

    return {
        "id": f"{event.metric}-{event.date.isoformat()}",
        "date": event.date.isoformat(),
        "metric": event.metric,
        "value": event.value,
        "severity": event.severity,
        "message": message,
        "suggestions": suggestions,
        "related_metrics": related,
        "clinical": check_clinical_thresholds(event.metric, event.value),
    }
