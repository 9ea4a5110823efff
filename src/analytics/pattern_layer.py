"""Cascade, threshold, conditional and weekly pattern helpers over aligned metrics."""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from correlation_engine import CorrelationEdge, CorrelationEngine, pearson
from metric_aligner import AlignedMetrics

log = logging.getLogger("pattern_layer")

BIN_LABELS = ["very_low", "low", "medium", "high", "very_high"]
WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday",
            "Saturday", "Sunday"]
MIN_PATTERN_POINTS = 10
MIN_GROUP_POINTS = 5
CONDITIONAL_MIN_DIFFERENCE = 0.3
MAX_CASCADES = 10
TIMELINE_DEFAULT_METRICS = 4


@dataclass
class CascadeStep:
    metric: str
    correlation: float
    lag: int
    category: str


@dataclass
class Cascade:
    origin: str
    origin_category: str
    path: List[CascadeStep]
    steps: int
    cross_category_count: int
    strength: float
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ThresholdEffect:
    input_metric: str
    output_metric: str
    threshold_bin: int
    threshold_value: float
    effect_size: float
    threshold_bin_width: float
    quantiles: List[Dict[str, Any]] = field(default_factory=list)
    insight: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ─── Array-level helpers ──────────────────────────────────────


def quantile_bins(inputs: Sequence[float], outputs: Sequence[float],
                  n_bins: int = 5) -> List[Dict[str, Any]]:
    """Sort pairs by input and cut into ``n_bins`` equal-count bins.

    Each bin holds len // n_bins pairs; the last bin absorbs the remainder.
    """
    pairs = sorted(zip(inputs, outputs), key=lambda p: p[0])
    size = len(pairs) // n_bins
    bins = []
    for i in range(n_bins):
        chunk = pairs[i * size: len(pairs) if i == n_bins - 1 else (i + 1) * size]
        xs = np.array([p[0] for p in chunk], dtype=np.float64)
        ys = np.array([p[1] for p in chunk], dtype=np.float64)
        bins.append({
            "bin": i,
            "label": BIN_LABELS[i] if n_bins == len(BIN_LABELS) else f"q{i + 1}",
            "avg_input": float(xs.mean()),
            "avg_output": float(ys.mean()),
            "min_input": float(xs.min()),
            "max_input": float(xs.max()),
            "count": len(chunk),
        })
    return bins


def largest_jump(bins: Sequence[Dict[str, Any]]) -> Tuple[int, float]:
    """Index of the lower bin at the biggest |Δ avg_output|, and the signed Δ."""
    best_idx, best_jump = 0, 0.0
    for i in range(len(bins) - 1):
        jump = abs(bins[i + 1]["avg_output"] - bins[i]["avg_output"])
        if jump > best_jump:
            best_idx, best_jump = i, jump
    signed = bins[best_idx + 1]["avg_output"] - bins[best_idx]["avg_output"]
    return best_idx, signed


def weekday_stats(dates: Sequence[date], values: Sequence[float]) -> pd.DataFrame:
    """Per-weekday mean / population std / count, Monday first."""
    frame = pd.DataFrame({
        "weekday": [WEEKDAYS[d.weekday()] for d in dates],
        "value": list(values),
    })
    grouped = frame.groupby("weekday")["value"]
    out = pd.DataFrame({
        "mean": grouped.mean(),
        "std": grouped.std(ddof=0),
        "count": grouped.count(),
    })
    return out.reindex([d for d in WEEKDAYS if d in out.index])


# ─── Analyzer ─────────────────────────────────────────────────


class PatternAnalyzer:
    """Multi-metric pattern analysis built on the correlation graph."""

    def __init__(self, aligned: AlignedMetrics,
                 engine: Optional[CorrelationEngine] = None):
        self.aligned = aligned
        self.engine = engine or CorrelationEngine(aligned)

    def _rows(self, *names: str) -> Optional[np.ndarray]:
        """Rows where every named metric has a value, or None if a name is unknown."""
        series = [self.aligned.get(n) for n in names]
        if any(s is None for s in series):
            return None
        cols = np.column_stack([s.as_array() for s in series])
        return cols[np.all(np.isfinite(cols), axis=1)]

    # ─── Cascades ─────────────────────────────────────────────

    def find_cascades(self, max_steps: int = 3, min_correlation: float = 0.4,
                      edges: Optional[List[CorrelationEdge]] = None) -> List[Cascade]:
        """Multi-hop chains through the directed correlation graph.

        Every simple path of 2..max_steps hops whose metrics (origin
        included) touch at least two categories is a cascade.  Duplicates
        by description are dropped; ranked by mean |r| across hops.
        """
        if edges is None:
            edges = self.engine.compute_correlations(min_correlation, 3)

        graph: Dict[str, List[Dict[str, Any]]] = {}
        categories: Dict[str, str] = {}
        for e in edges:
            categories.setdefault(e.metric1, e.category1)
            categories.setdefault(e.metric2, e.category2)
            if abs(e.correlation) < min_correlation:
                continue
            graph.setdefault(e.metric1, []).append({
                "target": e.metric2, "correlation": e.correlation,
                "lag": e.lag, "category": e.category2,
            })

        found: List[Cascade] = []
        seen_desc = set()

        def walk(origin: str, node: str, visited: List[str], path: List[CascadeStep]):
            if len(path) >= 2:
                cats = {categories[origin]} | {p.category for p in path}
                desc = " → ".join([origin] + [p.metric for p in path])
                if len(cats) >= 2 and desc not in seen_desc:
                    seen_desc.add(desc)
                    found.append(Cascade(
                        origin=origin,
                        origin_category=categories[origin],
                        path=list(path),
                        steps=len(path),
                        cross_category_count=len(cats),
                        strength=sum(abs(p.correlation) for p in path) / len(path),
                        description=desc,
                    ))
            if len(path) >= max_steps:
                return
            for conn in graph.get(node, []):
                if conn["target"] in visited:
                    continue
                step = CascadeStep(metric=conn["target"], correlation=conn["correlation"],
                                   lag=conn["lag"], category=conn["category"])
                walk(origin, conn["target"], visited + [conn["target"]], path + [step])

        for origin in graph:
            walk(origin, origin, [origin], [])

        found.sort(key=lambda c: c.strength, reverse=True)
        log.info("   Cascades: %d paths found, returning %d", len(found),
                 min(len(found), MAX_CASCADES))
        return found[:MAX_CASCADES]

    # ─── Threshold / conditional ──────────────────────────────

    def threshold_effect(self, input_metric: str,
                         output_metric: str) -> Optional[ThresholdEffect]:
        """Non-linear effect of one metric on another via 5 quantile bins.

        The inflection is the mean input of the lower bin at the largest
        adjacent jump in mean output.  None with < 10 aligned pairs.
        """
        rows = self._rows(input_metric, output_metric)
        if rows is None or len(rows) < MIN_PATTERN_POINTS:
            return None
        bins = quantile_bins(rows[:, 0], rows[:, 1])
        idx, effect = largest_jump(bins)
        threshold = bins[idx]["avg_input"]

        in_label = self.aligned.get(input_metric).label
        out_label = self.aligned.get(output_metric).label
        return ThresholdEffect(
            input_metric=input_metric,
            output_metric=output_metric,
            threshold_bin=idx,
            threshold_value=threshold,
            effect_size=effect,
            threshold_bin_width=bins[idx]["max_input"] - bins[idx]["min_input"],
            quantiles=bins,
            insight=(
                f"Your optimal {in_label} is around {threshold:.1f}. Below this, "
                f"{out_label} tends to be {'lower' if effect >= 0 else 'higher'}."
            ),
        )

    def conditional_correlation(self, condition_metric: str, metric_a: str,
                                metric_b: str) -> Optional[Dict[str, Any]]:
        """Does the A↔B relationship change with the level of a third metric?

        Split at the (upper) median of the condition; high = ≥ median.
        Reported only when |r_high − r_low| > 0.3.
        """
        rows = self._rows(condition_metric, metric_a, metric_b)
        if rows is None or len(rows) < MIN_PATTERN_POINTS:
            return None
        cond = rows[:, 0]
        median = float(np.sort(cond)[len(cond) // 2])
        high, low = rows[cond >= median], rows[cond < median]
        if len(high) < MIN_GROUP_POINTS or len(low) < MIN_GROUP_POINTS:
            return None

        r_high = pearson(high[:, 1], high[:, 2])
        r_low = pearson(low[:, 1], low[:, 2])
        if not (math.isfinite(r_high) and math.isfinite(r_low)):
            return None
        difference = abs(r_low - r_high)
        if difference <= CONDITIONAL_MIN_DIFFERENCE:
            return None

        c_label = self.aligned.get(condition_metric).label
        a_label = self.aligned.get(metric_a).label
        b_label = self.aligned.get(metric_b).label
        return {
            "condition": condition_metric,
            "metric_a": metric_a,
            "metric_b": metric_b,
            "median": median,
            "correlation_when_high": r_high,
            "correlation_when_low": r_low,
            "difference": difference,
            "n_high": len(high),
            "n_low": len(low),
            "insight": (
                f"{a_label} affects {b_label} differently based on {c_label}. "
                f"When {c_label} is high: r={r_high:.2f}, when low: r={r_low:.2f}"
            ),
        }

    # ─── Weekly ───────────────────────────────────────────────

    def weekly_pattern(self, metric: str) -> Optional[Dict[str, Any]]:
        """Day-of-week profile: peak, trough, spread as % of the average weekday mean."""
        points = self.aligned.valid_points(metric)
        if not points:
            return None
        dates, values = zip(*points)
        stats = weekday_stats(dates, values)
        if len(stats) < 2:
            return None

        peak_day = stats["mean"].idxmax()
        trough_day = stats["mean"].idxmin()
        overall = float(stats["mean"].mean())
        spread = float(stats["mean"].max() - stats["mean"].min())
        variation = spread / abs(overall) * 100 if overall != 0 else None

        label = self.aligned.get(metric).label
        insight = f"Your {label} peaks on {peak_day} and dips on {trough_day}"
        if variation is not None:
            insight += f" (±{variation:.0f}%)"
        return {
            "metric": metric,
            "peak_day": peak_day,
            "peak_value": float(stats.loc[peak_day, "mean"]),
            "trough_day": trough_day,
            "trough_value": float(stats.loc[trough_day, "mean"]),
            "variation_pct": variation,
            "weekly_avg": {d: float(v) for d, v in stats["mean"].items()},
            "weekly_std": {d: float(v) for d, v in stats["std"].items()},
            "insight": insight,
        }

    # ─── Timeline / network ───────────────────────────────────

    def multi_layer_timeline(self, metrics: Optional[List[str]] = None,
                             date_range: Optional[Tuple[date, date]] = None) -> Dict[str, Any]:
        """Per-metric value-or-None layers for a date window, plus linking edges.

        With no metrics requested the most strongly correlated ones are used.
        Unknown metrics, or metrics with no value in range, are left out.
        """
        if not metrics:
            strong = self.engine.compute_correlations(0.4, 3)[:10]
            picked: List[str] = []
            for e in strong:
                for name in (e.metric1, e.metric2):
                    if name not in picked:
                        picked.append(name)
            metrics = picked[:TIMELINE_DEFAULT_METRICS]

        dates = self.aligned.dates
        if date_range is not None:
            start, end = date_range
            window = [i for i, d in enumerate(dates) if start <= d <= end]
        else:
            window = list(range(len(dates)))

        layers = []
        for name in metrics:
            s = self.aligned.get(name)
            if s is None:
                continue
            points = [{"date": dates[i].isoformat(), "value": s.values[i]} for i in window]
            if not any(p["value"] is not None for p in points):
                continue
            layers.append({"metric": name, "label": s.label,
                           "category": s.category, "data": points})

        wanted = set(metrics)
        edges = [e for e in self.engine.compute_correlations(0.3, 3)
                 if e.metric1 in wanted and e.metric2 in wanted]
        return {
            "dates": [dates[i].isoformat() for i in window],
            "layers": layers,
            "correlations": edges,
        }

    def correlation_network(self, min_correlation: float = 0.4) -> Dict[str, Any]:
        edges = self.engine.compute_correlations(min_correlation, 3)
        nodes = [{"id": s.name, "label": s.label, "category": s.category}
                 for s in self.aligned.series]
        links = [{
            "source": e.metric1, "target": e.metric2,
            "correlation": e.correlation, "strength": abs(e.correlation),
            "direction": e.direction, "lag": e.lag, "type": e.type,
        } for e in edges]
        return {
            "nodes": nodes,
            "edges": links,
            "cascades": self.find_cascades(3, min_correlation, edges=edges),
        }
