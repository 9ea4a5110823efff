"""
Correlation Engine
==================
Pairwise same-day and time-lagged correlations between aligned metrics.

Architecture:
  Layer 0: metric_aligner builds the shared date index.
  Layer 1: Same-day Pearson over dates where both metrics have values,
           with derived-metric / trivial-pair / same-category filters.
  Layer 2: Lagged search (0..max_lag days, metric1 leading metric2) on a
           calendar gap-filled axis so a lag always means real days.

Notes:
  • Every reported r is clamped to [-0.99, 0.99].
  • ``significance`` is a heuristic confidence in [0, 1] derived from the
    t-statistic; it is NOT a calibrated p-value.  The Student-t two-sided
    ``p_value`` is attached alongside for reference only.
  • Sparse pairs (< 5 aligned points) are omitted, never raised.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats as sp_stats

from constants import (
    CORRELATION_CLAMP,
    DERIVED_METRICS,
    MIN_CORRELATION_PAIRS,
    SAME_CATEGORY_SOFT_CAP,
    TRIVIAL_SAME_CATEGORY_PAIRS,
)
from metric_aligner import AlignedMetrics, MetricSeries

log = logging.getLogger("correlation_engine")

SAME_DAY = "same-day"
TIME_LAGGED = "time-lagged"


# ─── Math helpers ─────────────────────────────────────────────


def pearson(x: Sequence[float], y: Sequence[float]) -> float:
    """Pearson r of two equal-length arrays.

    Returns NaN for fewer than 2 points and 0.0 when either side has zero
    variance.
    """
    xa = np.asarray(x, dtype=np.float64)
    ya = np.asarray(y, dtype=np.float64)
    if len(xa) < 2 or len(xa) != len(ya):
        return float("nan")
    dx = xa - xa.mean()
    dy = ya - ya.mean()
    denom = math.sqrt(float((dx * dx).sum()) * float((dy * dy).sum()))
    if denom == 0:
        return 0.0
    return float((dx * dy).sum() / denom)


def clamp_correlation(r: float) -> float:
    return max(-CORRELATION_CLAMP, min(CORRELATION_CLAMP, r))


def heuristic_significance(r: float, n: int) -> float:
    """Heuristic confidence from the t-statistic.

        t = |r| · √((n − 2) / (1 − r²))
        s = clamp(1 − 2·(1 − t/3), 0, 1)

    Only meaningful as a ranking signal between edges.
    """
    if n <= 2:
        return 0.0
    denom = 1 - r * r
    if denom <= 0:
        return 1.0
    t = abs(r) * math.sqrt((n - 2) / denom)
    return min(1.0, max(0.0, 1 - 2 * (1 - t / 3)))


def t_test_p_value(r: float, n: int) -> float:
    """Two-sided Student-t p-value for H0: r = 0."""
    if n <= 2:
        return 1.0
    if abs(r) >= 1.0:
        return 0.0
    t_stat = r * math.sqrt(n - 2) / math.sqrt(1 - r * r)
    return float(2 * sp_stats.t.sf(abs(t_stat), n - 2))


def classify_strength(r: float) -> str:
    a = abs(r)
    if a > 0.7:
        return "strong"
    if a > 0.5:
        return "moderate"
    return "weak"


def classify_direction(r: float) -> str:
    return "positive" if r >= 0 else "negative"


def aligned_pairs(x: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Keep only positions where both arrays hold finite values."""
    mask = np.isfinite(x) & np.isfinite(y)
    return x[mask], y[mask]


def time_lagged_correlation(
    x: np.ndarray,
    y: np.ndarray,
    max_lag: int = 3,
    min_pairs: int = MIN_CORRELATION_PAIRS,
) -> List[Dict[str, Any]]:
    """Correlate x[t] with y[t + lag] for lag in 0..max_lag.

    Arrays must already sit on a calendar-continuous daily axis (NaN for
    missing days).  Lags with fewer than ``min_pairs`` overlapping points,
    or a non-finite r, are left out.
    """
    n = min(len(x), len(y))
    results = []
    for lag in range(0, max_lag + 1):
        if lag >= n:
            break
        xs, ys = aligned_pairs(x[: n - lag], y[lag:n])
        if len(xs) < min_pairs:
            continue
        r = pearson(xs, ys)
        if not math.isfinite(r):
            continue
        results.append({"lag": lag, "correlation": r, "n": len(xs)})
    return results


def best_lag(
    x: np.ndarray, y: np.ndarray, max_lag: int = 3
) -> Optional[Dict[str, Any]]:
    """Lag maximising |r| with x leading y (x[t] against y[t + lag]).

    On equal |r| the smaller lag wins.
    """
    candidates = time_lagged_correlation(x, y, max_lag)
    if not candidates:
        return None
    best = candidates[0]
    for c in candidates[1:]:
        if abs(c["correlation"]) > abs(best["correlation"]):
            best = c
    return dict(best, all_lags=[dict(c) for c in candidates])


# ─── Edge ─────────────────────────────────────────────────────


@dataclass
class CorrelationEdge:
    metric1: str
    metric2: str
    category1: str
    category2: str
    label1: str
    label2: str
    correlation: float
    lag: int
    type: str
    strength: str
    direction: str
    point_count: int
    significance: float
    p_value: float
    all_lags: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def cross_category(self) -> bool:
        return self.category1 != self.category2

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _make_edge(a: MetricSeries, b: MetricSeries, r: float, lag: int,
               n: int, edge_type: str,
               all_lags: Optional[List[Dict[str, Any]]] = None) -> CorrelationEdge:
    return CorrelationEdge(
        metric1=a.name,
        metric2=b.name,
        category1=a.category,
        category2=b.category,
        label1=a.label,
        label2=b.label,
        correlation=r,
        lag=lag,
        type=edge_type,
        strength=classify_strength(r),
        direction=classify_direction(r),
        point_count=n,
        significance=heuristic_significance(r, n),
        p_value=t_test_p_value(r, n),
        all_lags=all_lags or [],
    )


def _lag_profile(best: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [
        {"lag": c["lag"], "correlation": clamp_correlation(c["correlation"]),
         "n": c["n"]}
        for c in best["all_lags"]
    ]


def is_excluded_pair(a: MetricSeries, b: MetricSeries) -> bool:
    """Derived components and physiologically obvious pairs never pair up."""
    if a.name == b.name:
        return True
    if a.name in DERIVED_METRICS or b.name in DERIVED_METRICS:
        return True
    return frozenset((a.name, b.name)) in TRIVIAL_SAME_CATEGORY_PAIRS


# ─── Engine ───────────────────────────────────────────────────


class CorrelationEngine:
    """Pairwise correlation analysis over one AlignedMetrics snapshot.

    Stateless between calls: every method recomputes from ``aligned``.
    """

    def __init__(self, aligned: AlignedMetrics):
        self.aligned = aligned

    # ─── MAIN ENTRY ───────────────────────────────────────────

    def compute_correlations(self, min_correlation: float = 0.3,
                             max_lag: int = 3) -> List[CorrelationEdge]:
        """Same-day and time-lagged edges, sorted by descending |r|."""
        series = self.aligned.series
        log.info("   Layer 1: pairwise correlations over %d metrics...", len(series))

        same_day = [s.as_array() for s in series]
        daily = self._daily_arrays() if max_lag > 0 else []

        edges: List[CorrelationEdge] = []
        n_skipped_cap = 0
        for i in range(len(series)):
            for j in range(i + 1, len(series)):
                a, b = series[i], series[j]
                if is_excluded_pair(a, b):
                    continue

                xs, ys = aligned_pairs(same_day[i], same_day[j])
                n = len(xs)
                if n < MIN_CORRELATION_PAIRS:
                    continue
                r = pearson(xs, ys)
                if not math.isfinite(r):
                    continue
                r = clamp_correlation(r)

                if a.category == b.category and abs(r) > SAME_CATEGORY_SOFT_CAP:
                    n_skipped_cap += 1
                    continue

                if abs(r) >= min_correlation:
                    edges.append(_make_edge(a, b, r, 0, n, SAME_DAY))

                if max_lag > 0 and n >= max_lag + MIN_CORRELATION_PAIRS:
                    lagged = self._lagged_edge(a, b, daily[i], daily[j],
                                               max_lag, min_correlation)
                    if lagged is not None:
                        edges.append(lagged)

        edges.sort(key=lambda e: abs(e.correlation), reverse=True)
        n_lagged = sum(1 for e in edges if e.type == TIME_LAGGED)
        log.info(
            "   Layer 1: %d same-day, %d lagged edges (%d pairs over same-category cap)",
            len(edges) - n_lagged, n_lagged, n_skipped_cap,
        )
        return edges

    def _daily_arrays(self) -> List[np.ndarray]:
        frame = self.aligned.daily_frame()
        return [frame[s.key].to_numpy(dtype=np.float64) for s in self.aligned.series]

    @staticmethod
    def _lagged_edge(a: MetricSeries, b: MetricSeries, x: np.ndarray,
                     y: np.ndarray, max_lag: int,
                     min_correlation: float) -> Optional[CorrelationEdge]:
        best = best_lag(x, y, max_lag)
        if best is None or best["lag"] == 0:
            return None
        r = clamp_correlation(best["correlation"])
        if abs(r) < min_correlation:
            return None
        return _make_edge(a, b, r, best["lag"], best["n"],
                          TIME_LAGGED, all_lags=_lag_profile(best))

    # ─── Single-pair / per-metric views ───────────────────────

    def analyze_pair(self, metric1: str, metric2: str,
                     max_lag: int = 3) -> Optional[Dict[str, Any]]:
        """Same-day r plus the full lag profile for one pair.

        None for unknown metrics, self-pairs, or fewer than 5 aligned points.
        """
        a, b = self.aligned.get(metric1), self.aligned.get(metric2)
        if a is None or b is None or a.name == b.name:
            return None
        xs, ys = aligned_pairs(a.as_array(), b.as_array())
        if len(xs) < MIN_CORRELATION_PAIRS:
            return None
        r = clamp_correlation(pearson(xs, ys))

        frame = self.aligned.daily_frame()
        best = best_lag(frame[a.key].to_numpy(dtype=np.float64),
                        frame[b.key].to_numpy(dtype=np.float64), max_lag)
        result: Dict[str, Any] = {
            "metric1": a.name,
            "metric2": b.name,
            "same_day": {
                "correlation": r,
                "point_count": len(xs),
                "significance": heuristic_significance(r, len(xs)),
                "p_value": t_test_p_value(r, len(xs)),
                "strength": classify_strength(r),
                "direction": classify_direction(r),
            },
            "lags": [],
            "best_lag": 0,
            "best_correlation": r,
        }
        if best is not None:
            result["lags"] = _lag_profile(best)
            result["best_lag"] = best["lag"]
            result["best_correlation"] = clamp_correlation(best["correlation"])
        return result

    def top_correlations_for_metric(self, name: str, top_n: int = 10,
                                    include_lagged: bool = True,
                                    min_correlation: float = 0.3,
                                    max_lag: int = 3) -> List[CorrelationEdge]:
        edges = self.compute_correlations(min_correlation, max_lag if include_lagged else 0)
        hits = [e for e in edges if name in (e.metric1, e.metric2)]
        return hits[:top_n]

    def correlation_matrix(self, names: Optional[List[str]] = None) -> pd.DataFrame:
        """Pairwise same-day r (clamped) with NaN where < 5 aligned points."""
        columns: Dict[str, np.ndarray] = {}
        for s in self.aligned.series:
            if (names is None or s.name in names) and s.name not in columns:
                columns[s.name] = s.as_array()
        data = pd.DataFrame(columns)
        R = data.corr(method="pearson", min_periods=MIN_CORRELATION_PAIRS)
        R = R.clip(lower=-CORRELATION_CLAMP, upper=CORRELATION_CLAMP)
        for c in R.columns:
            R.loc[c, c] = 1.0
        return R

    # ─── Regression ───────────────────────────────────────────

    def multi_variable_regression(self, dependent: str,
                                  independents: List[str]) -> Optional[Dict[str, Any]]:
        """Ordinary least squares of one metric on several others.

            y = β₀ + Σ βᵢ·xᵢ + ε

        Uses rows where every variable has a value.  Returns None for
        unknown metrics or fewer than (predictors + 3) rows.  Adjusted R²
        is reported because raw R² flatters small samples.
        """
        dep = self.aligned.get(dependent)
        ind = [self.aligned.get(n) for n in independents]
        if dep is None or not independents or any(s is None for s in ind):
            return None

        cols = np.column_stack([dep.as_array()] + [s.as_array() for s in ind])
        rows = cols[np.all(np.isfinite(cols), axis=1)]
        n, p = len(rows), len(independents)
        if n < p + 3:
            return None

        y = rows[:, 0]
        X = np.column_stack([np.ones(n), rows[:, 1:]])
        coef, *_ = np.linalg.lstsq(X, y, rcond=None)
        pred = X @ coef
        ss_res = float(((y - pred) ** 2).sum())
        ss_tot = float(((y - y.mean()) ** 2).sum())
        r2 = 1 - ss_res / ss_tot if ss_tot > 0 else 0.0
        adj_r2 = 1 - (1 - r2) * (n - 1) / (n - p - 1) if n - p - 1 > 0 else r2

        return {
            "dependent": dependent,
            "independents": list(independents),
            "intercept": float(coef[0]),
            "coefficients": {name: float(c) for name, c in zip(independents, coef[1:])},
            "r_squared": r2,
            "adjusted_r_squared": adj_r2,
            "n": n,
        }


def predict_with_regression(model: Optional[Dict[str, Any]],
                            values: Dict[str, float]) -> Optional[float]:
    """Apply a multi_variable_regression model; None if any input is missing."""
    if not model:
        return None
    total = model["intercept"]
    for name, coef in model["coefficients"].items():
        v = values.get(name)
        if v is None or not math.isfinite(v):
            return None
        total += coef * v
    return float(total)
