"""Multi-factor ranking of correlation edges into a single "hero" insight.

Weights: correlation strength 25%, cross-category distance 30%,
surprise 20%, actionability 15%, impact (Cohen's d) 10%.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from correlation_engine import CorrelationEdge
from metric_aligner import AlignedMetrics

FACTOR_WEIGHTS = {
    "correlation": 0.25,
    "cross_category": 0.30,
    "surprise": 0.20,
    "actionability": 0.15,
    "impact": 0.10,
}

CATEGORY_DISTANCE = {
    frozenset(("sleep", "nutrition")): 100,
    frozenset(("sleep", "activity")): 90,
    frozenset(("nutrition", "activity")): 85,
    frozenset(("wellness", "nutrition")): 80,
    frozenset(("sleep", "wellness")): 75,
    frozenset(("activity", "wellness")): 70,
}
VITALS_DISTANCE = 95
DEFAULT_DISTANCE = 60

OBVIOUS_PAIRS = [
    ("workout_performance", "mood"), ("workout_performance", "energy"),
    ("exercise_minutes", "calories_burned"), ("sleep_quality", "energy_level"),
    ("stress_level", "mood"), ("steps", "calories_burned"),
    ("workout", "mood"), ("exercise", "energy"), ("steps", "distance"),
]
SURPRISING_PAIRS = [
    ("sleep", "sugar"), ("caffeine", "sleep"), ("resting_heart_rate", "illness"),
    ("hydration", "energy"), ("meal_timing", "weight"),
    ("screen_time_before_bed", "sleep"), ("social_interactions", "sleep"),
    ("screen_time", "sleep"),
]
CONTROLLABLE = [
    "caffeine_cups", "caffeine_last_time", "water_glasses",
    "screen_time_before_bed", "bedtime", "meal_last_time", "dinner_time",
    "workout_time", "meditation_minutes", "alcohol_units",
]
SOMEWHAT_CONTROLLABLE = ["sleep_duration", "exercise_minutes", "stress_level", "calories"]


def _pair_matches(m1: str, m2: str, a: str, b: str) -> bool:
    return (a in m1 and b in m2) or (b in m1 and a in m2)


def correlation_factor(r: float) -> float:
    a = abs(r)
    if a < 0.4:
        return 0.0
    return min(100.0, (a - 0.4) / 0.6 * 100)


def cross_category_factor(cat1: str, cat2: str) -> float:
    if cat1 == cat2:
        return 0.0
    if "vitals" in (cat1, cat2):
        return float(VITALS_DISTANCE)
    return float(CATEGORY_DISTANCE.get(frozenset((cat1, cat2)), DEFAULT_DISTANCE))


def surprise_factor(metric1: str, metric2: str) -> float:
    m1, m2 = metric1.lower(), metric2.lower()
    if any(_pair_matches(m1, m2, a, b) for a, b in OBVIOUS_PAIRS):
        return 20.0
    if any(_pair_matches(m1, m2, a, b) for a, b in SURPRISING_PAIRS):
        return 100.0
    return 60.0


def actionability_factor(metric1: str, metric2: str) -> float:
    names = (metric1.lower(), metric2.lower())
    if any(c in n for n in names for c in CONTROLLABLE):
        return 100.0
    if any(c in n for n in names for c in SOMEWHAT_CONTROLLABLE):
        return 60.0
    return 20.0


def impact_factor(x: Sequence[float], y: Sequence[float]) -> float:
    """Cohen's d of y between the low and high halves of x (median split)."""
    xa = np.asarray(x, dtype=np.float64)
    ya = np.asarray(y, dtype=np.float64)
    mask = np.isfinite(xa) & np.isfinite(ya)
    xa, ya = xa[mask], ya[mask]
    if len(xa) < 5:
        return 0.0
    median = np.sort(xa)[len(xa) // 2]
    low, high = ya[xa < median], ya[xa >= median]
    if len(low) == 0 or len(high) == 0:
        return 0.0
    pooled = np.sqrt((low.var() + high.var()) / 2)
    if pooled == 0:
        return 0.0
    d = abs(high.mean() - low.mean()) / pooled
    if d < 0.2:
        return 10.0
    if d < 0.5:
        return 40.0
    if d < 0.8:
        return 70.0
    return 100.0


def score_edge(edge: CorrelationEdge, aligned: Optional[AlignedMetrics] = None) -> Dict[str, float]:
    impact = 0.0
    if aligned is not None:
        a, b = aligned.get(edge.metric1), aligned.get(edge.metric2)
        if a is not None and b is not None:
            impact = impact_factor(a.as_array(), b.as_array())
    raw = {
        "correlation": correlation_factor(edge.correlation),
        "cross_category": cross_category_factor(edge.category1, edge.category2),
        "surprise": surprise_factor(edge.metric1, edge.metric2),
        "actionability": actionability_factor(edge.metric1, edge.metric2),
        "impact": impact,
    }
    scores = {k: v * FACTOR_WEIGHTS[k] for k, v in raw.items()}
    scores["total"] = sum(scores.values())
    return scores


def rank_insights(edges: Sequence[CorrelationEdge],
                  aligned: Optional[AlignedMetrics] = None) -> List[Dict[str, Any]]:
    scored = [dict(edge.to_dict(), scores=score_edge(edge, aligned)) for edge in edges]
    scored.sort(key=lambda d: d["scores"]["total"], reverse=True)
    return scored


def select_hero_insight(edges: Sequence[CorrelationEdge],
                        aligned: Optional[AlignedMetrics] = None) -> Optional[Dict[str, Any]]:
    ranked = rank_insights(edges, aligned)
    return ranked[0] if ranked else None
