"""
Health Score Calculator
=======================
Composite 0-100 daily score from five category sub-scores.

  sleep      .25   duration curve, quality, efficiency, HRV
  activity   .20   steps, exercise minutes, calories burned (×1.1 after ≥7h sleep)
  nutrition  .20   calorie band, protein, water, sugar penalty (×1.05 on active days)
  vitals     .20   resting HR, blood pressure band, HRV
  wellness   .15   stress (inverted), energy, mood, screen time (+5/+5 bonuses)

Every factor and sub-score is clamped to [0, 100].  A category with no
record on the scored day contributes 0.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Union

from constants import CATEGORIES, SCORE_WEIGHTS, STEPS_TARGET
from metric_aligner import AlignedMetrics, align_records

log = logging.getLogger("health_score")

DayValues = Mapping[str, float]


def _clamp(x: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return max(lo, min(hi, x))


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def _get(values: Optional[DayValues], key: str) -> float:
    if not values:
        return 0.0
    v = values.get(key)
    return float(v) if v is not None else 0.0


@dataclass
class CategoryScore:
    score: float
    weight: float
    factors: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ScoreResult:
    score: int
    breakdown: Dict[str, CategoryScore]
    insights: List[Dict[str, str]]
    data_sources: Dict[str, bool]
    date: Optional[date] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "date": self.date.isoformat() if self.date else None,
            "breakdown": {k: v.to_dict() for k, v in self.breakdown.items()},
            "insights": list(self.insights),
            "data_sources": dict(self.data_sources),
        }


# ─── Scoring curves ───────────────────────────────────────────


def sleep_duration_curve(hours: float) -> float:
    if 7 <= hours <= 9:
        return 100.0
    if 9 < hours <= 10:
        return 80.0
    if 6 <= hours < 7:
        return 70.0
    if 5 <= hours < 6:
        return 40.0
    return 20.0


def hrv_curve(hrv_ms: float) -> float:
    """30 ms -> 0, 70 ms -> 100, linear between."""
    return _clamp((hrv_ms - 30) / 40 * 100)


def resting_hr_curve(bpm: float) -> float:
    if 60 <= bpm <= 70:
        return 100.0
    if 70 < bpm <= 75:
        return 80.0
    if 55 <= bpm < 60:
        return 85.0
    if bpm > 75:
        return _clamp(100 - (bpm - 75) * 4)
    return 70.0


def blood_pressure_curve(systolic: float, diastolic: float) -> float:
    if systolic < 120 and diastolic < 80:
        return 100.0
    if systolic < 130 and diastolic < 85:
        return 85.0
    if systolic < 140 and diastolic < 90:
        return 70.0
    return 50.0


def calorie_curve(kcal: float) -> float:
    if 2000 <= kcal <= 2500:
        return 100.0
    if 1800 <= kcal < 2000:
        return 80.0
    if 2500 < kcal <= 2800:
        return 85.0
    return 60.0


def water_liters(nutrition: Optional[DayValues]) -> float:
    liters = _get(nutrition, "water_liters")
    return liters if liters else _get(nutrition, "water_glasses") * 0.25


# ─── Category scores ──────────────────────────────────────────


def sleep_score(sleep: Optional[DayValues]) -> CategoryScore:
    duration = _get(sleep, "sleep_duration_hours")
    quality = _get(sleep, "sleep_quality_score")
    efficiency = _get(sleep, "sleep_efficiency")
    hrv = _get(sleep, "hrv_ms")
    factors = {"duration": duration, "quality": quality,
               "efficiency": efficiency, "hrv": hrv}
    if not sleep:
        return CategoryScore(0.0, SCORE_WEIGHTS["sleep"], factors)
    score = (sleep_duration_curve(duration) * 0.35
             + _clamp(quality) * 0.30
             + _clamp(efficiency) * 0.20
             + hrv_curve(hrv) * 0.15)
    return CategoryScore(_clamp(score), SCORE_WEIGHTS["sleep"], factors)


def activity_score(activity: Optional[DayValues],
                   sleep: Optional[DayValues] = None) -> CategoryScore:
    steps = _get(activity, "steps")
    exercise = _get(activity, "exercise_minutes")
    burned = _get(activity, "calories_burned")
    factors = {"steps": steps, "exercise": exercise, "calories_burned": burned}
    if not activity:
        return CategoryScore(0.0, SCORE_WEIGHTS["activity"], factors)
    base = (_clamp(steps / STEPS_TARGET * 100) * 0.40
            + _clamp(exercise / 30 * 100) * 0.35
            + _clamp(burned / 400 * 100) * 0.25)
    if _get(sleep, "sleep_duration_hours") >= 7:
        base *= 1.1
    return CategoryScore(_clamp(base), SCORE_WEIGHTS["activity"], factors)


def nutrition_score(nutrition: Optional[DayValues],
                    activity: Optional[DayValues] = None) -> CategoryScore:
    calories = _get(nutrition, "calories")
    protein = _get(nutrition, "protein_g")
    water = water_liters(nutrition)
    sugar = _get(nutrition, "sugar_g")
    factors = {"calories": calories, "protein": protein,
               "water": water, "sugar": sugar}
    if not nutrition:
        return CategoryScore(0.0, SCORE_WEIGHTS["nutrition"], factors)
    base = (calorie_curve(calories) * 0.30
            + _clamp((protein - 50) / 100 * 100) * 0.25
            + _clamp(water / 2.5 * 100) * 0.25
            + _clamp(100 - (sugar - 50) / 50 * 100) * 0.20)
    if _get(activity, "calories_burned") > 400:
        base *= 1.05
    return CategoryScore(_clamp(base), SCORE_WEIGHTS["nutrition"], factors)


def vitals_score(vitals: Optional[DayValues],
                 sleep: Optional[DayValues] = None) -> CategoryScore:
    hr = _get(vitals, "resting_heart_rate")
    systolic = _get(vitals, "blood_pressure_systolic")
    diastolic = _get(vitals, "blood_pressure_diastolic")
    hrv = _get(vitals, "hrv_ms") or _get(sleep, "hrv_ms")
    factors = {"heart_rate": hr, "blood_pressure": systolic,
               "weight": _get(vitals, "weight_kg"), "hrv": hrv}
    if not vitals:
        return CategoryScore(0.0, SCORE_WEIGHTS["vitals"], factors)
    score = (resting_hr_curve(hr) * 0.40
             + blood_pressure_curve(systolic, diastolic) * 0.40
             + hrv_curve(hrv) * 0.20)
    return CategoryScore(_clamp(score), SCORE_WEIGHTS["vitals"], factors)


def wellness_score(wellness: Optional[DayValues],
                   sleep: Optional[DayValues] = None,
                   activity: Optional[DayValues] = None) -> CategoryScore:
    stress = _get(wellness, "stress_level")
    energy = _get(wellness, "energy_level")
    mood = _get(wellness, "mood_score")
    screen = _get(wellness, "screen_time_hours")
    factors = {"stress": stress, "energy": energy, "mood": mood,
               "screen_time": screen}
    if not wellness:
        return CategoryScore(0.0, SCORE_WEIGHTS["wellness"], factors)
    base = (_clamp((10 - stress) * 10) * 0.30
            + _clamp(energy * 10) * 0.30
            + _clamp(mood * 10) * 0.25
            + _clamp(100 - (screen - 6) / 6 * 100) * 0.15)
    if _get(sleep, "sleep_duration_hours") >= 7:
        base += 5
    if _get(activity, "steps") >= 7000:
        base += 5
    return CategoryScore(_clamp(base), SCORE_WEIGHTS["wellness"], factors)


def cross_category_insights(day: Mapping[str, DayValues]) -> List[Dict[str, str]]:
    sleep, activity = day.get("sleep") or {}, day.get("activity") or {}
    nutrition, vitals = day.get("nutrition") or {}, day.get("vitals") or {}
    wellness = day.get("wellness") or {}

    def has(values, key):
        return values.get(key) is not None

    insights = []
    if (has(sleep, "sleep_duration_hours") and has(wellness, "energy_level")
            and sleep["sleep_duration_hours"] < 6 and wellness["energy_level"] < 5):
        insights.append({"type": "correlation", "severity": "warning",
                         "message": "Low sleep duration correlates with decreased energy levels"})
    if (has(activity, "steps") and has(wellness, "stress_level")
            and activity["steps"] < 5000 and wellness["stress_level"] > 7):
        insights.append({"type": "correlation", "severity": "warning",
                         "message": "Low activity correlates with increased stress"})
    if (has(nutrition, "sugar_g") and has(sleep, "sleep_quality_score")
            and nutrition["sugar_g"] > 80 and sleep["sleep_quality_score"] < 70):
        insights.append({"type": "correlation", "severity": "info",
                         "message": "High sugar intake may be affecting sleep quality"})
    if (has(vitals, "resting_heart_rate") and has(wellness, "stress_level")
            and vitals["resting_heart_rate"] > 70 and wellness["stress_level"] > 6):
        insights.append({"type": "correlation", "severity": "warning",
                         "message": "Elevated heart rate correlates with stress levels"})
    return insights


def score_day(day: Mapping[str, DayValues], on_date: Optional[date] = None) -> ScoreResult:
    """Score one day's snapshot ({category: {metric: value}})."""
    sleep = day.get("sleep")
    activity = day.get("activity")
    breakdown = {
        "sleep": sleep_score(sleep),
        "activity": activity_score(activity, sleep),
        "nutrition": nutrition_score(day.get("nutrition"), activity),
        "vitals": vitals_score(day.get("vitals"), sleep),
        "wellness": wellness_score(day.get("wellness"), sleep, activity),
    }
    total = math.fsum(c.score * c.weight for c in breakdown.values())
    return ScoreResult(
        score=int(_clamp(round_half_up(total))),
        breakdown=breakdown,
        insights=cross_category_insights(day),
        data_sources={c: bool(day.get(c)) for c in CATEGORIES},
        date=on_date,
    )


# ─── Calculator ───────────────────────────────────────────────


class HealthScoreCalculator:
    """Daily scores over a record-set (or an already aligned snapshot)."""

    def __init__(self, records: Union[Mapping, AlignedMetrics]):
        if isinstance(records, AlignedMetrics):
            self.aligned = records
        else:
            # Scoring works on single days, so keep every series with a value
            self.aligned = align_records(records, min_points=0)

    @property
    def dates(self) -> List[date]:
        return self.aligned.dates

    def snapshot(self, on_date: Optional[date] = None) -> Dict[str, Dict[str, float]]:
        if on_date is None:
            if not self.dates:
                return {}
            on_date = self.dates[-1]
        return self.aligned.snapshot(on_date)

    def calculate(self, on_date: Optional[date] = None) -> ScoreResult:
        """Score ``on_date`` (latest date by default).  Unknown dates score 0."""
        if on_date is None and self.dates:
            on_date = self.dates[-1]
        day = self.aligned.snapshot(on_date) if on_date else {}
        result = score_day(day, on_date)
        log.info("   Health score %s: %d", on_date, result.score)
        return result

    def score_trend(self, on_date: Optional[date] = None) -> Dict[str, Any]:
        """Percent change against the score 7 recorded days earlier."""
        dates = self.dates
        if not dates:
            return {"percent": 0.0, "direction": "stable", "message": "Insufficient data"}
        on_date = on_date or dates[-1]
        if on_date not in dates or dates.index(on_date) < 7:
            return {"percent": 0.0, "direction": "stable", "message": "Insufficient data"}
        idx = dates.index(on_date)
        current = score_day(self.aligned.snapshot(on_date)).score
        week_ago = score_day(self.aligned.snapshot(dates[idx - 7])).score
        change = (current - week_ago) / week_ago * 100 if week_ago > 0 else 0.0

        if abs(change) < 2:
            direction, message = "stable", "Stable"
        elif change > 0:
            direction, message = "up", f"+{round_half_up(change)}%"
        else:
            direction, message = "down", f"-{round_half_up(abs(change))}%"
        return {"percent": abs(change), "direction": direction, "message": message,
                "current": current, "week_ago": week_ago}

    def best_day(self, current_score: Optional[int] = None,
                 days_to_check: int = 30) -> Dict[str, Any]:
        """Best score in the last ``days_to_check`` recorded days."""
        best_score, best_date = 0, None
        for d in self.dates[-days_to_check:]:
            s = score_day(self.aligned.snapshot(d)).score
            if s > best_score:
                best_score, best_date = s, d
        if current_score is None:
            current_score = self.calculate().score
        pct = round_half_up(current_score / best_score * 100) if best_score > 0 else 0
        return {"best_score": best_score, "best_date": best_date, "percentage": pct}
