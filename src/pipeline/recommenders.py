"""Recommendation generators: deterministic rules plus an optional Gemini path.

Both expose ``generate(current_score, target_score, breakdown, today=None)``
and return at most three Recommendation objects.  The rule-based generator is
the default and the fallback for the generative one.
"""

from __future__ import annotations

import logging
import math
import os
import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Mapping, Optional

import requests
from dotenv import load_dotenv
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from constants import (
    CAFFEINE_CUTOFF_HOUR,
    MAX_RECOMMENDATIONS,
    PROTEIN_TARGET_G,
    SCORE_WEIGHTS,
    SUGAR_SOFT_CAP_G,
)

load_dotenv()

log = logging.getLogger("recommenders")

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
DEFAULT_MODEL = "gemini-2.5-flash"

GENERIC_ACTIONS = {
    "activity": "Add more steps or exercise",
    "sleep": "Aim for 8 hours of quality sleep",
    "nutrition": "Optimize your meal balance",
    "vitals": "Prioritize rest and recovery",
    "wellness": "Take breaks to manage stress",
}


@dataclass
class Recommendation:
    category: str
    kind: str
    action: str
    detail: Optional[str]
    impact: float
    priority: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _category_score(breakdown: Mapping[str, Any], category: str) -> float:
    """Score from a CategoryScore or a plain {"score": ...} dict; 0 if missing."""
    entry = breakdown.get(category)
    if entry is None:
        return 0.0
    score = entry.get("score") if isinstance(entry, Mapping) else getattr(entry, "score", None)
    return float(score or 0.0)


def _hour_of(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, str):
        head = value.split(":")[0].strip()
        return int(head) if head.isdigit() else None
    try:
        return int(math.floor(float(value)))
    except (TypeError, ValueError):
        return None


class RuleBasedRecommender:
    """Greedy, headroom-ranked recommendations.

    Categories are visited by headroom = weight × (100 − score).  Each
    visited category may emit concrete actions until the score gap is
    covered or three actions exist.  When nothing fires, the three
    lowest-scoring categories get a generic suggestion.
    """

    def __init__(self, weights: Optional[Mapping[str, float]] = None):
        self.weights = dict(weights or SCORE_WEIGHTS)

    def generate(self, current_score: float, target_score: float,
                 breakdown: Mapping[str, Any],
                 today: Optional[Mapping[str, Mapping[str, float]]] = None) -> List[Recommendation]:
        gap = target_score - current_score
        if gap <= 0:
            return []
        today = today or {}

        ranked = sorted(
            ((c, _category_score(breakdown, c), w) for c, w in self.weights.items()),
            key=lambda t: (100 - t[1]) * t[2],
            reverse=True,
        )

        recs: List[Recommendation] = []
        remaining = gap
        for category, current, weight in ranked:
            if remaining <= 0 or len(recs) >= MAX_RECOMMENDATIONS:
                break
            needed = min(remaining / weight, 100 - current)
            if needed <= 0 or current >= 100:
                continue
            target = min(100.0, current + needed)
            rule = getattr(self, f"_rules_{category}", None)
            if rule is None:
                continue
            for rec in rule(today, current, target, needed, weight):
                if len(recs) >= MAX_RECOMMENDATIONS:
                    break
                recs.append(rec)
                remaining -= rec.impact

        if not recs:
            recs = self._generic(breakdown)

        recs.sort(key=lambda r: r.impact, reverse=True)
        return recs[:MAX_RECOMMENDATIONS]

    # ─── Category rules ───────────────────────────────────────

    @staticmethod
    def _rules_activity(today, current, target, needed, weight):
        if target <= current:
            return []
        sleep_bonus = 1.1 if (today.get("sleep") or {}).get("sleep_duration_hours", 0) >= 7 else 1.0
        steps = (target - current) / (0.40 * sleep_bonus) * 100
        if steps <= 100:
            return []
        if steps > 3000:
            detail = "walk after dinner"
        elif steps > 1000:
            detail = "take a 15-min walk"
        else:
            detail = "take a short walk"
        return [Recommendation("activity", "steps", f"Add {int(round(steps))} steps",
                               detail, needed * weight, "high")]

    @staticmethod
    def _rules_nutrition(today, current, target, needed, weight):
        nutrition = today.get("nutrition") or {}
        if not nutrition:
            return []
        out = []
        sugar = nutrition.get("sugar_g") or 0
        if sugar >= SUGAR_SOFT_CAP_G * 0.7:
            left = max(0, SUGAR_SOFT_CAP_G - sugar)
            out.append(Recommendation(
                "nutrition", "sugar", f"Keep sugar under {SUGAR_SOFT_CAP_G}g",
                f"{int(round(left))}g remaining" if left > 0 else "limit exceeded",
                needed * weight * 0.3, "medium",
            ))
        hour = _hour_of(nutrition.get("caffeine_last_time"))
        if hour is not None and hour >= CAFFEINE_CUTOFF_HOUR:
            out.append(Recommendation(
                "nutrition", "caffeine", "Maintain caffeine cutoff before 3 PM",
                "helps improve sleep quality", needed * weight * 0.2, "low",
            ))
        protein = nutrition.get("protein_g") or 0
        if protein < PROTEIN_TARGET_G and target > current and PROTEIN_TARGET_G - protein > 10:
            out.append(Recommendation(
                "nutrition", "protein", f"Add {int(round(PROTEIN_TARGET_G - protein))}g protein",
                "include lean protein in next meal", needed * weight * 0.25, "medium",
            ))
        return out

    @staticmethod
    def _rules_sleep(today, current, target, needed, weight):
        sleep = today.get("sleep") or {}
        if not sleep:
            return []
        duration = sleep.get("sleep_duration_hours") or 0
        if duration >= 8 or target <= current:
            return []
        return [Recommendation("sleep", "duration", "Aim for 8 hours tonight",
                               f"{8 - duration:.1f} more hours needed",
                               needed * weight, "high")]

    @staticmethod
    def _rules_wellness(today, current, target, needed, weight):
        wellness = today.get("wellness") or {}
        if (wellness.get("stress_level") or 0) > 5 and target > current:
            return [Recommendation("wellness", "stress", "Take a 10-minute break",
                                   "practice deep breathing or meditation",
                                   needed * weight * 0.3, "medium")]
        return []

    def _generic(self, breakdown: Mapping[str, Any]) -> List[Recommendation]:
        scores = [(c, _category_score(breakdown, c)) for c in self.weights]
        lowest = sorted((t for t in scores if t[1] < 100), key=lambda t: t[1])[:MAX_RECOMMENDATIONS]
        return [
            Recommendation(
                category=c,
                kind="general",
                action=GENERIC_ACTIONS.get(c, f"Improve {c}"),
                detail=f"Current: {int(round(s))}% - target: 100%",
                impact=(100 - s) * self.weights[c],
                priority="medium",
            )
            for c, s in lowest
        ]


# ─── Generative path ──────────────────────────────────────────


class RecommenderUnavailable(RuntimeError):
    """The generative backend could not produce usable recommendations."""


class GeminiRecommender:
    """Coach-style recommendations from Gemini, falling back to rules.

    Reads GOOGLE_API_KEY, RECOMMENDER_MODEL and RECOMMENDER_TIMEOUT_S from
    the environment.  Any failure is logged and the fallback result returned.
    """

    def __init__(self, fallback: Optional[RuleBasedRecommender] = None,
                 api_key: Optional[str] = None, model: Optional[str] = None,
                 timeout: Optional[float] = None, session=None):
        self.fallback = fallback or RuleBasedRecommender()
        self.api_key = api_key or os.getenv("GOOGLE_API_KEY", "")
        self.model = model or os.getenv("RECOMMENDER_MODEL", DEFAULT_MODEL)
        self.timeout = timeout or float(os.getenv("RECOMMENDER_TIMEOUT_S", "20"))
        self.session = session or requests.Session()

    def generate(self, current_score: float, target_score: float,
                 breakdown: Mapping[str, Any],
                 today: Optional[Mapping[str, Mapping[str, float]]] = None) -> List[Recommendation]:
        gap = target_score - current_score
        if gap <= 0:
            return []
        try:
            prompt = build_prompt(current_score, target_score, breakdown, today or {})
            text = self._call(prompt)
            recs = parse_recommendations(text, gap)
            if not recs:
                raise RecommenderUnavailable("empty recommendation reply")
            return recs
        except Exception as e:
            log.warning("Generative recommender failed, using rule-based fallback: %s", e)
            return self.fallback.generate(current_score, target_score, breakdown, today)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=2, min=2, max=30),
        retry=retry_if_exception_type((ConnectionError, TimeoutError, OSError)),
        reraise=True,
    )
    def _call(self, prompt: str) -> str:
        """POST one generateContent request; transient network errors retry."""
        if not self.api_key:
            raise RecommenderUnavailable("GOOGLE_API_KEY not set")
        resp = self.session.post(
            GEMINI_URL.format(model=self.model),
            params={"key": self.api_key},
            json={
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {"temperature": 0.8, "maxOutputTokens": 150},
            },
            timeout=self.timeout,
        )
        if resp.status_code != 200:
            raise RecommenderUnavailable(f"Gemini HTTP {resp.status_code}")
        data = resp.json()
        try:
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise RecommenderUnavailable(f"unexpected Gemini payload: {e}") from e


def build_prompt(current_score: float, target_score: float,
                 breakdown: Mapping[str, Any],
                 today: Mapping[str, Mapping[str, float]]) -> str:
    sleep = today.get("sleep") or {}
    activity = today.get("activity") or {}
    nutrition = today.get("nutrition") or {}
    wellness = today.get("wellness") or {}

    def pct(category):
        return int(round(_category_score(breakdown, category)))

    return (
        "You are a supportive health coach. Generate exactly 3 short, actionable "
        f"recommendations to help improve health score from {current_score}/100 "
        f"to {target_score}/100.\n\n"
        "Current Health Score Breakdown:\n"
        f"- Sleep: {pct('sleep')}% ({sleep.get('sleep_duration_hours', 0):.1f} hrs)\n"
        f"- Activity: {pct('activity')}% ({int(activity.get('steps', 0)):,} steps)\n"
        f"- Nutrition: {pct('nutrition')}% ({nutrition.get('calories', 0):.0f} cal, "
        f"{nutrition.get('sugar_g', 0):.0f}g sugar, {nutrition.get('protein_g', 0):.0f}g protein)\n"
        f"- Recovery: {pct('vitals')}%\n"
        f"- Mental: {pct('wellness')}% (stress: {wellness.get('stress_level', 0)}/10, "
        f"energy: {wellness.get('energy_level', 0)}/10)\n\n"
        "Each recommendation: ONE short sentence (max 10 words), specific, "
        'formatted as "Action (detail)", e.g. "Add 3,800 steps (walk after dinner)".\n'
        "Return ONLY the 3 recommendations, one per line, no numbering."
    )


_LINE_RE = re.compile(r"^(.+?)\s*\((.+?)\)$")


def parse_recommendations(text: str, gap: float) -> List[Recommendation]:
    """Parse "Action (detail)" lines; impact decreases with position."""
    lines = [ln.strip() for ln in str(text or "").splitlines() if ln.strip()]
    recs = []
    for idx, line in enumerate(lines[:MAX_RECOMMENDATIONS]):
        line = re.sub(r"^[-•*]\s*", "", line)
        m = _LINE_RE.match(line)
        action, detail = (m.group(1).strip(), m.group(2).strip()) if m else (line, None)
        recs.append(Recommendation(
            category="general",
            kind="ai",
            action=action,
            detail=detail,
            impact=gap / 3 * (3 - idx),
            priority=("high", "medium", "low")[idx],
        ))
    return recs
