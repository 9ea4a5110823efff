"""Helpers for turning a pipeline result into readable text."""

from __future__ import annotations

from typing import Any, Mapping


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _clip(s: str, limit: int = 260) -> str:
    s = str(s).replace("\n", " ").strip()
    if len(s) <= limit:
        return s
    return s[: limit - 3].rstrip() + "..."


def _edge_line(edge: Any) -> str:
    r = _get(edge, "correlation", 0.0)
    lag = _get(edge, "lag", 0)
    when = "same day" if not lag else f"{lag} day{'s' if lag > 1 else ''} later"
    return (
        f"{_get(edge, 'label1', _get(edge, 'metric1'))} -> "
        f"{_get(edge, 'label2', _get(edge, 'metric2'))}: "
        f"r={r:+.2f} ({_get(edge, 'strength', '')}, {when})"
    )


def _finding_line(finding: Any) -> str:
    events = _get(finding, "occurrences", []) or []
    last = events[-1] if events else None
    days = _get(finding, "consecutive_days", len(events))
    if last is None:
        return str(_get(finding, "label", _get(finding, "metric")))
    direction = "above" if _get(last, "deviation", 0.0) > 0 else "below"
    return (
        f"{_get(finding, 'label', _get(finding, 'metric'))}: {_get(last, 'value'):g} "
        f"({direction} baseline {_get(finding, 'baseline_mean', 0.0):.1f}, "
        f"z={_get(last, 'z_score', 0.0):+.1f}, {days} day{'s' if days != 1 else ''}, "
        f"{_get(last, 'severity')})"
    )


def build_insight_digest(result: Mapping[str, Any]) -> str:
    """Plain-text report of one pipeline run."""
    lines = [
        "=" * 60,
        f"HEALTH INSIGHTS  ({result.get('n_days', 0)} days, {result.get('n_metrics', 0)} metrics)",
        "=" * 60,
    ]
    status = result.get("analysis_status", "success")
    if status != "success":
        reasons = ", ".join(result.get("degraded_reasons") or []) or "unknown"
        lines.append(f"Status: {status.upper()} ({reasons})")

    score = result.get("health_score")
    lines.append("")
    if score is None:
        lines.append("Health score: n/a")
    else:
        lines.append(f"Health score: {_get(score, 'score')}/100")
        breakdown = _get(score, "breakdown", {}) or {}
        for cat, cs in breakdown.items():
            lines.append(f"  {cat:<10} {float(_get(cs, 'score', 0.0)):5.1f}")
        for ins in _get(score, "insights", []) or []:
            lines.append(f"  * {_get(ins, 'message', ins)}")

    hero = result.get("hero_insight")
    if hero:
        lines += ["", "Top insight:", f"  {_edge_line(hero)}"]

    correlations = result.get("correlations") or []
    lines += ["", f"Correlations ({len(correlations)}):"]
    if not correlations:
        lines.append("  None above threshold.")
    for edge in correlations[:5]:
        lines.append(f"  - {_edge_line(edge)}")

    anomalies = result.get("anomalies") or []
    lines += ["", f"Anomalies ({len(anomalies)}):"]
    if not anomalies:
        lines.append("  Nothing unusual.")
    for finding in anomalies:
        lines.append(f"  - {_finding_line(finding)}")

    cascades = result.get("cascades") or []
    if cascades:
        lines += ["", f"Cascades ({len(cascades)}):"]
        for c in cascades[:3]:
            lines.append(f"  - {_get(c, 'description')} (strength {_get(c, 'strength', 0.0):.2f})")

    recs = result.get("recommendations") or []
    if recs:
        lines += ["", "Recommendations:"]
        for i, rec in enumerate(recs, 1):
            lines.append(f"  {i}. {_get(rec, 'action')} (+{_get(rec, 'impact', 0.0):.1f} pts)")
            detail = _get(rec, "detail")
            if detail:
                lines.append(f"     {_clip(detail, 200)}")
    return "\n".join(lines)


def build_concise_summary(result: Mapping[str, Any]) -> str:
    """Create a strict 3-bullet, human-friendly summary for UI cards."""
    result = result or {}
    anomalies = result.get("anomalies") or []
    hero = result.get("hero_insight")
    recs = result.get("recommendations") or []

    if not (anomalies or hero or recs):
        return (
            "- What changed: Insufficient data in this run.\n"
            "- Why it matters: Without stable signal, changes should stay small.\n"
            "- Next 24-48h: Keep logging daily and reassess after a few more days."
        )

    def bullet(label: str, value: str) -> str:
        prefix = f"- {label}: "
        return prefix + _clip(value, max(48, 280 - len(prefix)))

    what_changed = (
        _finding_line(anomalies[0]) if anomalies
        else "No metric moved outside its personal baseline."
    )
    why_it_matters = (
        _edge_line(hero) if hero
        else "No strong cross-metric link yet; more days will sharpen the picture."
    )
    next_24_48h = (
        _get(recs[0], "action") if recs
        else "Keep current habits; your score is at or above target."
    )
    return (
        f"{bullet('What changed', what_changed)}\n"
        f"{bullet('Why it matters', why_it_matters)}\n"
        f"{bullet('Next 24-48h', next_24_48h)}"
    )
