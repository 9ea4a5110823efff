"""
Metric Aligner
==============
Turns a raw record-set ({category: [ {date, field: value, ...}, ... ]}) into
date-indexed numeric series that every analysis layer shares.

  * Master index = union of every record date across all categories, sorted.
  * One MetricSeries per (category, field) that carries numbers, or that is
    a clock-time field ("HH:MM" -> decimal hours).
  * A date with no value keeps an explicit absent marker (None), never 0.
  * Series with too few valid points are dropped silently.

Structural problems (a category that is not a list of records, a record
without a parseable ``date``) raise RecordSetError.  Sparse or invalid
values are not errors: they simply become absent.
"""

from __future__ import annotations

import logging
import math
import numbers
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from constants import CATEGORIES, TIME_METRIC_NAMES

log = logging.getLogger("metric_aligner")

MIN_SERIES_POINTS = 5

# (suffix, unit) pairs, first match wins
UNIT_SUFFIXES = [
    ("_ms", "ms"), ("_g", "g"), ("_kg", "kg"), ("_c", "°C"),
    ("_percent", "%"), ("_hours", "hours"), ("_minutes", "minutes"),
    ("_km", "km"), ("_bpm", "bpm"), ("_cups", "cups"), ("_units", "units"),
    ("_points", "points"), ("_count", "count"),
]
ACRONYMS = {"hrv", "vo2", "rem", "bpm", "ai", "csv"}


class RecordSetError(ValueError):
    """Raised when the input record-set is structurally invalid."""


# ─── Field helpers ────────────────────────────────────────────


def is_time_metric(name: str) -> bool:
    return "time" in name or name in TIME_METRIC_NAMES


def parse_clock_time(value: Any) -> Optional[float]:
    """Parse "HH:MM" (or "HH:MM:SS") or decimal hours into decimal hours.

    "14:45" -> 14.75, "7.5" -> 7.5, 22 -> 22.0.  Anything unparseable
    returns None so the caller can drop it.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, numbers.Real):
        v = float(value)
        return v if math.isfinite(v) else None
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    if ":" in text:
        parts = text.split(":")
        if len(parts) not in (2, 3):
            return None
        try:
            nums = [int(p) for p in parts]
        except ValueError:
            return None
        hours, minutes = nums[0], nums[1]
        seconds = nums[2] if len(nums) == 3 else 0
        if hours < 0 or not 0 <= minutes < 60 or not 0 <= seconds < 60:
            return None
        return hours + minutes / 60 + seconds / 3600
    try:
        v = float(text)
    except ValueError:
        return None
    return v if math.isfinite(v) else None


def _numeric(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return None
    v = float(value)
    return v if math.isfinite(v) else None


def format_metric_label(name: str) -> str:
    """Human label: "hrv_ms" -> "HRV(ms)", "deep_sleep_hours" -> "Deep Sleep(hours)"."""
    if not name:
        return ""
    label = name
    unit = None
    for suffix, unit_value in UNIT_SUFFIXES:
        if label.endswith(suffix) and len(label) > len(suffix):
            unit = unit_value
            label = label[: -len(suffix)]
            break
    parts = []
    for part in label.split("_"):
        if part.lower() in ACRONYMS:
            parts.append(part.upper())
        else:
            parts.append(part[:1].upper() + part[1:].lower())
    text = " ".join(parts)
    return f"{text}({unit})" if unit else text


def _parse_date(raw: Any, category: str) -> date:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, str):
        try:
            return date.fromisoformat(raw.strip()[:10])
        except ValueError:
            pass
    raise RecordSetError(f"{category}: unparseable record date {raw!r}")


# ─── Aligned containers ───────────────────────────────────────


@dataclass
class MetricSeries:
    category: str
    name: str
    label: str
    values: List[Optional[float]]

    @property
    def key(self) -> str:
        return f"{self.category}.{self.name}"

    def valid_count(self) -> int:
        return sum(1 for v in self.values if v is not None)

    def as_array(self) -> np.ndarray:
        """Float array with NaN for absent entries."""
        return np.array([np.nan if v is None else v for v in self.values],
                        dtype=np.float64)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AlignedMetrics:
    dates: List[date]
    series: List[MetricSeries] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.dates)

    @property
    def names(self) -> List[str]:
        return [s.name for s in self.series]

    def get(self, name: str) -> Optional[MetricSeries]:
        """First series with this name, in canonical category order."""
        for s in self.series:
            if s.name == name:
                return s
        return None

    def valid_points(self, name: str) -> List[tuple]:
        """[(date, value)] for the named metric, date-ordered."""
        s = self.get(name)
        if s is None:
            return []
        return [(d, v) for d, v in zip(self.dates, s.values) if v is not None]

    def to_frame(self) -> pd.DataFrame:
        """DataFrame indexed by date, one column per series key (category.name)."""
        index = pd.DatetimeIndex(pd.to_datetime(self.dates), name="date")
        return pd.DataFrame(
            {s.key: s.as_array() for s in self.series}, index=index
        )

    def daily_frame(self) -> pd.DataFrame:
        """Like to_frame, gap-filled to one row per calendar day.

        Missing days become NaN rows so positional shifts line up with
        real calendar lags.
        """
        frame = self.to_frame()
        if frame.empty:
            return frame
        return frame.asfreq("D")

    def snapshot(self, on_date: date) -> Dict[str, Dict[str, float]]:
        """{category: {metric: value}} for one day; absent values are left out."""
        try:
            idx = self.dates.index(on_date)
        except ValueError:
            return {}
        out: Dict[str, Dict[str, float]] = {}
        for s in self.series:
            v = s.values[idx]
            if v is not None:
                out.setdefault(s.category, {}).setdefault(s.name, v)
        return out


# ─── Alignment ────────────────────────────────────────────────


def _category_order(record_set: Mapping) -> List[str]:
    extras = sorted(k for k in record_set.keys() if k not in CATEGORIES)
    return [c for c in CATEGORIES if c in record_set] + extras


def _records_by_date(category: str, records: Any) -> Dict[date, Mapping]:
    if records is None:
        return {}
    if not isinstance(records, list):
        raise RecordSetError(
            f"{category}: expected a list of records, got {type(records).__name__}"
        )
    by_date: Dict[date, Mapping] = {}
    for i, rec in enumerate(records):
        if not isinstance(rec, Mapping):
            raise RecordSetError(f"{category}[{i}]: record is not a mapping")
        if rec.get("date") is None:
            raise RecordSetError(f"{category}[{i}]: record is missing 'date'")
        # Later duplicates overwrite earlier ones
        by_date[_parse_date(rec["date"], category)] = rec
    return by_date


def _field_names(records: Iterable[Mapping]) -> List[str]:
    seen: Dict[str, None] = {}
    for rec in records:
        for key in rec.keys():
            if key != "date" and isinstance(key, str):
                seen.setdefault(key, None)
    return list(seen)


def align_records(record_set: Mapping,
                  min_points: int = MIN_SERIES_POINTS) -> AlignedMetrics:
    """Align a raw record-set onto one sorted master date index.

    A series is kept only when it has more than ``min_points`` valid values.
    """
    if not isinstance(record_set, Mapping):
        raise RecordSetError(
            f"record-set must be a mapping of category -> records, "
            f"got {type(record_set).__name__}"
        )

    categories = _category_order(record_set)
    per_category = {c: _records_by_date(c, record_set[c]) for c in categories}

    all_dates = sorted({d for by_date in per_category.values() for d in by_date})
    aligned = AlignedMetrics(dates=all_dates)

    n_dropped = 0
    for category in categories:
        by_date = per_category[category]
        if not by_date:
            continue
        for name in _field_names(by_date.values()):
            clock = is_time_metric(name)
            if not clock and not any(
                _numeric(rec.get(name)) is not None for rec in by_date.values()
            ):
                continue
            convert = parse_clock_time if clock else _numeric
            values: List[Optional[float]] = []
            for d in all_dates:
                rec = by_date.get(d)
                values.append(convert(rec.get(name)) if rec is not None else None)
            series = MetricSeries(
                category=category,
                name=name,
                label=format_metric_label(name),
                values=values,
            )
            if series.valid_count() > min_points:
                aligned.series.append(series)
            else:
                n_dropped += 1

    log.info(
        "   Aligned %d metrics over %d dates (%d sparse series dropped)",
        len(aligned.series), len(all_dates), n_dropped,
    )
    return aligned
