"""
Shared test configuration.

Adds both the project root and src/ to sys.path so that flat modules
(metric_aligner, correlation_engine, ...) import as `import module_name`
and packages import as `from pipeline.x import ...`.

Also provides small record-set builders shared by several test files.
"""

import os
import sys
from datetime import date, timedelta

import pytest

_project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
_src_dir = os.path.join(_project_root, "src")

if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

if _src_dir not in sys.path:
    sys.path.insert(1, _src_dir)


START = date(2024, 1, 1)


def _days(n, start=START):
    return [start + timedelta(days=i) for i in range(n)]


@pytest.fixture
def days():
    """days(n, start=2024-01-01) -> list of n consecutive dates."""
    return _days


@pytest.fixture
def series_records():
    """Build one category's records from {field: [values]} (None = no record field)."""

    def build(columns, start=START):
        n = max(len(v) for v in columns.values())
        out = []
        for i, d in enumerate(_days(n, start)):
            rec = {"date": d.isoformat()}
            for name, values in columns.items():
                if i < len(values) and values[i] is not None:
                    rec[name] = values[i]
            out.append(rec)
        return out

    return build
