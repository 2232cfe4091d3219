"""Column role detection for epoch-level activity files.

``detect_schema()`` is a pure, order-preserving scan over the header list:
the first column that matches wins, never whatever a dict happens to
iterate first.
"""
from __future__ import annotations

from dataclasses import replace
from typing import List, Optional, Sequence
import logging
import re

import pandas as pd

from actimetric.domains.epoch.models import ColumnSchema
from actimetric.domains.epoch.normalize import coerce_metric
from actimetric.domains.errors import SchemaNotFound

logger = logging.getLogger("etl.epoch")

TIMESTAMP_HINTS = ("time", "timestamp", "date")
# names accepted for a time-of-day column split off a date column
TIME_OF_DAY_ALIASES = ("time", "time of day", "time_of_day", "clock", "hour")

HEADER_SCAN_LINES = 200
_DELIMS = (",", ";", "\t", "|")


def _norm(name: str) -> str:
    return str(name).strip().lower()


def _is_timestamp_name(name: str) -> bool:
    n = _norm(name)
    return any(h in n for h in TIMESTAMP_HINTS)


def _find_column(columns: Sequence[str], wanted: str) -> Optional[str]:
    """Exact (case-insensitive) lookup, used for explicit overrides."""
    for c in columns:
        if c == wanted:
            return c
    w = _norm(wanted)
    for c in columns:
        if _norm(c) == w:
            return c
    return None


def _find_time_companion(columns: Sequence[str], ts_col: str) -> Optional[str]:
    n = _norm(ts_col)
    if "date" not in n or "time" in n:
        return None
    for alias in TIME_OF_DAY_ALIASES:
        for c in columns:
            if c != ts_col and _norm(c) == alias:
                return c
    return None


def detect_schema(
    columns: Sequence[str],
    metric_name: str,
    *,
    timestamp_column: Optional[str] = None,
    metric_column: Optional[str] = None,
) -> ColumnSchema:
    """Resolve the timestamp and metric columns of a file.

    Timestamp: first column whose name contains ``time``, ``timestamp`` or
    ``date`` (case-insensitive), else the first column. Metric: first other
    column whose name contains ``metric_name`` (case-insensitive).
    Explicit overrides must name columns that exist.
    """
    cols: List[str] = [str(c) for c in columns]
    if len(cols) < 2:
        raise SchemaNotFound(f"need at least two columns (timestamp, metric), got {cols!r}")
    if not str(metric_name or "").strip():
        raise SchemaNotFound("no metric name to look for")

    if timestamp_column:
        ts_col = _find_column(cols, timestamp_column)
        if ts_col is None:
            raise SchemaNotFound(f"timestamp column {timestamp_column!r} not in {cols!r}")
    else:
        ts_col = next((c for c in cols if _is_timestamp_name(c)), cols[0])

    if metric_column:
        m_col = _find_column(cols, metric_column)
        if m_col is None:
            raise SchemaNotFound(f"metric column {metric_column!r} not in {cols!r}")
        if m_col == ts_col:
            raise SchemaNotFound(f"metric column {metric_column!r} is also the timestamp column")
    else:
        needle = _norm(metric_name)
        m_col = next((c for c in cols if c != ts_col and needle in _norm(c)), None)
        if m_col is None:
            raise SchemaNotFound(f"no column containing {metric_name!r} among {cols!r}")

    time_col = None
    if not timestamp_column:
        time_col = _find_time_companion(cols, ts_col)
        if time_col == m_col:
            time_col = None

    used = {ts_col, m_col, time_col}
    passthrough = tuple(c for c in cols if c not in used)
    schema = ColumnSchema(ts_col, m_col, time_col, passthrough)
    logger.debug("schema: timestamp=%r time=%r metric=%r passthrough=%d", ts_col, time_col, m_col, len(passthrough))
    return schema


def _split_cells(line: str) -> Optional[List[str]]:
    stripped = line.strip().lstrip("﻿")
    for d in _DELIMS:
        if d in stripped:
            cells = [_norm(c.strip('"').strip("'")) for c in re.split(re.escape(d), stripped)]
            if len(cells) >= 2:
                return cells
    return None


def _next_cell_count(lines: Sequence[str], i: int) -> Optional[int]:
    for line in lines[i + 1:]:
        if line.strip():
            cells = _split_cells(line)
            return len(cells) if cells else None
    return None


def locate_header_row(lines: Sequence[str], metric_name: str, max_lines: int = HEADER_SCAN_LINES) -> int:
    """Index of the header line in a file that may carry a text preamble.

    A header splits on a delimiter into at least two cells, one naming the
    metric and one naming a timestamp (``time``/``date``). A line that only
    names the metric is accepted when the next non-blank line has the same
    number of cells. Returns 0 when no line qualifies so a plain file
    parses as usual.
    """
    needle = _norm(metric_name)
    fallback = None
    for i, line in enumerate(lines[:max_lines]):
        cells = _split_cells(line)
        if not cells or not any(needle in c for c in cells if c):
            continue
        if any(_is_timestamp_name(c) for c in cells if needle not in c):
            return i
        if fallback is None and _next_cell_count(lines, i) == len(cells):
            fallback = i
    return fallback if fallback is not None else 0


def select_numeric_metric(
    schema: ColumnSchema,
    frame: pd.DataFrame,
    metric_name: str,
    *,
    explicit: bool = False,
) -> ColumnSchema:
    """Make sure the metric column holds numbers.

    When the detected column has no numeric-coercible value the next column
    matching ``metric_name`` is tried (``PIM_status`` before ``PIM``). An
    explicit ``metric_column`` is never swapped. Raises ``SchemaNotFound``
    when no candidate holds a number.
    """
    def _has_number(col: str) -> bool:
        return bool(coerce_metric(frame[col]).notna().any())

    if explicit:
        if not _has_number(schema.metric_column):
            raise SchemaNotFound(f"metric column {schema.metric_column!r} holds no numeric value")
        return schema

    needle = _norm(metric_name)
    cols = [str(c) for c in frame.columns]
    skip = {schema.timestamp_column, schema.time_column}
    candidates = [c for c in cols if c not in skip and needle in _norm(c)]
    for c in candidates:
        if not _has_number(c):
            continue
        if c != schema.metric_column:
            logger.info("metric column %r holds no numbers; using %r", schema.metric_column, c)
        used = skip | {c}
        return replace(schema, metric_column=c, passthrough=tuple(x for x in cols if x not in used))
    raise SchemaNotFound(f"no column containing {metric_name!r} holds a numeric value (tried {candidates!r})")
