"""Timestamp parsing against a caller-supplied strftime-style pattern.

No fallback to alternate formats: a value either matches the pattern or
is a per-row failure. Guessing would silently swap day and month on files
like ``03/04/2024``.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple
import logging
import re
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pandas as pd

from actimetric.domains.epoch.models import ParsedInstant
from actimetric.domains.errors import TimestampFormatMismatch

logger = logging.getLogger("etl.epoch")

ISO8601 = "ISO8601"

_ALLOWED = set("YymdbBHIpMSfzZjaA")
_TZ_DIRECTIVES = set("zZ")
_DIRECTIVE_RE = re.compile(r"%(.?)")
_OFFSET_RE = r"(?:Z|[+-]\d{2}:?\d{2})$"


@dataclass(frozen=True)
class CompiledPattern:
    strptime: str
    aware: bool = False

    @property
    def iso(self) -> bool:
        return self.strptime == ISO8601


def compile_pattern(pattern: Optional[str]) -> CompiledPattern:
    """Validate a timestamp template. ``None`` selects strict ISO 8601."""
    if pattern is None or str(pattern).strip().upper() in ("", ISO8601, "ISO"):
        return CompiledPattern(ISO8601)
    directives = _DIRECTIVE_RE.findall(pattern)
    if not directives:
        raise TimestampFormatMismatch(f"pattern {pattern!r} has no % directives")
    seen = []
    for d in directives:
        if d == "":
            raise TimestampFormatMismatch(f"pattern {pattern!r} ends with a bare '%'")
        if d == "%":
            continue
        if d not in _ALLOWED:
            raise TimestampFormatMismatch(f"pattern {pattern!r}: unsupported directive %{d}")
        seen.append(d)
    if not seen:
        raise TimestampFormatMismatch(f"pattern {pattern!r} has no date/time fields")
    return CompiledPattern(pattern, aware=bool(_TZ_DIRECTIVES & set(seen)))


def zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise TimestampFormatMismatch(f"unknown timezone {name!r}") from e


def _localize(naive: pd.Series, tz: str) -> pd.Series:
    # ambiguous/non-existent wall times (DST changes) become per-row failures
    return naive.dt.tz_localize(tz, ambiguous="NaT", nonexistent="NaT")


def parse_timestamps(
    values: Iterable,
    pattern: Optional[str] = None,
    target_tz: str = "UTC",
    source_tz: Optional[str] = None,
) -> Tuple[pd.Series, List[int]]:
    """Parse raw strings to tz-aware instants in ``target_tz``.

    Naive values are read as wall time in ``source_tz`` (default
    ``target_tz``). Returns the parsed series (NaT where a row failed) and
    the positional indices of the failed rows.
    """
    fmt = compile_pattern(pattern)
    zone(target_tz)
    src_tz = source_tz or target_tz
    zone(src_tz)

    raw = pd.Series(list(values), dtype=object).map(lambda v: "" if v is None else str(v).strip())
    raw = raw.reset_index(drop=True)
    if raw.empty:
        return pd.Series([], dtype=pd.DatetimeTZDtype(tz=target_tz)), []

    if fmt.aware:
        parsed = pd.to_datetime(raw, format=fmt.strptime, errors="coerce", utc=True)
        out = parsed.dt.tz_convert(target_tz)
    else:
        if fmt.iso:
            aware_mask = raw.str.contains(_OFFSET_RE, regex=True)
        else:
            aware_mask = pd.Series(False, index=raw.index)
        parts = []
        if aware_mask.any():
            aware = pd.to_datetime(raw[aware_mask], format=fmt.strptime, errors="coerce", utc=True)
            parts.append(aware.dt.tz_convert(target_tz))
        if not aware_mask.all():
            naive = pd.to_datetime(raw[~aware_mask], format=fmt.strptime, errors="coerce")
            parts.append(_localize(naive, src_tz).dt.tz_convert(target_tz))
        out = pd.concat(parts).sort_index() if len(parts) > 1 else parts[0]

    failed = [int(i) for i in out.index[out.isna()]]
    if failed:
        logger.debug("timestamp parse failures=%d (first rows %s)", len(failed), failed[:5])
    return out, failed


def parse_timestamp(value: str, pattern: Optional[str] = None, target_tz: str = "UTC",
                    source_tz: Optional[str] = None) -> Optional[pd.Timestamp]:
    parsed, failed = parse_timestamps([value], pattern, target_tz, source_tz)
    return None if failed else parsed.iloc[0]


def to_instants(parsed: pd.Series, rows: Optional[Sequence[int]] = None) -> List[ParsedInstant]:
    """Successfully parsed values as ``ParsedInstant`` in file order."""
    rows = list(range(len(parsed))) if rows is None else list(rows)
    return [ParsedInstant(ts, r) for ts, r in zip(parsed, rows) if not pd.isna(ts)]


def count_order_violations(instants: Sequence[ParsedInstant]) -> int:
    """Number of instants earlier than their predecessor in file order."""
    n = 0
    for prev, cur in zip(instants, instants[1:]):
        if cur.instant < prev.instant:
            n += 1
    return n


def join_date_time(dates: Iterable, times: Iterable) -> List[str]:
    """Combine split date and time-of-day cells as ``"<date> <time>"``."""
    out = []
    for d, t in zip(dates, times):
        d = "" if d is None else str(d).strip()
        t = "" if t is None else str(t).strip()
        out.append(f"{d} {t}".strip() if d and t else "")
    return out
