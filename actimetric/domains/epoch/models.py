"""Data model for epoch ingestion.

``RawRow`` and ``ParsedInstant`` are transient per file. ``ColumnSchema``
and ``InferenceReport`` live for one conversion. ``EpochSeries`` is the
durable output handed to the downstream windowing pipeline.
"""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple
import pandas as pd

SERIES_COLUMNS = ["timestamp", "value", "missing", "source_row"]


@dataclass(frozen=True)
class RawRow:
    index: int
    values: Mapping[str, str]

    def __post_init__(self):
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def __getitem__(self, column: str) -> str:
        return self.values[column]


@dataclass(frozen=True)
class ColumnSchema:
    timestamp_column: str
    metric_column: str
    # separate time-of-day column joined onto a date-only timestamp column
    time_column: Optional[str] = None
    passthrough: Tuple[str, ...] = ()


@dataclass(frozen=True, order=True)
class ParsedInstant:
    instant: pd.Timestamp
    row: int


@dataclass(frozen=True)
class EpochRecord:
    timestamp: pd.Timestamp
    value: Optional[float]
    source_row: Optional[int] = None

    @property
    def missing(self) -> bool:
        return self.value is None


@dataclass
class InferenceReport:
    source: Optional[str] = None
    timestamp_column: Optional[str] = None
    metric_column: Optional[str] = None
    time_column: Optional[str] = None
    header_row: int = 0
    n_rows: int = 0
    epoch_duration_seconds: Optional[float] = None
    epoch_overridden: bool = False
    epoch_ambiguous: bool = False
    parse_failures: int = 0
    parse_failure_rows: List[int] = field(default_factory=list)
    metric_failures: int = 0
    order_violations: int = 0
    collisions: int = 0
    drift_anomalies: int = 0
    positional_recoveries: int = 0
    filled_gaps: int = 0
    n_epochs: int = 0
    warnings: List[str] = field(default_factory=list)

    # keep the report small when thousands of rows fail
    MAX_SAMPLE_ROWS = 20

    def note_parse_failures(self, rows: List[int]) -> None:
        self.parse_failures = len(rows)
        self.parse_failure_rows = list(rows[: self.MAX_SAMPLE_ROWS])

    def warn(self, msg: str) -> None:
        self.warnings.append(msg)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EpochSeries:
    """Uniform epoch series; one row per slot in ``[start_time, end_time]``.

    ``frame`` columns: ``timestamp``, ``value`` (NaN when missing),
    ``missing`` (bool), ``source_row`` (nullable int), then passthrough
    columns from the source file.
    """

    frame: pd.DataFrame
    epoch_duration_seconds: float
    metric_name: str

    @property
    def start_time(self) -> pd.Timestamp:
        return self.frame["timestamp"].iloc[0]

    @property
    def end_time(self) -> pd.Timestamp:
        return self.frame["timestamp"].iloc[-1]

    @property
    def n_missing(self) -> int:
        return int(self.frame["missing"].sum())

    def __len__(self) -> int:
        return len(self.frame)

    def records(self) -> Iterator[EpochRecord]:
        for ts, val, miss, row in zip(
            self.frame["timestamp"], self.frame["value"], self.frame["missing"], self.frame["source_row"]
        ):
            if miss:
                yield EpochRecord(ts, None, None)
            else:
                yield EpochRecord(ts, float(val), int(row))

    def to_frame(self) -> pd.DataFrame:
        return self.frame.copy()

    def to_csv(self) -> str:
        out = self.frame.copy()
        out["timestamp"] = out["timestamp"].map(lambda t: t.isoformat())
        out = out.rename(columns={"value": self.metric_name})
        return out.to_csv(index=False, lineterminator="\n")

