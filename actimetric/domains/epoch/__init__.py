"""Epoch module: structural inference and normalization of derived-metric files.

- schema_detect.py: timestamp / metric column roles, header row location
- timestamps.py: pattern-driven timestamp parsing with per-row failures
- epoch_infer.py: epoch duration from the mode of timestamp deltas
- normalize.py: uniform, gap-aware epoch series
- reconcile.py: session gate for raw-acceleration computations
"""

from .models import ColumnSchema, EpochRecord, EpochSeries, InferenceReport, ParsedInstant, RawRow
from .schema_detect import detect_schema, locate_header_row
from .timestamps import compile_pattern, parse_timestamp, parse_timestamps
from .epoch_infer import infer_epoch_duration, estimate_epoch
from .normalize import normalize_series
from .reconcile import reconcile_session

__all__ = [
    "ColumnSchema",
    "EpochRecord",
    "EpochSeries",
    "InferenceReport",
    "ParsedInstant",
    "RawRow",
    "detect_schema",
    "locate_header_row",
    "compile_pattern",
    "parse_timestamp",
    "parse_timestamps",
    "infer_epoch_duration",
    "estimate_epoch",
    "normalize_series",
    "reconcile_session",
]
