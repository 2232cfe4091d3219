"""Error taxonomy for epoch ingestion.

File-level errors abort the conversion of one file only; the batch runner
records them and moves on. ``IncompatibleConfiguration`` is session-level
and stops processing before any file is opened.
"""
from __future__ import annotations


class IngestError(RuntimeError):
    """Base class for all ingestion failures."""


# ---------------- File-level ----------------
class InputReadError(IngestError): ...


class SchemaNotFound(IngestError): ...


class TimestampFormatMismatch(IngestError): ...


class InsufficientData(IngestError): ...


class EmptySeries(IngestError): ...


class MetricToleranceExceeded(IngestError):
    """Raised under the ``strict`` policy when metric values or clock drift
    would otherwise be routed to missing slots."""


# ---------------- Session-level ----------------
class IncompatibleConfiguration(IngestError): ...


# ---------------- Warnings ----------------
class AmbiguousEpochDuration(UserWarning):
    """Every distinct epoch delta is equally frequent.

    Emitted through ``warnings.warn``; raised instead when the session asks
    for an explicit epoch on ambiguity.
    """


FILE_LEVEL_ERRORS = (
    InputReadError,
    SchemaNotFound,
    TimestampFormatMismatch,
    InsufficientData,
    EmptySeries,
    MetricToleranceExceeded,
    AmbiguousEpochDuration,
)
