"""
Stage: epoch ingestion
Derived-metric epoch files (PIM / ZCM / counts CSV) -> uniform EpochSeries

Per file: read -> detect schema -> parse timestamps -> infer epoch ->
normalize. Files are independent and run on a bounded thread pool; the
session config is reconciled once before the first file starts.

Output (write_outputs): <outdir>/<stem>_epochs.csv, <stem>_report.json and
batch_summary.json with the per-file failure list and the input -> stem map.
Stems are unique per batch (see output_stems).
"""
from __future__ import annotations

from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple
import logging
import os
import threading

import pandas as pd

from actimetric.domains.common.io import read_epoch_table
from actimetric.domains.common.progress import progress_bar
from actimetric.domains.config import SessionCfg
from actimetric.domains.epoch.epoch_infer import resolve_epoch
from actimetric.domains.epoch.models import EpochSeries, InferenceReport
from actimetric.domains.epoch.normalize import normalize_series
from actimetric.domains.epoch.reconcile import reconcile_session
from actimetric.domains.epoch.schema_detect import detect_schema, select_numeric_metric
from actimetric.domains.epoch.timestamps import (
    count_order_violations,
    join_date_time,
    parse_timestamps,
    to_instants,
)
from actimetric.domains.errors import FILE_LEVEL_ERRORS, InsufficientData
from actimetric.lib.io_guards import atomic_write_text, write_json

logger = logging.getLogger("etl.ingest")


@dataclass
class FileResult:
    path: Path
    series: Optional[EpochSeries] = None
    report: Optional[InferenceReport] = None
    error_type: Optional[str] = None
    error: Optional[str] = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.series is not None


@dataclass
class BatchResult:
    session: SessionCfg
    results: List[FileResult] = field(default_factory=list)
    cancelled: bool = False

    @property
    def converted(self) -> List[FileResult]:
        return [r for r in self.results if r.ok]

    @property
    def failures(self) -> List[Tuple[str, str, str]]:
        return [(str(r.path), r.error_type or "", r.error or "") for r in self.results if r.error_type]

    @property
    def skipped(self) -> List[str]:
        return [str(r.path) for r in self.results if r.skipped]

    def summary(self) -> Dict:
        return {
            "n_files": len(self.results),
            "n_converted": len(self.converted),
            "n_failed": len(self.failures),
            "n_skipped": len(self.skipped),
            "cancelled": self.cancelled,
            "failures": [{"path": p, "error": t, "message": m} for p, t, m in self.failures],
            "skipped": self.skipped,
            "session": self.session.as_dict(),
        }


def _timestamp_strings(df: pd.DataFrame, schema) -> List[str]:
    if schema.time_column:
        return join_date_time(df[schema.timestamp_column], df[schema.time_column])
    return df[schema.timestamp_column].tolist()


def convert_file(path: str | Path, session: SessionCfg, *, password: Optional[str] = None) -> Tuple[EpochSeries, InferenceReport]:
    """Convert one file. Raises a file-level ``IngestError`` on failure."""
    p = Path(path)
    report = InferenceReport(source=str(p))

    df, header_row = read_epoch_table(p, session.metric_name, password=password)
    report.header_row = header_row
    report.n_rows = len(df)

    schema = detect_schema(
        list(df.columns),
        session.metric_name,
        timestamp_column=session.timestamp_column,
        metric_column=session.metric_column,
    )
    schema = select_numeric_metric(schema, df, session.metric_name, explicit=bool(session.metric_column))
    report.timestamp_column = schema.timestamp_column
    report.metric_column = schema.metric_column
    report.time_column = schema.time_column

    parsed, failed = parse_timestamps(
        _timestamp_strings(df, schema),
        session.timestamp_format,
        target_tz=session.target_tz,
        source_tz=session.source_tz,
    )
    report.note_parse_failures(failed)
    if failed:
        report.warn(f"{len(failed)} timestamp(s) did not match the pattern")

    instants = to_instants(parsed)
    report.order_violations = count_order_violations(instants)
    if report.order_violations:
        report.warn(f"{report.order_violations} timestamp(s) earlier than the previous row")

    if session.epoch_override is None and len(instants) < 2:
        raise InsufficientData(f"{p.name}: {len(instants)} parseable timestamp(s), need at least 2")
    est = resolve_epoch(instants, session.epoch_override, require_explicit=session.require_explicit_epoch)
    report.epoch_duration_seconds = est.seconds
    report.epoch_overridden = session.epoch_override is not None
    report.epoch_ambiguous = est.ambiguous
    if est.ambiguous:
        report.warn(f"epoch duration ambiguous; chose {est.seconds:g}s")

    series = normalize_series(
        parsed,
        df[schema.metric_column],
        est.seconds,
        metric_name=session.active_metric or session.metric_name,
        drift_tolerance=session.drift_tolerance,
        policy=session.tolerance_policy,
        recover_by_position=session.recover_by_position,
        passthrough=df[list(schema.passthrough)],
        report=report,
    )
    logger.info(
        "%s: epoch=%gs slots=%d missing=%d parse_failures=%d collisions=%d",
        p.name, est.seconds, len(series), report.filled_gaps, report.parse_failures, report.collisions,
    )
    for w in report.warnings:
        logger.warning("%s: %s", p.name, w)
    return series, report


def _run_one(path: Path, session: SessionCfg, cancel: threading.Event, password: Optional[str]) -> FileResult:
    if cancel.is_set():
        logger.info("%s: skipped (batch cancelled)", path.name)
        return FileResult(path, skipped=True)
    try:
        series, report = convert_file(path, session, password=password)
    except FILE_LEVEL_ERRORS as e:
        logger.warning("%s: %s: %s", path.name, type(e).__name__, e)
        return FileResult(path, error_type=type(e).__name__, error=str(e))
    return FileResult(path, series=series, report=report)


def ingest_batch(
    paths: Sequence[str | Path],
    session: SessionCfg,
    *,
    workers: int = 1,
    cancel: Optional[threading.Event] = None,
    password: Optional[str] = None,
    on_result: Optional[Callable[[FileResult], None]] = None,
) -> BatchResult:
    """Convert ``paths`` independently; results keep input order.

    ``IncompatibleConfiguration`` from reconciliation propagates before any
    file is read. Setting ``cancel`` lets in-flight files finish and marks
    the rest as skipped.
    """
    session = reconcile_session(session)
    cancel = cancel or threading.Event()
    paths = [Path(p) for p in paths]
    workers = max(1, int(workers))
    logger.info("ingest: %d file(s), workers=%d", len(paths), workers)

    batch = BatchResult(session=session)
    with progress_bar(total=len(paths), desc="[ingest] files") as bar:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(_run_one, p, session, cancel, password) for p in paths]
            i = 0
            interrupted = False
            while i < len(futures):
                try:
                    res = futures[i].result()
                except KeyboardInterrupt:
                    if interrupted:
                        # second Ctrl-C: drop the queue and stop waiting
                        pool.shutdown(wait=False, cancel_futures=True)
                        raise
                    # Ctrl-C: let running files finish, skip the queue
                    logger.warning("ingest interrupted; finishing in-flight files")
                    interrupted = True
                    cancel.set()
                    continue
                batch.results.append(res)
                bar.update(1)
                if on_result is not None:
                    on_result(res)
                i += 1
    batch.cancelled = cancel.is_set()
    logger.info(
        "ingest done: converted=%d failed=%d skipped=%d",
        len(batch.converted), len(batch.failures), len(batch.skipped),
    )
    return batch


def output_stems(paths: Sequence[Path]) -> List[str]:
    """One output stem per input, unique within the batch.

    The stem is the file name up to its first dot. Names shared by several
    inputs (``subj01/export.csv``, ``subj02/export.csv``) are prefixed with
    their directories below the common parent, then numbered if still equal.
    """
    paths = [Path(p) for p in paths]
    base = [p.name.split(".")[0] for p in paths]
    counts = Counter(base)
    root = None
    if any(n > 1 for n in counts.values()):
        root = Path(os.path.commonpath([str(p.resolve().parent) for p in paths]))

    stems: List[str] = []
    seen = set()
    for p, b in zip(paths, base):
        stem = b
        if counts[b] > 1:
            rel = p.resolve().parent.relative_to(root).parts
            stem = "_".join(rel + (b,))
        cand, n = stem, 2
        while cand in seen:
            cand = f"{stem}_{n}"
            n += 1
        seen.add(cand)
        stems.append(cand)
    return stems


def write_outputs(batch: BatchResult, outdir: str | Path, *, dry_run: bool = False) -> Path:
    out = Path(outdir)
    stems = output_stems([r.path for r in batch.results])
    for r, stem in zip(batch.results, stems):
        if r.ok:
            atomic_write_text(r.series.to_csv(), out / f"{stem}_epochs.csv", backup=True, dry_run=dry_run)
        if r.report is not None:
            write_json(r.report.as_dict(), out / f"{stem}_report.json", dry_run=dry_run)
    summary = batch.summary()
    summary["outputs"] = {str(r.path): stem for r, stem in zip(batch.results, stems)}
    return write_json(summary, out / "batch_summary.json", dry_run=dry_run)
