#!/usr/bin/env python3
"""Command line runner for epoch ingestion.

Subcommands:
  ingest   convert one file or a directory of files into epoch series
  inspect  show detected columns, header row and epoch for one file

Exit codes: 0 all files converted, 1 at least one file failed,
2 usage or session configuration error.
"""
from __future__ import annotations
import argparse
import logging
import os
import sys

from actimetric.domains.common.io import discover_inputs, iter_raw_rows, read_epoch_table
from actimetric.domains.common.progress import Timer
from actimetric.domains.config import INGESTION_MODES, TOLERANCE_POLICIES, load_session_cfg
from actimetric.domains.epoch.epoch_infer import estimate_epoch
from actimetric.domains.epoch.schema_detect import detect_schema
from actimetric.domains.epoch.timestamps import join_date_time, parse_timestamps, to_instants
from actimetric.domains.errors import IncompatibleConfiguration, IngestError

logger = logging.getLogger("etl.cli")


def _setup_logging() -> None:
    # honor ETL_LOG_LEVEL once; default INFO
    lvl_name = os.getenv("ETL_LOG_LEVEL", "INFO")
    lvl = getattr(logging, lvl_name.upper(), logging.INFO)
    if not isinstance(lvl, int):
        lvl = logging.INFO
    logging.basicConfig(level=lvl, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _add_session_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", default=None, help="YAML session config")
    p.add_argument("--metric", dest="metric_name", default=None, help="Metric name to look for (default PIM)")
    p.add_argument("--ts-format", dest="timestamp_format", default=None,
                   help="strftime pattern, e.g. '%%d/%%m/%%Y %%H:%%M:%%S' (default ISO 8601)")
    p.add_argument("--tz", dest="target_tz", default=None, help="Target IANA timezone")
    p.add_argument("--source-tz", dest="source_tz", default=None, help="Timezone of naive timestamps")
    p.add_argument("--epoch", dest="epoch_override", type=int, default=None, help="Epoch seconds (skips inference)")
    p.add_argument("--policy", dest="tolerance_policy", choices=TOLERANCE_POLICIES, default=None)
    p.add_argument("--timestamp-column", default=None)
    p.add_argument("--metric-column", default=None)


def _session_from_args(args):
    overrides = {
        k: getattr(args, k, None)
        for k in ("metric_name", "timestamp_format", "target_tz", "source_tz", "epoch_override",
                  "tolerance_policy", "timestamp_column", "metric_column", "ingestion_mode")
    }
    if getattr(args, "computations", None):
        overrides["computations"] = args.computations
    return load_session_cfg(args.config, **overrides)


def _cmd_ingest(args) -> int:
    from actimetric.etl.stage_epoch_ingest import ingest_batch, write_outputs

    session = _session_from_args(args)
    paths = []
    for src in args.inputs:
        found = discover_inputs(src)
        if not found:
            logger.warning("no input files under %s", src)
        paths.extend(found)
    if not paths:
        print("[error] no input files found")
        return 2

    with Timer(f"ingest {len(paths)} file(s)"):
        batch = ingest_batch(paths, session, workers=args.workers, password=args.zip_password)
        summary_path = write_outputs(batch, args.outdir, dry_run=bool(args.dry_run))

    for path, etype, msg in batch.failures:
        print(f"[fail] {path}: {etype}: {msg}")
    print(f"[OK] converted={len(batch.converted)} failed={len(batch.failures)} summary={summary_path}")
    return 1 if batch.failures else 0


def _cmd_inspect(args) -> int:
    session = _session_from_args(args)
    df, header_row = read_epoch_table(args.path, session.metric_name, password=args.zip_password)
    schema = detect_schema(list(df.columns), session.metric_name,
                           timestamp_column=session.timestamp_column, metric_column=session.metric_column)
    print(f"header_row: {header_row}")
    print(f"rows: {len(df)}")
    print(f"timestamp_column: {schema.timestamp_column}")
    if schema.time_column:
        print(f"time_column: {schema.time_column}")
    print(f"metric_column: {schema.metric_column}")
    print(f"passthrough: {', '.join(schema.passthrough) or '-'}")
    for row in iter_raw_rows(df.head(args.rows)):
        print(f"  [{row.index}] {row[schema.timestamp_column]!s} -> {row[schema.metric_column]!s}")

    stamps = (join_date_time(df[schema.timestamp_column], df[schema.time_column])
              if schema.time_column else df[schema.timestamp_column])
    parsed, failed = parse_timestamps(stamps, session.timestamp_format, session.target_tz, session.source_tz)
    print(f"parse_failures: {len(failed)}")
    instants = to_instants(parsed)
    if len(instants) >= 2:
        est = estimate_epoch(instants)
        print(f"epoch_seconds: {est.seconds:g} (support {est.support}/{est.n_deltas}{', ambiguous' if est.ambiguous else ''})")
    return 0


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    _setup_logging()

    parser = argparse.ArgumentParser(prog="actimetric")
    sub = parser.add_subparsers(dest="cmd")

    p = sub.add_parser("ingest", help="Convert derived-metric epoch files to uniform series")
    p.add_argument("inputs", nargs="+", help="Files or directories")
    p.add_argument("--outdir", required=True)
    p.add_argument("--workers", type=int, default=1)
    p.add_argument("--mode", dest="ingestion_mode", choices=INGESTION_MODES, default=None)
    p.add_argument("--compute", dest="computations", action="append", default=None,
                   help="Downstream computation to enable (repeatable)")
    p.add_argument("--zip-password", dest="zip_password", default=None)
    p.add_argument("--dry-run", type=int, default=0, help="If 1 do not write outputs")
    _add_session_args(p)

    p_ins = sub.add_parser("inspect", help="Show what would be detected for one file")
    p_ins.add_argument("path")
    p_ins.add_argument("--rows", type=int, default=5)
    p_ins.add_argument("--zip-password", dest="zip_password", default=None)
    _add_session_args(p_ins)

    args = parser.parse_args(argv)
    if args.cmd is None:
        parser.print_help()
        return 2

    try:
        if args.cmd == "ingest":
            return _cmd_ingest(args)
        return _cmd_inspect(args)
    except IncompatibleConfiguration as e:
        print(f"[error] configuration: {e}")
        return 2
    except IngestError as e:
        print(f"[error] {type(e).__name__}: {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
