from concurrent.futures import Future
import json
import threading
import zipfile

import pandas as pd
import pytest

from actimetric.domains.config import build_session_cfg
from actimetric.domains.epoch.reconcile import reconcile_session
from actimetric.domains.errors import InsufficientData, SchemaNotFound
import actimetric.etl.stage_epoch_ingest as stage


def _session(**kw):
    return reconcile_session(build_session_cfg(**kw))


def test_120_rows_at_15_seconds(epoch_csv):
    series, report = stage.convert_file(epoch_csv(), _session())
    assert report.epoch_duration_seconds == 15
    assert report.timestamp_column == "Time"
    assert report.metric_column == "PIM"
    assert len(series) == 120
    assert series.n_missing == 0
    assert series.start_time == pd.Timestamp("2024-01-15 08:00:00", tz="UTC")
    # extra columns ride along untouched
    assert "Marker" in series.frame.columns


def test_row_50_deleted(epoch_csv):
    full, _ = stage.convert_file(epoch_csv("full.csv"), _session())
    gap, report = stage.convert_file(epoch_csv("gap.csv", drop={50}), _session())
    assert len(gap) == 120
    assert bool(gap.frame.loc[50, "missing"]) is True
    assert report.filled_gaps == 1
    others = [i for i in range(120) if i != 50]
    assert gap.frame.loc[others, "value"].tolist() == full.frame.loc[others, "value"].tolist()


def test_conversion_is_byte_identical_across_runs(epoch_csv):
    p = epoch_csv(drop={10, 11})
    a, _ = stage.convert_file(p, _session())
    b, _ = stage.convert_file(p, _session())
    assert a.to_csv() == b.to_csv()


def test_device_export_with_preamble_and_split_date_time(tmp_path):
    p = tmp_path / "actiwatch.csv"
    p.write_text(
        "Actiwatch export\n"
        "Subject;01\n"
        "Date;Time;PIM;Light\n"
        "15/01/2024;08:00:00;12,5;3\n"
        "15/01/2024;08:01:00;0;4\n"
        "15/01/2024;08:03:00;7;5\n"
        "15/01/2024;08:04:00;1;6\n"
    )
    series, report = stage.convert_file(p, _session(timestamp_format="%d/%m/%Y %H:%M:%S"))
    assert report.header_row == 2
    assert report.time_column == "Time"
    assert report.epoch_duration_seconds == 60
    assert series.frame["value"].tolist()[:2] == [12.5, 0.0]
    assert bool(series.frame.loc[2, "missing"]) is True
    assert series.frame["Light"].tolist()[3] == "5"


def test_epoch_override_allows_single_row(tmp_path):
    p = tmp_path / "one.csv"
    p.write_text("Time,PIM\n2024-01-15 08:00:00,4\n")
    with pytest.raises(InsufficientData):
        stage.convert_file(p, _session())
    series, report = stage.convert_file(p, _session(epoch_override=30))
    assert len(series) == 1
    assert report.epoch_overridden


def test_zip_input(tmp_path, epoch_csv):
    src = epoch_csv(n=20)
    z = tmp_path / "subj02.zip"
    with zipfile.ZipFile(z, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.write(src, "export/subj02.csv")
    series, _ = stage.convert_file(z, _session())
    assert len(series) == 20


def test_batch_reports_failures_and_keeps_going(tmp_path, epoch_csv):
    good = epoch_csv("good.csv")
    no_metric = tmp_path / "no_metric.csv"
    no_metric.write_text("Time,ZCM\n2024-01-15 08:00:00,1\n2024-01-15 08:00:15,2\n")
    strict_bad = tmp_path / "strict_bad.csv"
    strict_bad.write_text("Time,PIM\n2024-01-15 08:00:00,1\n2024-01-15 08:00:15,n/a\n2024-01-15 08:00:30,3\n")
    missing = tmp_path / "missing.csv"

    batch = stage.ingest_batch(
        [no_metric, good, strict_bad, missing],
        build_session_cfg(tolerance_policy="strict"),
        workers=3,
    )
    assert [r.path.name for r in batch.results] == ["no_metric.csv", "good.csv", "strict_bad.csv", "missing.csv"]
    assert [r.path.name for r in batch.converted] == ["good.csv"]
    errors = {p.split("/")[-1]: t for p, t, _ in batch.failures}
    assert errors == {
        "no_metric.csv": "SchemaNotFound",
        "strict_bad.csv": "MetricToleranceExceeded",
        "missing.csv": "InputReadError",
    }
    assert batch.session.reconciled
    assert batch.summary()["n_failed"] == 3


def test_cancellation_skips_queued_files(epoch_csv, monkeypatch):
    paths = [epoch_csv(f"s{i}.csv", n=10) for i in range(3)]
    cancel = threading.Event()
    real = stage.convert_file

    def _convert_then_cancel(path, session, **kw):
        out = real(path, session, **kw)
        cancel.set()
        return out

    monkeypatch.setattr(stage, "convert_file", _convert_then_cancel)
    batch = stage.ingest_batch(paths, build_session_cfg(), workers=1, cancel=cancel)
    assert [r.ok for r in batch.results] == [True, False, False]
    assert batch.skipped == [str(paths[1]), str(paths[2])]
    assert batch.cancelled


def test_write_outputs(tmp_path, epoch_csv):
    batch = stage.ingest_batch([epoch_csv(drop={3})], build_session_cfg())
    out = tmp_path / "out"
    summary = stage.write_outputs(batch, out)
    first = (out / "subj01_epochs.csv").read_bytes()
    report = json.loads((out / "subj01_report.json").read_text())
    assert report["filled_gaps"] == 1
    assert report["metric_column"] == "PIM"
    assert json.loads(summary.read_text())["n_converted"] == 1

    stage.write_outputs(batch, out)
    assert (out / "subj01_epochs.csv").read_bytes() == first
    assert (out / "subj01_epochs_prev.csv").exists()


def test_status_column_next_to_metric_is_skipped(tmp_path):
    p = tmp_path / "status.csv"
    p.write_text(
        "Time,PIM_status,PIM\n"
        "2024-01-15 08:00:00,ok,4\n"
        "2024-01-15 08:01:00,ok,5\n"
        "2024-01-15 08:02:00,ok,6\n"
    )
    series, report = stage.convert_file(p, _session())
    assert report.metric_column == "PIM"
    assert series.frame["value"].tolist() == [4.0, 5.0, 6.0]
    assert series.frame["PIM_status"].tolist() == ["ok", "ok", "ok"]

    text_only = tmp_path / "text_only.csv"
    text_only.write_text("Time,PIM\n2024-01-15 08:00:00,ok\n2024-01-15 08:01:00,ok\n")
    with pytest.raises(SchemaNotFound):
        stage.convert_file(text_only, _session())


def test_drift_tolerance_from_session(tmp_path):
    stamps = [f"2024-01-15 08:0{i}:00" for i in range(10)]
    stamps[5] = "2024-01-15 08:05:20"  # a third of an epoch late
    p = tmp_path / "drift.csv"
    pd.DataFrame({"Time": stamps, "PIM": range(10)}).to_csv(p, index=False)

    tight, report = stage.convert_file(p, _session())
    assert report.epoch_duration_seconds == 60
    assert report.drift_anomalies == 1
    assert bool(tight.frame.loc[5, "missing"]) is True

    loose, report = stage.convert_file(p, _session(drift_tolerance=0.5))
    assert report.drift_anomalies == 0
    assert loose.n_missing == 0
    assert loose.frame.loc[5, "value"] == 5.0


def test_second_interrupt_aborts_batch(epoch_csv, monkeypatch):
    paths = [epoch_csv(f"s{i}.csv", n=10) for i in range(3)]

    def _interrupted(self, timeout=None):
        raise KeyboardInterrupt

    monkeypatch.setattr(Future, "result", _interrupted)
    cancel = threading.Event()
    with pytest.raises(KeyboardInterrupt):
        stage.ingest_batch(paths, build_session_cfg(), cancel=cancel)
    assert cancel.is_set()


def test_same_file_name_in_different_directories(tmp_path, epoch_csv):
    a = epoch_csv("subj01/export.csv", n=10)
    b = epoch_csv("subj02/export.csv", n=20)
    assert stage.output_stems([a, b]) == ["subj01_export", "subj02_export"]
    assert stage.output_stems([a, a]) == ["export", "export_2"]

    batch = stage.ingest_batch([a, b], build_session_cfg())
    out = tmp_path / "out"
    summary = json.loads(stage.write_outputs(batch, out).read_text())
    assert sorted(x.name for x in out.iterdir()) == [
        "batch_summary.json",
        "subj01_export_epochs.csv",
        "subj01_export_report.json",
        "subj02_export_epochs.csv",
        "subj02_export_report.json",
    ]
    assert len(pd.read_csv(out / "subj01_export_epochs.csv")) == 10
    assert len(pd.read_csv(out / "subj02_export_epochs.csv")) == 20
    assert summary["outputs"][str(a)] == "subj01_export"
