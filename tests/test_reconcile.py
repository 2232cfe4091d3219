import pytest

from actimetric.domains.config import build_session_cfg
from actimetric.domains.epoch.reconcile import (
    METRIC_COMPUTATIONS,
    RAW_ONLY_COMPUTATIONS,
    is_enabled,
    reconcile_session,
)
from actimetric.domains.errors import IncompatibleConfiguration


def test_derived_mode_disables_raw_only_computations():
    cfg = reconcile_session(build_session_cfg(metric_name="PIM"))
    assert cfg.reconciled
    assert cfg.active_metric == "PIM"
    assert cfg.enabled_computations == METRIC_COMPUTATIONS
    assert RAW_ONLY_COMPUTATIONS <= cfg.disabled_computations
    assert not is_enabled(cfg, "anglez")
    assert is_enabled(cfg, "metric_nonwear")


def test_requesting_raw_computation_in_derived_mode_fails():
    with pytest.raises(IncompatibleConfiguration, match="anglez"):
        reconcile_session(build_session_cfg(computations=["day_summary", "anglez"]))


def test_raw_mode_keeps_requested_computations():
    cfg = reconcile_session(build_session_cfg(ingestion_mode="raw", computations="anglez,enmo"))
    assert cfg.enabled_computations == frozenset({"anglez", "enmo"})
    assert "day_summary" in cfg.disabled_computations


def test_unknown_computation_is_rejected():
    with pytest.raises(IncompatibleConfiguration):
        reconcile_session(build_session_cfg(computations=["tea_break"]))


def test_reconcile_runs_once():
    cfg = reconcile_session(build_session_cfg())
    assert reconcile_session(cfg) is cfg


def test_unreconciled_config_cannot_gate_computations():
    with pytest.raises(IncompatibleConfiguration):
        is_enabled(build_session_cfg(), "day_summary")


def test_batch_refuses_to_start_before_reading_any_file(tmp_path, monkeypatch):
    import actimetric.etl.stage_epoch_ingest as stage

    def _boom(*args, **kwargs):
        raise AssertionError("file was read")

    monkeypatch.setattr(stage, "read_epoch_table", _boom)
    cfg = build_session_cfg(computations=["raw_nonwear"])
    with pytest.raises(IncompatibleConfiguration):
        stage.ingest_batch([tmp_path / "a.csv", tmp_path / "b.csv"], cfg, workers=2)
