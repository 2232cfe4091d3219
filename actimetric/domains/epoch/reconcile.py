"""Session-level reconciliation of computations against the ingestion mode.

Runs once, before any worker starts. Files ingested from a derived metric
carry no tri-axial signal, so every computation that needs one is switched
off here instead of failing halfway through a batch.
"""
from __future__ import annotations

from dataclasses import replace
import logging

from actimetric.domains.config import MODE_DERIVED, SessionCfg, validate_cfg
from actimetric.domains.errors import IncompatibleConfiguration

logger = logging.getLogger("etl.reconcile")

# computations that need raw acceleration (angle or raw-signal features)
RAW_ONLY_COMPUTATIONS = frozenset({
    "autocalibration",
    "enmo",
    "mad",
    "anglez",
    "hfen",
    "lfenmo",
    "hdcza_sleep",
    "raw_nonwear",
})

# computations that run on any epoch-level activity signal
METRIC_COMPUTATIONS = frozenset({
    "windowed_aggregation",
    "day_summary",
    "metric_nonwear",
    "sleep_sadeh",
    "sleep_cole_kripke",
    "report",
})

ALL_COMPUTATIONS = RAW_ONLY_COMPUTATIONS | METRIC_COMPUTATIONS


def reconcile_session(cfg: SessionCfg) -> SessionCfg:
    """Return the reconciled, frozen config every conversion will share.

    Derived-metric mode: ``active_metric`` becomes the derived field and
    raw-only computations are disabled. An explicit request for one of them
    raises ``IncompatibleConfiguration``. Already reconciled configs are
    returned unchanged.
    """
    if cfg.reconciled:
        return cfg
    validate_cfg(cfg)

    requested = frozenset(cfg.computations)
    unknown = sorted(requested - ALL_COMPUTATIONS)
    if unknown:
        raise IncompatibleConfiguration(
            f"unknown computation(s) {unknown}; known: {sorted(ALL_COMPUTATIONS)}"
        )

    wanted = requested or ALL_COMPUTATIONS
    if cfg.ingestion_mode == MODE_DERIVED:
        clash = sorted(requested & RAW_ONLY_COMPUTATIONS)
        if clash:
            raise IncompatibleConfiguration(
                f"{clash} need raw acceleration but ingestion mode is {MODE_DERIVED!r} "
                f"(active metric {cfg.metric_name!r})"
            )
        enabled = wanted - RAW_ONLY_COMPUTATIONS
        disabled = ALL_COMPUTATIONS - enabled
    else:
        enabled = wanted
        disabled = ALL_COMPUTATIONS - enabled

    out = replace(
        cfg,
        active_metric=cfg.metric_name,
        enabled_computations=frozenset(enabled),
        disabled_computations=frozenset(disabled),
        reconciled=True,
    )
    logger.info(
        "session reconciled: mode=%s metric=%s enabled=%s disabled=%d",
        out.ingestion_mode, out.active_metric, ",".join(sorted(out.enabled_computations)),
        len(out.disabled_computations),
    )
    return out


def is_enabled(cfg: SessionCfg, computation: str) -> bool:
    if not cfg.reconciled:
        raise IncompatibleConfiguration("session config used before reconcile_session()")
    return computation in cfg.enabled_computations
