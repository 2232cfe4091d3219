"""Session configuration for epoch ingestion.

A ``SessionCfg`` is built once (YAML file + ``ETL_*`` environment
overrides), reconciled once, and then shared read-only by every per-file
conversion. It is a frozen dataclass: changes go through
``dataclasses.replace``.
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple
import logging
import os
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from actimetric.domains.errors import IncompatibleConfiguration

logger = logging.getLogger("etl.config")

MODE_DERIVED = "derived-metric"
MODE_RAW = "raw"
INGESTION_MODES = (MODE_DERIVED, MODE_RAW)

POLICY_STRICT = "strict"
POLICY_FILL = "fill-missing"
TOLERANCE_POLICIES = (POLICY_STRICT, POLICY_FILL)

# camelCase keys accepted in YAML files next to the snake_case field names
KEY_ALIASES = {
    "timestampFormatPattern": "timestamp_format",
    "targetTimezone": "target_tz",
    "sourceTimezone": "source_tz",
    "epochDurationOverride": "epoch_override",
    "metricTolerancePolicy": "tolerance_policy",
    "metricName": "metric_name",
    "ingestionMode": "ingestion_mode",
}

ENV_OVERRIDES = {
    "ETL_TZ": "target_tz",
    "ETL_SOURCE_TZ": "source_tz",
    "ETL_EPOCH_OVERRIDE": "epoch_override",
    "ETL_TOLERANCE_POLICY": "tolerance_policy",
    "ETL_METRIC": "metric_name",
    "ETL_TS_FORMAT": "timestamp_format",
}


@dataclass(frozen=True)
class SessionCfg:
    ingestion_mode: str = MODE_DERIVED
    metric_name: str = "PIM"
    timestamp_format: Optional[str] = None
    target_tz: str = "UTC"
    source_tz: Optional[str] = None
    epoch_override: Optional[int] = None
    tolerance_policy: str = POLICY_FILL
    drift_tolerance: float = 0.25
    require_explicit_epoch: bool = False
    recover_by_position: bool = True
    timestamp_column: Optional[str] = None
    metric_column: Optional[str] = None
    # computations the caller explicitly asked for; empty means defaults
    computations: Tuple[str, ...] = ()
    # filled in by reconcile_session()
    active_metric: Optional[str] = None
    enabled_computations: FrozenSet[str] = field(default_factory=frozenset)
    disabled_computations: FrozenSet[str] = field(default_factory=frozenset)
    reconciled: bool = False

    @property
    def effective_source_tz(self) -> str:
        return self.source_tz or self.target_tz

    def as_dict(self) -> Dict[str, Any]:
        out = {}
        for f in fields(self):
            v = getattr(self, f.name)
            if isinstance(v, frozenset):
                v = sorted(v)
            elif isinstance(v, tuple):
                v = list(v)
            out[f.name] = v
        return out


def _check_zone(name: str, key: str) -> None:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise IncompatibleConfiguration(f"{key}: unknown timezone {name!r}") from e


def validate_cfg(cfg: SessionCfg) -> SessionCfg:
    """Reject values no conversion could run with. Returns ``cfg``."""
    if cfg.ingestion_mode not in INGESTION_MODES:
        raise IncompatibleConfiguration(
            f"ingestion_mode must be one of {INGESTION_MODES}, got {cfg.ingestion_mode!r}"
        )
    if cfg.tolerance_policy not in TOLERANCE_POLICIES:
        raise IncompatibleConfiguration(
            f"tolerance_policy must be one of {TOLERANCE_POLICIES}, got {cfg.tolerance_policy!r}"
        )
    if not str(cfg.metric_name or "").strip():
        raise IncompatibleConfiguration("metric_name must be non-empty")
    _check_zone(cfg.target_tz, "target_tz")
    if cfg.source_tz:
        _check_zone(cfg.source_tz, "source_tz")
    if cfg.epoch_override is not None:
        if isinstance(cfg.epoch_override, bool) or not isinstance(cfg.epoch_override, int) or cfg.epoch_override <= 0:
            raise IncompatibleConfiguration(
                f"epoch_override must be a positive integer of seconds, got {cfg.epoch_override!r}"
            )
    if not (0.0 < float(cfg.drift_tolerance) <= 0.5):
        raise IncompatibleConfiguration(
            f"drift_tolerance is a fraction of one epoch in (0, 0.5], got {cfg.drift_tolerance!r}"
        )
    return cfg


def _coerce(name: str, raw: Any) -> Any:
    if raw is None:
        return None
    if name == "epoch_override":
        if isinstance(raw, str):
            raw = raw.strip()
            if raw == "" or raw.lower() in ("none", "auto"):
                return None
        try:
            return int(raw)
        except (TypeError, ValueError) as e:
            raise IncompatibleConfiguration(f"epoch_override: not an integer: {raw!r}") from e
    if name == "drift_tolerance":
        return float(raw)
    if name in ("require_explicit_epoch", "recover_by_position"):
        if isinstance(raw, str):
            return raw.strip().lower() in ("1", "true", "yes", "on")
        return bool(raw)
    if name == "computations":
        if isinstance(raw, str):
            raw = [c for c in raw.replace(",", " ").split() if c]
        return tuple(str(c).strip().lower() for c in raw)
    return raw


def build_session_cfg(values: Optional[Mapping[str, Any]] = None, **overrides) -> SessionCfg:
    """Build and validate a config from a mapping plus keyword overrides."""
    known = {f.name for f in fields(SessionCfg)}
    kwargs: Dict[str, Any] = {}
    for src in (values or {}), overrides:
        for k, v in src.items():
            name = KEY_ALIASES.get(k, k)
            if name not in known:
                raise IncompatibleConfiguration(f"unknown configuration key: {k!r}")
            if name in ("active_metric", "enabled_computations", "disabled_computations", "reconciled"):
                raise IncompatibleConfiguration(f"{k!r} is set by reconciliation, not by callers")
            if v is None and src is overrides:
                # unset CLI flags arrive as None
                continue
            kwargs[name] = _coerce(name, v)
    return validate_cfg(SessionCfg(**kwargs))


def load_session_cfg(path: Optional[str | Path] = None, env: Optional[Mapping[str, str]] = None, **overrides) -> SessionCfg:
    """Load a session config from YAML, then apply ``ETL_*`` env overrides.

    Precedence: keyword overrides > environment > YAML file > defaults.
    """
    values: Dict[str, Any] = {}
    if path is not None:
        p = Path(path)
        try:
            with open(p, "r", encoding="utf-8") as fh:
                doc = yaml.safe_load(fh) or {}
        except (OSError, yaml.YAMLError) as e:
            raise IncompatibleConfiguration(f"cannot read config {p}: {e}") from e
        if not isinstance(doc, dict):
            raise IncompatibleConfiguration(f"config {p} must be a mapping at top level")
        # allow nesting under an 'ingest' section
        values.update(doc.get("ingest", doc))

    env = os.environ if env is None else env
    for var, name in ENV_OVERRIDES.items():
        if env.get(var):
            logger.debug("config: %s overridden by %s", name, var)
            values[name] = env[var]

    return build_session_cfg(values, **overrides)


def with_updates(cfg: SessionCfg, **changes) -> SessionCfg:
    return validate_cfg(replace(cfg, **changes))
