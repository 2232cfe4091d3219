"""Assemble parsed instants and metric values into a uniform epoch series.

Every slot between start and end is present. Slots without an observation
carry ``missing=True`` and a NaN value; they are never zero-filled, since
non-wear detection downstream must tell a real zero epoch from an absent
reading.
"""
from __future__ import annotations

from bisect import bisect_left
from collections import Counter
from typing import Dict, List, Optional, Sequence
import logging

import numpy as np
import pandas as pd

from actimetric.domains.config import POLICY_FILL, POLICY_STRICT
from actimetric.domains.epoch.models import SERIES_COLUMNS, EpochSeries, InferenceReport
from actimetric.domains.errors import EmptySeries, MetricToleranceExceeded

logger = logging.getLogger("etl.epoch")

RESERVED_COLUMNS = set(SERIES_COLUMNS)
_DECIMAL_COMMA = r"^\s*-?\d+,\d+\s*$"


def coerce_metric(raw: Sequence) -> pd.Series:
    """Raw metric cells to float; anything non-numeric becomes NaN.

    Accepts a decimal comma (``12,5``) as written by European exports.
    """
    s = pd.Series(list(raw), dtype=object).map(lambda v: "" if v is None else str(v).strip())
    s = s.where(~s.str.match(_DECIMAL_COMMA), s.str.replace(",", ".", regex=False))
    return pd.to_numeric(s, errors="coerce").astype(float)


def _utc_ns(parsed: pd.Series) -> np.ndarray:
    idx = pd.DatetimeIndex(parsed)
    return idx.tz_convert("UTC").as_unit("ns").asi8 if idx.tz is not None else idx.as_unit("ns").asi8


def _grid_anchor(t_ns: np.ndarray, epoch_ns: int) -> int:
    """Earliest instant lying on the dominant grid phase.

    Equals ``min(t)`` whenever the first observation is on the grid; a
    jittered first reading (device start-up) does not shift the grid for
    the rest of the file.
    """
    t0 = int(t_ns.min())
    phase = ((t_ns - t0) % epoch_ns) // 1_000_000  # ms
    modal = Counter(phase.tolist()).most_common()
    top = modal[0][1]
    best = min(p for p, c in modal if c == top)
    dist = np.abs(phase - best)
    dist = np.minimum(dist, epoch_ns // 1_000_000 - dist)
    on_grid = dist <= 1
    return int(t_ns[on_grid].min())


def _passthrough_frame(passthrough: Optional[pd.DataFrame], metric_name: str) -> Optional[pd.DataFrame]:
    if passthrough is None or passthrough.shape[1] == 0:
        return None
    renamed = {}
    for c in passthrough.columns:
        if c in RESERVED_COLUMNS or str(c).lower() == metric_name.lower():
            renamed[c] = f"raw_{c}"
    return passthrough.rename(columns=renamed).reset_index(drop=True)


def normalize_series(
    parsed: pd.Series,
    values: Sequence,
    epoch_seconds: float,
    *,
    metric_name: str = "value",
    drift_tolerance: float = 0.25,
    policy: str = POLICY_FILL,
    recover_by_position: bool = True,
    passthrough: Optional[pd.DataFrame] = None,
    report: Optional[InferenceReport] = None,
) -> EpochSeries:
    """Place observations on the slot grid ``start + k * epoch``.

    ``parsed`` holds one tz-aware instant per source row (NaT where the
    timestamp failed to parse); ``values`` holds the metric values in the
    same row order. The first observation (file order) of a slot wins;
    later ones count as collisions. Observations further than
    ``drift_tolerance`` epochs from their slot are flagged and left out.
    """
    report = report if report is not None else InferenceReport()
    parsed = pd.Series(parsed).reset_index(drop=True)
    vals = coerce_metric(values)
    if len(vals) != len(parsed):
        raise ValueError(f"values ({len(vals)}) and timestamps ({len(parsed)}) differ in length")
    if epoch_seconds is None or epoch_seconds <= 0:
        raise ValueError(f"epoch duration must be positive, got {epoch_seconds!r}")

    ok = parsed.notna().to_numpy()
    numeric = vals.notna().to_numpy()
    if not (ok & numeric).any():
        raise EmptySeries("no row has both a parsed timestamp and a numeric metric value")

    rows = np.flatnonzero(ok)
    epoch_ns = int(round(float(epoch_seconds) * 1e9))
    t_ns = _utc_ns(parsed[ok])
    anchor_ns = _grid_anchor(t_ns, epoch_ns)

    offset = (t_ns - anchor_ns) / epoch_ns
    slot = np.floor(offset + 0.5).astype(np.int64)
    anomalous = np.abs(offset - slot) > drift_tolerance
    n_anomalies = int(anomalous.sum())

    good_rows = rows[~anomalous]
    # readings slightly before the anchor extend the grid backwards
    first_slot = int(slot[~anomalous].min())
    good_slots = slot[~anomalous] - first_slot
    start_ns = anchor_ns + first_slot * epoch_ns
    n_slots = int(good_slots.max()) + 1

    value_arr = np.full(n_slots, np.nan)
    source_arr = np.full(n_slots, -1, dtype=np.int64)
    collisions = 0
    metric_failures = int((ok & ~numeric).sum())

    for r, s in zip(good_rows.tolist(), good_slots.tolist()):
        if not numeric[r]:
            continue
        if source_arr[s] >= 0:
            collisions += 1
            logger.debug("slot %d: row %d collides with row %d", s, r, source_arr[s])
            continue
        value_arr[s] = vals.iat[r]
        source_arr[s] = r

    recovered = 0
    if recover_by_position and len(good_rows) >= 2:
        anchors: List[int] = good_rows.tolist()
        slot_of: Dict[int, int] = dict(zip(anchors, good_slots.tolist()))
        for r in np.flatnonzero(~ok).tolist():
            i = bisect_left(anchors, r)
            if i == 0 or i == len(anchors):
                continue
            p, q = anchors[i - 1], anchors[i]
            if slot_of[q] - slot_of[p] != q - p:
                continue
            s = slot_of[p] + (r - p)
            if numeric[r] and source_arr[s] < 0:
                value_arr[s] = vals.iat[r]
                source_arr[s] = r
                recovered += 1

    missing = source_arr < 0
    timestamps = pd.date_range(
        start=pd.Timestamp(start_ns, unit="ns", tz="UTC").tz_convert(parsed.dt.tz),
        periods=n_slots,
        freq=pd.Timedelta(epoch_ns, unit="ns"),
    )
    frame = pd.DataFrame({
        "timestamp": timestamps,
        "value": value_arr,
        "missing": missing,
        "source_row": pd.array(np.where(missing, None, source_arr).tolist(), dtype="Int64"),
    })
    extra = _passthrough_frame(passthrough, metric_name)
    if extra is not None:
        picked = extra.reindex(pd.Index(np.where(missing, -1, source_arr))).reset_index(drop=True)
        frame = pd.concat([frame, picked], axis=1)

    report.collisions = collisions
    report.drift_anomalies = n_anomalies
    report.metric_failures = metric_failures
    report.positional_recoveries = recovered
    report.filled_gaps = int(missing.sum())
    report.n_epochs = n_slots
    if collisions:
        report.warn(f"{collisions} observation(s) mapped onto an occupied slot; first kept")
    if n_anomalies:
        report.warn(f"{n_anomalies} observation(s) off the epoch grid by more than {drift_tolerance:g} epoch")

    if policy == POLICY_STRICT and (metric_failures or n_anomalies):
        raise MetricToleranceExceeded(
            f"strict policy: {metric_failures} non-numeric metric value(s), {n_anomalies} off-grid observation(s)"
        )

    return EpochSeries(frame=frame, epoch_duration_seconds=float(epoch_seconds), metric_name=metric_name)
