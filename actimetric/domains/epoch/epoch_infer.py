"""Epoch duration inference from the distribution of timestamp deltas."""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Dict, Optional, Sequence
import logging
import warnings

import numpy as np
import pandas as pd

from actimetric.domains.errors import AmbiguousEpochDuration, InsufficientData

logger = logging.getLogger("etl.epoch")

# deltas are compared at millisecond resolution
DELTA_DECIMALS = 3


@dataclass(frozen=True)
class EpochEstimate:
    seconds: float
    support: int
    n_deltas: int
    ambiguous: bool
    histogram: Dict[float, int]



def _as_ns(instants: Sequence) -> np.ndarray:
    vals = [getattr(x, "instant", x) for x in instants]
    idx = pd.DatetimeIndex([v for v in vals if not pd.isna(v)])
    if idx.tz is not None:
        idx = idx.tz_convert("UTC")
    return idx.as_unit("ns").asi8


def delta_histogram(instants: Sequence) -> Dict[float, int]:
    """Counts of consecutive positive deltas, in seconds.

    Zero and negative deltas come from duplicated or out-of-order rows and
    say nothing about the sampling interval.
    """
    ns = _as_ns(instants)
    if len(ns) < 2:
        return {}
    d = np.diff(ns)
    d = d[d > 0] / 1e9
    return dict(Counter(np.round(d, DELTA_DECIMALS).tolist()))


def estimate_epoch(instants: Sequence) -> EpochEstimate:
    n_points = len(_as_ns(instants))
    if n_points < 2:
        raise InsufficientData(f"need at least 2 parsed timestamps to infer the epoch, got {n_points}")
    hist = delta_histogram(instants)
    if not hist:
        raise InsufficientData("all timestamps are identical; no positive delta to infer the epoch from")
    top = max(hist.values())
    # smaller duration wins a tie: finer granularity never under-samples
    seconds = min(v for v, c in hist.items() if c == top)
    ambiguous = len(hist) > 1 and all(c == top for c in hist.values())
    return EpochEstimate(float(seconds), top, sum(hist.values()), ambiguous, hist)


def _check_ambiguity(est: EpochEstimate, require_explicit: bool) -> None:
    if not est.ambiguous:
        return
    msg = (
        f"epoch duration ambiguous: deltas {sorted(est.histogram)} are equally frequent; "
        f"using {est.seconds:g}s (set epoch_override to pin it)"
    )
    if require_explicit:
        raise AmbiguousEpochDuration(msg)
    warnings.warn(msg, AmbiguousEpochDuration, stacklevel=3)


def infer_epoch_duration(instants: Sequence, *, require_explicit: bool = False) -> float:
    """Mode of the consecutive deltas, ties broken towards the smaller value.

    A maximally tied distribution triggers ``AmbiguousEpochDuration``: a
    warning by default, an error when ``require_explicit`` is set.
    """
    est = estimate_epoch(instants)
    _check_ambiguity(est, require_explicit)
    logger.debug(
        "epoch inferred=%gs support=%d/%d distinct=%d",
        est.seconds, est.support, est.n_deltas, len(est.histogram),
    )
    return est.seconds


def resolve_epoch(instants: Sequence, override: Optional[int] = None, *,
                  require_explicit: bool = False) -> EpochEstimate:
    """Override when given, otherwise inferred from ``instants``."""
    if override is not None:
        return EpochEstimate(float(override), 0, 0, False, {})
    est = estimate_epoch(instants)
    _check_ambiguity(est, require_explicit)
    return est
