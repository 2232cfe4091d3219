import sys
from pathlib import Path

import pandas as pd
import pytest

# Ensure repository root is on sys.path so tests can import local modules
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

ENV_VARS = ("ETL_TZ", "ETL_SOURCE_TZ", "ETL_EPOCH_OVERRIDE", "ETL_TOLERANCE_POLICY", "ETL_METRIC", "ETL_TS_FORMAT")


@pytest.fixture(autouse=True)
def _quiet_env(monkeypatch):
    # no progress bars, no config leaking in from the developer shell
    monkeypatch.setenv("ETL_TQDM", "0")
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    yield


def make_stamps(n=120, step=15, start="2024-01-15 08:00:00", drop=()):
    t0 = pd.Timestamp(start)
    return [
        (t0 + pd.Timedelta(seconds=step * i)).strftime("%Y-%m-%d %H:%M:%S")
        for i in range(n)
        if i not in drop
    ]


def make_epoch_frame(n=120, step=15, start="2024-01-15 08:00:00", drop=()):
    keep = [i for i in range(n) if i not in drop]
    return pd.DataFrame({
        "Time": make_stamps(n, step, start, drop),
        "PIM": [float(10 * i) for i in keep],
        "Marker": ["m" if i % 40 == 0 else "" for i in keep],
    })


@pytest.fixture
def epoch_csv(tmp_path):
    """Write a Time/PIM/Marker CSV; returns the path."""
    def _write(name="subj01.csv", **kwargs):
        p = tmp_path / name
        p.parent.mkdir(parents=True, exist_ok=True)
        make_epoch_frame(**kwargs).to_csv(p, index=False)
        return p
    return _write
